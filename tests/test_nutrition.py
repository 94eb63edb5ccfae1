from nutrition import (normalize_list, map_conditions, map_allergies, detect_diet_group, diet_group_name,
                       check_allergy, find_menu_item, ALLERGENS)
from utils import clean_text, matches_search, paginate, parse_date_field


def test_normalize_list():
    assert normalize_list('Diabetes, Hypertension,,') == ['Diabetes', 'Hypertension']
    assert normalize_list([' Milk ', '']) == ['Milk']
    assert normalize_list(None) == []


def test_vietnamese_terms_are_mapped():
    conditions = map_conditions('Đái tháo đường, Khó nuốt')
    assert [c['name'] for c in conditions] == ['Diabetes', 'Dysphagia']
    allergens = map_allergies(['Đậu phộng'])
    assert allergens == [{'id': '1', 'name': 'Peanuts'}]


def test_unknown_names_are_not_added_to_the_catalogue():
    allergens = map_allergies('Shellfish, peanuts')
    assert allergens == [{'id': None, 'name': 'Shellfish'}, {'id': '1', 'name': 'Peanuts'}]
    assert len(ALLERGENS) == 3
    assert not check_allergy([{'id': None, 'name': 'Shellfish'}], '1')


def test_detect_diet_group_uses_first_matching_rule():
    assert detect_diet_group(map_conditions('Hypertension, Diabetes')) == '1'
    assert diet_group_name(detect_diet_group(map_conditions('Hypertension'))) == 'Low Sodium'
    assert diet_group_name(detect_diet_group(map_conditions('Dysphagia'))) == 'Soft'
    assert detect_diet_group([]) is None


def test_check_allergy():
    peanuts = map_allergies('Peanuts')
    assert check_allergy(peanuts, '1')
    assert check_allergy(peanuts, 1)
    assert not check_allergy(peanuts, '2')
    assert not check_allergy(peanuts, '99')
    assert find_menu_item('4')['name'] == 'Chicken Soup'


def test_clean_text_strips_markup():
    assert clean_text('<b>Bring</b> ID <script>x</script>') == 'Bring ID x'
    assert clean_text('  abcdef ', 3) == 'abc'
    assert clean_text(None) is None


def test_search_and_paginate():
    assert matches_search('DOE', 'John Doe')
    assert matches_search('', None)
    assert not matches_search('smith', 'John Doe', None)

    page = paginate(list(range(12)), 3, 5)
    assert page['items'] == [10, 11]
    assert page['pages'] == 3
    assert paginate(list(range(12)), 9, 5)['page'] == 3
    assert paginate([], 'x', 5) == {'items': [], 'page': 1, 'pages': 1, 'per_page': 5, 'total': 0}


def test_parse_date_field():
    assert parse_date_field('2025-10-22').isoformat() == '2025-10-22'
    assert parse_date_field('22/10/2025') is None
    assert parse_date_field('') is None

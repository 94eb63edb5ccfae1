"""Nutrition rules shared by the staff and admin meal planning screens."""

# Vietnamese intake-form terms -> catalogue names
CONDITION_MAP = {
    "Đái tháo đường": "Diabetes",
    "Tăng huyết áp": "Hypertension",
    "Huyết áp cao": "Hypertension",
    "Khó nuốt": "Dysphagia",
    "Rối loạn nuốt": "Dysphagia",
}

ALLERGY_MAP = {
    "Đậu phộng": "Peanuts",
    "Sữa": "Milk",
    "Gluten": "Gluten",
}

CONDITIONS = [
    {'id': '1', 'name': 'Diabetes'},
    {'id': '2', 'name': 'Hypertension'},
    {'id': '3', 'name': 'Dysphagia'},
]

ALLERGENS = [
    {'id': '1', 'name': 'Peanuts'},
    {'id': '2', 'name': 'Milk'},
    {'id': '3', 'name': 'Gluten'},
]

DIET_GROUPS = [
    {'id': '1', 'name': 'Low Sugar', 'recommended_conditions': [CONDITIONS[0]]},
    {'id': '2', 'name': 'Low Sodium', 'recommended_conditions': [CONDITIONS[1]]},
    {'id': '5', 'name': 'Soft', 'recommended_conditions': [CONDITIONS[2]]},
    {'id': '3', 'name': 'Low Carb', 'recommended_conditions': []},
    {'id': '4', 'name': 'High Protein', 'recommended_conditions': []},
]

MENU_ITEMS = [
    {'id': '1', 'name': 'Oatmeal with Peanuts', 'allergens': [ALLERGENS[0]]},
    {'id': '2', 'name': 'Milk Shake', 'allergens': [ALLERGENS[1]]},
    {'id': '3', 'name': 'Gluten-Free Salad', 'allergens': []},
    {'id': '4', 'name': 'Chicken Soup', 'allergens': []},
    {'id': '5', 'name': 'Beef Steak', 'allergens': []},
]

MEAL_TYPES = ('breakfast', 'lunch', 'dinner', 'snack')

# Checked in order: the first matching condition decides the group
_DIET_RULES = [
    ('Diabetes', '1'),
    ('Hypertension', '2'),
    ('Dysphagia', '5'),
]


def normalize_list(value):
    """Accept a list or a comma separated string and return trimmed, non-empty names"""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [v.strip() for v in str(value).split(',') if v.strip()]


def resolve_item(raw_name, catalogue):
    """Find ``raw_name`` in ``catalogue`` (case-insensitive).

    Unknown names come back as an unsaved entry with no id.
    """
    for item in catalogue:
        if item['name'].lower() == raw_name.lower():
            return item
    return {'id': None, 'name': raw_name}


def map_conditions(comorbidities):
    return [resolve_item(CONDITION_MAP.get(c, c), CONDITIONS) for c in normalize_list(comorbidities)]


def map_allergies(allergies):
    return [resolve_item(ALLERGY_MAP.get(a, a), ALLERGENS) for a in normalize_list(allergies)]


def detect_diet_group(conditions):
    """Diet group id recommended for a resident's conditions, or None"""
    names = {c['name'] for c in conditions}
    for condition_name, group_id in _DIET_RULES:
        if condition_name in names:
            return group_id
    return None


def diet_group_name(group_id):
    for group in DIET_GROUPS:
        if group['id'] == group_id:
            return group['name']
    return None


def find_menu_item(dish_id):
    for dish in MENU_ITEMS:
        if dish['id'] == str(dish_id):
            return dish
    return None


def check_allergy(resident_allergens, dish_id):
    """True when the dish contains one of the resident's allergens"""
    dish = find_menu_item(dish_id)
    if not dish:
        return False
    dish_ids = {a['id'] for a in dish['allergens']}
    return any(a['id'] in dish_ids for a in resident_allergens)

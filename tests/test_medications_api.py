from datetime import date, timedelta

from conftest import login

METFORMIN = 2
NGUYEN_METFORMIN = 1
JOHN_ASPIRIN = 2  # ended yesterday
JOHN_IBUPROFEN = 3
JOHN = 4


def test_catalogue_search_and_category(as_staff):
    page = as_staff.get('/api/medications').get_json()
    assert [m['name'] for m in page['items']] == ['Aspirin', 'Ibuprofen', 'Metformin']
    assert page['per_page'] == 50
    assert 'Blood Pressure' in page['categories']

    assert [m['name'] for m in as_staff.get('/api/medications?q=MET').get_json()['items']] == ['Metformin']
    assert as_staff.get('/api/medications?category=Pain%20Relief').get_json()['total'] == 2
    assert as_staff.post('/api/medications', json={'name': 'Zinc', 'dosage': '10mg',
                                                   'frequency': 'Once daily'}).status_code == 403


def test_admin_manages_catalogue(as_admin):
    created = as_admin.post('/api/medications', json={
        'name': 'Amlodipine', 'dosage': '5mg', 'frequency': 'Once daily', 'category': 'Blood Pressure',
        'contraindications': '<b>Severe</b> hypotension',
    })
    assert created.status_code == 201
    medication = created.get_json()
    assert medication['contraindications'] == 'Severe hypotension'

    assert as_admin.post('/api/medications', json={'name': 'aspirin', 'dosage': '1mg',
                                                   'frequency': 'Daily'}).status_code == 409
    missing = as_admin.post('/api/medications', json={'category': 'Vitamins'})
    assert missing.status_code == 400
    assert set(missing.get_json()['errors']) == {'name', 'dosage', 'frequency', 'category'}

    edited = as_admin.put(f"/api/medications/{medication['id']}", json={'dosage': '10mg'})
    assert edited.get_json()['dosage'] == '10mg'
    assert as_admin.put(f"/api/medications/{medication['id']}", json={'name': 'Metformin'}).status_code == 409

    assert as_admin.delete(f'/api/medications/{METFORMIN}').status_code == 409
    assert as_admin.delete(f"/api/medications/{medication['id']}").status_code == 200


def test_resident_medication_orders(client):
    login(client, 'nurse.linh@gmail.com')
    orders = client.get(f'/api/residents/{JOHN}/medications').get_json()
    assert [(o['name'], o['active']) for o in orders] == [('Ibuprofen', True), ('Aspirin', False)]
    assert [o['name'] for o in client.get(f'/api/residents/{JOHN}/medications?active=1').get_json()] == ['Ibuprofen']

    prescribed = client.post(f'/api/residents/{JOHN}/medications', json={'medication_id': METFORMIN})
    assert prescribed.status_code == 201
    order = prescribed.get_json()
    assert (order['dosage'], order['frequency'], order['active']) == ('500mg', 'Twice daily', True)
    assert order['start_date'] == date.today().isoformat()

    backwards = client.post(f'/api/residents/{JOHN}/medications', json={
        'medication_id': METFORMIN, 'start_date': (date.today() + timedelta(days=3)).isoformat(),
        'end_date': date.today().isoformat(),
    })
    assert backwards.status_code == 400
    assert 'end_date' in backwards.get_json()['errors']
    assert client.post(f'/api/residents/{JOHN}/medications', json={'medication_id': 99}).status_code == 400
    assert client.post('/api/residents/3/medications', json={'medication_id': METFORMIN}).status_code == 409

    login(client, 'mary.doe@gmail.com')
    assert len(client.get(f'/api/residents/{JOHN}/medications').get_json()) == 3
    assert client.get('/api/residents/1/medications').status_code == 403
    assert client.post(f'/api/residents/{JOHN}/medications', json={'medication_id': METFORMIN}).status_code == 403


def test_record_administration(as_staff):
    recorded = as_staff.post(f'/api/medication-orders/{JOHN_IBUPROFEN}/administrations',
                             json={'status': 'refused', 'note': 'Felt nauseous'})
    assert recorded.status_code == 201
    dose = recorded.get_json()
    assert (dose['medication'], dose['status'], dose['administered_by']) == ('Ibuprofen', 'refused', 'Nurse Linh')

    expired = as_staff.post(f'/api/medication-orders/{JOHN_ASPIRIN}/administrations', json={})
    assert expired.status_code == 409
    assert expired.get_json()['error'] == 'Aspirin is not active today'
    assert as_staff.post(f'/api/medication-orders/{JOHN_IBUPROFEN}/administrations',
                         json={'status': 'skipped'}).status_code == 400
    assert as_staff.post('/api/medication-orders/99/administrations', json={}).status_code == 404

    records = as_staff.get(f'/api/residents/{JOHN}/medication-administrations').get_json()
    assert [r['status'] for r in records] == ['refused']
    assert as_staff.get(f'/api/residents/{JOHN}/medication-administrations?date=2000-01-01').get_json() == []
    assert as_staff.get(f'/api/residents/{JOHN}/medication-administrations?date=soon').status_code == 400

    assert as_staff.delete(f'/api/medication-orders/{JOHN_IBUPROFEN}').status_code == 409
    assert as_staff.delete(f'/api/medication-orders/{JOHN_ASPIRIN}').status_code == 200


def test_stopping_an_order_blocks_new_doses(as_staff):
    yesterday = (date.today() - timedelta(days=1)).isoformat()
    stopped = as_staff.put(f'/api/medication-orders/{NGUYEN_METFORMIN}', json={'end_date': yesterday})
    assert stopped.get_json()['active'] is False
    response = as_staff.post(f'/api/medication-orders/{NGUYEN_METFORMIN}/administrations', json={'status': 'given'})
    assert response.status_code == 409

    seeded = as_staff.get('/api/residents/1/medication-administrations').get_json()
    assert [(r['medication'], r['administered_by']) for r in seeded] == [('Metformin', 'Caregiver Minh')]


def test_family_cannot_record_doses(as_family):
    assert as_family.post(f'/api/medication-orders/{JOHN_IBUPROFEN}/administrations', json={}).status_code == 403
    assert as_family.get(f'/api/residents/{JOHN}/medication-administrations').status_code == 200
    assert as_family.get('/api/medications').status_code == 403


def test_resident_with_dose_records_cannot_be_deleted(as_admin):
    as_admin.post(f'/api/medication-orders/{JOHN_IBUPROFEN}/administrations', json={})
    assert as_admin.delete(f'/api/residents/{JOHN}').status_code == 409

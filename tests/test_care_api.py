from datetime import date

from conftest import login

TODAY = date.today().isoformat()


def test_catalog(as_family):
    catalog = as_family.get('/api/nutrition/catalog').get_json()
    assert [g['name'] for g in catalog['diet_groups']][:3] == ['Low Sugar', 'Low Sodium', 'Soft']
    assert catalog['meal_types'] == ['breakfast', 'lunch', 'dinner', 'snack']


def test_resident_diet(as_staff):
    diet = as_staff.get('/api/residents/1/diet').get_json()
    assert [c['name'] for c in diet['conditions']] == ['Diabetes']
    assert diet['diet_group'] == 'Low Sugar'
    assert '1' not in [d['id'] for d in diet['safe_menu_items']]
    assert len(diet['safe_menu_items']) == 4


def test_plan_with_allergen_is_refused(as_staff):
    response = as_staff.post('/api/nutrition/plans', json={
        'resident_id': 1, 'meal_name': 'Oatmeal', 'calories': 300, 'meal_type': 'breakfast', 'date': TODAY,
        'menu_item_id': '1',
    })
    assert response.status_code == 409
    assert response.get_json()['error'] == 'Oatmeal with Peanuts contains an allergen for Nguyen Van A'


def test_create_and_edit_plan(as_staff):
    created = as_staff.post('/api/nutrition/plans', json={
        'resident_id': 1, 'meal_name': 'Beef Steak', 'calories': 500, 'meal_type': 'dinner', 'date': TODAY,
        'menu_item_id': '5',
    })
    assert created.status_code == 201
    plan = created.get_json()
    assert plan['diet_group'] == 'Low Sugar'

    edited = as_staff.put(f"/api/nutrition/plans/{plan['id']}", json={'menu_item_id': '1'})
    assert edited.status_code == 409
    edited = as_staff.put(f"/api/nutrition/plans/{plan['id']}", json={'calories': 450})
    assert edited.get_json()['calories'] == 450

    assert as_staff.delete(f"/api/nutrition/plans/{plan['id']}").status_code == 200
    assert as_staff.delete(f"/api/nutrition/plans/{plan['id']}").status_code == 404


def test_plan_validation(as_staff):
    response = as_staff.post('/api/nutrition/plans', json={
        'resident_id': 99, 'meal_name': '', 'calories': -5, 'meal_type': 'brunch',
    })
    assert response.status_code == 400
    assert set(response.get_json()['errors']) == {'resident_id', 'meal_name', 'calories', 'meal_type', 'date'}


def test_plan_list_search_and_scope(client):
    login(client, 'nurse.linh@gmail.com')
    found = client.get('/api/nutrition/plans?q=soup').get_json()
    assert [p['meal_name'] for p in found['items']] == ['Chicken Soup']
    assert client.get('/api/nutrition/plans?q=tran').get_json()['total'] == 1

    login(client, 'mary.doe@gmail.com')
    assert client.get('/api/nutrition/plans').get_json()['total'] == 0


def test_meal_logs(as_staff):
    bad = as_staff.post('/api/meal-logs', json={'resident_id': 1, 'meal_type': 'lunch', 'portion_eaten': 150})
    assert bad.status_code == 400
    logged = as_staff.post('/api/meal-logs', json={'resident_id': 1, 'meal_type': 'lunch', 'portion_eaten': 50})
    assert logged.status_code == 201
    logs = as_staff.get(f'/api/meal-logs?resident_id=1&date={TODAY}').get_json()
    assert [m['portion_eaten'] for m in logs] == [50, 80]


def test_resident_raises_sos(client):
    login(client, 'john.doe@gmail.com')
    raised = client.post('/api/sos', json={'alert_type': 'Panic Button'})
    assert raised.status_code == 201
    alert = raised.get_json()
    assert alert['room'] == 'P101'
    assert alert['status'] == 'active'
    assert alert['resident_name'] == 'John Doe'

    login(client, 'mary.doe@gmail.com')
    assert client.post('/api/sos', json={'resident_id': 4}).status_code == 403


def test_sos_moves_forward_only(as_staff):
    summary = as_staff.get('/api/sos').get_json()
    assert summary['active'] == 1
    active = [a for a in summary['alerts'] if a['status'] == 'active'][0]

    step = as_staff.post(f"/api/sos/{active['id']}/status", json={'status': 'in-progress'})
    assert step.get_json()['handled_by'] == 'Nurse Linh'
    assert as_staff.post(f"/api/sos/{active['id']}/status", json={'status': 'resolved'}).status_code == 200
    back = as_staff.post(f"/api/sos/{active['id']}/status", json={'status': 'active'})
    assert back.status_code == 409
    assert as_staff.post(f"/api/sos/{active['id']}/status", json={'status': 'done'}).status_code == 400
    assert as_staff.get('/api/sos?status=resolved').get_json()['resolved'] == 1


def test_incident_filters(as_staff):
    assert as_staff.get('/api/incidents?q=fell').get_json()['total'] == 1
    assert as_staff.get('/api/incidents?severity=medium').get_json()['items'][0]['type'] == 'Medication'
    assert as_staff.get('/api/incidents?status=resolved&resident_id=2').get_json()['total'] == 1


def test_incident_status_adds_timeline(as_staff):
    investigating = as_staff.post('/api/incidents/1/status', json={'status': 'investigating', 'note': 'Camera'})
    assert investigating.status_code == 200
    timeline = investigating.get_json()['timeline']
    assert len(timeline) == 4
    assert timeline[-1]['action'] == 'Status changed to investigating: Camera'

    assert as_staff.post('/api/incidents/1/status', json={'status': 'open'}).status_code == 409
    assert as_staff.post('/api/incidents/2/status', json={'status': 'investigating'}).status_code == 409


def test_report_incident(as_staff):
    response = as_staff.post('/api/incidents', json={
        'resident_id': 4, 'type': 'Wandering', 'severity': 'medium', 'description': 'Found in garden',
    })
    assert response.status_code == 201
    incident = response.get_json()
    assert incident['reporter'] == 'Nurse Linh'
    assert incident['status'] == 'open'
    assert [t['action'] for t in incident['timeline']] == ['Incident reported']

    assert as_staff.post('/api/incidents', json={'severity': 'urgent'}).status_code == 400


def test_incidents_need_staff(as_family):
    assert as_family.get('/api/incidents').status_code == 403


def test_status_updates_need_a_string(as_staff):
    response = as_staff.post('/api/sos/1/status', json={'status': ['resolved']})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'status must be a string'
    assert as_staff.post('/api/incidents/1/status', json={'status': {'to': 'resolved'}}).status_code == 400
    assert as_staff.post('/api/meal-logs', json={'resident_id': 1, 'meal_type': ['lunch'],
                                                 'portion_eaten': 50}).status_code == 400

    assert as_staff.get('/api/sos?status=active').get_json()['active'] == 1
    assert as_staff.get('/api/incidents?status=open').get_json()['total'] == 1
    assert as_staff.get('/api/incidents?resident_id=two').status_code == 400

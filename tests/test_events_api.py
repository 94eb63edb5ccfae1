from datetime import date, timedelta

from conftest import login
from models import db, EventRegistration
from scheduling import start_of_week

VITAL_CHECK = 1
FULL_VISIT = 2
THERAPY = 3
PHYSICAL_THERAPY = 5  # John Doe only


def week_day(offset):
    return (start_of_week(date.today()) + timedelta(days=offset)).isoformat()


def next_week():
    return (date.today() + timedelta(days=7)).isoformat()


def test_schedule_requires_sign_in(client):
    response = client.get('/api/schedule')
    assert response.status_code == 401
    assert response.get_json()['error'] == 'Please sign in first'


def test_week_schedule_for_staff(as_staff):
    response = as_staff.get(f'/api/schedule?view=week&date={week_day(2)}')
    assert response.status_code == 200
    data = response.get_json()

    assert len(data['days']) == 7
    assert ' - ' in data['label']
    assert len(data['hours']) == 24
    assert sum(len(d['events']) for d in data['days']) == 6

    wednesday = data['days'][2]
    assert [e['name'] for e in wednesday['events']] == ['Vital check', 'Physical Therapy', 'Family visit']
    vital = wednesday['events'][0]
    assert vital['layout'] == {'top': 585.0, 'height': 64.0}
    assert vital['seats']['remaining'] == 2
    assert vital['seats']['can_register'] is True
    full = wednesday['events'][2]
    assert full['seats']['full'] is True
    assert full['seats']['can_register'] is False


def test_day_view_and_search(as_staff):
    data = as_staff.get(f'/api/schedule?view=day&date={week_day(2)}&q=LOBBY').get_json()
    assert len(data['days']) == 1
    assert [e['name'] for e in data['days'][0]['events']] == ['Family visit']


def test_schedule_rejects_bad_parameters(as_staff):
    assert as_staff.get('/api/schedule?view=month').status_code == 400
    assert as_staff.get('/api/schedule?date=tomorrow').status_code == 400


def test_resident_only_sees_own_entries(client):
    login(client, 'jane.smith@gmail.com')
    data = client.get(f'/api/schedule?view=day&date={week_day(2)}').get_json()
    assert [e['name'] for e in data['days'][0]['events']] == ['Vital check', 'Family visit']
    assert client.get(f'/api/events/{PHYSICAL_THERAPY}').status_code == 403


def test_family_sees_linked_resident_entries(as_family):
    data = as_family.get(f'/api/schedule?view=day&date={week_day(2)}').get_json()
    assert 'Physical Therapy' in [e['name'] for e in data['days'][0]['events']]


def test_register_until_full(client):
    login(client, 'nurse.linh@gmail.com')
    response = client.post(f'/api/events/{THERAPY}/register')
    assert response.status_code == 200
    seats = response.get_json()['seats']
    assert seats == {'capacity': 2, 'registered': 1, 'remaining': 1, 'full': False,
                     'mine': True, 'can_register': False, 'can_cancel': True}

    duplicate = client.post(f'/api/events/{THERAPY}/register')
    assert duplicate.status_code == 409
    assert duplicate.get_json()['error'] == 'You are already registered for this event'

    login(client, 'admin.helicare@gmail.com')
    assert client.post(f'/api/events/{THERAPY}/register').get_json()['seats']['full'] is True

    login(client, 'caregiver.minh@gmail.com')
    refused = client.post(f'/api/events/{THERAPY}/register')
    assert refused.status_code == 409
    assert refused.get_json()['error'] == 'This event is full'
    assert client.get(f'/api/events/{THERAPY}').get_json()['registered'] == 2


def test_full_event_refuses_registration(as_staff):
    response = as_staff.post(f'/api/events/{FULL_VISIT}/register')
    assert response.status_code == 409
    assert as_staff.get(f'/api/events/{FULL_VISIT}').get_json()['registered'] == 5


def test_cancel_requires_registration(as_staff):
    response = as_staff.post(f'/api/events/{VITAL_CHECK}/cancel')
    assert response.status_code == 409
    assert response.get_json()['error'] == 'You are not registered for this event'
    assert as_staff.get(f'/api/events/{VITAL_CHECK}').get_json()['registered'] == 1


def test_cancel_then_register_again_reuses_row(app, as_staff):
    assert as_staff.post(f'/api/events/{VITAL_CHECK}/register').get_json()['registered'] == 2
    cancelled = as_staff.post(f'/api/events/{VITAL_CHECK}/cancel')
    assert cancelled.status_code == 200
    assert cancelled.get_json()['seats']['mine'] is False
    assert cancelled.get_json()['registered'] == 1
    assert as_staff.post(f'/api/events/{VITAL_CHECK}/cancel').status_code == 409

    again = as_staff.post(f'/api/events/{VITAL_CHECK}/register')
    assert again.get_json()['registered'] == 2
    assert again.get_json()['seats']['mine'] is True

    db.session.expire_all()
    rows = EventRegistration.query.filter_by(event_id=VITAL_CHECK).all()
    assert len(rows) == 1
    assert rows[0].status == 'registered'


def test_registration_is_recorded_in_history(as_staff):
    as_staff.post(f'/api/events/{VITAL_CHECK}/register')
    as_staff.post(f'/api/events/{VITAL_CHECK}/cancel')
    history = as_staff.get(f'/api/events/{VITAL_CHECK}/history').get_json()
    assert [h['action'] for h in history] == ['cancelled', 'registered']
    assert history[0]['changed_by'] == 'Nurse Linh'


def test_mine_flag_in_schedule(as_staff):
    as_staff.post(f'/api/events/{VITAL_CHECK}/register')
    data = as_staff.get(f'/api/schedule?view=day&date={week_day(2)}').get_json()
    vital = data['days'][0]['events'][0]
    assert vital['seats']['mine'] is True
    assert vital['seats']['can_cancel'] is True


def test_create_care_event(as_staff):
    response = as_staff.post('/api/events', json={
        'type': 'care', 'care_type': 'medication', 'date': next_week(), 'start': '08:30', 'end': '09:00',
        'staff_id': 3, 'capacity': 1, 'medication_name': 'Metformin', 'medication_dose': '500mg',
        'frequency': 'weekly', 'note': '<i>After</i> breakfast', 'resident_id': 1,
    })
    assert response.status_code == 201
    event = response.get_json()
    assert event['name'] == 'Medication'
    assert event['staff'] == 'Nurse Khoa'
    assert event['note'] == 'After breakfast'
    assert event['recurrence_rule'].startswith('FREQ=WEEKLY;BYDAY=')
    assert event['recurrence_rule'].endswith('BYHOUR=8;BYMINUTE=30')
    assert event['seats']['registered'] == 0

    history = as_staff.get(f"/api/events/{event['id']}/history").get_json()
    assert history[0]['action'] == 'created'


def test_create_event_validation(as_staff):
    yesterday = (date.today() - timedelta(days=1)).isoformat()
    errors = as_staff.post('/api/events', json={
        'type': 'care', 'date': yesterday, 'start': '09:00', 'end': '10:00', 'staff': 'Nurse Linh',
    }).get_json()['errors']
    assert errors['start'] == 'The start time cannot be in the past.'

    errors = as_staff.post('/api/events', json={
        'type': 'care', 'date': next_week(), 'start': '10:00', 'end': '09:00', 'capacity': 0,
        'care_type': 'medication',
    }).get_json()['errors']
    assert errors['end'] == 'The end time must be after the start time.'
    assert 'capacity' in errors
    assert 'staff' in errors
    assert 'medication' in errors

    response = as_staff.post('/api/events', json={
        'type': 'visit', 'date': next_week(), 'start': '10:00', 'end': '11:00',
    })
    assert response.status_code == 400
    assert 'resident_id' in response.get_json()['errors']


def test_only_staff_create_events(as_family):
    response = as_family.post('/api/events', json={'type': 'care'})
    assert response.status_code == 403


def test_capacity_cannot_drop_below_registered(as_staff):
    response = as_staff.put(f'/api/events/{FULL_VISIT}', json={'capacity': 3})
    assert response.status_code == 409

    response = as_staff.put(f'/api/events/{FULL_VISIT}', json={'capacity': 6, 'location': 'Garden'})
    assert response.status_code == 200
    assert response.get_json()['seats']['can_register'] is True
    assert response.get_json()['location'] == 'Garden'
    history = as_staff.get(f'/api/events/{FULL_VISIT}/history').get_json()
    assert 'capacity: 5 -> 6' in history[0]['changes']


def test_delete_event_is_admin_only(client):
    login(client, 'nurse.linh@gmail.com')
    assert client.delete(f'/api/events/{THERAPY}').status_code == 403
    login(client, 'admin.helicare@gmail.com')
    assert client.delete(f'/api/events/{THERAPY}').status_code == 200
    assert client.get(f'/api/events/{THERAPY}').status_code == 404


def test_family_books_visit(as_family):
    response = as_family.post('/api/visits', json={
        'resident_id': 4, 'date': next_week(), 'start': '14:00', 'end': '15:00', 'capacity': 3,
    })
    assert response.status_code == 201
    body = response.get_json()
    reference = body['booking_reference']
    assert reference.startswith('VS') and len(reference) == 8
    assert body['event']['type'] == 'visit'
    assert body['event']['seats']['registered'] == 1
    assert body['event']['seats']['mine'] is True

    status = as_family.get(f'/api/visits/{reference.lower()}').get_json()
    assert status['status'] == 'pending'
    assert status['timing'] == 'upcoming'
    assert status['qr_data'] is None
    assert status['event']['resident_id'] == 4


def test_family_cannot_book_unlinked_resident(as_family):
    response = as_family.post('/api/visits', json={
        'resident_id': 1, 'date': next_week(), 'start': '14:00', 'end': '15:00',
    })
    assert response.status_code == 403
    assert as_family.get('/api/visits/VSNOPE22').status_code == 404


def test_malformed_resident_filter_is_rejected(as_staff):
    response = as_staff.get('/api/schedule?resident_id=abc')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'resident_id must be a whole number'
    assert as_staff.get('/api/events?resident_id=abc').status_code == 400
    assert as_staff.get('/api/schedule?resident_id=').status_code == 200


def test_event_fields_of_the_wrong_type_are_rejected(as_staff):
    base = {'type': 'care', 'date': next_week(), 'start': '09:00', 'end': '10:00', 'staff': 'Nurse Linh'}
    for field, value in (('care_type', ['medication']), ('priority', {'level': 'high'}),
                         ('type', ['care']), ('start', 900)):
        response = as_staff.post('/api/events', json=dict(base, **{field: value}))
        assert response.status_code == 400, field
        assert response.get_json()['error'] == f'{field} must be a string'

    assert as_staff.put(f'/api/events/{THERAPY}', json={'priority': ['high']}).status_code == 400


def test_inactive_staff_cannot_be_assigned(as_staff):
    response = as_staff.post('/api/events', json={
        'type': 'care', 'care_type': 'hygiene', 'date': next_week(), 'start': '07:00', 'end': '07:30',
        'staff_id': 9,
    })
    assert response.status_code == 400
    assert response.get_json()['errors']['staff_id'] == 'Caregiver Hoa is inactive'

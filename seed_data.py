"""Demo records loaded into the in-memory database at start-up."""
from datetime import date, datetime, timedelta

from models import (db, User, Resident, Room, Bed, FamilyLink, CareEvent, NutritionPlan, MealLog,
                    SOSAlert, Incident, IncidentTimelineEntry, ServicePrice, Invoice, Medication, MedicationOrder,
                    MedicationAdministration)
from scheduling import start_of_week

USERS = [
    {'email': 'admin.helicare@gmail.com', 'full_name': 'Admin Pham', 'role': 'admin'},
    {'email': 'nurse.linh@gmail.com', 'full_name': 'Nurse Linh', 'role': 'staff', 'job_title': 'Nurse',
     'phone': '0123456789', 'gender': 'Female', 'dob': date(1994, 5, 12)},
    {'email': 'nurse.khoa@gmail.com', 'full_name': 'Nurse Khoa', 'role': 'staff', 'job_title': 'Nurse',
     'phone': '0987654321', 'gender': 'Male', 'dob': date(1988, 7, 19)},
    {'email': 'caregiver.minh@gmail.com', 'full_name': 'Caregiver Minh', 'role': 'staff',
     'job_title': 'Caregiver', 'phone': '0111111111', 'gender': 'Male', 'dob': date(1995, 3, 22)},
    {'email': 'john.doe@gmail.com', 'full_name': 'John Doe', 'role': 'resident', 'resident': 'John Doe'},
    {'email': 'jane.smith@gmail.com', 'full_name': 'Jane Smith', 'role': 'resident', 'resident': 'Jane Smith'},
    {'email': 'mary.doe@gmail.com', 'full_name': 'Mary Doe', 'role': 'family'},
    {'email': 'doctor.tran@gmail.com', 'full_name': 'Dr. Tran', 'role': 'staff', 'job_title': 'Doctor',
     'phone': '0912345678', 'gender': 'Female', 'dob': date(1980, 11, 2)},
    {'email': 'caregiver.hoa@gmail.com', 'full_name': 'Caregiver Hoa', 'role': 'staff',
     'job_title': 'Caregiver', 'phone': '0933333333', 'gender': 'Female', 'is_active': False},
]

RESIDENTS = [
    {'full_name': 'Nguyen Van A', 'age': 70, 'gender': 'Male', 'status': 'active', 'medical_risk': 'low',
     'comorbidities': 'Diabetes', 'allergies': 'Peanuts'},
    {'full_name': 'Tran Thi B', 'age': 65, 'gender': 'Female', 'status': 'active', 'medical_risk': 'medium',
     'comorbidities': 'Hypertension', 'allergies': 'Milk'},
    {'full_name': 'Le Van C', 'age': 75, 'gender': 'Male', 'status': 'discharged', 'medical_risk': 'high',
     'comorbidities': 'Dysphagia', 'allergies': ''},
    {'full_name': 'John Doe', 'age': 82, 'gender': 'Male', 'status': 'active', 'medical_risk': 'medium',
     'comorbidities': '', 'allergies': 'Gluten'},
    {'full_name': 'Jane Smith', 'age': 79, 'gender': 'Female', 'status': 'active', 'medical_risk': 'low',
     'comorbidities': '', 'allergies': ''},
]

# room code -> [(bed label, status, resident name or None)]
ROOMS = {
    'P101': (1, [('B01', 'Occupied', 'John Doe'), ('B02', 'Occupied', 'Jane Smith')]),
    'P105': (1, [('B01', 'Maintenance', None), ('B02', 'Available', None)]),
    'P203': (2, [('B01', 'Occupied', 'Nguyen Van A'), ('B02', 'Occupied', 'Tran Thi B')]),
    'P204': (2, [('B01', 'Available', None), ('B02', 'Available', None)]),
}

# weekday offset from Monday of the current week
EVENTS = [
    {'day': 2, 'start': '09:00', 'end': '10:00', 'name': 'Vital check', 'type': 'care',
     'location': 'Room 101 / Bed 1', 'staff': 'Nurse Linh', 'capacity': 3, 'registered': 1,
     'note': 'Bring medical records', 'care_type': 'vital_check'},
    {'day': 2, 'start': '15:00', 'end': '15:30', 'name': 'Family visit', 'type': 'visit',
     'location': 'Lobby A', 'staff': 'Frontdesk', 'capacity': 5, 'registered': 5, 'note': ''},
    {'day': 3, 'start': '11:00', 'end': '12:00', 'name': 'Therapy session', 'type': 'care',
     'location': 'Therapy Rm 2', 'staff': 'Dr. Nam', 'capacity': 2, 'registered': 0,
     'note': 'Patient requires special attention', 'care_type': 'therapy'},
    {'day': 4, 'start': '16:00', 'end': '17:00', 'name': 'Family visit', 'type': 'visit',
     'location': 'Lobby B', 'staff': 'Receptionist', 'capacity': 4, 'registered': 2,
     'note': 'Bring ID for verification'},
    # resident-specific entries scheduled by staff
    {'day': 2, 'start': '10:00', 'end': '11:00', 'name': 'Physical Therapy', 'type': 'care',
     'location': 'Therapy Room', 'staff': 'Dr. Smith', 'capacity': 1, 'registered': 1,
     'note': 'Scheduled by staff', 'care_type': 'therapy', 'resident': 'John Doe'},
    {'day': 3, 'start': '14:00', 'end': '15:00', 'name': 'Speech Therapy', 'type': 'care',
     'location': 'Speech Room', 'staff': 'Dr. Brown', 'capacity': 1, 'registered': 1,
     'note': 'Scheduled by staff', 'care_type': 'therapy', 'resident': 'John Doe'},
]

SERVICE_PRICES = [
    ('Home Care Service', 500000),
    ('Medical Checkup', 300000),
    ('Emergency Assistance', 200000),
]

INVOICES = [
    ('Home Care Service', 'Nguyen Van A', 500000, 'paid'),
    ('Medical Checkup', 'Tran Thi B', 300000, 'unpaid'),
    ('Emergency Assistance', 'Le Van C', 200000, 'approved'),
]

MEDICATIONS = [
    {'name': 'Aspirin', 'dosage': '100mg', 'frequency': 'Once daily',
     'contraindications': 'Allergy to NSAIDs', 'category': 'Pain Relief'},
    {'name': 'Metformin', 'dosage': '500mg', 'frequency': 'Twice daily',
     'contraindications': 'Kidney disease', 'category': 'Diabetes'},
    {'name': 'Ibuprofen', 'dosage': '200mg', 'frequency': 'Once daily',
     'contraindications': 'Stomach ulcers', 'category': 'Pain Relief'},
]

# (medication, resident, days since start, days until end or None)
MEDICATION_ORDERS = [
    ('Metformin', 'Nguyen Van A', 30, None),
    ('Aspirin', 'John Doe', 60, -1),
    ('Ibuprofen', 'John Doe', 10, 20),
]


def seed_demo_data(today=None):
    """Load the demo records. Event dates are laid out on the week of ``today``."""
    today = today or date.today()
    week_start = start_of_week(today)

    residents = {}
    for row in RESIDENTS:
        resident = Resident(admitted_on=today - timedelta(days=180), **row)
        db.session.add(resident)
        residents[row['full_name']] = resident
    db.session.flush()

    users = {}
    for row in USERS:
        row = dict(row)
        resident_name = row.pop('resident', None)
        user = User(resident_id=residents[resident_name].id if resident_name else None, **row)
        db.session.add(user)
        users[user.email] = user
    db.session.flush()

    db.session.add(FamilyLink(user_id=users['mary.doe@gmail.com'].id,
                              resident_id=residents['John Doe'].id,
                              relationship_label='Daughter'))

    for code, (floor, beds) in ROOMS.items():
        room = Room(code=code, floor=floor)
        db.session.add(room)
        for label, status, resident_name in beds:
            room.beds.append(Bed(label=label, status=status,
                                 resident_id=residents[resident_name].id if resident_name else None))

    for row in EVENTS:
        resident_name = row.get('resident')
        db.session.add(CareEvent(
            date=week_start + timedelta(days=row['day']),
            start_time=row['start'],
            end_time=row['end'],
            name=row['name'],
            event_type=row['type'],
            location=row['location'],
            staff=row['staff'],
            capacity=row['capacity'],
            registered=row['registered'],
            note=row['note'],
            care_type=row.get('care_type'),
            resident_id=residents[resident_name].id if resident_name else None,
            created_by=users['nurse.linh@gmail.com'].id,
        ))

    for name, price in SERVICE_PRICES:
        db.session.add(ServicePrice(service_name=name, price=price))

    for service, resident_name, amount, status in INVOICES:
        vat = amount // 10
        db.session.add(Invoice(service_name=service, resident_id=residents[resident_name].id,
                               amount=amount, vat=vat, total=amount + vat, status=status,
                               issued_on=today - timedelta(days=7)))

    medications = {}
    for row in MEDICATIONS:
        medications[row['name']] = Medication(**row)
        db.session.add(medications[row['name']])
    for medication_name, resident_name, since, until in MEDICATION_ORDERS:
        medication = medications[medication_name]
        order = MedicationOrder(medication=medication, resident_id=residents[resident_name].id,
                                dosage=medication.dosage, frequency=medication.frequency,
                                start_date=today - timedelta(days=since),
                                end_date=today + timedelta(days=until) if until is not None else None,
                                prescribed_by=users['doctor.tran@gmail.com'].id)
        db.session.add(order)
        if medication_name == 'Metformin':
            order.administrations.append(MedicationAdministration(
                resident_id=order.resident_id, status='given', note='Taken with breakfast',
                administered_by=users['caregiver.minh@gmail.com'].id))

    db.session.add(NutritionPlan(resident_id=residents['Nguyen Van A'].id, meal_name='Chicken Soup',
                                 calories=350, meal_type='lunch', date=today, diet_group='Low Sugar',
                                 menu_item_id='4'))
    db.session.add(NutritionPlan(resident_id=residents['Tran Thi B'].id, meal_name='Gluten-Free Salad',
                                 calories=250, meal_type='dinner', date=today, diet_group='Low Sodium',
                                 menu_item_id='3'))
    db.session.add(MealLog(resident_id=residents['Nguyen Van A'].id, date=today, meal_type='breakfast',
                           portion_eaten=80, note='Ate most of the oatmeal',
                           logged_by=users['caregiver.minh@gmail.com'].id))

    now = datetime.utcnow()
    db.session.add(SOSAlert(resident_id=residents['Nguyen Van A'].id, room='P203', alert_type='Fall Detection',
                            status='active', vital_signs='Heart Rate: 80 bpm, BP: 120/80',
                            raised_at=now - timedelta(minutes=30)))
    db.session.add(SOSAlert(resident_id=residents['Tran Thi B'].id, room='P203', alert_type='Panic Button',
                            status='in-progress', vital_signs='Heart Rate: 90 bpm, BP: 130/85',
                            raised_at=now - timedelta(hours=1), handled_by=users['nurse.khoa@gmail.com'].id))

    fall = Incident(reporter='Staff Tran Minh', resident_id=residents['Nguyen Van A'].id, incident_type='Fall',
                    severity='high', status='open', description='Resident fell in room',
                    notes='Checked by nurse, no injury', occurred_at=now - timedelta(hours=2))
    for action in ('Incident reported', 'Nurse arrived', 'Resident checked, stable'):
        fall.timeline.append(IncidentTimelineEntry(action=action))
    missed_dose = Incident(reporter='Nurse Le Hoa', resident_id=residents['Tran Thi B'].id,
                           incident_type='Medication', severity='medium', status='resolved',
                           description='Missed medication dose', notes='Administered dose, monitored',
                           occurred_at=now - timedelta(days=1))
    for action in ('Incident reported', 'Medication given', 'Resolved'):
        missed_dose.timeline.append(IncidentTimelineEntry(action=action))
    db.session.add_all([fall, missed_dose])

    db.session.commit()

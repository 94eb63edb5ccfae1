from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(254), unique=True, nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='family')
    # Values: 'admin' | 'staff' | 'resident' | 'family'
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=True)  # resident accounts only
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Staff profile
    job_title = db.Column(db.String(20), nullable=True)  # 'Nurse' | 'Doctor' | 'Caregiver'
    phone = db.Column(db.String(20), nullable=True)
    gender = db.Column(db.String(20), nullable=True)
    dob = db.Column(db.Date, nullable=True)

    resident = db.relationship('Resident', foreign_keys=[resident_id])

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'full_name': self.full_name,
            'role': self.role,
            'resident_id': self.resident_id,
        }

    def to_staff_dict(self):
        row = self.to_dict()
        row.update({
            'job_title': self.job_title,
            'phone': self.phone or '',
            'gender': self.gender,
            'dob': self.dob.isoformat() if self.dob else None,
            'status': 'active' if self.is_active else 'inactive',
        })
        return row

    def __repr__(self):
        return f'<User {self.email} ({self.role})>'


class Resident(db.Model):
    __tablename__ = 'residents'
    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    age = db.Column(db.Integer, nullable=True)
    gender = db.Column(db.String(20), nullable=True)
    status = db.Column(db.String(20), default='active')  # 'active' | 'discharged'
    medical_risk = db.Column(db.String(20), default='low')  # 'low' | 'medium' | 'high'
    comorbidities = db.Column(db.Text, nullable=True)  # comma separated, English names
    allergies = db.Column(db.Text, nullable=True)  # comma separated, English names
    admitted_on = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    bed = db.relationship('Bed', backref='resident', uselist=False)

    def to_dict(self):
        return {
            'id': self.id,
            'full_name': self.full_name,
            'age': self.age,
            'gender': self.gender,
            'status': self.status,
            'medical_risk': self.medical_risk,
            'comorbidities': [c for c in (self.comorbidities or '').split(',') if c],
            'allergies': [a for a in (self.allergies or '').split(',') if a],
            'admitted_on': self.admitted_on.isoformat() if self.admitted_on else None,
            'room': self.bed.room.code if self.bed else None,
            'bed': self.bed.label if self.bed else None,
        }

    def __repr__(self):
        return f'<Resident {self.full_name}>'


class Room(db.Model):
    __tablename__ = 'rooms'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)  # "P203"
    floor = db.Column(db.Integer, nullable=True)
    room_type = db.Column(db.String(50), default='standard')  # 'standard' | 'vip' | 'care'

    beds = db.relationship('Bed', backref='room', lazy=True, cascade="all, delete-orphan", order_by='Bed.label')

    def to_dict(self):
        beds = [b.to_dict() for b in self.beds]
        return {
            'id': self.id,
            'code': self.code,
            'floor': self.floor,
            'room_type': self.room_type,
            'beds': beds,
            'occupied': sum(1 for b in beds if b['status'] == 'Occupied'),
            'available': sum(1 for b in beds if b['status'] == 'Available'),
        }

    def __repr__(self):
        return f'<Room {self.code}>'


class Bed(db.Model):
    __tablename__ = 'beds'
    __table_args__ = (db.UniqueConstraint('room_id', 'label', name='uq_bed_room_label'),)

    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('rooms.id'), nullable=False)
    label = db.Column(db.String(20), nullable=False)  # "B01"
    status = db.Column(db.String(20), default='Available')
    # Values: 'Available' | 'Occupied' | 'Maintenance'
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), unique=True, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'room': self.room.code if self.room else None,
            'label': self.label,
            'status': self.status,
            'resident_id': self.resident_id,
            'resident_name': self.resident.full_name if self.resident else None,
        }

    def __repr__(self):
        return f'<Bed {self.label} ({self.status})>'


class LinkCode(db.Model):
    """Short-lived code a family member enters to link to a resident"""
    __tablename__ = 'link_codes'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(12), unique=True, nullable=False)
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=False)
    issued_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    used_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    resident = db.relationship('Resident')


class FamilyLink(db.Model):
    __tablename__ = 'family_links'
    __table_args__ = (db.UniqueConstraint('user_id', 'resident_id', name='uq_family_link'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=False)
    relationship_label = db.Column(db.String(50), nullable=True)  # "Daughter", "Son"
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref='family_links')
    resident = db.relationship('Resident', backref='family_links')


class CareEvent(db.Model):
    """Calendar entry: a care activity or a visit slot with a seat capacity"""
    __tablename__ = 'care_events'

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.String(5), nullable=False)  # "09:00"
    end_time = db.Column(db.String(5), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    event_type = db.Column(db.String(20), nullable=False, default='care')  # 'care' | 'visit'
    location = db.Column(db.String(200))
    staff = db.Column(db.String(200))  # display name of the responsible staff member
    capacity = db.Column(db.Integer, nullable=False, default=1)
    registered = db.Column(db.Integer, nullable=False, default=0)
    note = db.Column(db.Text)

    # Staff-created details
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=True)
    care_type = db.Column(db.String(30), nullable=True)
    # Values: 'vital_check', 'medication', 'hygiene', 'therapy', 'meal'
    priority = db.Column(db.String(10), default='normal')  # 'low' | 'normal' | 'high'
    medication_name = db.Column(db.String(200), nullable=True)
    medication_dose = db.Column(db.String(100), nullable=True)
    recurrence_rule = db.Column(db.String(200), nullable=True)  # "FREQ=WEEKLY;BYDAY=MO;BYHOUR=9;BYMINUTE=0"

    # Family visit booking
    booking_reference = db.Column(db.String(20), unique=True, nullable=True)  # "VS7K2QH"
    visit_status = db.Column(db.String(20), nullable=True)
    # Values: 'pending' | 'approved' | 'rejected' | 'checked-in'
    reviewed_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    checked_in_at = db.Column(db.DateTime, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    resident = db.relationship('Resident', backref='care_events')
    creator = db.relationship('User', foreign_keys=[created_by])
    registrations = db.relationship('EventRegistration', backref='event', lazy=True, cascade="all, delete-orphan")
    history = db.relationship('EventHistory', backref='event', lazy=True, cascade="all, delete-orphan",
                              order_by='EventHistory.id.desc()')

    def to_dict(self):
        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'start': self.start_time,
            'end': self.end_time,
            'name': self.name,
            'type': self.event_type,
            'location': self.location or '',
            'staff': self.staff or '',
            'capacity': self.capacity,
            'registered': self.registered,
            'note': self.note or '',
            'resident_id': self.resident_id,
            'care_type': self.care_type,
            'priority': self.priority,
            'medication_name': self.medication_name,
            'medication_dose': self.medication_dose,
            'recurrence_rule': self.recurrence_rule,
            'booking_reference': self.booking_reference,
            'visit_status': self.visit_status,
        }

    def __repr__(self):
        return f'<CareEvent {self.name} {self.date} {self.start_time}>'


class EventRegistration(db.Model):
    __tablename__ = 'event_registrations'
    __table_args__ = (db.UniqueConstraint('event_id', 'user_id', name='uq_registration_event_user'),)

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey('care_events.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='registered')  # 'registered' | 'cancelled'
    registered_at = db.Column(db.DateTime, default=datetime.utcnow)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship('User')

    def __repr__(self):
        return f'<EventRegistration event {self.event_id} user {self.user_id} ({self.status})>'


class EventHistory(db.Model):
    """Audit trail for event changes"""
    __tablename__ = 'event_history'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey('care_events.id'), nullable=False)
    action = db.Column(db.String(50))  # 'created', 'updated', 'registered', 'cancelled'
    changed_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    changes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', foreign_keys=[changed_by])

    def to_dict(self):
        return {
            'action': self.action,
            'changed_by': self.user.full_name if self.user else None,
            'changes': self.changes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class NutritionPlan(db.Model):
    __tablename__ = 'nutrition_plans'
    id = db.Column(db.Integer, primary_key=True)
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=False)
    meal_name = db.Column(db.String(200), nullable=False)
    calories = db.Column(db.Integer, nullable=False)
    meal_type = db.Column(db.String(20), nullable=False)  # 'breakfast' | 'lunch' | 'dinner' | 'snack'
    date = db.Column(db.Date, nullable=False)
    diet_group = db.Column(db.String(50), nullable=True)  # "Low Sugar"
    menu_item_id = db.Column(db.String(20), nullable=True)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    resident = db.relationship('Resident', backref='nutrition_plans')

    def to_dict(self):
        return {
            'id': self.id,
            'resident_id': self.resident_id,
            'resident_name': self.resident.full_name if self.resident else None,
            'meal_name': self.meal_name,
            'calories': self.calories,
            'meal_type': self.meal_type,
            'date': self.date.isoformat(),
            'diet_group': self.diet_group,
            'menu_item_id': self.menu_item_id,
            'notes': self.notes or '',
        }


class MealLog(db.Model):
    __tablename__ = 'meal_logs'
    id = db.Column(db.Integer, primary_key=True)
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    meal_type = db.Column(db.String(20), nullable=False)
    portion_eaten = db.Column(db.Integer, nullable=False)  # percent, 0-100
    note = db.Column(db.Text)
    logged_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'resident_id': self.resident_id,
            'date': self.date.isoformat(),
            'meal_type': self.meal_type,
            'portion_eaten': self.portion_eaten,
            'note': self.note or '',
        }


class SOSAlert(db.Model):
    __tablename__ = 'sos_alerts'
    id = db.Column(db.Integer, primary_key=True)
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=False)
    room = db.Column(db.String(20))
    alert_type = db.Column(db.String(50), nullable=False)  # 'Fall Detection', 'Panic Button'
    vital_signs = db.Column(db.String(200))
    status = db.Column(db.String(20), default='active')  # 'active' | 'in-progress' | 'resolved'
    raised_at = db.Column(db.DateTime, default=datetime.utcnow)
    handled_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)

    resident = db.relationship('Resident')
    handler = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'resident_id': self.resident_id,
            'resident_name': self.resident.full_name if self.resident else None,
            'room': self.room,
            'alert_type': self.alert_type,
            'vital_signs': self.vital_signs or '',
            'status': self.status,
            'raised_at': self.raised_at.isoformat() if self.raised_at else None,
            'handled_by': self.handler.full_name if self.handler else None,
        }


class Incident(db.Model):
    __tablename__ = 'incidents'
    id = db.Column(db.Integer, primary_key=True)
    reporter = db.Column(db.String(200), nullable=False)
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=False)
    incident_type = db.Column(db.String(50), nullable=False)  # 'Fall', 'Medication'
    severity = db.Column(db.String(10), default='low')  # 'low' | 'medium' | 'high'
    status = db.Column(db.String(20), default='open')  # 'open' | 'investigating' | 'resolved'
    description = db.Column(db.Text)
    notes = db.Column(db.Text)
    occurred_at = db.Column(db.DateTime, default=datetime.utcnow)

    resident = db.relationship('Resident')
    timeline = db.relationship('IncidentTimelineEntry', backref='incident', lazy=True,
                               cascade="all, delete-orphan", order_by='IncidentTimelineEntry.id')

    def to_dict(self):
        return {
            'id': self.id,
            'reporter': self.reporter,
            'resident_id': self.resident_id,
            'resident_name': self.resident.full_name if self.resident else None,
            'type': self.incident_type,
            'severity': self.severity,
            'status': self.status,
            'description': self.description or '',
            'notes': self.notes or '',
            'occurred_at': self.occurred_at.isoformat() if self.occurred_at else None,
            'timeline': [{'time': t.created_at.strftime('%H:%M'), 'action': t.action} for t in self.timeline],
        }


class IncidentTimelineEntry(db.Model):
    __tablename__ = 'incident_timeline'
    id = db.Column(db.Integer, primary_key=True)
    incident_id = db.Column(db.Integer, db.ForeignKey('incidents.id'), nullable=False)
    action = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class ServicePrice(db.Model):
    __tablename__ = 'service_prices'
    id = db.Column(db.Integer, primary_key=True)
    service_name = db.Column(db.String(200), unique=True, nullable=False)
    price = db.Column(db.Integer, nullable=False)  # VND, no minor unit

    def to_dict(self):
        return {'id': self.id, 'service_name': self.service_name, 'price': self.price}


class Invoice(db.Model):
    __tablename__ = 'invoices'
    id = db.Column(db.Integer, primary_key=True)
    service_name = db.Column(db.String(200), nullable=False)
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    vat = db.Column(db.Integer, nullable=False)
    total = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), default='unpaid')
    # Values: 'paid', 'unpaid', 'failed', 'approved', 'rejected'
    issued_on = db.Column(db.Date, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    resident = db.relationship('Resident')

    def to_dict(self):
        return {
            'id': self.id,
            'service_name': self.service_name,
            'resident_id': self.resident_id,
            'resident_name': self.resident.full_name if self.resident else None,
            'amount': self.amount,
            'vat': self.vat,
            'total': self.total,
            'status': self.status,
            'issued_on': self.issued_on.isoformat() if self.issued_on else None,
        }


class Medication(db.Model):
    """Catalogue entry staff pick from when prescribing"""
    __tablename__ = 'medications'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    dosage = db.Column(db.String(100), nullable=False)  # "500mg"
    frequency = db.Column(db.String(100), nullable=False)  # "Twice daily"
    contraindications = db.Column(db.Text)
    category = db.Column(db.String(50), nullable=False, default='Others')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'dosage': self.dosage,
            'frequency': self.frequency,
            'contraindications': self.contraindications or '',
            'category': self.category,
        }

    def __repr__(self):
        return f'<Medication {self.name} {self.dosage}>'


class MedicationOrder(db.Model):
    __tablename__ = 'medication_orders'
    id = db.Column(db.Integer, primary_key=True)
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=False)
    medication_id = db.Column(db.Integer, db.ForeignKey('medications.id'), nullable=False)
    dosage = db.Column(db.String(100), nullable=False)
    frequency = db.Column(db.String(100), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)  # open-ended when empty
    notes = db.Column(db.Text)
    prescribed_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    resident = db.relationship('Resident', backref='medication_orders')
    medication = db.relationship('Medication', backref='orders')
    administrations = db.relationship('MedicationAdministration', backref='order', lazy=True,
                                      order_by='MedicationAdministration.id')

    def is_active_on(self, day):
        return self.start_date <= day and (self.end_date is None or day <= self.end_date)

    def to_dict(self, today=None):
        return {
            'id': self.id,
            'resident_id': self.resident_id,
            'medication_id': self.medication_id,
            'name': self.medication.name if self.medication else None,
            'dosage': self.dosage,
            'frequency': self.frequency,
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'notes': self.notes or '',
            'active': self.is_active_on(today) if today else None,
        }


class MedicationAdministration(db.Model):
    """One dose given, refused or missed against a medication order"""
    __tablename__ = 'medication_administrations'
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('medication_orders.id'), nullable=False)
    resident_id = db.Column(db.Integer, db.ForeignKey('residents.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='given')  # 'given' | 'refused' | 'missed'
    note = db.Column(db.Text)
    administered_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    administered_at = db.Column(db.DateTime, default=datetime.utcnow)

    nurse = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'resident_id': self.resident_id,
            'medication': self.order.medication.name if self.order and self.order.medication else None,
            'dosage': self.order.dosage if self.order else None,
            'status': self.status,
            'note': self.note or '',
            'administered_by': self.nurse.full_name if self.nurse else None,
            'administered_at': self.administered_at.isoformat() if self.administered_at else None,
        }

from flask import Flask, request, session, jsonify, abort
from flask_cors import CORS
from datetime import datetime, date, timedelta
from functools import wraps
from sqlalchemy import update
from sqlalchemy.sql import text
from werkzeug.exceptions import HTTPException
import os
import secrets

from models import (db, User, Resident, Room, Bed, LinkCode, FamilyLink, CareEvent, EventRegistration,
                    EventHistory, NutritionPlan, MealLog, SOSAlert, Incident, IncidentTimelineEntry,
                    ServicePrice, Invoice, Medication, MedicationOrder, MedicationAdministration)
from seed_data import seed_demo_data
from utils import parse_date_field, clean_text, matches_search, paginate, parse_int
import nutrition
import scheduling
import validators


app = Flask(__name__)

# Configuration
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('HELICARE_DATABASE_URI', 'sqlite://')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SEED_DEMO_DATA'] = os.environ.get('HELICARE_SEED_DEMO', '1') not in ('0', 'false', 'no')
app.config['PAGE_SIZE'] = int(os.environ.get('HELICARE_PAGE_SIZE', '5'))
app.config['STAFF_PAGE_SIZE'] = int(os.environ.get('HELICARE_STAFF_PAGE_SIZE', '5'))
app.config['MEDICATION_PAGE_SIZE'] = int(os.environ.get('HELICARE_MEDICATION_PAGE_SIZE', '50'))
app.config['LINK_CODE_MINUTES'] = int(os.environ.get('HELICARE_LINK_CODE_MINUTES', '5'))
app.config['VAT_RATE'] = float(os.environ.get('HELICARE_VAT_RATE', '0.10'))
app.config['INVITE_BASE_URL'] = os.environ.get('HELICARE_INVITE_URL', 'https://helicare.app/invite')
app.config['LOG_LEVEL'] = os.environ.get('HELICARE_LOG_LEVEL', 'INFO')
app.secret_key = os.environ.get('SECRET_KEY', 'helicare-dev-secret')

CORS_ORIGINS = [o.strip() for o in os.environ.get('HELICARE_CORS_ORIGINS', 'http://localhost:5173').split(',') if o.strip()]
CORS(app, resources={r"/api/*": {"origins": CORS_ORIGINS, "supports_credentials": True}})

app.logger.setLevel(app.config['LOG_LEVEL'])
db.init_app(app)

STAFF_ROLES = ('admin', 'staff')

EVENT_TYPES = ('care', 'visit')
CARE_TYPES = {
    'vital_check': 'Vital check',
    'medication': 'Medication',
    'hygiene': 'Hygiene',
    'therapy': 'Therapy session',
    'meal': 'Meal assistance',
}
PRIORITIES = ('low', 'normal', 'high')
RESIDENT_STATUSES = ('active', 'discharged')
MEDICAL_RISKS = ('low', 'medium', 'high')

SOS_TRANSITIONS = {
    'active': ('in-progress', 'resolved'),
    'in-progress': ('resolved',),
    'resolved': (),
}
INCIDENT_TRANSITIONS = {
    'open': ('investigating', 'resolved'),
    'investigating': ('resolved',),
    'resolved': (),
}
INCIDENT_SEVERITIES = ('low', 'medium', 'high')
INVOICE_STATUSES = ('paid', 'unpaid', 'failed', 'approved', 'rejected')

VISIT_STATUSES = ('pending', 'approved', 'rejected', 'checked-in')
VISIT_QR_PREFIX = 'HELICARE-VISIT:'

STAFF_TITLES = ('Nurse', 'Doctor', 'Caregiver')
MEDICATION_CATEGORIES = ('Pain Relief', 'Diabetes', 'Blood Pressure', 'Antibiotics', 'Supplements', 'Others')
ADMINISTRATION_STATUSES = ('given', 'refused', 'missed')

# No I, O, 0 or 1
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_code(length=6):
    return ''.join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def format_code(code):
    return f"{code[:3]} {code[3:]}" if code else ''


# ============================================================================
# Demo data
# ============================================================================

def reset_demo_data(today=None):
    """Recreate all tables and, unless disabled, load the demo records"""
    db.drop_all()
    db.create_all()
    if app.config['SEED_DEMO_DATA']:
        seed_demo_data(today=today)
        app.logger.info("Demo data loaded into %s", app.config['SQLALCHEMY_DATABASE_URI'])
    app.config['DEMO_DATA_READY'] = True


@app.before_request
def ensure_demo_data():
    if app.config.get('DEMO_DATA_READY'):
        return
    db.create_all()
    if app.config['SEED_DEMO_DATA'] and not User.query.first():
        seed_demo_data()
        app.logger.info("Demo data loaded into %s", app.config['SQLALCHEMY_DATABASE_URI'])
    app.config['DEMO_DATA_READY'] = True


@app.cli.command('reset-demo')
def reset_demo_command():
    """Drop and reload the demo data."""
    reset_demo_data()
    print("Demo data reset.")


# ============================================================================
# Errors
# ============================================================================

def error_response(message, status=400, **extra):
    payload = {'error': message}
    payload.update(extra)
    return jsonify(payload), status


@app.errorhandler(HTTPException)
def http_error(error):
    return error_response(error.description, error.code)


@app.errorhandler(500)
def internal_error(error):
    db.session.rollback()
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return error_response('Internal server error', 500)


def get_payload():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description='Request body must be a JSON object')
    return data


def get_text(data, key, default=''):
    """String field of a JSON body; any other JSON type is a 400"""
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        abort(400, description=f'{key} must be a string')
    return value


def get_flag(data, key, default):
    value = data.get(key, default)
    if not isinstance(value, bool):
        abort(400, description=f'{key} must be true or false')
    return value


def arg_int(name):
    """Integer query argument; None when absent, 400 when malformed"""
    raw = request.args.get(name)
    if raw is None or raw == '':
        return None
    value = parse_int(raw)
    if value is None:
        abort(400, description=f'{name} must be a whole number')
    return value


# ============================================================================
# Session / roles
# ============================================================================

def get_current_user():
    viewer_id = session.get('viewer_id')
    if viewer_id is None:
        return None
    user = db.session.get(User, viewer_id)
    if not user or not user.is_active:
        return None
    return user


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if get_current_user() is None:
            abort(401, description='Please sign in first')
        return f(*args, **kwargs)
    return decorated


def role_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            user = get_current_user()
            if user is None:
                abort(401, description='Please sign in first')
            if user.role not in roles:
                abort(403, description=f"Requires role: {', '.join(roles)}")
            return f(*args, **kwargs)
        return decorated
    return decorator


def visible_resident_ids(user):
    """Residents a user may see; None means every resident"""
    if user.role in STAFF_ROLES:
        return None
    if user.role == 'resident':
        return [user.resident_id] if user.resident_id else []
    return [link.resident_id for link in FamilyLink.query.filter_by(user_id=user.id).all()]


def can_view_resident(user, resident_id):
    ids = visible_resident_ids(user)
    return ids is None or resident_id in ids


def get_visible_resident(user, resident_id):
    resident = db.get_or_404(Resident, resident_id, description='Resident not found')
    if not can_view_resident(user, resident.id):
        abort(403, description='You do not have access to this resident')
    return resident


def event_visible(user, event):
    if event.resident_id is None:
        return True
    return can_view_resident(user, event.resident_id)


# ============================================================================
# Health
# ============================================================================

@app.route('/health')
def health_check():
    """Database reachability plus the size of the loaded care-home data"""
    report = {
        'demo_data': app.config['SEED_DEMO_DATA'],
        'demo_data_loaded': bool(app.config.get('DEMO_DATA_READY')),
        'checked_at': datetime.utcnow().isoformat(),
    }
    try:
        db.session.execute(text('SELECT 1'))
        report['records'] = {
            'users': User.query.count(),
            'residents': Resident.query.count(),
            'events': CareEvent.query.count(),
            'open_sos_alerts': SOSAlert.query.filter(SOSAlert.status != 'resolved').count(),
        }
    except Exception as e:
        db.session.rollback()
        app.logger.error("Health check could not reach %s: %s", app.config['SQLALCHEMY_DATABASE_URI'], e)
        report.update(status='degraded', database=f'error: {e}')
        return jsonify(report), 503

    report.update(status='healthy', database='connected')
    return jsonify(report)


# ============================================================================
# Auth (demo accounts only, credentials are not checked)
# ============================================================================

@app.route('/api/auth/signin', methods=['POST'])
def signin():
    data = get_payload()
    email = get_text(data, 'email').strip()
    password = get_text(data, 'password')

    errors = {}
    ok, message = validators.validate_email(email)
    if not ok:
        errors['email'] = message
    ok, message = validators.validate_password(password)
    if not ok:
        errors['password'] = message
    if errors:
        return error_response('Validation failed', 400, errors=errors)

    user = User.query.filter(db.func.lower(User.email) == email.lower()).first()
    if not user or not user.is_active:
        return error_response('No account found for this email', 401)

    session['viewer_id'] = user.id
    app.logger.info("Signed in %s as %s", user.email, user.role)
    return jsonify({'ok': True, 'user': user.to_dict()})


@app.route('/api/auth/signout', methods=['POST'])
def signout():
    session.pop('viewer_id', None)
    return jsonify({'ok': True})


@app.route('/api/auth/me')
@login_required
def whoami():
    user = get_current_user()
    payload = user.to_dict()
    payload['linked_residents'] = visible_resident_ids(user)
    return jsonify(payload)


@app.route('/api/auth/signup/email', methods=['POST'])
def signup_email():
    email = get_text(get_payload(), 'email').strip().lower()
    ok, message = validators.validate_signup_email(email)
    if not ok:
        return error_response(message, 400, errors={'email': message})
    if User.query.filter(db.func.lower(User.email) == email).first():
        return error_response('An account with this email already exists', 409)

    session['signup'] = {'email': email, 'verified': False}
    app.logger.info("[OTP disabled] Would send sign-up code to %s", email)
    return jsonify({'ok': True, 'email': email, 'code_length': 6, 'resend_after_seconds': 120})


@app.route('/api/auth/signup/verify', methods=['POST'])
def signup_verify():
    pending = session.get('signup')
    if not pending:
        return error_response('Start sign up with your email first', 400)
    ok, message = validators.validate_otp(get_payload().get('otp'))
    if not ok:
        return error_response(message, 400, errors={'otp': message})
    pending['verified'] = True
    session['signup'] = pending
    return jsonify({'ok': True})


@app.route('/api/auth/signup/password', methods=['POST'])
def signup_password():
    pending = session.get('signup')
    if not pending or not pending.get('verified'):
        return error_response('Verify your email before setting a password', 400)

    data = get_payload()
    password = get_text(data, 'password')
    # Demo path for the server-error message on the client
    if password == 'error':
        return error_response('Server error: Password is invalid.', 502)

    checklist = validators.password_checklist(password)
    if not all(checklist.values()):
        return error_response('Password does not meet the requirements', 400, checklist=checklist)
    if password != data.get('confirm_password'):
        return error_response('Passwords do not match', 400, errors={'confirm_password': 'Passwords do not match'})

    email = pending['email']
    full_name = clean_text(data.get('full_name'), 200) or email.split('@')[0]
    user = User(email=email, full_name=full_name, role='family')
    try:
        db.session.add(user)
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Could not create account for %s", email)
        return error_response('Could not create account', 500)

    session.pop('signup', None)
    session['viewer_id'] = user.id
    app.logger.info("Created family account %s", email)
    return jsonify({'ok': True, 'user': user.to_dict()}), 201


@app.route('/api/auth/forgot/email', methods=['POST'])
def forgot_password_email():
    email = get_text(get_payload(), 'email').strip().lower()
    ok, message = validators.validate_reset_email(email)
    if not ok:
        return error_response(message, 400, errors={'email': message})
    session['password_reset'] = {'email': email, 'verified': False}
    # Same answer whether or not the account exists
    app.logger.info("[OTP disabled] Would send reset code to %s", email)
    return jsonify({'ok': True, 'resend_after_seconds': 120})


@app.route('/api/auth/forgot/verify', methods=['POST'])
def forgot_password_verify():
    pending = session.get('password_reset')
    if not pending:
        return error_response('Request a reset code first', 400)
    ok, message = validators.validate_otp(get_payload().get('otp'))
    if not ok:
        return error_response(message, 400, errors={'otp': message})
    pending['verified'] = True
    session['password_reset'] = pending
    return jsonify({'ok': True})


@app.route('/api/auth/forgot/reset', methods=['POST'])
def forgot_password_reset():
    pending = session.get('password_reset')
    if not pending or not pending.get('verified'):
        return error_response('Verify the reset code first', 400)
    data = get_payload()
    password = get_text(data, 'password')
    ok, message = validators.validate_password(password)
    if not ok:
        return error_response(message, 400, errors={'password': message})
    if password != data.get('confirm_password'):
        return error_response('Passwords do not match', 400, errors={'confirm_password': 'Passwords do not match'})
    session.pop('password_reset', None)
    return jsonify({'ok': True, 'message': 'Password updated'})


# ============================================================================
# Schedule / care events
# ============================================================================

def _registered_event_ids(user):
    rows = EventRegistration.query.filter_by(user_id=user.id, status='registered').all()
    return {r.event_id for r in rows}


def _visible_events_query(user, resident_filter=None):
    query = CareEvent.query
    ids = visible_resident_ids(user)
    if ids is not None:
        query = query.filter(db.or_(CareEvent.resident_id.is_(None), CareEvent.resident_id.in_(ids)))
    if resident_filter is not None:
        query = query.filter(db.or_(CareEvent.resident_id.is_(None), CareEvent.resident_id == resident_filter))
    return query


def _event_payload(event, mine_ids):
    payload = event.to_dict()
    payload['seats'] = scheduling.seat_state(event.capacity, event.registered, event.id in mine_ids)
    return payload


def _get_visible_event(user, event_id):
    event = db.get_or_404(CareEvent, event_id, description='Event not found')
    if not event_visible(user, event):
        abort(403, description='You do not have access to this event')
    return event


def _record_history(event_id, action, user, changes):
    db.session.add(EventHistory(event_id=event_id, action=action,
                                changed_by=user.id if user else None, changes=changes))


@app.route('/api/schedule')
@login_required
def schedule_calendar():
    """Week or day grid of care events for the current viewer"""
    user = get_current_user()
    view = request.args.get('view', 'week')
    if view not in scheduling.VIEWS:
        return error_response("view must be 'day' or 'week'", 400)
    try:
        cursor = scheduling.parse_cursor(request.args.get('date'))
    except ValueError:
        return error_response('date must be YYYY-MM-DD', 400)

    resident_filter = arg_int('resident_id')
    if resident_filter is not None and not can_view_resident(user, resident_filter):
        abort(403, description='You do not have access to this resident')

    days = scheduling.visible_days(cursor, view)
    events = _visible_events_query(user, resident_filter).filter(
        CareEvent.date >= days[0],
        CareEvent.date <= days[-1]
    ).all()

    search = request.args.get('q', '')
    items = [e.to_dict() for e in events if matches_search(search, e.name, e.location, e.staff)]
    return jsonify(scheduling.build_calendar(items, cursor, view, _registered_event_ids(user)))


@app.route('/api/events')
@login_required
def list_events():
    user = get_current_user()
    query = _visible_events_query(user, arg_int('resident_id'))

    date_from = parse_date_field(request.args.get('date_from'))
    date_to = parse_date_field(request.args.get('date_to'))
    if date_from:
        query = query.filter(CareEvent.date >= date_from)
    if date_to:
        query = query.filter(CareEvent.date <= date_to)
    event_type = request.args.get('type')
    if event_type:
        query = query.filter(CareEvent.event_type == event_type)

    search = request.args.get('q', '')
    mine = _registered_event_ids(user)
    events = query.order_by(CareEvent.date.asc(), CareEvent.start_time.asc()).all()
    return jsonify([_event_payload(e, mine) for e in events
                    if matches_search(search, e.name, e.location, e.staff)])


@app.route('/api/events/<int:event_id>')
@login_required
def view_event(event_id):
    user = get_current_user()
    event = _get_visible_event(user, event_id)
    return jsonify(_event_payload(event, _registered_event_ids(user)))


def _validate_event_times(event_date, start, end, errors, allow_past=False):
    if not event_date:
        errors['date'] = 'Date is required (YYYY-MM-DD)'
    if not scheduling.is_valid_time(start):
        errors['start'] = 'Start time is required (HH:MM)'
    if not scheduling.is_valid_time(end):
        errors['end'] = 'End time is required (HH:MM)'
    if errors:
        return
    start_dt = scheduling.combine(event_date, start)
    if not allow_past and start_dt < datetime.now():
        errors['start'] = 'The start time cannot be in the past.'
    elif scheduling.to_minutes(end) <= scheduling.to_minutes(start):
        errors['end'] = 'The end time must be after the start time.'


def _resolve_staff_name(data, errors):
    staff_id = parse_int(data.get('staff_id'))
    if staff_id is not None:
        staff = db.session.get(User, staff_id)
        if not staff or staff.role not in STAFF_ROLES:
            errors['staff_id'] = 'Unknown staff member'
            return None
        if not staff.is_active:
            errors['staff_id'] = f'{staff.full_name} is inactive'
            return None
        return staff.full_name
    return clean_text(data.get('staff'), 200) or None


@app.route('/api/events', methods=['POST'])
@role_required(*STAFF_ROLES)
def create_event():
    """Create a care event or a visit slot"""
    user = get_current_user()
    data = get_payload()
    errors = {}

    event_type = get_text(data, 'type', 'care')
    if event_type not in EVENT_TYPES:
        errors['type'] = "type must be 'care' or 'visit'"

    event_date = parse_date_field(get_text(data, 'date'))
    start = get_text(data, 'start')
    end = get_text(data, 'end')
    _validate_event_times(event_date, start, end, errors)

    capacity = parse_int(data.get('capacity', 1))
    if capacity is None or capacity < 1:
        errors['capacity'] = 'Capacity must be at least 1'

    resident_id = parse_int(data.get('resident_id'))
    if resident_id is not None and not db.session.get(Resident, resident_id):
        errors['resident_id'] = 'Unknown resident'

    care_type = get_text(data, 'care_type') or ('vital_check' if event_type == 'care' else None)
    priority = get_text(data, 'priority', 'normal')
    if priority not in PRIORITIES:
        errors['priority'] = 'priority must be low, normal or high'

    staff_name = _resolve_staff_name(data, errors)
    medication_name = clean_text(data.get('medication_name'), 200) or None
    medication_dose = clean_text(data.get('medication_dose'), 100) or None
    if event_type == 'care':
        if care_type not in CARE_TYPES:
            errors['care_type'] = f"care_type must be one of {', '.join(CARE_TYPES)}"
        if not staff_name and 'staff_id' not in errors:
            errors['staff'] = 'Assigned staff is required for care events'
        if care_type == 'medication' and (not medication_name or not medication_dose):
            errors['medication'] = 'Medication name and dose are required'
    elif event_type == 'visit' and resident_id is None and 'resident_id' not in errors:
        errors['resident_id'] = 'A resident is required for visits'

    frequency = get_text(data, 'frequency', 'none')
    if frequency not in scheduling.FREQUENCIES:
        errors['frequency'] = f"frequency must be one of {', '.join(scheduling.FREQUENCIES)}"

    if errors:
        return error_response('Validation failed', 400, errors=errors)

    default_name = CARE_TYPES[care_type] if event_type == 'care' else 'Family visit'
    event = CareEvent(
        date=event_date,
        start_time=start,
        end_time=end,
        name=clean_text(data.get('name'), 200) or default_name,
        event_type=event_type,
        location=clean_text(data.get('location'), 200) or None,
        staff=staff_name or 'Frontdesk',
        capacity=capacity,
        registered=0,
        note=clean_text(data.get('note')),
        resident_id=resident_id,
        care_type=care_type if event_type == 'care' else None,
        priority=priority,
        medication_name=medication_name if care_type == 'medication' else None,
        medication_dose=medication_dose if care_type == 'medication' else None,
        recurrence_rule=scheduling.build_rrule(frequency, scheduling.combine(event_date, start)),
        created_by=user.id,
    )
    try:
        db.session.add(event)
        db.session.flush()
        _record_history(event.id, 'created', user, f'"{event.name}" on {event.date} {start}-{end}')
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error creating event")
        return error_response('Error creating event', 500)

    app.logger.info("Event %s created by %s", event.id, user.email)
    return jsonify(_event_payload(event, set())), 201


@app.route('/api/events/<int:event_id>', methods=['PUT'])
@role_required(*STAFF_ROLES)
def edit_event(event_id):
    user = get_current_user()
    event = db.get_or_404(CareEvent, event_id, description='Event not found')
    data = get_payload()
    errors = {}

    new_date = parse_date_field(get_text(data, 'date')) if 'date' in data else event.date
    new_start = get_text(data, 'start', event.start_time)
    new_end = get_text(data, 'end', event.end_time)
    if {'date', 'start', 'end'} & set(data):
        _validate_event_times(new_date, new_start, new_end, errors)

    new_capacity = parse_int(data.get('capacity', event.capacity))
    if new_capacity is None or new_capacity < 1:
        errors['capacity'] = 'Capacity must be at least 1'
    new_priority = get_text(data, 'priority', event.priority)
    if new_priority not in PRIORITIES:
        errors['priority'] = 'priority must be low, normal or high'
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    if new_capacity < event.registered:
        return error_response(f'Capacity cannot drop below the {event.registered} seats already taken', 409)

    changes = []
    if (new_date, new_start, new_end) != (event.date, event.start_time, event.end_time):
        changes.append(f'time: {event.date} {event.start_time}-{event.end_time} -> {new_date} {new_start}-{new_end}')
        event.date, event.start_time, event.end_time = new_date, new_start, new_end
    if new_capacity != event.capacity:
        changes.append(f'capacity: {event.capacity} -> {new_capacity}')
        event.capacity = new_capacity
    for field, attr, limit in (('name', 'name', 200), ('location', 'location', 200),
                               ('staff', 'staff', 200), ('note', 'note', None)):
        if field in data:
            value = clean_text(data[field], limit)
            if field == 'name' and not value:
                continue
            if value != getattr(event, attr):
                changes.append(f'{field}: "{getattr(event, attr) or ""}" -> "{value}"')
                setattr(event, attr, value)
    if new_priority != event.priority:
        changes.append(f'priority: {event.priority} -> {new_priority}')
        event.priority = new_priority

    try:
        if changes:
            _record_history(event.id, 'updated', user, '; '.join(changes))
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error updating event %s", event_id)
        return error_response('Error updating event', 500)

    return jsonify(_event_payload(event, _registered_event_ids(user)))


@app.route('/api/events/<int:event_id>', methods=['DELETE'])
@role_required('admin')
def delete_event(event_id):
    user = get_current_user()
    event = db.get_or_404(CareEvent, event_id, description='Event not found')
    name = event.name
    try:
        db.session.delete(event)
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error deleting event %s", event_id)
        return error_response('Error deleting event', 500)
    app.logger.info('Event %s ("%s") deleted by %s', event_id, name, user.email)
    return jsonify({'ok': True})


@app.route('/api/events/<int:event_id>/register', methods=['POST'])
@login_required
def register_for_event(event_id):
    """Take one seat for the current viewer"""
    user = get_current_user()
    event = _get_visible_event(user, event_id)

    registration = EventRegistration.query.filter_by(event_id=event.id, user_id=user.id).first()
    if registration and registration.status == 'registered':
        return error_response('You are already registered for this event', 409)

    # Seat is taken in the same statement that checks the ceiling
    result = db.session.execute(
        update(CareEvent)
        .where(CareEvent.id == event.id, CareEvent.registered < CareEvent.capacity)
        .values(registered=CareEvent.registered + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        return error_response('This event is full', 409)

    now = datetime.utcnow()
    if registration is None:
        registration = EventRegistration(event_id=event.id, user_id=user.id)
        db.session.add(registration)
    registration.status = 'registered'
    registration.registered_at = now
    registration.cancelled_at = None
    _record_history(event.id, 'registered', user, f'{user.full_name} registered')
    db.session.commit()

    db.session.refresh(event)
    app.logger.info("%s registered for event %s (%s/%s)", user.email, event.id, event.registered, event.capacity)
    return jsonify(_event_payload(event, {event.id}))


@app.route('/api/events/<int:event_id>/cancel', methods=['POST'])
@login_required
def cancel_event_registration(event_id):
    """Give the current viewer's seat back"""
    user = get_current_user()
    event = _get_visible_event(user, event_id)

    registration = EventRegistration.query.filter_by(event_id=event.id, user_id=user.id).first()
    if not registration or registration.status != 'registered':
        return error_response('You are not registered for this event', 409)

    db.session.execute(
        update(CareEvent)
        .where(CareEvent.id == event.id, CareEvent.registered > 0)
        .values(registered=CareEvent.registered - 1)
        .execution_options(synchronize_session=False)
    )
    registration.status = 'cancelled'
    registration.cancelled_at = datetime.utcnow()
    _record_history(event.id, 'cancelled', user, f'{user.full_name} cancelled')
    db.session.commit()

    db.session.refresh(event)
    app.logger.info("%s cancelled event %s (%s/%s)", user.email, event.id, event.registered, event.capacity)
    return jsonify(_event_payload(event, set()))


@app.route('/api/events/<int:event_id>/history')
@role_required(*STAFF_ROLES)
def event_history(event_id):
    event = db.get_or_404(CareEvent, event_id, description='Event not found')
    return jsonify([h.to_dict() for h in event.history])


# ---- Family visits ----

@app.route('/api/visits', methods=['POST'])
@role_required('family')
def book_visit():
    """Family member books a visit slot and holds the first seat in it"""
    user = get_current_user()
    data = get_payload()
    errors = {}

    resident_id = parse_int(data.get('resident_id'))
    if resident_id is None:
        errors['resident_id'] = 'Choose the resident you are visiting'
    event_date = parse_date_field(get_text(data, 'date'))
    start = get_text(data, 'start')
    end = get_text(data, 'end')
    _validate_event_times(event_date, start, end, errors)
    capacity = parse_int(data.get('capacity', 1))
    if capacity is None or capacity < 1:
        errors['capacity'] = 'Number of visitors must be at least 1'
    if errors:
        return error_response('Validation failed', 400, errors=errors)

    resident = get_visible_resident(user, resident_id)

    reference = 'VS' + generate_code()
    while CareEvent.query.filter_by(booking_reference=reference).first():
        reference = 'VS' + generate_code()

    event = CareEvent(
        date=event_date,
        start_time=start,
        end_time=end,
        name=f'Family visit: {resident.full_name}',
        event_type='visit',
        location=clean_text(data.get('location'), 200) or 'Lobby A',
        staff='Frontdesk',
        capacity=capacity,
        registered=1,
        note=clean_text(data.get('note')),
        resident_id=resident.id,
        booking_reference=reference,
        visit_status='pending',
        created_by=user.id,
    )
    try:
        db.session.add(event)
        db.session.flush()
        db.session.add(EventRegistration(event_id=event.id, user_id=user.id))
        _record_history(event.id, 'created', user, f'Visit booked by {user.full_name} ({reference})')
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error booking visit")
        return error_response('Error booking visit', 500)

    app.logger.info("Visit %s booked by %s for resident %s", reference, user.email, resident.id)
    return jsonify({'booking_reference': reference, 'event': _event_payload(event, {event.id})}), 201


def _find_visit(reference):
    event = CareEvent.query.filter_by(booking_reference=(reference or '').strip().upper()).first()
    if not event:
        abort(404, description='Booking not found')
    return event


def _visit_timing(event):
    start_dt = scheduling.combine(event.date, event.start_time)
    end_dt = scheduling.combine(event.date, event.end_time)
    now = datetime.now()
    if now < start_dt:
        return 'upcoming'
    if now <= end_dt:
        return 'in-progress'
    return 'completed'


def _visit_row(event):
    resident = event.resident
    return {
        'booking_reference': event.booking_reference,
        'status': event.visit_status,
        'visitor': event.creator.full_name if event.creator else None,
        'visitors': event.capacity,
        'resident_id': event.resident_id,
        'resident_name': resident.full_name if resident else None,
        'room': resident.bed.room.code if resident and resident.bed else None,
        'date': event.date.isoformat(),
        'start': event.start_time,
        'end': event.end_time,
        'checked_in_at': event.checked_in_at.isoformat() if event.checked_in_at else None,
        'qr_data': VISIT_QR_PREFIX + event.booking_reference
        if event.visit_status in ('approved', 'checked-in') else None,
    }


@app.route('/api/visits/<reference>')
@login_required
def visit_status(reference):
    user = get_current_user()
    event = _find_visit(reference)
    if not event_visible(user, event):
        abort(403, description='You do not have access to this booking')
    row = _visit_row(event)
    row['timing'] = _visit_timing(event)
    row['event'] = _event_payload(event, _registered_event_ids(user))
    return jsonify(row)


@app.route('/api/visits')
@role_required(*STAFF_ROLES)
def list_visits():
    """Front desk queue of booked visits with approval counters"""
    status = request.args.get('status', '')
    if status and status != 'all' and status not in VISIT_STATUSES:
        return error_response(f"status must be one of {', '.join(VISIT_STATUSES)}", 400)
    search = request.args.get('q', '')

    booked = CareEvent.query.filter(CareEvent.booking_reference.isnot(None)) \
        .order_by(CareEvent.date.asc(), CareEvent.start_time.asc()).all()
    today = datetime.utcnow().date()
    rows = []
    for event in booked:
        row = _visit_row(event)
        if status and status != 'all' and row['status'] != status:
            continue
        if not matches_search(search, row['booking_reference'], row['visitor'], row['resident_name']):
            continue
        rows.append(row)
    return jsonify({
        'items': rows,
        'pending': sum(1 for e in booked if e.visit_status == 'pending'),
        'approved': sum(1 for e in booked if e.visit_status == 'approved'),
        'checked_in_today': sum(1 for e in booked
                                if e.visit_status == 'checked-in' and e.checked_in_at
                                and e.checked_in_at.date() == today),
    })


def _review_visit(reference, decision):
    user = get_current_user()
    event = _find_visit(reference)
    if event.visit_status != 'pending':
        return error_response(f'Visit {event.booking_reference} is already {event.visit_status}', 409)
    event.visit_status = decision
    event.reviewed_by = user.id
    try:
        _record_history(event.id, decision, user, f'Visit {decision} by {user.full_name}')
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error reviewing visit %s", event.booking_reference)
        return error_response('Error reviewing visit', 500)
    app.logger.info("Visit %s %s by %s", event.booking_reference, decision, user.email)
    return jsonify(_visit_row(event))


@app.route('/api/visits/<reference>/approve', methods=['POST'])
@role_required(*STAFF_ROLES)
def approve_visit(reference):
    return _review_visit(reference, 'approved')


@app.route('/api/visits/<reference>/reject', methods=['POST'])
@role_required(*STAFF_ROLES)
def reject_visit(reference):
    return _review_visit(reference, 'rejected')


@app.route('/api/visits/check-in', methods=['POST'])
@role_required(*STAFF_ROLES)
def check_in_visit():
    """Check a visitor in from the scanned QR text or the typed booking reference"""
    user = get_current_user()
    data = get_payload()
    raw = (get_text(data, 'qr_data') or get_text(data, 'reference')).strip()
    if raw.upper().startswith(VISIT_QR_PREFIX):
        raw = raw[len(VISIT_QR_PREFIX):]
    if not raw:
        return error_response('Scan the QR code or enter the booking reference', 400)

    event = CareEvent.query.filter_by(booking_reference=raw.strip().upper()).first()
    if not event or event.visit_status != 'approved':
        return error_response('Invalid QR code or visit not approved', 409 if event else 404)

    event.visit_status = 'checked-in'
    event.checked_in_at = datetime.utcnow()
    try:
        _record_history(event.id, 'checked-in', user, f'Visitor checked in by {user.full_name}')
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error checking in visit %s", event.booking_reference)
        return error_response('Error checking in visit', 500)
    app.logger.info("Visit %s checked in by %s", event.booking_reference, user.email)
    return jsonify(_visit_row(event))


# ============================================================================
# Residents
# ============================================================================

def _resident_form(data, resident=None):
    errors = {}
    values = {}
    if resident is None or 'full_name' in data:
        full_name = clean_text(data.get('full_name'), 200)
        if not full_name:
            errors['full_name'] = 'Full name is required'
        values['full_name'] = full_name
    if 'age' in data:
        age = parse_int(data.get('age'))
        if age is None or not 0 < age < 130:
            errors['age'] = 'Age must be a number between 1 and 129'
        values['age'] = age
    if 'gender' in data:
        values['gender'] = clean_text(data.get('gender'), 20) or None
    if 'status' in data:
        status = get_text(data, 'status')
        if status not in RESIDENT_STATUSES:
            errors['status'] = "status must be 'active' or 'discharged'"
        values['status'] = status
    if 'medical_risk' in data:
        medical_risk = get_text(data, 'medical_risk')
        if medical_risk not in MEDICAL_RISKS:
            errors['medical_risk'] = 'medical_risk must be low, medium or high'
        values['medical_risk'] = medical_risk
    if 'comorbidities' in data:
        values['comorbidities'] = ','.join(c['name'] for c in nutrition.map_conditions(data['comorbidities']))
    if 'allergies' in data:
        values['allergies'] = ','.join(a['name'] for a in nutrition.map_allergies(data['allergies']))
    if 'admitted_on' in data:
        raw_admitted = get_text(data, 'admitted_on')
        admitted_on = parse_date_field(raw_admitted)
        if raw_admitted and not admitted_on:
            errors['admitted_on'] = 'admitted_on must be YYYY-MM-DD'
        values['admitted_on'] = admitted_on
    return values, errors


def _release_bed(resident):
    if resident.bed:
        bed = resident.bed
        bed.resident_id = None
        bed.status = 'Available'


@app.route('/api/residents')
@login_required
def list_residents():
    """Resident list with search, room/bed/status filters and pagination"""
    user = get_current_user()
    query = Resident.query
    ids = visible_resident_ids(user)
    if ids is not None:
        query = query.filter(Resident.id.in_(ids))

    search = request.args.get('q', '')
    room = request.args.get('room', '')
    bed = request.args.get('bed', '')
    status = request.args.get('status', '')

    residents = []
    for resident in query.order_by(Resident.id.asc()).all():
        row = resident.to_dict()
        if not matches_search(search, row['full_name']):
            continue
        if room and row['room'] != room:
            continue
        if bed and row['bed'] != bed:
            continue
        if status and status != 'all' and row['status'] != status:
            continue
        residents.append(row)
    return jsonify(paginate(residents, request.args.get('page'), app.config['PAGE_SIZE']))


@app.route('/api/residents/<int:resident_id>')
@login_required
def view_resident(resident_id):
    resident = get_visible_resident(get_current_user(), resident_id)
    return jsonify(resident.to_dict())


@app.route('/api/residents', methods=['POST'])
@role_required(*STAFF_ROLES)
def create_resident():
    values, errors = _resident_form(get_payload())
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    values.setdefault('admitted_on', date.today())
    resident = Resident(**values)
    db.session.add(resident)
    db.session.commit()
    app.logger.info("Resident %s admitted", resident.id)
    return jsonify(resident.to_dict()), 201


@app.route('/api/residents/<int:resident_id>', methods=['PUT'])
@role_required(*STAFF_ROLES)
def edit_resident(resident_id):
    resident = db.get_or_404(Resident, resident_id, description='Resident not found')
    values, errors = _resident_form(get_payload(), resident)
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    for key, value in values.items():
        setattr(resident, key, value)
    if resident.status == 'discharged':
        _release_bed(resident)
    db.session.commit()
    return jsonify(resident.to_dict())


@app.route('/api/residents/<int:resident_id>', methods=['DELETE'])
@role_required('admin')
def delete_resident(resident_id):
    resident = db.get_or_404(Resident, resident_id, description='Resident not found')
    has_records = (Invoice.query.filter_by(resident_id=resident.id).first()
                   or Incident.query.filter_by(resident_id=resident.id).first()
                   or SOSAlert.query.filter_by(resident_id=resident.id).first()
                   or MedicationAdministration.query.filter_by(resident_id=resident.id).first())
    if has_records:
        return error_response('Resident has billing, incident or medication records; discharge instead', 409)
    try:
        _release_bed(resident)
        FamilyLink.query.filter_by(resident_id=resident.id).delete()
        LinkCode.query.filter_by(resident_id=resident.id).delete()
        NutritionPlan.query.filter_by(resident_id=resident.id).delete()
        MealLog.query.filter_by(resident_id=resident.id).delete()
        MedicationOrder.query.filter_by(resident_id=resident.id).delete()
        CareEvent.query.filter_by(resident_id=resident.id).update({'resident_id': None})
        User.query.filter_by(resident_id=resident.id).update({'resident_id': None})
        db.session.delete(resident)
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error deleting resident %s", resident_id)
        return error_response('Error deleting resident', 500)
    return jsonify({'ok': True})


# ============================================================================
# Rooms & beds
# ============================================================================

@app.route('/api/rooms')
@role_required(*STAFF_ROLES)
def list_rooms():
    rooms = Room.query.order_by(Room.code.asc()).all()
    return jsonify([room.to_dict() for room in rooms])


@app.route('/api/rooms/mine')
@login_required
def my_rooms():
    """Room and bed of the residents the viewer is linked to"""
    user = get_current_user()
    ids = visible_resident_ids(user)
    query = Resident.query if ids is None else Resident.query.filter(Resident.id.in_(ids))
    return jsonify([{'resident_id': r.id, 'resident_name': r.full_name,
                     'room': r.bed.room.code if r.bed else None,
                     'bed': r.bed.label if r.bed else None} for r in query.all()])


@app.route('/api/beds/available')
@role_required(*STAFF_ROLES)
def available_beds():
    beds = Bed.query.filter_by(status='Available').join(Room).order_by(Room.code, Bed.label).all()
    return jsonify([b.to_dict() for b in beds])


@app.route('/api/beds/<int:bed_id>/assign', methods=['POST'])
@role_required(*STAFF_ROLES)
def assign_bed(bed_id):
    bed = db.get_or_404(Bed, bed_id, description='Bed not found')
    resident_id = parse_int(get_payload().get('resident_id'))
    if resident_id is None:
        return error_response('resident_id is required', 400)
    resident = db.get_or_404(Resident, resident_id, description='Resident not found')

    if resident.status != 'active':
        return error_response('Only active residents can be assigned a bed', 409)
    if resident.bed:
        return error_response(f'{resident.full_name} already has a bed; use transfer', 409)
    if bed.status != 'Available':
        return error_response(f'Bed {bed.room.code}/{bed.label} is {bed.status}', 409)

    bed.resident_id = resident.id
    bed.status = 'Occupied'
    db.session.commit()
    app.logger.info("Resident %s assigned to %s/%s", resident.id, bed.room.code, bed.label)
    return jsonify(bed.to_dict())


@app.route('/api/residents/<int:resident_id>/transfer', methods=['POST'])
@role_required(*STAFF_ROLES)
def transfer_resident(resident_id):
    resident = db.get_or_404(Resident, resident_id, description='Resident not found')
    bed_id = parse_int(get_payload().get('bed_id'))
    if bed_id is None:
        return error_response('bed_id is required', 400)
    target = db.get_or_404(Bed, bed_id, description='Bed not found')

    if not resident.bed:
        return error_response(f'{resident.full_name} has no bed to transfer from', 409)
    if target.status != 'Available':
        return error_response(f'Bed {target.room.code}/{target.label} is {target.status}', 409)

    old = resident.bed
    old.resident_id = None
    old.status = 'Available'
    db.session.flush()
    target.resident_id = resident.id
    target.status = 'Occupied'
    db.session.commit()
    app.logger.info("Resident %s moved %s/%s -> %s/%s", resident.id, old.room.code, old.label,
                    target.room.code, target.label)
    return jsonify(target.to_dict())


@app.route('/api/beds/<int:bed_id>/release', methods=['POST'])
@role_required(*STAFF_ROLES)
def release_bed(bed_id):
    bed = db.get_or_404(Bed, bed_id, description='Bed not found')
    if bed.status != 'Occupied':
        return error_response('Bed is not occupied', 409)
    bed.resident_id = None
    bed.status = 'Available'
    db.session.commit()
    return jsonify(bed.to_dict())


@app.route('/api/beds/<int:bed_id>/maintenance', methods=['POST'])
@role_required(*STAFF_ROLES)
def bed_maintenance(bed_id):
    bed = db.get_or_404(Bed, bed_id, description='Bed not found')
    turn_on = get_flag(get_payload(), 'on', True)
    if turn_on:
        if bed.status == 'Occupied':
            return error_response('Move the resident before putting the bed under maintenance', 409)
        bed.status = 'Maintenance'
    else:
        if bed.status != 'Maintenance':
            return error_response('Bed is not under maintenance', 409)
        bed.status = 'Available'
    db.session.commit()
    return jsonify(bed.to_dict())


# ============================================================================
# Family <-> resident link codes
# ============================================================================

@app.route('/api/residents/<int:resident_id>/link-codes', methods=['POST'])
@role_required(*STAFF_ROLES)
def issue_link_code(resident_id):
    user = get_current_user()
    resident = db.get_or_404(Resident, resident_id, description='Resident not found')

    code = generate_code()
    while LinkCode.query.filter_by(code=code).first():
        code = generate_code()
    now = datetime.utcnow()
    link_code = LinkCode(code=code, resident_id=resident.id, issued_by=user.id, created_at=now,
                         expires_at=now + timedelta(minutes=app.config['LINK_CODE_MINUTES']))
    db.session.add(link_code)
    db.session.commit()
    return jsonify({
        'code': code,
        'display_code': format_code(code),
        'link': f"{app.config['INVITE_BASE_URL']}/{code}",
        'resident_id': resident.id,
        'expires_at': link_code.expires_at.isoformat(),
        'expires_in_seconds': app.config['LINK_CODE_MINUTES'] * 60,
    }), 201


@app.route('/api/family/link', methods=['POST'])
@role_required('family')
def redeem_link_code():
    user = get_current_user()
    data = get_payload()
    raw = ''.join(get_text(data, 'code').split()).upper()
    if len(raw) != 6:
        return error_response('Invite code must be 6 characters', 400)

    link_code = LinkCode.query.filter_by(code=raw).first()
    if not link_code:
        return error_response('Invalid invite code', 404)
    if link_code.used_at is not None:
        return error_response('This invite code has already been used', 409)
    if link_code.expires_at < datetime.utcnow():
        return error_response('This invite code has expired', 409)
    if FamilyLink.query.filter_by(user_id=user.id, resident_id=link_code.resident_id).first():
        return error_response('You are already linked to this resident', 409)

    link = FamilyLink(user_id=user.id, resident_id=link_code.resident_id,
                      relationship_label=clean_text(data.get('relationship'), 50) or None)
    link_code.used_at = datetime.utcnow()
    link_code.used_by = user.id
    db.session.add(link)
    db.session.commit()
    app.logger.info("%s linked to resident %s", user.email, link.resident_id)
    return jsonify({'ok': True, 'resident': link.resident.to_dict()}), 201


@app.route('/api/family/residents')
@role_required('family')
def my_residents():
    user = get_current_user()
    return jsonify([dict(link.resident.to_dict(), relationship=link.relationship_label)
                    for link in FamilyLink.query.filter_by(user_id=user.id).all()])


# ============================================================================
# Nutrition
# ============================================================================

@app.route('/api/nutrition/catalog')
@login_required
def nutrition_catalog():
    return jsonify({
        'conditions': nutrition.CONDITIONS,
        'allergens': nutrition.ALLERGENS,
        'diet_groups': nutrition.DIET_GROUPS,
        'menu_items': nutrition.MENU_ITEMS,
        'meal_types': list(nutrition.MEAL_TYPES),
    })


def _resident_diet(resident):
    conditions = nutrition.map_conditions(resident.comorbidities)
    allergens = nutrition.map_allergies(resident.allergies)
    group_id = nutrition.detect_diet_group(conditions)
    return conditions, allergens, group_id


@app.route('/api/residents/<int:resident_id>/diet')
@login_required
def resident_diet(resident_id):
    resident = get_visible_resident(get_current_user(), resident_id)
    conditions, allergens, group_id = _resident_diet(resident)
    return jsonify({
        'resident_id': resident.id,
        'conditions': conditions,
        'allergens': allergens,
        'diet_group_id': group_id,
        'diet_group': nutrition.diet_group_name(group_id),
        'safe_menu_items': [d for d in nutrition.MENU_ITEMS if not nutrition.check_allergy(allergens, d['id'])],
    })


@app.route('/api/nutrition/plans')
@login_required
def list_nutrition_plans():
    user = get_current_user()
    query = NutritionPlan.query
    ids = visible_resident_ids(user)
    if ids is not None:
        query = query.filter(NutritionPlan.resident_id.in_(ids))
    resident_id = arg_int('resident_id')
    if resident_id is not None:
        query = query.filter(NutritionPlan.resident_id == resident_id)
    plan_date = parse_date_field(request.args.get('date'))
    if plan_date:
        query = query.filter(NutritionPlan.date == plan_date)

    search = request.args.get('q', '')
    plans = [p.to_dict() for p in query.order_by(NutritionPlan.date.desc(), NutritionPlan.id.asc()).all()]
    plans = [p for p in plans if matches_search(search, p['meal_name'], p['resident_name'])]
    return jsonify(paginate(plans, request.args.get('page'), app.config['PAGE_SIZE']))


def _plan_form(data, plan=None):
    errors = {}
    values = {}
    if plan is None or 'resident_id' in data:
        resident_id = parse_int(data.get('resident_id'))
        if resident_id is None or not db.session.get(Resident, resident_id):
            errors['resident_id'] = 'Unknown resident'
        values['resident_id'] = resident_id
    if plan is None or 'meal_name' in data:
        meal_name = clean_text(data.get('meal_name'), 200)
        if not meal_name:
            errors['meal_name'] = 'Meal name is required'
        values['meal_name'] = meal_name
    if plan is None or 'calories' in data:
        calories = parse_int(data.get('calories'))
        if calories is None or calories <= 0:
            errors['calories'] = 'Calories must be a positive number'
        values['calories'] = calories
    if plan is None or 'meal_type' in data:
        meal_type = get_text(data, 'meal_type')
        if meal_type not in nutrition.MEAL_TYPES:
            errors['meal_type'] = f"meal_type must be one of {', '.join(nutrition.MEAL_TYPES)}"
        values['meal_type'] = meal_type
    if plan is None or 'date' in data:
        plan_date = parse_date_field(data.get('date'))
        if not plan_date:
            errors['date'] = 'Date is required (YYYY-MM-DD)'
        values['date'] = plan_date
    if 'menu_item_id' in data:
        menu_item_id = data.get('menu_item_id')
        if menu_item_id and not nutrition.find_menu_item(menu_item_id):
            errors['menu_item_id'] = 'Unknown menu item'
        values['menu_item_id'] = str(menu_item_id) if menu_item_id else None
    if 'notes' in data:
        values['notes'] = clean_text(data.get('notes'))
    if 'diet_group' in data:
        values['diet_group'] = clean_text(data.get('diet_group'), 50) or None
    return values, errors


def _allergy_conflict(resident, menu_item_id):
    if not menu_item_id:
        return None
    _, allergens, _ = _resident_diet(resident)
    if nutrition.check_allergy(allergens, menu_item_id):
        dish = nutrition.find_menu_item(menu_item_id)
        return f"{dish['name']} contains an allergen for {resident.full_name}"
    return None


@app.route('/api/nutrition/plans', methods=['POST'])
@role_required(*STAFF_ROLES)
def create_nutrition_plan():
    values, errors = _plan_form(get_payload())
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    resident = db.session.get(Resident, values['resident_id'])
    conflict = _allergy_conflict(resident, values.get('menu_item_id'))
    if conflict:
        return error_response(conflict, 409)
    if not values.get('diet_group'):
        _, _, group_id = _resident_diet(resident)
        values['diet_group'] = nutrition.diet_group_name(group_id)

    plan = NutritionPlan(**values)
    db.session.add(plan)
    db.session.commit()
    return jsonify(plan.to_dict()), 201


@app.route('/api/nutrition/plans/<int:plan_id>', methods=['PUT'])
@role_required(*STAFF_ROLES)
def edit_nutrition_plan(plan_id):
    plan = db.get_or_404(NutritionPlan, plan_id, description='Plan not found')
    values, errors = _plan_form(get_payload(), plan)
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    resident = db.session.get(Resident, values.get('resident_id', plan.resident_id))
    conflict = _allergy_conflict(resident, values.get('menu_item_id', plan.menu_item_id))
    if conflict:
        return error_response(conflict, 409)
    for key, value in values.items():
        setattr(plan, key, value)
    db.session.commit()
    return jsonify(plan.to_dict())


@app.route('/api/nutrition/plans/<int:plan_id>', methods=['DELETE'])
@role_required(*STAFF_ROLES)
def delete_nutrition_plan(plan_id):
    plan = db.get_or_404(NutritionPlan, plan_id, description='Plan not found')
    db.session.delete(plan)
    db.session.commit()
    return jsonify({'ok': True})


@app.route('/api/meal-logs')
@login_required
def list_meal_logs():
    user = get_current_user()
    query = MealLog.query
    ids = visible_resident_ids(user)
    if ids is not None:
        query = query.filter(MealLog.resident_id.in_(ids))
    resident_id = arg_int('resident_id')
    if resident_id is not None:
        query = query.filter(MealLog.resident_id == resident_id)
    log_date = parse_date_field(request.args.get('date'))
    if log_date:
        query = query.filter(MealLog.date == log_date)
    return jsonify([m.to_dict() for m in query.order_by(MealLog.date.desc(), MealLog.id.desc()).all()])


@app.route('/api/meal-logs', methods=['POST'])
@role_required(*STAFF_ROLES)
def create_meal_log():
    user = get_current_user()
    data = get_payload()
    errors = {}
    resident_id = parse_int(data.get('resident_id'))
    if resident_id is None or not db.session.get(Resident, resident_id):
        errors['resident_id'] = 'Unknown resident'
    log_date = parse_date_field(data.get('date')) or date.today()
    meal_type = get_text(data, 'meal_type')
    if meal_type not in nutrition.MEAL_TYPES:
        errors['meal_type'] = f"meal_type must be one of {', '.join(nutrition.MEAL_TYPES)}"
    portion = parse_int(data.get('portion_eaten'))
    if portion is None or not 0 <= portion <= 100:
        errors['portion_eaten'] = 'portion_eaten must be between 0 and 100'
    if errors:
        return error_response('Validation failed', 400, errors=errors)

    log = MealLog(resident_id=resident_id, date=log_date, meal_type=meal_type, portion_eaten=portion,
                  note=clean_text(data.get('note')), logged_by=user.id)
    db.session.add(log)
    db.session.commit()
    return jsonify(log.to_dict()), 201


# ============================================================================
# Medications
# ============================================================================

def _medication_form(data, medication=None):
    errors = {}
    values = {}
    for field, limit, label in (('name', 200, 'Name'), ('dosage', 100, 'Dosage'), ('frequency', 100, 'Frequency')):
        if medication is None or field in data:
            value = clean_text(get_text(data, field), limit)
            if not value:
                errors[field] = f'{label} is required'
            values[field] = value
    if medication is None or 'category' in data:
        category = get_text(data, 'category', 'Others')
        if category not in MEDICATION_CATEGORIES:
            errors['category'] = f"category must be one of {', '.join(MEDICATION_CATEGORIES)}"
        values['category'] = category
    if 'contraindications' in data:
        values['contraindications'] = clean_text(data.get('contraindications')) or None
    return values, errors


@app.route('/api/medications')
@role_required(*STAFF_ROLES)
def list_medications():
    """Medication catalogue with name search, category filter and pagination"""
    search = request.args.get('q', '')
    category = request.args.get('category', '')
    rows = []
    for medication in Medication.query.order_by(Medication.name.asc()).all():
        if not matches_search(search, medication.name):
            continue
        if category and category != 'all' and medication.category != category:
            continue
        rows.append(medication.to_dict())
    result = paginate(rows, request.args.get('page'), app.config['MEDICATION_PAGE_SIZE'])
    result['categories'] = list(MEDICATION_CATEGORIES)
    return jsonify(result)


@app.route('/api/medications', methods=['POST'])
@role_required('admin')
def create_medication():
    values, errors = _medication_form(get_payload())
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    if Medication.query.filter(db.func.lower(Medication.name) == values['name'].lower()).first():
        return error_response(f'"{values["name"]}" is already in the catalogue', 409)
    medication = Medication(**values)
    db.session.add(medication)
    db.session.commit()
    app.logger.info("Medication %s added to the catalogue", medication.name)
    return jsonify(medication.to_dict()), 201


@app.route('/api/medications/<int:medication_id>', methods=['PUT'])
@role_required('admin')
def edit_medication(medication_id):
    medication = db.get_or_404(Medication, medication_id, description='Medication not found')
    values, errors = _medication_form(get_payload(), medication)
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    if 'name' in values:
        clash = Medication.query.filter(db.func.lower(Medication.name) == values['name'].lower(),
                                        Medication.id != medication.id).first()
        if clash:
            return error_response(f'"{values["name"]}" is already in the catalogue', 409)
    for key, value in values.items():
        setattr(medication, key, value)
    db.session.commit()
    return jsonify(medication.to_dict())


@app.route('/api/medications/<int:medication_id>', methods=['DELETE'])
@role_required('admin')
def delete_medication(medication_id):
    medication = db.get_or_404(Medication, medication_id, description='Medication not found')
    if medication.orders:
        return error_response(f'{medication.name} is prescribed to residents', 409)
    db.session.delete(medication)
    db.session.commit()
    return jsonify({'ok': True})


def _order_form(data, order=None):
    errors = {}
    values = {}
    medication = None
    if order is None:
        medication_id = parse_int(data.get('medication_id'))
        medication = db.session.get(Medication, medication_id) if medication_id is not None else None
        if medication is None:
            errors['medication_id'] = 'Choose a medication from the catalogue'
        values['medication_id'] = medication_id
    for field, limit in (('dosage', 100), ('frequency', 100)):
        if field in data:
            value = clean_text(get_text(data, field), limit)
            if not value:
                errors[field] = f'{field.capitalize()} cannot be empty'
            values[field] = value
        elif medication is not None:
            values[field] = getattr(medication, field)
    if order is None or 'start_date' in data:
        raw_start = get_text(data, 'start_date')
        start_date = parse_date_field(raw_start) if raw_start else date.today()
        if not start_date:
            errors['start_date'] = 'start_date must be YYYY-MM-DD'
        values['start_date'] = start_date
    if 'end_date' in data:
        raw_end = get_text(data, 'end_date')
        end_date = parse_date_field(raw_end)
        if raw_end and not end_date:
            errors['end_date'] = 'end_date must be YYYY-MM-DD'
        values['end_date'] = end_date
    start = values.get('start_date') or (order.start_date if order else None)
    end = values.get('end_date', order.end_date if order else None)
    if start and end and end < start:
        errors['end_date'] = 'end_date cannot be before start_date'
    if 'notes' in data:
        values['notes'] = clean_text(data.get('notes'))
    return values, errors


@app.route('/api/residents/<int:resident_id>/medications')
@login_required
def list_resident_medications(resident_id):
    resident = get_visible_resident(get_current_user(), resident_id)
    today = date.today()
    orders = MedicationOrder.query.filter_by(resident_id=resident.id) \
        .order_by(MedicationOrder.start_date.desc(), MedicationOrder.id.desc()).all()
    if request.args.get('active') in ('1', 'true'):
        orders = [o for o in orders if o.is_active_on(today)]
    return jsonify([o.to_dict(today) for o in orders])


@app.route('/api/residents/<int:resident_id>/medications', methods=['POST'])
@role_required(*STAFF_ROLES)
def create_medication_order(resident_id):
    user = get_current_user()
    resident = db.get_or_404(Resident, resident_id, description='Resident not found')
    if resident.status != 'active':
        return error_response(f'{resident.full_name} has been discharged', 409)
    values, errors = _order_form(get_payload())
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    order = MedicationOrder(resident_id=resident.id, prescribed_by=user.id, **values)
    try:
        db.session.add(order)
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error prescribing for resident %s", resident.id)
        return error_response('Error saving medication', 500)
    app.logger.info("%s prescribed %s to resident %s", user.email, order.medication.name, resident.id)
    return jsonify(order.to_dict(date.today())), 201


@app.route('/api/medication-orders/<int:order_id>', methods=['PUT'])
@role_required(*STAFF_ROLES)
def edit_medication_order(order_id):
    order = db.get_or_404(MedicationOrder, order_id, description='Medication order not found')
    values, errors = _order_form(get_payload(), order)
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    for key, value in values.items():
        setattr(order, key, value)
    db.session.commit()
    return jsonify(order.to_dict(date.today()))


@app.route('/api/medication-orders/<int:order_id>', methods=['DELETE'])
@role_required(*STAFF_ROLES)
def delete_medication_order(order_id):
    order = db.get_or_404(MedicationOrder, order_id, description='Medication order not found')
    if order.administrations:
        return error_response('Doses have been recorded; set an end_date to stop this medication', 409)
    db.session.delete(order)
    db.session.commit()
    return jsonify({'ok': True})


@app.route('/api/medication-orders/<int:order_id>/administrations', methods=['POST'])
@role_required(*STAFF_ROLES)
def record_administration(order_id):
    """Record a dose as given, refused or missed"""
    user = get_current_user()
    order = db.get_or_404(MedicationOrder, order_id, description='Medication order not found')
    data = get_payload()
    status = get_text(data, 'status', 'given')
    if status not in ADMINISTRATION_STATUSES:
        return error_response(f"status must be one of {', '.join(ADMINISTRATION_STATUSES)}", 400)
    if not order.is_active_on(date.today()):
        return error_response(f'{order.medication.name} is not active today', 409)

    record = MedicationAdministration(order_id=order.id, resident_id=order.resident_id, status=status,
                                      note=clean_text(data.get('note'), 200), administered_by=user.id)
    try:
        db.session.add(record)
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error recording dose for order %s", order.id)
        return error_response('Error recording dose', 500)
    app.logger.info("%s marked %s %s for resident %s", user.email, order.medication.name, status, order.resident_id)
    return jsonify(record.to_dict()), 201


@app.route('/api/residents/<int:resident_id>/medication-administrations')
@login_required
def list_administrations(resident_id):
    resident = get_visible_resident(get_current_user(), resident_id)
    query = MedicationAdministration.query.filter_by(resident_id=resident.id)
    raw_date = request.args.get('date')
    if raw_date:
        day = parse_date_field(raw_date)
        if not day:
            return error_response('date must be YYYY-MM-DD', 400)
        start = datetime.combine(day, datetime.min.time())
        query = query.filter(MedicationAdministration.administered_at >= start,
                             MedicationAdministration.administered_at < start + timedelta(days=1))
    records = query.order_by(MedicationAdministration.administered_at.desc(), MedicationAdministration.id.desc())
    return jsonify([r.to_dict() for r in records.all()])


# ============================================================================
# Staff
# ============================================================================

def _staff_form(data, member=None):
    errors = {}
    values = {}
    if member is None or 'full_name' in data:
        full_name = clean_text(get_text(data, 'full_name'), 200)
        if not full_name:
            errors['full_name'] = 'Full name is required'
        values['full_name'] = full_name
    if member is None or 'email' in data:
        email = get_text(data, 'email').strip().lower()
        ok, message = validators.validate_email(email)
        if not ok:
            errors['email'] = message
        values['email'] = email
    if member is None or 'job_title' in data:
        job_title = get_text(data, 'job_title')
        if job_title not in STAFF_TITLES:
            errors['job_title'] = f"job_title must be one of {', '.join(STAFF_TITLES)}"
        values['job_title'] = job_title
    if member is None or 'phone' in data:
        phone = ''.join(get_text(data, 'phone').split())
        ok, message = validators.validate_phone(phone)
        if not ok:
            errors['phone'] = message
        values['phone'] = phone
    if 'gender' in data:
        values['gender'] = clean_text(get_text(data, 'gender'), 20) or None
    if 'dob' in data:
        raw_dob = get_text(data, 'dob')
        dob = parse_date_field(raw_dob)
        if raw_dob and (not dob or dob >= date.today()):
            errors['dob'] = 'dob must be a past date (YYYY-MM-DD)'
        values['dob'] = dob
    if 'status' in data:
        status = get_text(data, 'status')
        if status not in ('active', 'inactive'):
            errors['status'] = "status must be 'active' or 'inactive'"
        values['is_active'] = status == 'active'
    return values, errors


def _get_staff_member(staff_id):
    member = db.session.get(User, staff_id)
    if not member or member.role != 'staff':
        abort(404, description='Staff member not found')
    return member


@app.route('/api/staff')
@role_required('admin')
def list_staff():
    """Staff directory with search, job title and status filters"""
    search = request.args.get('q', '')
    job_title = request.args.get('job_title', '')
    status = request.args.get('status', '')
    rows = []
    for member in User.query.filter_by(role='staff').order_by(User.id.asc()).all():
        row = member.to_staff_dict()
        if not matches_search(search, row['full_name'], row['email'], row['phone']):
            continue
        if job_title and job_title != 'all' and row['job_title'] != job_title:
            continue
        if status and status != 'all' and row['status'] != status:
            continue
        rows.append(row)
    return jsonify(paginate(rows, request.args.get('page'), app.config['STAFF_PAGE_SIZE']))


@app.route('/api/staff', methods=['POST'])
@role_required('admin')
def create_staff():
    values, errors = _staff_form(get_payload())
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    if User.query.filter_by(email=values['email']).first():
        return error_response('An account with this email already exists', 409)
    member = User(role='staff', **values)
    db.session.add(member)
    db.session.commit()
    app.logger.info("Staff account %s created", member.email)
    return jsonify(member.to_staff_dict()), 201


@app.route('/api/staff/<int:staff_id>', methods=['PUT'])
@role_required('admin')
def edit_staff(staff_id):
    member = _get_staff_member(staff_id)
    values, errors = _staff_form(get_payload(), member)
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    if 'email' in values:
        clash = User.query.filter(User.email == values['email'], User.id != member.id).first()
        if clash:
            return error_response('An account with this email already exists', 409)
    was_active = member.is_active
    for key, value in values.items():
        setattr(member, key, value)
    db.session.commit()
    if was_active and not member.is_active:
        app.logger.warning("Staff account %s deactivated", member.email)
    return jsonify(member.to_staff_dict())


# ============================================================================
# SOS alerts & incidents
# ============================================================================

@app.route('/api/sos', methods=['POST'])
@login_required
def raise_sos():
    user = get_current_user()
    data = get_payload()
    if user.role == 'resident':
        resident_id = user.resident_id
    elif user.role in STAFF_ROLES:
        resident_id = parse_int(data.get('resident_id'))
    else:
        abort(403, description='Only residents and staff can raise an SOS')
    if resident_id is None:
        return error_response('resident_id is required', 400)
    resident = db.get_or_404(Resident, resident_id, description='Resident not found')

    alert = SOSAlert(resident_id=resident.id,
                     room=resident.bed.room.code if resident.bed else None,
                     alert_type=clean_text(data.get('alert_type'), 50) or 'Panic Button',
                     vital_signs=clean_text(data.get('vital_signs'), 200))
    db.session.add(alert)
    db.session.commit()
    app.logger.warning("SOS %s raised for resident %s (%s)", alert.id, resident.id, alert.alert_type)
    return jsonify(alert.to_dict()), 201


@app.route('/api/sos')
@role_required(*STAFF_ROLES)
def list_sos():
    query = SOSAlert.query
    status = request.args.get('status')
    if status:
        query = query.filter(SOSAlert.status == status)
    alerts = query.order_by(SOSAlert.raised_at.desc()).all()
    return jsonify({
        'alerts': [a.to_dict() for a in alerts],
        'active': SOSAlert.query.filter_by(status='active').count(),
        'resolved': SOSAlert.query.filter_by(status='resolved').count(),
    })


@app.route('/api/sos/<int:alert_id>/status', methods=['POST'])
@role_required(*STAFF_ROLES)
def update_sos_status(alert_id):
    user = get_current_user()
    alert = db.get_or_404(SOSAlert, alert_id, description='Alert not found')
    new_status = get_text(get_payload(), 'status')
    if new_status not in SOS_TRANSITIONS:
        return error_response("status must be 'active', 'in-progress' or 'resolved'", 400)
    if new_status not in SOS_TRANSITIONS[alert.status]:
        return error_response(f'Cannot move alert from {alert.status} to {new_status}', 409)

    alert.status = new_status
    alert.handled_by = user.id
    if new_status == 'resolved':
        alert.resolved_at = datetime.utcnow()
    db.session.commit()
    app.logger.info("SOS %s -> %s by %s", alert.id, new_status, user.email)
    return jsonify(alert.to_dict())


@app.route('/api/incidents')
@role_required(*STAFF_ROLES)
def list_incidents():
    query = Incident.query
    severity = request.args.get('severity')
    if severity:
        query = query.filter(Incident.severity == severity)
    status = request.args.get('status')
    if status:
        query = query.filter(Incident.status == status)
    resident_id = arg_int('resident_id')
    if resident_id is not None:
        query = query.filter(Incident.resident_id == resident_id)

    search = request.args.get('q', '')
    incidents = [i.to_dict() for i in query.order_by(Incident.occurred_at.desc()).all()]
    incidents = [i for i in incidents
                 if matches_search(search, i['description'], i['type'], i['reporter'], i['resident_name'])]
    return jsonify(paginate(incidents, request.args.get('page'), app.config['PAGE_SIZE']))


@app.route('/api/incidents/<int:incident_id>')
@role_required(*STAFF_ROLES)
def view_incident(incident_id):
    return jsonify(db.get_or_404(Incident, incident_id, description='Incident not found').to_dict())


@app.route('/api/incidents', methods=['POST'])
@role_required(*STAFF_ROLES)
def report_incident():
    user = get_current_user()
    data = get_payload()
    errors = {}
    resident_id = parse_int(data.get('resident_id'))
    if resident_id is None or not db.session.get(Resident, resident_id):
        errors['resident_id'] = 'Unknown resident'
    incident_type = clean_text(data.get('type'), 50)
    if not incident_type:
        errors['type'] = 'Incident type is required'
    severity = get_text(data, 'severity', 'low')
    if severity not in INCIDENT_SEVERITIES:
        errors['severity'] = 'severity must be low, medium or high'
    if errors:
        return error_response('Validation failed', 400, errors=errors)

    incident = Incident(reporter=user.full_name, resident_id=resident_id, incident_type=incident_type,
                        severity=severity, description=clean_text(data.get('description')),
                        notes=clean_text(data.get('notes')))
    incident.timeline.append(IncidentTimelineEntry(action='Incident reported'))
    db.session.add(incident)
    db.session.commit()
    app.logger.info("Incident %s reported by %s", incident.id, user.email)
    return jsonify(incident.to_dict()), 201


@app.route('/api/incidents/<int:incident_id>/status', methods=['POST'])
@role_required(*STAFF_ROLES)
def update_incident_status(incident_id):
    incident = db.get_or_404(Incident, incident_id, description='Incident not found')
    data = get_payload()
    new_status = get_text(data, 'status')
    if new_status not in INCIDENT_TRANSITIONS:
        return error_response("status must be 'open', 'investigating' or 'resolved'", 400)
    if new_status not in INCIDENT_TRANSITIONS[incident.status]:
        return error_response(f'Cannot move incident from {incident.status} to {new_status}', 409)

    incident.status = new_status
    action = f'Status changed to {new_status}'
    note = clean_text(data.get('note'), 150)
    if note:
        action = f'{action}: {note}'
    incident.timeline.append(IncidentTimelineEntry(action=action))
    db.session.commit()
    return jsonify(incident.to_dict())


# ============================================================================
# Payments
# ============================================================================

@app.route('/api/payments/prices')
@login_required
def list_prices():
    return jsonify([p.to_dict() for p in ServicePrice.query.order_by(ServicePrice.id).all()])


def _price_form(data):
    errors = {}
    name = clean_text(data.get('service_name'), 200)
    if not name:
        errors['service_name'] = 'Service name is required'
    price = parse_int(data.get('price'))
    if price is None or price <= 0:
        errors['price'] = 'Price must be a positive number'
    return name, price, errors


@app.route('/api/payments/prices', methods=['POST'])
@role_required('admin')
def create_price():
    name, price, errors = _price_form(get_payload())
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    if ServicePrice.query.filter_by(service_name=name).first():
        return error_response(f'"{name}" is already on the price list', 409)
    item = ServicePrice(service_name=name, price=price)
    db.session.add(item)
    db.session.commit()
    return jsonify(item.to_dict()), 201


@app.route('/api/payments/prices/<int:price_id>', methods=['PUT'])
@role_required('admin')
def edit_price(price_id):
    item = db.get_or_404(ServicePrice, price_id, description='Price not found')
    name, price, errors = _price_form(get_payload())
    if errors:
        return error_response('Validation failed', 400, errors=errors)
    clash = ServicePrice.query.filter(ServicePrice.service_name == name, ServicePrice.id != item.id).first()
    if clash:
        return error_response(f'"{name}" is already on the price list', 409)
    item.service_name = name
    item.price = price
    db.session.commit()
    return jsonify(item.to_dict())


@app.route('/api/payments/prices/<int:price_id>', methods=['DELETE'])
@role_required('admin')
def delete_price(price_id):
    item = db.get_or_404(ServicePrice, price_id, description='Price not found')
    db.session.delete(item)
    db.session.commit()
    return jsonify({'ok': True})


def _visible_invoices_query(user):
    query = Invoice.query
    ids = visible_resident_ids(user)
    if ids is not None:
        query = query.filter(Invoice.resident_id.in_(ids))
    return query


@app.route('/api/invoices')
@login_required
def list_invoices():
    query = _visible_invoices_query(get_current_user())
    status = request.args.get('status', 'all')
    if status != 'all':
        query = query.filter(Invoice.status == status)
    return jsonify([i.to_dict() for i in query.order_by(Invoice.id.asc()).all()])


@app.route('/api/invoices/summary')
@role_required('admin')
def invoice_summary():
    invoices = Invoice.query.all()
    counts = {status: 0 for status in INVOICE_STATUSES}
    for invoice in invoices:
        counts[invoice.status] = counts.get(invoice.status, 0) + 1
    return jsonify({
        'total_revenue': sum(i.total for i in invoices if i.status == 'paid'),
        'total_invoices': len(invoices),
        'by_status': counts,
    })


@app.route('/api/invoices', methods=['POST'])
@role_required(*STAFF_ROLES)
def create_invoice():
    data = get_payload()
    errors = {}
    resident_id = parse_int(data.get('resident_id'))
    if resident_id is None or not db.session.get(Resident, resident_id):
        errors['resident_id'] = 'Unknown resident'
    service = ServicePrice.query.filter_by(service_name=get_text(data, 'service_name')).first()
    if not service:
        errors['service_name'] = 'Service is not on the price list'
    amount = parse_int(data['amount']) if 'amount' in data else (service.price if service else None)
    if amount is None or amount <= 0:
        errors['amount'] = 'Amount must be a positive number'
    if errors:
        return error_response('Validation failed', 400, errors=errors)

    vat = int(round(amount * app.config['VAT_RATE']))
    invoice = Invoice(service_name=service.service_name, resident_id=resident_id, amount=amount,
                      vat=vat, total=amount + vat, status='unpaid', issued_on=date.today())
    db.session.add(invoice)
    db.session.commit()
    return jsonify(invoice.to_dict()), 201


@app.route('/api/invoices/<int:invoice_id>/review', methods=['POST'])
@role_required('admin')
def review_invoice(invoice_id):
    user = get_current_user()
    invoice = db.get_or_404(Invoice, invoice_id, description='Invoice not found')
    decision = get_text(get_payload(), 'decision')
    if decision not in ('approved', 'rejected'):
        return error_response("decision must be 'approved' or 'rejected'", 400)
    if invoice.status in ('approved', 'rejected'):
        return error_response(f'Invoice is already {invoice.status}', 409)
    invoice.status = decision
    invoice.reviewed_by = user.id
    db.session.commit()
    return jsonify(invoice.to_dict())


@app.route('/api/invoices/<int:invoice_id>/pay', methods=['POST'])
@login_required
def pay_invoice(invoice_id):
    """Mark an invoice paid; no payment provider is involved"""
    user = get_current_user()
    invoice = db.get_or_404(Invoice, invoice_id, description='Invoice not found')
    if not can_view_resident(user, invoice.resident_id):
        abort(403, description='You do not have access to this invoice')
    if invoice.status not in ('unpaid', 'failed'):
        return error_response(f'Invoice is {invoice.status} and cannot be paid', 409)
    invoice.status = 'paid'
    invoice.paid_at = datetime.utcnow()
    db.session.commit()
    app.logger.info("Invoice %s marked paid by %s", invoice.id, user.email)
    return jsonify(invoice.to_dict())


if __name__ == '__main__':
    with app.app_context():
        db.create_all()

    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', '5001')),
            debug=os.environ.get('FLASK_DEBUG') == '1')

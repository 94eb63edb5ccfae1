"""Calendar math for the resident schedule grid.

The grid is 24 hour rows per day column. Each hour row is ``SLOT_PX`` tall
and separated from the next by a ``BORDER_PX`` rule, so an event block's
offset has to count the rules it sits below and the ones it spans.
"""
from datetime import date, datetime, timedelta
import re

SLOT_PX = 64
BORDER_PX = 1
PX_PER_MIN = SLOT_PX / 60
MIN_BLOCK_PX = 36

VIEWS = ('day', 'week')
WEEKDAY_CODES = ['MO', 'TU', 'WE', 'TH', 'FR', 'SA', 'SU']
FREQUENCIES = ('none', 'daily', 'weekly', 'monthly')

_HHMM_RE = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')


def to_minutes(hhmm):
    """Minutes since midnight for an ``HH:MM`` string"""
    match = _HHMM_RE.match(hhmm) if isinstance(hhmm, str) else None
    if not match:
        raise ValueError(f"Invalid time '{hhmm}', expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def is_valid_time(hhmm):
    try:
        to_minutes(hhmm)
    except ValueError:
        return False
    return True


def start_of_week(day):
    """Monday of the week containing ``day``"""
    return day - timedelta(days=day.weekday())


def visible_days(cursor, view='week'):
    if view == 'day':
        return [cursor]
    monday = start_of_week(cursor)
    return [monday + timedelta(days=i) for i in range(7)]


def step_cursor(cursor, view, steps=1):
    """Move the cursor by whole days (day view) or whole weeks (week view)"""
    return cursor + timedelta(days=steps * (1 if view == 'day' else 7))


def range_label(cursor, view='week'):
    if view == 'day':
        return cursor.strftime('%A, %d %b %Y')
    days = visible_days(cursor, 'week')
    return f"{days[0].strftime('%d %b')} - {days[-1].strftime('%d %b %Y')}"


def hour_slots():
    return [f"{h:02d}:00" for h in range(24)]


def event_block_layout(start, end):
    """Pixel ``(top, height)`` of an event block inside its day column"""
    start_min = to_minutes(start)
    end_min = to_minutes(end)
    duration = max(0, end_min - start_min)

    start_hour, start_minute = divmod(start_min, 60)
    boundaries_crossed = max(0, (end_min - 1) // 60 - start_min // 60)

    top = start_hour * SLOT_PX + start_hour * BORDER_PX + start_minute * PX_PER_MIN
    height = max(MIN_BLOCK_PX, duration * PX_PER_MIN + boundaries_crossed * BORDER_PX)
    return round(top, 2), round(height, 2)


def seat_state(capacity, count, mine=False):
    """Seat counters and which registration buttons are enabled.

    ``mine`` is whether the current viewer holds one of the ``count`` seats.
    """
    full = count >= capacity
    return {
        'capacity': capacity,
        'registered': count,
        'remaining': max(capacity - count, 0),
        'full': full,
        'mine': mine,
        'can_register': not mine and not full,
        'can_cancel': mine,
    }


def build_calendar(events, cursor, view='week', mine_ids=()):
    """Lay out ``events`` (dicts as produced by ``CareEvent.to_dict``) on the grid"""
    if view not in VIEWS:
        raise ValueError(f"Unknown view '{view}'")
    mine_ids = set(mine_ids)
    columns = []
    for day in visible_days(cursor, view):
        day_iso = day.isoformat()
        day_events = sorted((e for e in events if e['date'] == day_iso), key=lambda e: to_minutes(e['start']))
        blocks = []
        for ev in day_events:
            top, height = event_block_layout(ev['start'], ev['end'])
            block = dict(ev)
            block['layout'] = {'top': top, 'height': height}
            block['seats'] = seat_state(ev['capacity'], ev['registered'], ev['id'] in mine_ids)
            blocks.append(block)
        columns.append({
            'date': day_iso,
            'heading': day.strftime('%a, %d %b'),
            'events': blocks,
        })
    return {
        'view': view,
        'cursor': cursor.isoformat(),
        'label': range_label(cursor, view),
        'previous': step_cursor(cursor, view, -1).isoformat(),
        'next': step_cursor(cursor, view, 1).isoformat(),
        'hours': hour_slots(),
        'days': columns,
    }


def build_rrule(freq, start):
    """Basic RRULE for a repeating care event starting at datetime ``start``"""
    if freq == 'none' or start is None:
        return None
    by_time = f"BYHOUR={start.hour};BYMINUTE={start.minute}"
    if freq == 'daily':
        return f"FREQ=DAILY;{by_time}"
    if freq == 'weekly':
        return f"FREQ=WEEKLY;BYDAY={WEEKDAY_CODES[start.weekday()]};{by_time}"
    if freq == 'monthly':
        return f"FREQ=MONTHLY;BYMONTHDAY={start.day};{by_time}"
    raise ValueError(f"Unknown frequency '{freq}'")


def combine(day, hhmm):
    """``datetime`` for a calendar date and an ``HH:MM`` string"""
    minutes = to_minutes(hhmm)
    return datetime.combine(day, datetime.min.time()) + timedelta(minutes=minutes)


def parse_cursor(value, default=None):
    if not value:
        return default or date.today()
    return datetime.strptime(value, '%Y-%m-%d').date()

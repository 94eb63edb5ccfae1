from datetime import datetime
import math

import bleach

# Free-text notes are stored as plain text
ALLOWED_TAGS = []
ALLOWED_ATTRS = {}


def parse_date_field(value):
    """Parse YYYY-MM-DD date strings to date objects; return None on failure."""
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (ValueError, TypeError):
        return None


def clean_text(value, max_length=None):
    """Strip markup from user supplied text and trim it"""
    if value is None:
        return None
    cleaned = bleach.clean(str(value), tags=ALLOWED_TAGS, attributes=ALLOWED_ATTRS, strip=True).strip()
    if max_length is not None:
        cleaned = cleaned[:max_length]
    return cleaned


def matches_search(term, *fields):
    """Case-insensitive substring match against any of ``fields``"""
    if not term:
        return True
    term = term.strip().lower()
    return any(term in (f or '').lower() for f in fields)


def paginate(items, page, per_page):
    """Slice a list into a page; out of range pages are clamped."""
    total = len(items)
    pages = max(1, math.ceil(total / per_page)) if per_page else 1
    try:
        page = int(page or 1)
    except (TypeError, ValueError):
        page = 1
    page = min(max(page, 1), pages)
    start = (page - 1) * per_page
    return {
        'items': items[start:start + per_page],
        'page': page,
        'pages': pages,
        'per_page': per_page,
        'total': total,
    }


def parse_int(value, default=None):
    if value is None or value == '':
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

"""Form validation shared by the sign-in, sign-up and password screens.

Every validator returns ``(is_valid, error_message)`` with an empty message
when the value is accepted.
"""
import re

GMAIL_RE = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_{|}~-]+(?<!\.)@(gmail\.com)$")
GENERIC_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
RESET_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._+-]+@gmail\.com$")
OTP_RE = re.compile(r"^[0-9]{6}$")
PHONE_RE = re.compile(r"^0[0-9]{9}$")

PASSWORD_SYMBOLS = '!@#$%^&*(),.?":{}|<>'
MIN_PASSWORD_LENGTH = 8


def validate_email(email):
    """Sign-in address rules: a well formed @gmail.com address"""
    trimmed = (email or '').strip()
    if not trimmed:
        return False, "Email is required"
    if not GMAIL_RE.match(trimmed):
        return False, "Invalid email format. Must be @gmail.com"
    if len(trimmed) > 254:
        return False, "Email must be 254 characters or less"
    local_part, _, domain_part = trimmed.partition('@')
    if len(local_part) > 64:
        return False, "Local part must be 64 characters or less"
    if local_part.startswith('.') or local_part.endswith('.'):
        return False, "Local part cannot start or end with '.'"
    if '..' in local_part:
        return False, "Local part cannot contain consecutive dots"
    if domain_part.lower() != 'gmail.com':
        return False, "Domain must be gmail.com"
    return True, ""


def validate_signup_email(email):
    trimmed = (email or '').strip()
    if not trimmed:
        return False, "Email is required"
    if not GENERIC_EMAIL_RE.match(trimmed):
        return False, "Please enter a valid email address"
    return True, ""


def validate_reset_email(email):
    trimmed = (email or '').strip()
    if not RESET_EMAIL_RE.match(trimmed):
        return False, "Email must be in format example@gmail.com"
    return True, ""


def validate_password(password):
    """Check length, letter case, digit and symbol; report the first failing rule"""
    if not password:
        return False, "Password is required"
    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if not (re.search(r'[a-z]', password) and re.search(r'[A-Z]', password)):
        return False, "Password must include upper and lower case letters"
    if not re.search(r'\d', password):
        return False, "Password must include a number"
    if not any(ch in PASSWORD_SYMBOLS for ch in password):
        return False, "Password must include a symbol"
    return True, ""


def password_checklist(password):
    """Per-rule status shown next to the set-password field.

    Unlike ``validate_password`` any non-alphanumeric character counts as a
    symbol here.
    """
    password = password or ''
    return {
        'length': len(password) >= MIN_PASSWORD_LENGTH,
        'upper_lower': bool(re.search(r'[a-z]', password) and re.search(r'[A-Z]', password)),
        'number': bool(re.search(r'[0-9]', password)),
        'symbol': bool(re.search(r'[^a-zA-Z0-9]', password)),
    }


def validate_otp(code):
    code = str(code or '').strip()
    if len(code) != 6:
        return False, "Please enter all 6 digits"
    if not OTP_RE.match(code):
        return False, "Verification code must contain digits only"
    return True, ""


def validate_phone(phone):
    """Staff contact number: 10 digits starting with 0, spaces ignored"""
    digits = ''.join(str(phone or '').split())
    if not digits:
        return False, "Phone is required"
    if not PHONE_RE.match(digits):
        return False, "Phone must be 10 digits starting with 0"
    return True, ""

"""
callrank/utils/phone_numbers.py
Phone number canonicalization, private-caller classification and display
formatting. Every function is pure and total over arbitrary strings.
"""

from callrank.models.record import PRIVATE_KEY

KEY_DIGITS = 10          # last N digits kept; absorbs country codes
MIN_VALID_DIGITS = 3     # short codes are allowed

PRIVATE_SENTINELS = ('-1', '-2')
PRIVATE_MARKERS   = ('private', 'unknown', 'blocked')


def normalize(phone_number: str) -> str:
    """
    Strip every non-digit; keep the last 10 digits when longer.
    normalize(normalize(x)) == normalize(x).
    """
    digits = ''.join(c for c in (phone_number or '') if c.isdigit())
    if len(digits) > KEY_DIGITS:
        return digits[-KEY_DIGITS:]
    return digits


def is_private_number(phone_number: str) -> bool:
    if phone_number is None or not phone_number.strip():
        return True
    if phone_number in PRIVATE_SENTINELS:
        return True
    lower = phone_number.lower()
    return any(marker in lower for marker in PRIVATE_MARKERS)


def is_valid_phone_number(phone_number: str) -> bool:
    return sum(1 for c in (phone_number or '') if c.isdigit()) >= MIN_VALID_DIGITS


def canonical_key(phone_number: str) -> str:
    if is_private_number(phone_number):
        return PRIVATE_KEY
    return normalize(phone_number)


def format_for_display(phone_number: str) -> str:
    """
    "5551234567"    -> "(555) 123-4567"
    "+15551234567"  -> "+1 (555) 123-4567"
    "8801712345678" -> "+880 (171) 234-5678"
    Anything else is returned unchanged.
    """
    digits = ''.join(c for c in (phone_number or '') if c.isdigit())
    if len(digits) < KEY_DIGITS:
        return phone_number
    local = digits[-KEY_DIGITS:]
    grouped = f"({local[:3]}) {local[3:6]}-{local[6:]}"
    country = digits[:-KEY_DIGITS]
    if country:
        return f"+{country} {grouped}"
    return grouped

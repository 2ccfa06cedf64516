"""Shared payload helpers for creating and updating Court records."""

import re
from dataclasses import dataclass, fields

from backend.time_utils import utcnow_naive

_BOOL_TRUE = {'true', '1', 'yes', 'on'}
_BOOL_FALSE = {'false', '0', 'no', 'off'}
MIN_NUMBER_OF_COURTS = 1
MAX_NUMBER_OF_COURTS = 1000
ADDRESS_FIELDS = ('address', 'city', 'state', 'zip')

COURT_WRITABLE_FIELDS = [
    'name', 'address', 'city', 'state', 'zip',
    'latitude', 'longitude', 'number_of_courts',
    'surface', 'court_condition', 'court_type',
    'lighted', 'hitting_wall', 'membership_required', 'parking',
    'is_public',
]

# Browser clients post camelCase keys
_FIELD_ALIASES = {
    'zipCode': 'zip',
    'zip_code': 'zip',
    'numberOfCourts': 'number_of_courts',
    'courtCondition': 'court_condition',
    'condition': 'court_condition',
    'courtType': 'court_type',
    'hittingWall': 'hitting_wall',
    'lights': 'lighted',
    'membershipRequired': 'membership_required',
    'isPublic': 'is_public',
}

_STRING_LIMITS = {
    'name': 255,
    'address': 255,
    'city': 100,
    'state': 50,
    'zip': 20,
    'surface': 50,
    'court_condition': 50,
    'court_type': 50,
}
_FLOAT_FIELDS = {'latitude', 'longitude'}
_INT_FIELDS = {'number_of_courts'}
_BOOL_FIELDS = {'lighted', 'hitting_wall', 'membership_required', 'parking', 'is_public'}


def _clean_text(value, max_len):
    if value is None:
        return ''
    text = str(value).strip()
    if len(text) > max_len:
        return text[:max_len]
    return text


def _parse_float(value):
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_int(value):
    if value is None or value == '' or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_bool(value):
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if normalized in _BOOL_TRUE:
        return True
    if normalized in _BOOL_FALSE:
        return False
    return None


def canonical_field_name(key):
    return _FIELD_ALIASES.get(key, key)


def address_key(address, city, state, zip_code):
    """Case-insensitive identity of a street address used for duplicate checks."""
    parts = []
    for value in (address, city, state, zip_code):
        text = re.sub(r'\s+', ' ', str(value or '').strip().lower())
        parts.append(text)
    return '|'.join(parts)


def normalize_court_payload(raw_data, required=(), allowed=None):
    """Return normalized court payload and validation errors.

    ``None`` and empty strings are treated as "not supplied" so callers can
    pass sparse payloads straight through. ``allowed`` narrows the writable
    fields.
    """
    if not isinstance(raw_data, dict):
        return {}, ['Invalid JSON payload']

    writable = COURT_WRITABLE_FIELDS if allowed is None else [
        field for field in COURT_WRITABLE_FIELDS if field in allowed
    ]
    incoming = {}
    for key, value in raw_data.items():
        incoming[canonical_field_name(key)] = value

    errors = []
    court_data = {}

    for field in writable:
        value = incoming.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue

        if field in _STRING_LIMITS:
            court_data[field] = _clean_text(value, _STRING_LIMITS[field])
            continue

        if field in _FLOAT_FIELDS:
            parsed = _parse_float(value)
            if parsed is None:
                errors.append(f'{field} must be a number.')
                continue
            if field == 'latitude' and not -90 <= parsed <= 90:
                errors.append('Latitude must be between -90 and 90.')
                continue
            if field == 'longitude' and not -180 <= parsed <= 180:
                errors.append('Longitude must be between -180 and 180.')
                continue
            court_data[field] = parsed
            continue

        if field in _INT_FIELDS:
            parsed = _parse_int(value)
            if parsed is None:
                errors.append('number_of_courts must be an integer.')
                continue
            if parsed < MIN_NUMBER_OF_COURTS or parsed > MAX_NUMBER_OF_COURTS:
                errors.append(
                    f'number_of_courts must be between {MIN_NUMBER_OF_COURTS} '
                    f'and {MAX_NUMBER_OF_COURTS}.'
                )
                continue
            court_data[field] = parsed
            continue

        if field in _BOOL_FIELDS:
            parsed = _parse_bool(value)
            if parsed is None:
                errors.append(f'{field} must be true or false.')
                continue
            court_data[field] = parsed
            continue

    missing = [field for field in required if not court_data.get(field)]
    if missing:
        errors.append(f'Missing required fields: {", ".join(missing)}')

    return court_data, errors


@dataclass
class CourtPatch:
    """Sparse set of court attribute changes. ``None`` means leave unchanged."""
    name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    number_of_courts: int | None = None
    surface: str | None = None
    court_condition: str | None = None
    court_type: str | None = None
    lighted: bool | None = None
    hitting_wall: bool | None = None
    membership_required: bool | None = None
    parking: bool | None = None
    is_public: bool | None = None

    @classmethod
    def from_mapping(cls, data):
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in (data or {}).items() if key in known})

    def changes(self):
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def is_empty(self):
        return not self.changes()

    def apply_to(self, court):
        """Merge every supplied attribute onto ``court`` and return the names applied."""
        applied = []
        for field, value in self.changes().items():
            if field == 'number_of_courts' and value <= 0:
                continue
            setattr(court, field, value)
            applied.append(field)
        if applied:
            if any(field in ADDRESS_FIELDS for field in applied):
                court.address_key = address_key(court.address, court.city, court.state, court.zip)
            court.updated_at = utcnow_naive()
        return applied


def apply_court_changes(court, court_data):
    return CourtPatch.from_mapping(court_data).apply_to(court)

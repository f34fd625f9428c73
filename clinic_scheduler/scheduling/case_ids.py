"""Case identifiers handed to patients for looking up their booking later."""

import secrets

from clinic_scheduler.core import config

# Upper-case letters and digits without 0/O, 1/I/L so codes survive being read over the phone.
CASE_ID_ALPHABET = 'ABCDEFGHJKMNPQRSTUVWXYZ23456789'


def issue_case_id(length: int | None = None) -> str:
    length = length or config.CASE_ID_LENGTH
    if not 8 <= length <= 10:
        raise ValueError(f'Case IDs must be 8 to 10 characters long, got {length}.')
    return ''.join(secrets.choice(CASE_ID_ALPHABET) for _ in range(length))


def normalize_case_id(value: str) -> str:
    return value.strip().upper()

"""Shared validation utilities"""

import re
from datetime import datetime
from typing import Optional

TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
SENEGAL_PHONE_PATTERN = re.compile(r"^\+221[0-9]{8,9}$")


def validate_time_hhmm(value: str) -> str:
    """
    Validate and normalize a wall-clock time.

    Args:
        value: Time string such as "9:30" or "14:00"

    Returns:
        Zero-padded "HH:MM" string

    Raises:
        ValueError: If the time is not a valid 24h HH:MM value
    """
    if not value or not TIME_PATTERN.match(value.strip()):
        raise ValueError("Invalid time format (HH:MM)")

    hours, minutes = value.strip().split(":")
    return f"{int(hours):02d}:{int(minutes):02d}"


def parse_time_hhmm(value: str):
    """Parse a stored "HH:MM" string into a ``datetime.time``"""
    return datetime.strptime(value, "%H:%M").time()


def format_senegal_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a Senegalese phone number to E.164 (+221XXXXXXXXX).

    Numbers that are not recognised are returned unchanged so the caller can
    decide whether to reject them.
    """
    if not phone:
        return phone

    digits = re.sub(r"\D", "", phone)

    if digits.startswith("221"):
        return f"+{digits}"

    # Local mobile (7x) and landline (3x) numbers
    if digits.startswith("7") or digits.startswith("3"):
        return f"+221{digits}"

    return phone


def validate_senegal_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize a Senegalese phone number.

    Raises:
        ValueError: If the number is not a valid +221 number
    """
    if not phone:
        return phone

    formatted = format_senegal_phone(phone)
    if not SENEGAL_PHONE_PATTERN.match(formatted):
        raise ValueError("Invalid Senegalese phone number (+221xxxxxxxx)")

    return formatted

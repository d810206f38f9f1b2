import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .lifetimes import ExpirationTime, Lifetime

GUEST_LINK_ID_LENGTH = 16
ENTRY_ID_LENGTH = 10
MAX_GUEST_LINK_LABEL_LENGTH = 200

_ID_ALPHABET = string.ascii_letters + string.digits
_ID_PATTERN = re.compile(r"[A-Za-z0-9]+")


class InvalidIdentifierError(ValueError):
    """Raised when a URL identifier is malformed."""


@dataclass
class GuestLink:
    id: str
    label: str
    created: datetime
    expiration: ExpirationTime
    max_file_lifetime: Lifetime
    max_file_bytes: Optional[int] = None
    max_file_uploads: Optional[int] = None
    files_uploaded: int = 0

    def is_active(self, now: datetime) -> bool:
        return is_active(self, now)


def is_active(link: GuestLink, now: datetime) -> bool:
    """Return whether *link* still accepts uploads at *now*.

    A link is active while it has not expired and has uploads left. Both the
    clock and the upload count move outside this check, so evaluate it on
    every request instead of caching the answer.
    """

    if link.expiration.has_passed(now):
        return False
    if link.max_file_uploads is not None and link.files_uploaded >= link.max_file_uploads:
        return False
    return True


def format_file_size(num: int) -> str:
    if num < 1024:
        return f"{num} B"
    value = float(num)
    for unit in ["kB", "MB", "GB", "TB", "PB"]:
        value /= 1024.0
        if abs(value) < 1024.0:
            return f"{value:.2f} {unit}"
    return f"{value:.2f} EB"


def format_size_limit(limit: Optional[int]) -> str:
    if limit is None:
        return "Unlimited"
    return format_file_size(limit)


def format_count_limit(limit: Optional[int]) -> str:
    if limit is None:
        return "Unlimited"
    return str(limit)


def _parse_identifier(raw: str, length: int, kind: str) -> str:
    if not raw:
        raise InvalidIdentifierError(f"{kind} ID cannot be empty")
    if len(raw) != length:
        raise InvalidIdentifierError(f"{kind} ID must be {length} characters long")
    if not _ID_PATTERN.fullmatch(raw):
        raise InvalidIdentifierError(f"{kind} ID contains invalid characters")
    return raw


def parse_guest_link_id(raw: str) -> str:
    return _parse_identifier(raw, GUEST_LINK_ID_LENGTH, "Guest link")


def parse_entry_id(raw: str) -> str:
    return _parse_identifier(raw, ENTRY_ID_LENGTH, "Entry")


def _new_identifier(length: int) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def new_guest_link_id() -> str:
    return _new_identifier(GUEST_LINK_ID_LENGTH)


def new_entry_id() -> str:
    return _new_identifier(ENTRY_ID_LENGTH)

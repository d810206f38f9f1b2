import functools
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple, Union

DAYS_PER_YEAR = 365

# Lifetimes are persisted and submitted as 16-bit day counts.
MAX_LIFETIME_DAYS = 65535

_INFINITE_ALIASES = {"infinite", "never", "inf"}


class InvalidLifetimeError(ValueError):
    """Raised when a lifetime value cannot be parsed."""


def _require_aware(moment: datetime) -> datetime:
    if moment.tzinfo is None or moment.utcoffset() is None:
        raise ValueError("Naive datetimes are not supported; attach a timezone")
    return moment.astimezone(timezone.utc)


@functools.total_ordering
class Lifetime:
    """How long an upload may live, in whole days or forever.

    A lifetime is either finite (``Lifetime.in_days``/``Lifetime.in_years``)
    or the single infinite lifetime ``FILE_LIFETIME_INFINITE``. Lifetimes
    are ordered by duration and the infinite lifetime sorts after every
    finite one.
    """

    __slots__ = ("_days",)

    def __init__(self, days: Optional[int]) -> None:
        if days is not None:
            if isinstance(days, bool) or not isinstance(days, int):
                raise InvalidLifetimeError(f"Lifetime days must be an integer, got {days!r}")
            if days < 0:
                raise InvalidLifetimeError("Lifetime cannot be negative")
            if days > MAX_LIFETIME_DAYS:
                raise InvalidLifetimeError(
                    f"Lifetime cannot exceed {MAX_LIFETIME_DAYS} days"
                )
        self._days = days

    @classmethod
    def in_days(cls, days: int) -> "Lifetime":
        return cls(days)

    @classmethod
    def in_years(cls, years: int) -> "Lifetime":
        return cls(years * DAYS_PER_YEAR)

    @classmethod
    def parse(cls, value: Union[int, str, None]) -> "Lifetime":
        """Parse a persisted or submitted lifetime.

        Accepts a day count (``int`` or numeric string) or one of the
        infinite aliases (``"infinite"``, ``"never"``).
        """

        if value is None:
            raise InvalidLifetimeError("Lifetime is required")
        if isinstance(value, bool):
            raise InvalidLifetimeError(f"Invalid lifetime: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in _INFINITE_ALIASES:
                return FILE_LIFETIME_INFINITE
            try:
                return cls(int(normalized))
            except ValueError as error:
                raise InvalidLifetimeError(f"Invalid lifetime: {value!r}") from error
        raise InvalidLifetimeError(f"Invalid lifetime: {value!r}")

    @property
    def is_infinite(self) -> bool:
        return self._days is None

    @property
    def days(self) -> int:
        if self._days is None:
            raise ValueError("The infinite lifetime has no day count")
        return self._days

    @property
    def is_year_boundary(self) -> bool:
        return self._days is not None and self._days > 0 and self._days % DAYS_PER_YEAR == 0

    @property
    def years(self) -> int:
        return self.days // DAYS_PER_YEAR

    def friendly_name(self) -> str:
        if self.is_infinite:
            return "Never"
        if self.is_year_boundary:
            return "1 year" if self.years == 1 else f"{self.years} years"
        return "1 day" if self.days == 1 else f"{self.days} days"

    def expiration_from(self, now: datetime) -> "ExpirationTime":
        """Return the expiration of an upload created at *now*."""

        if self.is_infinite:
            return NEVER_EXPIRE
        return ExpirationTime(_require_aware(now) + timedelta(days=self.days))

    def to_json(self) -> Union[int, str]:
        return "infinite" if self.is_infinite else self.days

    def _sort_key(self) -> Tuple[int, int]:
        if self._days is None:
            return (1, 0)
        return (0, self._days)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Lifetime):
            return NotImplemented
        return self._days == other._days

    def __lt__(self, other: "Lifetime") -> bool:
        if not isinstance(other, Lifetime):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __hash__(self) -> int:
        return hash(("Lifetime", self._days))

    def __repr__(self) -> str:
        if self.is_infinite:
            return "Lifetime(infinite)"
        return f"Lifetime(days={self._days})"

    def __str__(self) -> str:
        return self.friendly_name()


@functools.total_ordering
class ExpirationTime:
    """An absolute expiration instant, or ``NEVER_EXPIRE``."""

    __slots__ = ("_instant",)

    def __init__(self, instant: Optional[datetime]) -> None:
        self._instant = None if instant is None else _require_aware(instant)

    @classmethod
    def from_timestamp(cls, timestamp: Optional[float]) -> "ExpirationTime":
        """Inverse of ``timestamp``; ``None`` is the stored form of never."""

        if timestamp is None:
            return NEVER_EXPIRE
        return cls(datetime.fromtimestamp(timestamp, tz=timezone.utc))

    @property
    def is_never(self) -> bool:
        return self._instant is None

    @property
    def instant(self) -> datetime:
        if self._instant is None:
            raise ValueError("NEVER_EXPIRE has no instant")
        return self._instant

    def has_passed(self, now: datetime) -> bool:
        if self._instant is None:
            return False
        return _require_aware(now) >= self._instant

    def timestamp(self) -> Optional[float]:
        if self._instant is None:
            return None
        return self._instant.timestamp()

    def isoformat(self) -> str:
        if self._instant is None:
            return ""
        return self._instant.isoformat().replace("+00:00", "Z")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExpirationTime):
            return NotImplemented
        return self._instant == other._instant

    def __lt__(self, other: "ExpirationTime") -> bool:
        if not isinstance(other, ExpirationTime):
            return NotImplemented
        if self._instant is None:
            return False
        if other._instant is None:
            return True
        return self._instant < other._instant

    def __hash__(self) -> int:
        return hash(("ExpirationTime", self._instant))

    def __repr__(self) -> str:
        if self._instant is None:
            return "ExpirationTime(never)"
        return f"ExpirationTime({self.isoformat()})"


FILE_LIFETIME_INFINITE = Lifetime(None)
NEVER_EXPIRE = ExpirationTime(None)

LIFETIME_CATALOG: Tuple[Lifetime, ...] = (
    Lifetime.in_days(1),
    Lifetime.in_days(7),
    Lifetime.in_days(30),
    Lifetime.in_years(1),
    FILE_LIFETIME_INFINITE,
)

DEFAULT_FILE_LIFETIME = Lifetime.in_days(30)

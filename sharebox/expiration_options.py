"""Expiration choices offered on the upload pages.

Owners pick from the built-in catalog plus the administrator's default
lifetime and a trailing "Custom" entry. Guests pick from the catalog entries
that fit under their guest link's maximum file lifetime, defaulting to that
maximum.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from .lifetimes import LIFETIME_CATALOG, ExpirationTime, Lifetime

CUSTOM_OPTION_LABEL = "Custom"


@dataclass(frozen=True)
class ExpirationOption:
    label: str
    # None only for the "Custom" entry; the page collects a date instead.
    expiration: Optional[ExpirationTime]
    is_default: bool = False

    @property
    def is_custom(self) -> bool:
        return self.expiration is None


def _candidate_lifetimes(
    catalog: Iterable[Lifetime],
    default: Lifetime,
    upper_bound: Optional[Lifetime],
) -> List[Lifetime]:
    candidates = set(catalog)
    if upper_bound is not None:
        candidates = {lifetime for lifetime in candidates if lifetime <= upper_bound}
    # The default always appears exactly once, even when it is not a preset.
    candidates.add(default)
    return sorted(candidates)


def resolve_expiration_options(
    now: datetime,
    *,
    default_lifetime: Optional[Lifetime] = None,
    upper_bound: Optional[Lifetime] = None,
    catalog: Iterable[Lifetime] = LIFETIME_CATALOG,
) -> List[ExpirationOption]:
    """Build the ordered list of expiration options for an upload page.

    Args:
        now: Reference instant every expiration is resolved against.
        default_lifetime: Administrator default, used for owner uploads.
        upper_bound: Maximum file lifetime of a guest link. When given, the
            options are limited to lifetimes no longer than the bound and the
            bound itself is the default.
        catalog: Preset lifetimes to offer.

    Returns:
        Options sorted by ascending lifetime with exactly one default. Owner
        uploads end with a "Custom" option that carries no expiration.
    """

    guest_context = upper_bound is not None
    if guest_context:
        default = upper_bound
    elif default_lifetime is not None:
        default = default_lifetime
    else:
        raise ValueError("Either default_lifetime or upper_bound is required")

    options = [
        ExpirationOption(
            label=lifetime.friendly_name(),
            expiration=lifetime.expiration_from(now),
            is_default=lifetime == default,
        )
        for lifetime in _candidate_lifetimes(catalog, default, upper_bound)
    ]

    if not guest_context:
        options.append(ExpirationOption(label=CUSTOM_OPTION_LABEL, expiration=None))

    return options

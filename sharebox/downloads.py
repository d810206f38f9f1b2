import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Set, Tuple

from user_agents import parse as parse_user_agent

logger = logging.getLogger("sharebox.downloads")

_UNKNOWN_FAMILY = "Other"


@dataclass(frozen=True)
class DownloadRecord:
    time: datetime
    client_ip: str
    user_agent: str


@dataclass(frozen=True)
class DisplayDownload:
    time: datetime
    client_ip: str
    browser: str
    platform: str


class ClientAddressSeenSet:
    """Client addresses already present in a download listing."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def first_sighting(self, address: str) -> bool:
        """Record *address* and return True if it had not been seen before."""

        if address in self._seen:
            return False
        self._seen.add(address)
        return True

    def __contains__(self, address: object) -> bool:
        return address in self._seen

    def __len__(self) -> int:
        return len(self._seen)


def dedupe_downloads(records: Iterable[DownloadRecord]) -> List[DownloadRecord]:
    """Keep only the first download from each client address.

    Order is preserved, so with a newest-first history the most recent
    download per address survives. Later downloads from the same address
    are dropped, not merged.
    """

    seen = ClientAddressSeenSet()
    return [record for record in records if seen.first_sighting(record.client_ip)]


def describe_user_agent(raw: str) -> Tuple[str, str]:
    """Return ``(browser, platform)`` for a raw User-Agent header.

    Unrecognised or unparseable agents yield empty strings.
    """

    if not raw:
        return "", ""
    try:
        agent = parse_user_agent(raw)
        browser = agent.browser.family
        platform = agent.os.family
    except Exception as error:
        logger.debug("user_agent_parse_failed error=%s", error)
        return "", ""
    return (
        "" if browser == _UNKNOWN_FAMILY else browser,
        "" if platform == _UNKNOWN_FAMILY else platform,
    )


def to_display_records(records: Iterable[DownloadRecord]) -> List[DisplayDownload]:
    display: List[DisplayDownload] = []
    for record in records:
        browser, platform = describe_user_agent(record.user_agent)
        display.append(
            DisplayDownload(
                time=record.time,
                client_ip=record.client_ip,
                browser=browser,
                platform=platform,
            )
        )
    return display


def download_index(position: int, total: int) -> int:
    """Row number for a newest-first listing, counting down to 1."""

    return total - position

"""Encoding of member status and claim expiry into container names.

A pool member's name is the only place its state is kept::

    <prefix>-<randomID>---<status>[--<expiryStamp>]

``expiryStamp`` is the expiry formatted as ``YYYY-Mon-D-HH:MM:SS`` (UTC, English
month abbreviation, unpadded day) with spaces replaced by ``--`` and colons by
``.`` so that the result is a valid Docker container name. The stamp has
one-second resolution; anything finer is dropped on encode.

Stamps carry no zone and are always read as UTC. Older pool services wrote
them in the host's local zone, so claims they left behind on a non-UTC host
are read shifted by that host's offset: such a claim expires early or late
by the offset, and is then reclaimed as usual.
"""

import random
import re
from datetime import datetime, timezone

from bitbucket_pool.models.members import MemberStatus
from bitbucket_pool.utils.exceptions import NameDecodeError

STATUS_SEPARATOR = "---"
STAMP_SEPARATOR = "--"

RANDOM_ID_MIN = 1_000_000
RANDOM_ID_MAX = 2_000_000

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_STAMP_RE = re.compile(
    r"^(?P<year>\d{4})-(?P<month>[A-Z][a-z]{2})-(?P<day>\d{1,2})-"
    r"(?P<hour>\d{1,2}):(?P<minute>\d{2}):(?P<second>\d{2})$"
)


def _random_id() -> int:
    return random.randrange(RANDOM_ID_MIN, RANDOM_ID_MAX)


def generate_name(prefix: str) -> str:
    """
    Build the name of a freshly created, unclaimed member.

    Args:
        prefix: Pool prefix

    Returns:
        Name of the form ``<prefix>-<randomID>---new``
    """
    return f"{prefix}-{_random_id()}{STATUS_SEPARATOR}{MemberStatus.NEW.value}"


def generate_volume_name(prefix: str) -> str:
    """Build a fresh data volume name for a member."""
    return f"{prefix}-volume-{_random_id()}"


def normalize_name(name: str) -> str:
    """Strip the leading slash Docker puts on container names."""
    return name.lstrip("/")


def format_stamp(moment: datetime) -> str:
    """
    Format a moment as a name-safe expiry stamp.

    Args:
        moment: Moment to format; naive values are taken as UTC

    Returns:
        Stamp such as ``2024-Mar-5-14.30.07``
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)

    stamp = (
        f"{moment.year:04d}-{_MONTHS[moment.month - 1]}-{moment.day}-"
        f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    return stamp.replace(" ", STAMP_SEPARATOR).replace(":", ".")


def parse_stamp(stamp: str) -> datetime:
    """
    Parse a plain ``YYYY-Mon-D-HH:MM:SS`` timestamp.

    Raises:
        ValueError: If the text is not a valid timestamp
    """
    match = _STAMP_RE.match(stamp)
    if match is None:
        raise ValueError(f"timestamp {stamp!r} does not match YYYY-Mon-D-HH:MM:SS")

    month = match.group("month")
    if month not in _MONTHS:
        raise ValueError(f"unknown month {month!r}")

    return datetime(
        int(match.group("year")),
        _MONTHS.index(month) + 1,
        int(match.group("day")),
        int(match.group("hour")),
        int(match.group("minute")),
        int(match.group("second")),
        tzinfo=timezone.utc,
    )


def _split_status(name: str) -> tuple[str, str] | None:
    head, separator, status_segment = normalize_name(name).rpartition(STATUS_SEPARATOR)
    if not separator:
        return None
    return head, status_segment


def derive_status(name: str) -> MemberStatus:
    """
    Derive a member's status from its name.

    Args:
        name: Container name

    Returns:
        ``ALLOCATED`` if the status segment carries the allocated marker,
        ``NEW`` otherwise
    """
    parts = _split_status(name)
    segment = parts[1] if parts else normalize_name(name)
    if MemberStatus.ALLOCATED.value in segment:
        return MemberStatus.ALLOCATED
    return MemberStatus.NEW


def encode_claim(name: str, expires_at: datetime) -> str:
    """
    Build the name a member takes when it is claimed.

    The ``new`` marker in the status segment becomes ``allocated`` and the
    expiry stamp is appended.

    Args:
        name: Current container name
        expires_at: Claim expiry

    Returns:
        New container name
    """
    name = normalize_name(name)
    parts = _split_status(name)
    if parts is None:
        claimed = name.replace(MemberStatus.NEW.value, MemberStatus.ALLOCATED.value, 1)
    else:
        head, segment = parts
        segment = segment.replace(MemberStatus.NEW.value, MemberStatus.ALLOCATED.value, 1)
        claimed = f"{head}{STATUS_SEPARATOR}{segment}"

    return f"{claimed}{STAMP_SEPARATOR}{format_stamp(expires_at)}"


def decode_expiry(name: str) -> datetime:
    """
    Read the claim expiry carried by a member name.

    Args:
        name: Container name of an allocated member

    Returns:
        Expiry as an aware UTC datetime with whole-second precision

    Raises:
        NameDecodeError: If the name has no status segment or the stamp is unreadable
    """
    parts = _split_status(name)
    if parts is None:
        raise NameDecodeError(name, f"missing '{STATUS_SEPARATOR}' status separator")

    segment = parts[1]
    text = (
        segment.replace(STAMP_SEPARATOR, " ", 1)
        .replace(".", ":")
        .replace(MemberStatus.ALLOCATED.value, "")
        .strip()
    )
    if not text:
        raise NameDecodeError(name, "no expiry stamp after status")

    try:
        return parse_stamp(text)
    except ValueError as e:
        raise NameDecodeError(name, str(e)) from e

"""
Pure formatting helpers shared by the evaluator and the aggregator.

  format_distinguished_name — canonical issuer/subject key ("O=.., OU=.., CN=..")
  truncate_month            — epoch ms → epoch ms of the enclosing UTC month start
  format_date               — validity dates as "Jan 2 2006"
"""

from __future__ import annotations

from datetime import UTC, datetime

from br_audit.domain.models import DistinguishedName

_SEPARATOR = ", "
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_distinguished_name(name: DistinguishedName) -> str:
    """
    Canonicalize a DN into the key used for trust lookups and bucketing.

    Only Organization, OrganizationalUnit and CommonName are considered
    (the trusted root list is keyed on those) and only the first value
    of each. Empty attributes are left out entirely.

    >>> format_distinguished_name(DistinguishedName(common_name=("Honest Al",)))
    'CN=Honest Al'
    """
    parts = [
        f"{prefix}{values[0]}"
        for prefix, values in (
            ("O=", name.organization),
            ("OU=", name.organizational_unit),
            ("CN=", name.common_name),
        )
        if values and values[0]
    ]
    return _SEPARATOR.join(parts)


def truncate_month(timestamp_ms: int) -> int:
    """
    Start of the UTC calendar month containing `timestamp_ms`, in epoch ms.

    Sub-second precision is discarded before truncation, so the result is
    always a whole number of seconds and the function is idempotent.
    """
    moment = datetime.fromtimestamp(timestamp_ms // 1000, tz=UTC)
    month_start = datetime(moment.year, moment.month, 1, tzinfo=UTC)
    return int(month_start.timestamp()) * 1000


def format_date(moment: datetime) -> str:
    """Render a validity bound as e.g. 'Jan 1 1970' (no zero padding)."""
    return f"{_MONTHS[moment.month - 1]} {moment.day} {moment.year}"

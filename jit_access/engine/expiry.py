"""
Expiry Codec for the JIT Access engine.

Managed bindings carry their expiry as an IAM condition expression of the
form ``request.time < timestamp('2024-01-01T00:00:00Z')``. Downstream
tooling matches on this exact template, so it is defined here once and both
directions of the conversion go through :class:`Expiry`.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ..exceptions import ExpiryDecodeError

EXPIRATION_TEMPLATE = "request.time < timestamp('{}')"
EXPIRATION_PATTERN = re.compile(r"request\.time < timestamp\('([^']+)'\)")

_RFC3339 = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"(?:([Zz])|([+-])(\d{2}):([0-5]\d))$"
)


def format_rfc3339(instant: datetime) -> str:
    """Format an instant as second-precision RFC3339 in UTC."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rfc3339(value: str) -> datetime:
    """
    Parse an RFC3339 timestamp into an aware datetime.

    Fractional seconds beyond microsecond precision are truncated.

    Raises:
        ValueError: If the value is not a valid RFC3339 timestamp
    """
    match = _RFC3339.match(value)
    if not match:
        raise ValueError(f"{value!r} is not an RFC3339 timestamp")

    year, month, day, hour, minute, second, fraction, zulu, sign, off_h, off_m = match.groups()
    microsecond = int((fraction or "0")[:6].ljust(6, "0"))

    if zulu:
        tz = timezone.utc
    else:
        offset = timedelta(hours=int(off_h), minutes=int(off_m))
        if offset >= timedelta(hours=24):
            raise ValueError(f"{value!r} has an out of range UTC offset")
        tz = timezone(-offset if sign == "-" else offset)

    return datetime(
        int(year), int(month), int(day),
        int(hour), int(minute), int(second),
        microsecond, tzinfo=tz,
    )


class Expiry(BaseModel):
    """An instant after which a managed binding no longer applies."""
    model_config = ConfigDict(frozen=True)

    instant: datetime

    @field_validator("instant")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Naive datetimes are taken to be UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @classmethod
    def after(cls, duration: timedelta, start: Optional[datetime] = None) -> "Expiry":
        """Expiry ``duration`` after ``start`` (default: now)."""
        start = start or datetime.now(timezone.utc)
        return cls(instant=start + duration)

    def encode(self) -> str:
        """Render the condition expression for this expiry."""
        return EXPIRATION_TEMPLATE.format(format_rfc3339(self.instant))

    @classmethod
    def decode(cls, expression: str) -> "Expiry":
        """
        Extract the expiry from a condition expression.

        Raises:
            ExpiryDecodeError: If the expression does not follow the template
                or carries an invalid timestamp
        """
        match = EXPIRATION_PATTERN.search(expression or "")
        if not match:
            raise ExpiryDecodeError(
                expression,
                f"does not match format {EXPIRATION_TEMPLATE.format('YYYY-MM-DDTHH:MM:SSZ')!r}",
            )

        try:
            instant = parse_rfc3339(match.group(1))
        except ValueError as e:
            raise ExpiryDecodeError(expression, f"failed to parse expiration: {e}") from e

        return cls(instant=instant)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True if the expiry instant is before ``now``."""
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return self.instant < now

    def __str__(self) -> str:
        return format_rfc3339(self.instant)

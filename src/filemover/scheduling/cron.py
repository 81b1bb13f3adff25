"""Timezone-correct cron evaluation.

Cron fields describe LOCAL wall-clock time in the schedule's IANA zone.
``0 10 * * *`` in ``Europe/Warsaw`` fires at 09:00Z in winter and 08:00Z in
summer. Evaluating the expression against UTC (or against a fixed offset)
drifts by an hour twice a year; this module never does that.

Algorithm:
    ::

        from_utc ──► local wall clock (naive) ──► croniter walks naive
                                                   local matches
                                                         │
                 first candidate strictly after ◄── map each match
                 from_utc, returned in UTC              back to UTC

    Daylight-saving edges:

    - Spring forward: a match inside the gap (02:30 on the night clocks jump
      02:00 → 03:00) fires at the transition instant, the first local time
      that exists after the nominal one.
    - Fall back: a match inside the repeated hour fires once, at the earlier
      of the two instants (``fold=0``).

Examples:
    >>> from datetime import datetime, UTC
    >>> next_occurrence("0 10 * * *", "Europe/Warsaw",
    ...                 datetime(2025, 11, 10, 8, 0, tzinfo=UTC))
    datetime.datetime(2025, 11, 10, 9, 0, tzinfo=datetime.timezone.utc)

Guardrails:
    ❌ DON'T: Read the clock here. ``from_utc`` is always a parameter
    ✅ DO: Inject a ``Clock`` at the caller

Tags:
    cron, croniter, timezone, zoneinfo, dst, scheduling, filemover
"""

from __future__ import annotations

import math
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import CroniterBadDateError, CroniterError, croniter

from filemover.core.errors import (
    InvalidCronError,
    NoOccurrenceInHorizonError,
    UnknownTimeZoneError,
)
from filemover.core.timestamps import ensure_utc

DEFAULT_HORIZON = timedelta(days=730)

# Longest run of nonexistent local minutes we will walk across (whole-day
# skips exist, e.g. Pacific/Apia on 2011-12-30).
_MAX_GAP = timedelta(hours=48)


def resolve_timezone(timezone: str) -> ZoneInfo:
    """Return the ``ZoneInfo`` for an IANA id or raise ``UnknownTimeZoneError``."""
    if not timezone:
        raise UnknownTimeZoneError("Timezone id is empty")
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise UnknownTimeZoneError(f"Unknown timezone: {timezone!r}", cause=e) from e


def validate_cron(cron_expression: str) -> None:
    """Raise ``InvalidCronError`` unless this is a valid 5-field expression."""
    fields = cron_expression.split() if cron_expression else []
    if len(fields) != 5:
        raise InvalidCronError(
            f"Expected 5 cron fields (minute hour day month weekday), got {len(fields)}: "
            f"{cron_expression!r}"
        )
    if not croniter.is_valid(cron_expression):
        raise InvalidCronError(f"Invalid cron expression: {cron_expression!r}")


def _exists(local: datetime, tz: ZoneInfo) -> bool:
    """True when the naive ``local`` wall time actually occurs in ``tz``."""
    aware = local.replace(tzinfo=tz)
    round_trip = aware.astimezone(UTC).astimezone(tz).replace(tzinfo=None)
    return round_trip == local


def local_to_utc(local: datetime, tz: ZoneInfo) -> datetime:
    """Map a naive local wall time to a single UTC instant.

    Ambiguous times resolve to the earlier instant. Nonexistent times
    resolve to the first existing minute after them.
    """
    if _exists(local, tz):
        return local.replace(tzinfo=tz, fold=0).astimezone(UTC)

    candidate = local.replace(second=0, microsecond=0)
    limit = candidate + _MAX_GAP
    while candidate < limit:
        candidate += timedelta(minutes=1)
        if _exists(candidate, tz):
            return candidate.replace(tzinfo=tz, fold=0).astimezone(UTC)
    raise UnknownTimeZoneError(f"No valid local time within {_MAX_GAP} after {local} in {tz.key}")


class TimeZoneCronCalculator:
    """Computes the next UTC instant of a cron expression in a timezone.

    Pure: same ``(cron, timezone, from_utc)`` always gives the same answer.

    Example:
        >>> calc = TimeZoneCronCalculator(horizon=timedelta(days=365))
        >>> calc.next_occurrence("0 0 31 2 *", "UTC", datetime(2025, 1, 1, tzinfo=UTC))
        Traceback (most recent call last):
        ...
        filemover.core.errors.NoOccurrenceInHorizonError: ...
    """

    def __init__(self, horizon: timedelta = DEFAULT_HORIZON):
        self.horizon = horizon

    def next_occurrence(self, cron_expression: str, timezone: str, from_utc: datetime) -> datetime:
        """Return the earliest occurrence strictly after ``from_utc``.

        Raises:
            InvalidCronError: Not a valid 5-field expression
            UnknownTimeZoneError: ``timezone`` is not an IANA id
            NoOccurrenceInHorizonError: Nothing within the horizon
        """
        validate_cron(cron_expression)
        tz = resolve_timezone(timezone)
        from_utc = ensure_utc(from_utc)

        local_start = from_utc.astimezone(tz).replace(tzinfo=None)
        local_limit = local_start + self.horizon
        max_years = max(1, math.ceil(self.horizon.days / 365) + 1)

        try:
            matches = croniter(
                cron_expression,
                local_start,
                ret_type=datetime,
                max_years_between_matches=max_years,
            )
        except (CroniterError, ValueError, KeyError) as e:
            raise InvalidCronError(f"Invalid cron expression: {cron_expression!r}", cause=e) from e

        while True:
            try:
                candidate = matches.get_next(datetime)
            except CroniterBadDateError as e:
                raise NoOccurrenceInHorizonError(
                    f"No occurrence of {cron_expression!r} within {self.horizon.days} days",
                    cause=e,
                ) from e

            if candidate > local_limit:
                raise NoOccurrenceInHorizonError(
                    f"No occurrence of {cron_expression!r} within {self.horizon.days} days"
                )

            # Fall-back repeats can map before from_utc; keep walking.
            result = local_to_utc(candidate, tz)
            if result > from_utc:
                return result

    def preview(
        self, cron_expression: str, timezone: str, from_utc: datetime, count: int = 5
    ) -> list[datetime]:
        """The next ``count`` occurrences after ``from_utc``."""
        return list(self.iter_occurrences(cron_expression, timezone, from_utc, count))

    def iter_occurrences(
        self, cron_expression: str, timezone: str, from_utc: datetime, count: int
    ) -> Iterator[datetime]:
        current = from_utc
        for _ in range(count):
            current = self.next_occurrence(cron_expression, timezone, current)
            yield current


_default_calculator = TimeZoneCronCalculator()


def next_occurrence(cron_expression: str, timezone: str, from_utc: datetime) -> datetime:
    """Module-level shortcut using the default two-year horizon."""
    return _default_calculator.next_occurrence(cron_expression, timezone, from_utc)

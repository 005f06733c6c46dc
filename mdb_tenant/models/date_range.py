"""
Date range value carried by requests and stored on entities.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from ..exceptions import ValidationError


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass
class DateRange:
    """
    Closed interval between two instants.

    An empty range (both ends None) is allowed; ``create`` fills a missing
    end from the other one and rejects an end before the start.
    """

    start_date: datetime | None = None
    end_date: datetime | None = None

    @classmethod
    def create(
        cls, start_date: datetime | None = None, end_date: datetime | None = None
    ) -> "DateRange":
        """
        Build a validated range.

        A missing start defaults to now, a missing end to the start.

        Raises:
            ValidationError: If the end is before the start
        """
        if start_date is None and end_date is None:
            return cls()
        if start_date is None:
            start_date = datetime.now(timezone.utc)
        if end_date is None:
            end_date = start_date
        start_date, end_date = _utc(start_date), _utc(end_date)
        if end_date < start_date:
            raise ValidationError(
                "DateRange end_date cannot be before start_date",
                context={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        return cls(start_date=start_date, end_date=end_date)

    @classmethod
    def from_milliseconds(cls, start: str, end: str) -> "DateRange":
        """Build a range from two epoch-millisecond strings."""
        if not start or not end:
            raise ValidationError("DateRange requires both start and end milliseconds")
        try:
            start_date = datetime.fromtimestamp(int(start) / 1000, tz=timezone.utc)
            end_date = datetime.fromtimestamp(int(end) / 1000, tz=timezone.utc)
        except ValueError as e:
            raise ValidationError(f"Invalid millisecond timestamp: {e}") from e
        return cls.create(start_date, end_date)

    @classmethod
    def week(cls, start_date: datetime) -> "DateRange":
        """Seven days starting at ``start_date``."""
        return cls.create(start_date, start_date + timedelta(days=6))

    @classmethod
    def full_day(cls, day: datetime) -> "DateRange":
        start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        return cls(start_date=start, end_date=start + timedelta(days=1))

    @classmethod
    def full_week(cls, day: datetime) -> "DateRange":
        """Monday 00:00 to Sunday 00:00 (UTC) of the week containing ``day``."""
        monday = datetime(day.year, day.month, day.day, tzinfo=timezone.utc) - timedelta(
            days=day.weekday()
        )
        return cls(start_date=monday, end_date=monday + timedelta(days=6))

    def is_valid(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    def difference(self) -> timedelta:
        if not self.is_valid():
            return timedelta(0)
        return self.end_date - self.start_date

    def shift(self, delta: timedelta) -> "DateRange | None":
        if not self.is_valid():
            return None
        return DateRange(self.start_date + delta, self.end_date + delta)

    def time_in(self, instant: datetime) -> bool:
        if not self.is_valid():
            return False
        return self.start_date <= _utc(instant) <= self.end_date

    def range_in(self, other: "DateRange") -> bool:
        """True when ``other`` lies entirely inside this range."""
        if not self.is_valid() or not other.is_valid():
            return False
        return other.start_date >= self.start_date and other.end_date <= self.end_date

    def overlaps(self, other: "DateRange") -> bool:
        if not self.is_valid() or not other.is_valid():
            return False
        return not (self.end_date < other.start_date or self.start_date > other.end_date)

    def include(self, instant: datetime | None) -> None:
        """Widen the range so that it contains ``instant``."""
        if instant is None:
            return
        instant = _utc(instant)
        if self.start_date is None or self.end_date is None:
            self.start_date = self.end_date = instant
            return
        if instant < self.start_date:
            self.start_date = instant
        if instant > self.end_date:
            self.end_date = instant

    def adjust_hours(self) -> "DateRange":
        """Start at 00:00:00 of the first day, end at 23:59:59 of the last."""
        if not self.is_valid():
            return DateRange(self.start_date, self.end_date)
        start = datetime(
            self.start_date.year, self.start_date.month, self.start_date.day, tzinfo=timezone.utc
        )
        end = datetime(
            self.end_date.year,
            self.end_date.month,
            self.end_date.day,
            23,
            59,
            59,
            tzinfo=timezone.utc,
        )
        return DateRange(start, end)

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {}
        if self.start_date is not None:
            doc["start_date"] = self.start_date
        if self.end_date is not None:
            doc["end_date"] = self.end_date
        return doc

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DateRange":
        data = data or {}
        return cls(start_date=data.get("start_date"), end_date=data.get("end_date"))

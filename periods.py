from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

ANALYTICS_PERIOD_MONTHS = {
    "3-months": 3,
    "6-months": 6,
    "1-year": 12,
}
DEFAULT_ANALYTICS_PERIOD = "6-months"
DEFAULT_REPORT_DAYS = 90


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def previous(self) -> "Period":
        """The window of equal length that ends the day before this one starts."""
        prev_end = self.start - timedelta(days=1)
        prev_start = self.start - timedelta(days=self.days)
        return Period(f"previous_{self.slug}", prev_start, prev_end)


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_end(d: date) -> date:
    return add_months(d, 1) - date.resolution


def month_starts(period: Period) -> list[date]:
    months: list[date] = []
    current = period.start.replace(day=1)
    while current <= period.end:
        months.append(current)
        current = add_months(current, 1)
    return months


def parse_date_param(value: Optional[str]) -> Optional[date]:
    """Accept ``YYYY-MM-DD`` or a full ISO timestamp (``Z`` suffix allowed)."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValueError(f"Invalid date: {value}") from exc


def resolve_analytics_period(
    slug: Optional[str], *, today: Optional[date] = None
) -> tuple[Period, int]:
    today = today or date.today()
    if slug not in ANALYTICS_PERIOD_MONTHS:
        slug = DEFAULT_ANALYTICS_PERIOD
    months = ANALYTICS_PERIOD_MONTHS[slug]
    start = add_months(today.replace(day=1), -(months - 1))
    return Period(slug, start, today), months


def resolve_report_range(
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    end_date = parse_date_param(end) or today
    start_date = parse_date_param(start) or end_date - timedelta(
        days=DEFAULT_REPORT_DAYS
    )
    if start_date > end_date:
        raise ValueError("Start date must be before end date")
    slug = "custom" if start or end else f"last_{DEFAULT_REPORT_DAYS}_days"
    return Period(slug, start_date, end_date)


def resolve_optional_range(
    start: Optional[str], end: Optional[str]
) -> tuple[Optional[date], Optional[date]]:
    start_date = parse_date_param(start)
    end_date = parse_date_param(end)
    if start_date and end_date and start_date > end_date:
        raise ValueError("Start date must be before end date")
    return start_date, end_date


def current_budget_window(period: str, today: Optional[date] = None) -> Period:
    today = today or date.today()
    if period == "weekly":
        start = today - timedelta(days=today.weekday())
        return Period(period, start, start + timedelta(days=6))
    if period == "yearly":
        return Period(period, date(today.year, 1, 1), date(today.year, 12, 31))
    start = today.replace(day=1)
    return Period(period, start, month_end(start))

"""Named chart periods and their timestamp cutoffs."""

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


@dataclass(frozen=True)
class ChartPeriod:
    label: str
    days: int | None = None
    months: int | None = None  # None together with days=None means all history

    @property
    def uses_daily_candles(self) -> bool:
        """Month-scale periods and all history chart one candle per day."""
        return self.days is None


PERIODS: dict[str, ChartPeriod] = {
    p.label: p
    for p in (
        ChartPeriod("1D", days=1),
        ChartPeriod("5D", days=5),
        ChartPeriod("10D", days=10),
        ChartPeriod("15D", days=15),
        ChartPeriod("20D", days=20),
        ChartPeriod("1M", months=1),
        ChartPeriod("3M", months=3),
        ChartPeriod("6M", months=6),
        ChartPeriod("1Y", months=12),
        ChartPeriod("All"),
    )
}

DEFAULT_PERIOD = "3M"


def get_period(label: str) -> ChartPeriod:
    try:
        return PERIODS[label]
    except KeyError:
        raise ValueError(
            f"Unknown period {label!r}; expected one of {', '.join(PERIODS)}"
        ) from None


def _subtract_months(moment: datetime, months: int) -> datetime:
    """Calendar-month subtraction, clamping the day to the target month's length."""
    index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_cutoff(label: str, now: datetime | None = None) -> int:
    """Epoch-ms lower bound for a named period, 0 for all history."""
    period = get_period(label)
    now = now or datetime.now(timezone.utc)
    if period.days is not None:
        return int((now - timedelta(days=period.days)).timestamp() * 1000)
    if period.months is not None:
        return int(_subtract_months(now, period.months).timestamp() * 1000)
    return 0

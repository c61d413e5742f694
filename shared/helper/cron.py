"""Cron contract used by the schedule registry.

Parsing is delegated to croniter; this module pins the accepted dialect to
the five standard fields (minute, hour, day-of-month, month, day-of-week)
and turns every parse failure into a CronValidationError.
"""

from datetime import datetime

from croniter import croniter, CroniterError

from shared.errors import CronValidationError
from shared.helper.time_helper import ensure_utc, utcnow

CRON_FIELD_COUNT = 5

_MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
_DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def _split_fields(expression: str) -> list[str]:
    if not isinstance(expression, str):
        raise CronValidationError(str(expression), "expression must be a string")
    fields = expression.split()
    if len(fields) != CRON_FIELD_COUNT:
        raise CronValidationError(
            expression, f"expected {CRON_FIELD_COUNT} fields, got {len(fields)}"
        )
    return fields


def _build(expression: str, start: datetime) -> croniter:
    _split_fields(expression)
    try:
        return croniter(expression, ensure_utc(start))
    except (CroniterError, ValueError, KeyError) as exc:
        raise CronValidationError(expression, str(exc)) from exc


def validate(expression: str) -> bool:
    """Return True if the expression is a valid five-field cron expression.

    Fails closed: anything that does not parse is rejected.
    """
    try:
        _build(expression, utcnow())
    except CronValidationError:
        return False
    return True


def ensure_valid(expression: str) -> str:
    """Return the normalised expression or raise CronValidationError."""
    _build(expression, utcnow())
    return " ".join(expression.split())


def next_run(expression: str, start: datetime | None = None) -> datetime:
    """Next fire time strictly after ``start`` (default: now), in UTC.

    Raises:
        CronValidationError: If the expression is malformed.
    """
    itr = _build(expression, start or utcnow())
    return ensure_utc(itr.get_next(datetime))


def next_n_runs(expression: str, n: int, start: datetime | None = None) -> list[datetime]:
    """The next ``n`` fire times after ``start``, ascending.

    Recomputed from scratch on every call; no iterator state is kept between calls.
    """
    if n < 0:
        raise ValueError("n must not be negative")
    itr = _build(expression, start or utcnow())
    return [ensure_utc(itr.get_next(datetime)) for _ in range(n)]


def describe(expression: str) -> str:
    """Human-readable summary of a cron expression for the schedule UI."""
    minute, hour, day_of_month, month, day_of_week = _split_fields(expression)
    ensure_valid(expression)

    description = "Runs"

    if minute == "*":
        description += " every minute"
    elif "/" in minute:
        description += f" every {minute.split('/')[1]} minutes"
    else:
        description += f" at minute {minute}"

    if hour != "*":
        if "/" in hour:
            description += f" every {hour.split('/')[1]} hours"
        else:
            description += f" of hour {hour}"

    if day_of_month != "*":
        description += f" on day {day_of_month} of the month"

    if month != "*":
        if "/" in month:
            description += f" every {month.split('/')[1]} months"
        elif month.replace(",", "").isdigit():
            names = [_MONTH_NAMES[int(m) - 1] for m in month.split(",")]
            description += f" in {', '.join(names)}"
        else:
            description += f" in month {month}"

    if day_of_week != "*":
        if "/" in day_of_week:
            description += f" every {day_of_week.split('/')[1]} days of the week"
        elif day_of_week.replace(",", "").isdigit():
            names = [_DAY_NAMES[int(d) % 7] for d in day_of_week.split(",")]
            description += f" on {', '.join(names)}"
        else:
            description += f" on weekday {day_of_week}"

    return description

from datetime import datetime, timezone

import pytest

from shared.errors import CronValidationError, ValidationError
from shared.helper import cron


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "expression",
    ["0 * * * *", "*/30 * * * *", "0 2 * * 0", "15 8-18 * * 1-5", "0 0 1,15 * *", "5 4 * */2 *"],
)
def test_valid_expressions(expression):
    assert cron.validate(expression) is True


@pytest.mark.parametrize(
    "expression",
    ["not a cron", "* * * *", "* * * * * *", "61 * * * *", "* 25 * * *", "", "0 0 32 * *"],
)
def test_invalid_expressions_fail_closed(expression):
    assert cron.validate(expression) is False
    with pytest.raises(CronValidationError):
        cron.next_run(expression, utc(2024, 1, 1))


def test_cron_validation_error_is_a_validation_error():
    with pytest.raises(ValidationError):
        cron.ensure_valid("not a cron")


def test_ensure_valid_normalises_whitespace():
    assert cron.ensure_valid("  0   2 * *  0 ") == "0 2 * * 0"


def test_next_run_hourly():
    assert cron.next_run("0 * * * *", utc(2024, 1, 3, 10, 30)) == utc(2024, 1, 3, 11, 0)


def test_next_run_is_strictly_after_start():
    assert cron.next_run("0 * * * *", utc(2024, 1, 3, 11, 0)) == utc(2024, 1, 3, 12, 0)


def test_next_run_step():
    assert cron.next_run("*/30 * * * *", utc(2024, 1, 3, 10, 10)) == utc(2024, 1, 3, 10, 30)


def test_next_run_weekly_sunday():
    # 2024-01-03 is a Wednesday
    assert cron.next_run("0 2 * * 0", utc(2024, 1, 3, 12, 0)) == utc(2024, 1, 7, 2, 0)


def test_next_run_naive_start_is_treated_as_utc():
    assert cron.next_run("0 * * * *", datetime(2024, 1, 3, 10, 30)) == utc(2024, 1, 3, 11, 0)


def test_next_n_runs():
    runs = cron.next_n_runs("*/30 * * * *", 3, utc(2024, 1, 3, 10, 10))
    assert runs == [utc(2024, 1, 3, 10, 30), utc(2024, 1, 3, 11, 0), utc(2024, 1, 3, 11, 30)]


def test_next_n_runs_is_recomputed_per_call():
    start = utc(2024, 1, 3, 10, 10)
    assert cron.next_n_runs("0 * * * *", 2, start) == cron.next_n_runs("0 * * * *", 2, start)


def test_next_n_runs_zero():
    assert cron.next_n_runs("0 * * * *", 0, utc(2024, 1, 3)) == []


def test_describe():
    assert cron.describe("0 2 * * 0") == "Runs at minute 0 of hour 2 on Sunday"
    assert cron.describe("*/30 * * * *") == "Runs every 30 minutes"
    assert cron.describe("0 0 1 1,7 *") == "Runs at minute 0 of hour 0 on day 1 of the month in January, July"


def test_describe_rejects_invalid():
    with pytest.raises(CronValidationError):
        cron.describe("not a cron")

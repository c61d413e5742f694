import logging

from shared.logging.logging_setup import CustomFormatter, JobContextFilter, current_job_id


def make_record(msg, *args, level=logging.INFO):
    return logging.LogRecord("legal_index", level, __file__, 1, msg, args, None)


def render(record):
    formatter = CustomFormatter("UTC", "%(levelname)s - %(job)s%(message)s")
    JobContextFilter().filter(record)
    return formatter.format(record)


def test_lines_outside_a_job_have_no_prefix():
    assert render(make_record("Indexed %d documents", 3)) == "INFO - Indexed 3 documents"


def test_lines_inside_a_job_carry_the_job_id():
    token = current_job_id.set("0123456789abcdef")
    try:
        line = render(make_record("batch done"))
    finally:
        current_job_id.reset(token)

    assert line == "INFO - [job 01234567] batch done"


def test_errors_are_marked():
    assert render(make_record("boom", level=logging.ERROR)).startswith("ERROR - ⛔ boom")


def test_broken_format_args_keep_the_template():
    assert render(make_record("value %d", "not-a-number")) == "INFO - value %d"


def test_each_handler_sees_the_original_record():
    record = make_record("index %s unreachable", "laws", level=logging.WARNING)
    JobContextFilter().filter(record)
    console = CustomFormatter("UTC", "%(levelname)s - %(job)s%(message)s")
    logfile = CustomFormatter("UTC", "%(message)s")

    assert console.format(record) == "WARNING - ⚠️ index laws unreachable"
    assert logfile.format(record) == "⚠️ index laws unreachable"
    assert record.msg == "index %s unreachable"
    assert record.args == ("laws",)

import logging

import pytest

from attache.logging import attach_log_file, get_logger, tagged


@pytest.fixture
def logger():
    instance = get_logger()
    yield instance
    for handler in [h for h in instance.handlers if isinstance(h, logging.FileHandler)]:
        instance.removeHandler(handler)
        handler.close()


def test_log_file_records_tag(logger, data_dir):
    path = attach_log_file("unit")
    assert path == data_dir / "logs" / "attache_unit.log"

    logger.info("agent started", extra=tagged("agent"))
    logger.info("plain line")
    for handler in logger.handlers:
        handler.flush()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[-2].endswith("| INFO     | attache | agent | agent started")
    assert lines[-1].endswith("| INFO     | attache |  | plain line")

import argparse
import logging
from pathlib import Path

import pytest

from doc_harvest.config import HarvestConfig
from doc_harvest.log import LOGGER_NAME, setup_logging
from doc_harvest.models import CrawlLimits


def namespace(**overrides):
    values = {
        "base_url": "https://lms.test/courses/1/modules",
        "root_id": 1,
        "state_dir": "state",
        "out": None,
        "max_attempts": 20,
        "max_retries": 2,
        "nav_timeout": 10.0,
        "workers": 4,
        "timeout": 12.0,
        "delay": 0.5,
        "max_delay": 3.0,
        "header": ["Authorization: Bearer abc"],
        "cookie": ["canvas_session=x=y"],
        "report_url": None,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


class TestHarvestConfig:
    def test_from_args(self):
        config = HarvestConfig.from_args(namespace(out="out"))
        assert config.origin == "https://lms.test"
        assert config.root_id == "1"
        assert config.state_dir == Path("state")
        assert config.out_dir == Path("out")
        assert config.limits == CrawlLimits(20, 2, 10.0)
        assert config.max_workers == 4
        assert config.request_timeout_s == 12.0
        assert (config.min_request_interval_s, config.max_request_interval_s) == (0.5, 3.0)
        assert config.headers == {"Authorization": "Bearer abc"}
        assert config.cookies == {"canvas_session": "x=y"}

    def test_defaults(self):
        config = HarvestConfig(base_url="https://LMS.test", root_id="1")
        assert config.origin == "https://lms.test"
        assert config.limits == CrawlLimits()
        assert config.out_dir is None

    @pytest.mark.parametrize("field,value", [("header", ["bad"]), ("cookie", ["bad"])])
    def test_malformed_pairs(self, field, value):
        with pytest.raises(ValueError):
            HarvestConfig.from_args(namespace(**{field: value}))


@pytest.fixture
def clean_logger():
    logger = logging.getLogger(LOGGER_NAME)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    logger.handlers.clear()
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


class TestSetupLogging:
    def test_console_and_file_handlers(self, clean_logger, tmp_path):
        log_file = tmp_path / "logs" / "crawl.log"
        logger = setup_logging(logging.DEBUG, log_file)
        assert logger is clean_logger
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert "INFO : doc_harvest : hello" in log_file.read_text(encoding="utf-8")

    def test_is_idempotent(self, clean_logger):
        setup_logging()
        setup_logging(logging.WARNING)
        assert len(clean_logger.handlers) == 1
        assert clean_logger.level == logging.WARNING

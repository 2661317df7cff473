"""
Tests for configuration defaults, logging setup and project metadata.
"""

import pytest
from loguru import logger

import __about__
from swatch_config import Config, config
from swatch_logging import configure_logging


class TestConfig:
    """Test configuration validators"""

    def test_global_instance(self):
        assert isinstance(config, Config)

    def test_validate_strategy(self):
        assert Config.validate_strategy("scalar")
        assert Config.validate_strategy("blocked")
        assert not Config.validate_strategy("simd")

    def test_validate_chunk_size(self):
        assert Config.validate_chunk_size(1024)
        assert not Config.validate_chunk_size(0)

    def test_validate_log_level(self):
        assert Config.validate_log_level("debug")
        assert not Config.validate_log_level("chatty")


class TestLogging:
    """Test loguru sink installation"""

    def test_messages_reach_sink(self):
        messages = []
        handler_id = configure_logging("DEBUG", sink=messages.append)
        try:
            logger.debug("palette ready")
        finally:
            logger.remove(handler_id)
        assert len(messages) == 1
        assert "palette ready" in messages[0]
        assert "DEBUG" in messages[0]

    def test_level_filters(self):
        messages = []
        handler_id = configure_logging("WARNING", sink=messages.append)
        try:
            logger.info("quiet")
            logger.warning("loud")
        finally:
            logger.remove(handler_id)
        assert len(messages) == 1
        assert "loud" in messages[0]

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging("chatty")


class TestMetadata:
    def test_summary(self):
        meta = __about__.metadata_summary()
        assert meta["title"] == "Swatch"
        assert meta["version"] == __about__.__version__

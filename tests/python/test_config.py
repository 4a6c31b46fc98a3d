"""Tests for configuration module."""

import io
import logging
import os
import pytest
import sys

# Add python directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../python'))

from cc_caller.config import (
    CALL_TIMEOUT_SECONDS,
    RING_TIMEOUT_SECONDS,
    CallerConfig,
    get_config,
    reset_config,
    setup_logging,
)


class TestCallerConfig:
    """Test CallerConfig class."""

    def setup_method(self):
        """Reset config before each test."""
        reset_config()
        # Clear relevant env vars
        for key in list(os.environ.keys()):
            if key.startswith('CC_CALLER_') and key != 'CC_CALLER_LOG_LEVEL':
                del os.environ[key]
            elif key.startswith('VAPID_'):
                del os.environ[key]

    def test_default_values(self):
        """Test default configuration values."""
        config = CallerConfig()

        assert config.port == 3001
        assert config.ring_timeout == RING_TIMEOUT_SECONDS == 60.0
        assert config.call_timeout == CALL_TIMEOUT_SECONDS == 120.0
        assert config.agent_user_id == "claude-code"
        assert config.ws_url == "ws://localhost:3001/ws"
        assert config.max_reconnect_attempts == 5
        assert config.call_retention_sec == 3600
        assert config.max_retained_calls == 1000
        assert config.debug is False

    def test_env_var_override(self):
        """Test environment variable overrides."""
        os.environ['CC_CALLER_PORT'] = '4001'
        os.environ['CC_CALLER_RING_TIMEOUT'] = '30'
        os.environ['CC_CALLER_WS_URL'] = 'ws://caller.internal:4001/ws'
        os.environ['CC_CALLER_DEBUG'] = 'true'

        config = CallerConfig()

        assert config.port == 4001
        assert config.ring_timeout == 30.0
        assert config.ws_url == 'ws://caller.internal:4001/ws'
        assert config.debug is True

    def test_push_not_configured_without_vapid(self):
        """Push stays disabled unless every VAPID setting is present."""
        os.environ['VAPID_PUBLIC_KEY'] = 'public'
        os.environ['VAPID_PRIVATE_KEY'] = 'private'

        config = CallerConfig()
        assert config.push_configured is False

        os.environ['VAPID_SUBJECT'] = 'mailto:ops@example.com'
        assert CallerConfig().push_configured is True

    def test_blank_vapid_values_ignored(self):
        """Whitespace-only credentials count as missing."""
        os.environ['VAPID_PUBLIC_KEY'] = '   '

        config = CallerConfig()

        assert config.vapid_public_key is None

    def test_warns_when_call_timeout_not_above_ring_timeout(self, caplog):
        """Client timeout must exceed the server's ringing timeout."""
        with caplog.at_level(logging.WARNING, logger="cc_caller.config"):
            CallerConfig(ring_timeout=60, call_timeout=30)

        assert any("ring timeout" in r.message for r in caplog.records)

    def test_singleton_get_config(self):
        """Test singleton pattern of get_config."""
        config1 = get_config()
        config2 = get_config()

        assert config1 is config2

    def test_reset_config(self):
        """Test config reset."""
        config1 = get_config()
        reset_config()
        config2 = get_config()

        assert config1 is not config2


class TestSetupLogging:
    """Test logger tree configuration."""

    def teardown_method(self):
        logging.getLogger("cc_caller").handlers.clear()

    def test_levels_from_arguments(self):
        logger = setup_logging(level="debug", transport_level="error")

        assert logger.name == "cc_caller"
        assert logger.level == logging.DEBUG
        assert logging.getLogger("websockets").level == logging.ERROR
        assert logging.getLogger("aiohttp.access").level == logging.ERROR

    def test_level_from_env(self, monkeypatch):
        monkeypatch.setenv("CC_CALLER_LOG_LEVEL", "WARNING")
        monkeypatch.delenv("CC_CALLER_TRANSPORT_LOG_LEVEL", raising=False)

        logger = setup_logging()

        assert logger.level == logging.WARNING
        assert logging.getLogger("aiohttp.server").level == logging.WARNING

    def test_repeated_setup_replaces_handler(self):
        """Switching to DEBUG does not duplicate output."""
        setup_logging(level="INFO")
        logger = setup_logging(level="DEBUG")

        assert len(logger.handlers) == 1

    def test_module_loggers_write_through_tree(self):
        stream = io.StringIO()
        setup_logging(level="INFO", stream=stream)

        logging.getLogger("cc_caller.coordinator").info("Call c1 accepted")

        assert "[INFO] cc_caller.coordinator: Call c1 accepted" in stream.getvalue()

    def test_unknown_level_falls_back_to_info(self):
        logger = setup_logging(level="LOUD")

        assert logger.level == logging.INFO

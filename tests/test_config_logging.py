"""
Tests for configuration loading and structured logging
"""

import json
import logging

from ebanking import config as config_module
from ebanking.config import EBankingConfig, get_config, reload_config
from ebanking.logging_config import get_logger, log_action, setup_logging


class TestConfig:
    """Environment-driven settings"""

    def teardown_method(self):
        reload_config()

    def test_defaults(self):
        config = EBankingConfig()
        assert config.lock_timeout_seconds == 5.0
        assert config.max_retries == 3
        assert config.default_page_size == 5
        assert config.jwt_algorithm == "HS512"
        assert config.jwt_expiry_minutes == 10
        assert config.users == []

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("EBANKING_MAX_RETRIES", "7")
        monkeypatch.setenv("EBANKING_STORAGE_BACKEND", "memory")
        monkeypatch.setenv(
            "EBANKING_USERS", '[{"username": "ops", "password": "pw", "roles": ["ADMIN"]}]'
        )

        config = reload_config()
        assert config.max_retries == 7
        assert config.storage_backend == "memory"
        assert config.users[0]["username"] == "ops"
        assert get_config() is config_module.config


class TestLogging:
    """JSON formatter and log_action"""

    def setup_method(self):
        self.logger_name = "ebanking.test_logging"

    def teardown_method(self):
        logger = logging.getLogger(self.logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    def test_log_action_writes_structured_record(self, tmp_path):
        log_file = tmp_path / "ledger.log"
        logger = setup_logging("INFO", logger_name=self.logger_name, log_file=str(log_file))

        log_action(
            logger, "info", "Debit applied",
            user_id="user1", action="debit", resource="account:A",
            extra={"amount": "10.00"}
        )

        record = json.loads(log_file.read_text().strip())
        assert record["message"] == "Debit applied"
        assert record["level"] == "INFO"
        assert record["user_id"] == "user1"
        assert record["action"] == "debit"
        assert record["resource"] == "account:A"
        assert record["extra"] == {"amount": "10.00"}
        assert "correlation_id" not in record

    def test_disabled_levels_are_skipped(self, tmp_path):
        log_file = tmp_path / "ledger.log"
        logger = setup_logging("WARNING", logger_name=self.logger_name, log_file=str(log_file))

        log_action(logger, "info", "Quiet", action="credit")
        log_action(logger, "warning", "Loud", action="credit")

        lines = log_file.read_text().strip().splitlines()
        assert [json.loads(line)["message"] for line in lines] == ["Loud"]

    def test_get_logger_namespace(self):
        assert get_logger("ebanking.operations").name == "ebanking.operations"

"""
Tests for configuration loading and logging setup.
"""
import json
import logging
import os

from autoquote.core import paths
from autoquote.core.config import DEFAULT_CONFIG, load_config
from autoquote.core.logging_config import (
    HumanFormatter, JSONFormatter, record_context, setup_logging,
)


class TestLoadConfig:

    def test_defaults(self):
        cfg = load_config()
        assert cfg["admission_threshold"] == 0.70
        assert cfg["auto_price_threshold"] == 0.95
        assert cfg["confidence_threshold"] == 95
        assert cfg["cgst_rate"] == cfg["sgst_rate"] == 0.09
        assert cfg["quote_validity_days"] == 30

    def test_defaults_not_mutated(self):
        cfg = load_config()
        cfg["company"]["name"] = "Changed"
        assert DEFAULT_CONFIG["company"]["name"] != "Changed"

    def test_file_section_merged(self):
        with open(paths.CONFIG_PATH, "w") as f:
            json.dump({"autoquote": {"cgst_rate": 0.06,
                                     "company": {"name": "Tulsi Traders"}}}, f)
        cfg = load_config()
        assert cfg["cgst_rate"] == 0.06
        assert cfg["company"]["name"] == "Tulsi Traders"
        assert "gstin" in cfg["company"]

    def test_unreadable_file_ignored(self):
        with open(paths.CONFIG_PATH, "w") as f:
            f.write("{not json")
        assert load_config()["cgst_rate"] == 0.09

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("QUOTE_VALIDITY_DAYS", "45")
        monkeypatch.setenv("COMPANY_NAME", "Env Co")
        cfg = load_config()
        assert cfg["quote_validity_days"] == 45
        assert cfg["company"]["name"] == "Env Co"

    def test_bad_env_value_ignored(self, monkeypatch):
        monkeypatch.setenv("SWEEP_BUDGET_SECONDS", "soon")
        assert load_config()["sweep_budget_seconds"] == 55


class TestLogging:

    def test_json_formatter_includes_extras(self):
        record = logging.LogRecord("autoquote.test", logging.INFO, __file__, 1,
                                   "routed %s", ("x",), None)
        record.quote_id = "ABCD1234"
        record.confidence = 96.0
        entry = json.loads(JSONFormatter().format(record))
        assert entry["msg"] == "routed x"
        assert entry["quote_id"] == "ABCD1234"
        assert entry["confidence"] == 96.0

    def test_console_line_shows_routing_context(self):
        record = logging.LogRecord("autoprocessor", logging.INFO, __file__, 1,
                                   "Flagging %s for review", ("<m1@x>",), None)
        record.reason = "Low Confidence"
        record.confidence = 48.0
        record.sender = "buyer@acme.example"
        line = HumanFormatter(color=False).format(record)
        assert line.endswith(
            "Flagging <m1@x> for review  (sender=buyer@acme.example "
            "reason=Low Confidence confidence=48.0)")

    def test_console_line_without_context(self):
        record = logging.LogRecord("autoquote", logging.WARNING, __file__, 1, "plain",
                                   None, None)
        assert HumanFormatter(color=False).format(record).endswith("[W] autoquote: plain")

    def test_record_context_skips_missing_and_none(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "m", None, None)
        record.outcome = "ignored"
        record.quote_id = None
        assert record_context(record) == {"outcome": "ignored"}

    def test_setup_writes_rotating_file(self, temp_data_dir):
        log_dir = os.path.join(temp_data_dir, "logs")
        root = logging.getLogger()
        saved = list(root.handlers), root.level
        try:
            setup_logging(level="DEBUG", json_logs=True, log_dir=log_dir)
            logging.getLogger("autoquote.test").info("hello")
            for h in root.handlers:
                h.flush()
            assert os.path.exists(os.path.join(log_dir, "autoquote.log"))
            assert logging.getLogger("anthropic").level == logging.WARNING
        finally:
            for h in root.handlers:
                h.close()
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])

"""
config.py - Runtime configuration for the quoting pipeline.

DEFAULT_CONFIG is merged with the "autoquote" section of
DATA_DIR/autoquote_config.json, then with environment overrides.
Secrets (API keys, passwords) never live here; read them from the env.
"""

import copy
import json
import logging
import os

from autoquote.core import paths

log = logging.getLogger("autoquote.config")

DEFAULT_CONFIG = {
    "admission_threshold": 0.70,       # "plausibly the same product"
    "auto_price_threshold": 0.95,      # confident enough to bill without a human
    "confidence_threshold": 95,        # aggregate % needed to auto-send
    "cgst_rate": 0.09,
    "sgst_rate": 0.09,
    "quote_validity_days": 30,
    "sweep_budget_seconds": 55,
    "poll_interval_seconds": 300,
    "extraction_model": "claude-haiku-4-5-20251001",
    "extraction_timeout_seconds": 30,
    "extraction_max_tokens": 1000,
    "smtp_port": 587,
    "admin_email": "",
    "cron_secret": "",
    "company": {
        "name": "Your Company",
        "address": "",
        "email": "",
        "phone": "",
        "pan": "",
        "gstin": "",
    },
}

# env var → (config key, cast)
_ENV_OVERRIDES = {
    "QUOTE_VALIDITY_DAYS": ("quote_validity_days", int),
    "ADMIN_EMAIL": ("admin_email", str),
    "CRON_SECRET": ("cron_secret", str),
    "AUTOQUOTE_MODEL": ("extraction_model", str),
    "SWEEP_BUDGET_SECONDS": ("sweep_budget_seconds", int),
}

_COMPANY_ENV = {
    "COMPANY_NAME": "name",
    "COMPANY_ADDRESS": "address",
    "COMPANY_EMAIL": "email",
    "COMPANY_PHONE": "phone",
    "COMPANY_GSTIN": "gstin",
}


def load_config(config_path=None) -> dict:
    """Load pipeline config, merging file config and env vars over the defaults."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = config_path or paths.CONFIG_PATH
    if os.path.exists(config_path):
        try:
            with open(config_path, "r") as f:
                file_config = json.load(f)
            section = dict(file_config.get("autoquote", {}))
            company = section.pop("company", None)
            config.update(section)
            if isinstance(company, dict):
                config["company"].update(company)
        except (json.JSONDecodeError, IOError) as e:
            log.warning("Ignoring unreadable config %s: %s", config_path, e)

    for env_name, (key, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw:
            try:
                config[key] = cast(raw)
            except ValueError:
                log.warning("Bad value for %s: %r", env_name, raw)
    for env_name, key in _COMPANY_ENV.items():
        raw = os.environ.get(env_name)
        if raw:
            config["company"][key] = raw
    return config

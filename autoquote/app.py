"""
AutoQuote - Application Entry Point
Creates the Flask app and registers the API blueprint.
"""
import logging
import os

from flask import Flask

from autoquote.core.logging_config import setup_logging

log = logging.getLogger("autoquote")


def create_app(test_config=None):
    """Application factory."""
    if not (test_config or {}).get("TESTING"):
        setup_logging()

    app = Flask(__name__)
    app.secret_key = os.environ.get("SECRET_KEY", "autoquote-dev")
    if test_config:
        app.config.update(test_config)

    from autoquote.core import paths
    checks = paths.validate_paths()
    if not checks["ok"]:
        log.error("STARTUP: path checks failed: %s", "; ".join(checks["errors"]))

    from autoquote.core.db import startup as db_startup
    result = db_startup()
    log.info("DB: %s | customers=%d products=%d processed_emails=%d",
             result["db_path"],
             result["stats"].get("customers", 0),
             result["stats"].get("products", 0),
             result["stats"].get("processed_emails", 0))

    from autoquote.api.routes import bp, start_polling
    app.register_blueprint(bp)

    # Start email polling in background (production only)
    if os.environ.get("ENABLE_EMAIL_POLLING", "").lower() == "true" and not app.testing:
        start_polling(app)

    return app


# For gunicorn: gunicorn "autoquote.app:create_app()"
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, debug=False)

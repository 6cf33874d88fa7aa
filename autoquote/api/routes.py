"""
AutoQuote HTTP routes
Cron-triggered mailbox sweep, admin stats / review queue, manual RFQ submission.

Collaborators (store, extractor, renderer, senders, mailbox reader) are looked
up on app.config so the factory or a test can swap them.
"""
import functools
import logging
import os
import threading
import time

from flask import Blueprint, Response, current_app, jsonify, request

from autoquote.agents.ai_parser import AIExtractor
from autoquote.agents.email_poller import EmailSender, MailboxReader
from autoquote.auto.auto_processor import SWEEP_STATUS, run_sweep, submit_manual_rfq
from autoquote.core.config import load_config
from autoquote.core.db import SQLiteStore
from autoquote.core.errors import ValidationError
from autoquote.forms.quote_generator import render_quote_pdf

log = logging.getLogger("dashboard")

bp = Blueprint("autoquote", __name__)

POLL_STATUS = {"running": False, "last_check": None, "error": None}


# ── Request-level structured logging ────────────────────────────────────────
@bp.before_app_request
def _log_request_start():
    request._start_time = time.time()


@bp.after_app_request
def _log_request_end(response):
    if hasattr(request, "_start_time"):
        duration_ms = round((time.time() - request._start_time) * 1000, 1)
        # Skip health spam
        if request.path != "/api/health":
            log.info("%s %s → %d (%.0fms)",
                     request.method, request.path, response.status_code, duration_ms,
                     extra={"route": request.path, "method": request.method,
                            "status": response.status_code, "duration_ms": duration_ms})
    return response


# ═══════════════════════════════════════════════════════════════════════
# Password Protection
# ═══════════════════════════════════════════════════════════════════════
def check_auth(username, password):
    return (username == os.environ.get("DASH_USER", "admin")
            and password == os.environ.get("DASH_PASS", "changeme"))


def auth_required(f):
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        auth = request.authorization
        if not auth or not check_auth(auth.username, auth.password):
            return Response(
                "AutoQuote Admin - Login Required",
                401, {"WWW-Authenticate": 'Basic realm="AutoQuote Admin"'})
        return f(*args, **kwargs)
    return decorated


def cron_authorized() -> bool:
    secret = _config().get("cron_secret") or ""
    return bool(secret) and request.headers.get("Authorization", "") == f"Bearer {secret}"


# ═══════════════════════════════════════════════════════════════════════
# Collaborators
# ═══════════════════════════════════════════════════════════════════════
def _config():
    return current_app.config.get("AUTOQUOTE_CONFIG") or load_config()


def _store():
    return current_app.config.get("AUTOQUOTE_STORE") or SQLiteStore()


def _extractor(config):
    return current_app.config.get("AUTOQUOTE_EXTRACTOR") or AIExtractor.from_config(config)


def _renderer():
    return current_app.config.get("AUTOQUOTE_RENDERER") or render_quote_pdf


def sweep_once(app):
    """Run one sweep with the app's collaborators."""
    with app.app_context():
        config = _config()
        return run_sweep(
            _store(), _extractor(config),
            reader_factory=current_app.config.get("AUTOQUOTE_READER_FACTORY") or MailboxReader,
            sender_factory=current_app.config.get("AUTOQUOTE_SENDER_FACTORY"),
            renderer=_renderer(),
            config=config,
        )


# ═══════════════════════════════════════════════════════════════════════
# Routes
# ═══════════════════════════════════════════════════════════════════════
@bp.route("/api/health")
def health():
    return jsonify({"ok": True, "sweep_running": SWEEP_STATUS["running"],
                    "last_sweep": SWEEP_STATUS["last_run"],
                    "polling": POLL_STATUS["running"]})


@bp.route("/api/cron/check-emails", methods=["GET", "POST"])
def cron_check_emails():
    if not cron_authorized():
        return jsonify({"error": "Unauthorized"}), 401
    summary = sweep_once(current_app._get_current_object())
    if not summary["accounts"] and summary["success"]:
        summary["message"] = "No active email accounts configured"
    return jsonify(summary), (200 if summary["success"] else 500)


@bp.route("/api/admin/stats")
@auth_required
def admin_stats():
    return jsonify(_store().get_stats())


@bp.route("/api/admin/flagged")
@auth_required
def admin_flagged():
    limit = request.args.get("limit", 50, type=int)
    return jsonify({"success": True, "emails": _store().list_review_queue(limit=limit)})


@bp.route("/api/admin/flagged/clear", methods=["POST"])
@auth_required
def admin_flagged_clear():
    deleted = _store().clear_review_queue()
    log.info("Cleared %d flagged/error emails from the review queue", deleted)
    return jsonify({"success": True, "deleted": deleted})


@bp.route("/api/rfq/submit", methods=["POST"])
def rfq_submit():
    data = request.get_json(silent=True) or {}
    form = {
        "customer_name": data.get("customer_name") or data.get("customerName"),
        "customer_email": data.get("customer_email") or data.get("customerEmail"),
        "customer_phone": data.get("customer_phone") or data.get("customerPhone"),
        "company_name": data.get("company_name") or data.get("companyName"),
        "notes": data.get("notes"),
        "items": [
            {"product_name": i.get("product_name") or i.get("productName"),
             "quantity": i.get("quantity"),
             "specifications": i.get("specifications")}
            for i in (data.get("items") or []) if isinstance(i, dict)
        ],
    }
    config = _config()
    sender = current_app.config.get("AUTOQUOTE_MANUAL_SENDER") or EmailSender.from_env(
        os.environ, from_name=config["company"].get("name", ""))
    try:
        result = submit_manual_rfq(form, _store(), sender, renderer=_renderer(),
                                   config=config)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(result)


# ═══════════════════════════════════════════════════════════════════════
# Background polling
# ═══════════════════════════════════════════════════════════════════════
def email_poll_loop(app, interval):
    """Background thread: sweep all mailboxes every `interval` seconds."""
    POLL_STATUS["running"] = True
    while POLL_STATUS["running"]:
        summary = sweep_once(app)
        POLL_STATUS["last_check"] = summary["timestamp"]
        POLL_STATUS["error"] = summary.get("error")
        time.sleep(interval)


def start_polling(app):
    if POLL_STATUS["running"]:
        return None
    interval = (app.config.get("AUTOQUOTE_CONFIG") or load_config())["poll_interval_seconds"]
    t = threading.Thread(target=email_poll_loop, args=(app, interval), daemon=True,
                         name="email-poller")
    t.start()
    log.info("Email polling started (every %ss)", interval)
    return t

"""
auto_processor.py - Autonomous RFQ quoting engine

Orchestrates the full pipeline for one inbound message:
  Whitelist → AI extraction (body + spreadsheets) → record as pending →
  match / price / route → assemble + render + reply (or flag for review)

and the sweep that drives it over every active mailbox:
  - accounts one after another, messages one at a time
  - a fresh catalog snapshot is read for each message and passed down
  - at most one sweep works an account at a time (lock per account id)
  - once the wall-clock budget is spent no new message is started
  - a message's failure never aborts the batch, an account's never the sweep
"""

import logging
import threading
import time
from datetime import datetime, timezone

from autoquote.agents.email_poller import EmailSender, MailboxReader
from autoquote.agents.spreadsheet import is_readable, is_spreadsheet, read_spreadsheet
from autoquote.auto.extraction import (
    ExtractionFailure, extraction_payload, merge_extractions, parse_quantity,
)
from autoquote.auto.quote_assembly import assemble_quote, price_line, quote_id_from_request
from autoquote.auto.routing import check_whitelist, decide_route
from autoquote.core.config import load_config
from autoquote.core.errors import (
    DispatchError, ExtractionTimeout, InvalidStatusTransition, MailboxError,
    ValidationError,
)
from autoquote.core.models import (
    ExtractedLineItem, OUTCOME_IGNORED, REASON_PROCESSED,
    STATUS_AUTO_SENT, STATUS_ERROR, STATUS_FLAGGED,
)
from autoquote.forms.quote_generator import render_quote_pdf, save_quote_pdf
from autoquote.knowledge.matcher import find_best_match

log = logging.getLogger("autoprocessor")

OUTCOME_DUPLICATE = "duplicate"

# ─── Processing Status ───────────────────────────────────────────────────────

SWEEP_STATUS = {
    "running": False,
    "last_run": None,
    "last_summary": None,
    "sweeps_completed": 0,
}

_account_locks = {}
_account_locks_guard = threading.Lock()


def account_lock(key: str) -> threading.Lock:
    """One lock per mailbox account, shared by every sweep in this process."""
    with _account_locks_guard:
        lock = _account_locks.get(key)
        if lock is None:
            lock = _account_locks[key] = threading.Lock()
        return lock


# ─── Extraction ──────────────────────────────────────────────────────────────

def extract_message(message, extractor):
    """
    Run the extractor over the body and every spreadsheet attachment.

    Returns (merged result, per-source results). ExtractionTimeout propagates;
    any other extractor exception becomes a failed source.
    """
    sources = [_run_extractor("body", extractor.extract,
                              message.body_text, message.subject)]

    for attachment in message.attachments:
        if not is_spreadsheet(attachment.filename):
            continue
        if not is_readable(attachment.filename):
            log.info("Skipping unsupported spreadsheet %s", attachment.filename)
            continue
        try:
            rows = read_spreadsheet(attachment.filename, attachment.content)
        except Exception as e:  # openpyxl raises a variety of zip/xml errors
            log.warning("Could not read %s: %s", attachment.filename, e)
            sources.append(ExtractionFailure(reason=f"Unreadable spreadsheet: {e}",
                                             source=attachment.filename))
            continue
        log.info("Found spreadsheet attachment %s (%d rows)", attachment.filename, len(rows),
                 extra={"source": attachment.filename, "message_id": message.message_id})
        sources.append(_run_extractor(attachment.filename, extractor.extract_from_table,
                                      rows, attachment.filename))

    return merge_extractions(sources), sources


def _run_extractor(source, call, *args, **kwargs):
    """One extractor call. Anything but a timeout becomes a failed source."""
    try:
        return call(*args, **kwargs)
    except ExtractionTimeout:
        raise
    except Exception as e:
        log.exception("Extractor failed on %s", source)
        return ExtractionFailure(reason=f"Extractor error: {e}", source=source)


# ─── Single message ──────────────────────────────────────────────────────────

def process_email(message, account_id, catalog, store, extractor, sender,
                  renderer=render_quote_pdf, config=None) -> dict:
    """
    Take one inbound message through whitelist, extraction, routing and dispatch.

    `catalog` is the product snapshot for this message. Returns a result dict
    with the outcome (auto_sent, flagged, error or ignored). Failures after the
    record exists are captured on the record, never raised.
    """
    config = config or load_config()
    result = {"message_id": message.message_id, "sender": message.from_address,
              "email_id": None, "reason": None, "confidence": None, "quote_id": None}

    customer = check_whitelist(store.get_customer_by_email, message.from_address)
    if customer is None:
        log.info("Sender %s is not whitelisted, ignoring", message.from_address,
                 extra={"sender": message.from_address, "message_id": message.message_id,
                        "outcome": OUTCOME_IGNORED})
        result["outcome"] = OUTCOME_IGNORED
        return result

    log.info("Processing %r from %s (%s)", message.subject, customer.email, customer.name,
             extra={"sender": customer.email, "message_id": message.message_id})

    timeout_error = None
    try:
        extraction, sources = extract_message(message, extractor)
    except ExtractionTimeout as e:
        timeout_error = e
        extraction, sources = ExtractionFailure(reason=str(e)), []

    email_id = store.create_processed_email(
        message, account_id, extraction_payload(extraction, sources),
        extraction.confidence)
    result["email_id"] = email_id
    result["confidence"] = extraction.confidence

    if timeout_error is not None:
        log.error("Extraction timed out for %s: %s", message.message_id, timeout_error)
        store.update_email_status(email_id, STATUS_ERROR, error_message=str(timeout_error))
        result.update(outcome=STATUS_ERROR, error=str(timeout_error))
        return result

    try:
        decision = decide_route(
            extraction, catalog,
            admission_threshold=config["admission_threshold"],
            auto_price_threshold=config["auto_price_threshold"],
            confidence_threshold=config["confidence_threshold"],
        )
        result["confidence"] = round(decision.confidence, 2)

        if decision.status == STATUS_FLAGGED:
            log.info("Flagging %s for review: %s", message.message_id, decision.reason,
                     extra={"status": STATUS_FLAGGED, "reason": decision.reason,
                            "confidence": result["confidence"]})
            store.update_email_status(email_id, STATUS_FLAGGED, reason=decision.reason)
            result.update(outcome=STATUS_FLAGGED, reason=decision.reason)
            return result

        quote = _auto_send(message, email_id, customer, decision, store, sender,
                           renderer, config)
    except Exception as e:
        log.exception("Processing failed for %s", message.message_id,
                      extra={"message_id": message.message_id, "status": STATUS_ERROR})
        _mark_error(store, email_id, e)
        result.update(outcome=STATUS_ERROR, error=str(e))
        return result

    result.update(outcome=STATUS_AUTO_SENT, reason=REASON_PROCESSED,
                  quote_id=quote.quote_id, total=quote.total)
    return result


def _mark_error(store, email_id, error):
    """Move a pending record to error. A record already terminal is left as is."""
    try:
        store.update_email_status(email_id, STATUS_ERROR, error_message=str(error))
    except InvalidStatusTransition as e:
        log.warning("Email %s not moved to error: %s", email_id, e)


def _auto_send(message, email_id, customer, decision, store, sender, renderer, config):
    request_id = store.create_rfq_request(
        customer_name=message.from_name or message.from_address,
        customer_email=message.from_address,
        notes=message.subject,
        status="quoted",
        email_id=email_id,
        auto_generated=True,
        company_name=customer.company,
    )
    quote_id = quote_id_from_request(request_id)

    priced = [price_line(item, match) for item, match in decision.matched]
    for line in priced:
        store.add_rfq_item(request_id, line.product_name, line.quantity,
                           line.specifications, line.product_id, line.unit_price)
    for item in decision.unmatched:
        store.add_rfq_item(request_id, item.name, item.quantity, item.specifications)

    quote = assemble_quote(
        quote_id, priced, decision.unmatched, customer=customer,
        customer_name=message.from_name, customer_email=message.from_address,
        cgst_rate=config["cgst_rate"], sgst_rate=config["sgst_rate"],
        validity_days=config["quote_validity_days"],
    )
    pdf_bytes = renderer(quote, config["company"])
    pdf_path = save_quote_pdf(pdf_bytes, request_id)

    sender.send_quote_reply(message, pdf_bytes, quote_id,
                            company_name=config["company"].get("name", ""),
                            validity_days=config["quote_validity_days"])

    quote_row = store.insert_quote(quote, request_id, pdf_path, status="sent")
    store.update_email_status(email_id, STATUS_AUTO_SENT, reason=REASON_PROCESSED,
                              quote_id=quote_row)
    log.info("Auto-sent quote #%s to %s (%s)", quote_id, message.from_address,
             f"{quote.total:,.2f}",
             extra={"quote_id": quote_id, "total": quote.total,
                    "items": len(priced), "status": STATUS_AUTO_SENT})
    return quote


# ─── Sweep ───────────────────────────────────────────────────────────────────

def _default_sender_factory(config):
    def factory(account):
        return EmailSender.for_account(account, from_name=config["company"].get("name", ""),
                                       smtp_port=config.get("smtp_port", 587))
    return factory


def run_sweep(store, extractor, accounts=None, reader_factory=MailboxReader,
              sender_factory=None, renderer=render_quote_pdf, config=None,
              budget_seconds=None, clock=time.monotonic) -> dict:
    """
    Process every active mailbox once. Always returns a summary, never raises.
    """
    config = config or load_config()
    budget = budget_seconds if budget_seconds is not None else config["sweep_budget_seconds"]
    sender_factory = sender_factory or _default_sender_factory(config)
    started = clock()

    summary = {
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "total_processed": 0,
        "auto_sent": 0,
        "flagged": 0,
        "ignored": 0,
        "duplicates": 0,
        "errors": 0,
        "budget_exhausted": False,
        "accounts": [],
    }
    SWEEP_STATUS["running"] = True

    try:
        if accounts is None:
            accounts = store.list_active_accounts()
        log.info("Sweep started: %d accounts", len(accounts))

        for account in accounts:
            if summary["budget_exhausted"]:
                summary["accounts"].append({"account": account.email, "processed": 0,
                                            "status": "skipped"})
                continue
            report = _sweep_account(account, store, extractor, reader_factory,
                                    sender_factory, renderer, config,
                                    started, budget, clock, summary)
            summary["accounts"].append(report)
    except Exception as e:
        log.exception("Sweep aborted")
        summary["success"] = False
        summary["error"] = str(e)
    finally:
        SWEEP_STATUS["running"] = False
        SWEEP_STATUS["last_run"] = summary["timestamp"]
        SWEEP_STATUS["last_summary"] = summary
        SWEEP_STATUS["sweeps_completed"] += 1

    log.info("Sweep done: %d processed, %d auto-sent, %d flagged, %d errors",
             summary["total_processed"], summary["auto_sent"], summary["flagged"],
             summary["errors"],
             extra={"duration_ms": int((clock() - started) * 1000)})
    return summary


def _sweep_account(account, store, extractor, reader_factory, sender_factory,
                   renderer, config, started, budget, clock, summary) -> dict:
    report = {"account": account.email, "processed": 0, "status": "ok"}
    lock = account_lock(account.key)
    if not lock.acquire(blocking=False):
        log.warning("Account %s is already being swept, skipping", account.email,
                    extra={"account": account.email})
        report["status"] = "busy"
        return report

    reader = None
    try:
        try:
            reader = reader_factory(account)
            reader.connect()
            messages = reader.fetch_messages()
            sender = sender_factory(account)
        except MailboxError as e:
            log.error("Account %s failed: %s", account.email, e,
                      extra={"account": account.email})
            summary["errors"] += 1
            report.update(status="error", error=str(e))
            return report
        except Exception as e:
            log.exception("Account %s failed unexpectedly", account.email,
                          extra={"account": account.email})
            summary["errors"] += 1
            report.update(status="error", error=str(e))
            return report

        for message in messages:
            if clock() - started >= budget:
                log.warning("Sweep budget of %ss spent, leaving remaining messages", budget)
                summary["budget_exhausted"] = True
                report["status"] = "partial"
                break
            outcome = _process_one(message, account, reader, store, extractor, sender,
                                   renderer, config)
            report["processed"] += 1
            summary["total_processed"] += 1
            if outcome == STATUS_AUTO_SENT:
                summary["auto_sent"] += 1
            elif outcome == STATUS_FLAGGED:
                summary["flagged"] += 1
            elif outcome == OUTCOME_IGNORED:
                summary["ignored"] += 1
            elif outcome == OUTCOME_DUPLICATE:
                summary["duplicates"] += 1
            else:
                summary["errors"] += 1
    finally:
        if reader is not None:
            reader.disconnect()
        lock.release()
    return report


def _process_one(message, account, reader, store, extractor, sender, renderer, config) -> str:
    """One message; unexpected failures are counted, and the message is left unseen."""
    try:
        if message.message_id and store.find_processed_by_message_id(message.message_id):
            log.info("Already processed %s, skipping", message.message_id,
                     extra={"message_id": message.message_id, "uid": message.uid,
                            "outcome": OUTCOME_DUPLICATE})
            reader.mark_seen(message)
            return OUTCOME_DUPLICATE
        catalog = store.list_active_products()
        result = process_email(message, account.id, catalog, store, extractor, sender,
                               renderer=renderer, config=config)
    except Exception:
        log.exception("Error processing %s", message.message_id,
                      extra={"message_id": message.message_id, "account": account.email})
        return STATUS_ERROR
    reader.mark_seen(message)
    return result["outcome"]


# ─── Manual submission ───────────────────────────────────────────────────────

def submit_manual_rfq(form: dict, store, sender, renderer=render_quote_pdf,
                      config=None) -> dict:
    """
    Quote a request typed into the web form.

    Every line admitted at the admission threshold is priced (no auto-price
    gate, a person asked directly). Raises ValidationError for missing fields.
    """
    config = config or load_config()
    name = (form.get("customer_name") or "").strip()
    email_addr = (form.get("customer_email") or "").strip().lower()
    raw_items = form.get("items") or []
    if not name or not email_addr or not raw_items:
        raise ValidationError("Missing required fields")

    request_id = store.create_rfq_request(
        customer_name=name, customer_email=email_addr,
        notes=form.get("notes") or "", status="pending",
        customer_phone=form.get("customer_phone"),
        company_name=form.get("company_name"),
    )
    quote_id = quote_id_from_request(request_id)
    catalog = store.list_active_products()

    priced, unmatched = [], []
    for raw in raw_items:
        item = ExtractedLineItem(
            name=str(raw.get("product_name") or "").strip(),
            quantity=parse_quantity(raw.get("quantity")),
            specifications=raw.get("specifications") or None,
        )
        if not item.name:
            continue
        match = find_best_match(item.name, catalog, config["admission_threshold"])
        if match is not None:
            line = price_line(item, match)
            priced.append(line)
            store.add_rfq_item(request_id, item.name, item.quantity, item.specifications,
                               match.product.id, line.unit_price)
        else:
            unmatched.append(item)
            store.add_rfq_item(request_id, item.name, item.quantity, item.specifications)

    customer = store.get_customer_by_email(email_addr)
    quote = assemble_quote(
        quote_id, priced, unmatched, customer=customer,
        customer_name=name, customer_email=email_addr,
        cgst_rate=config["cgst_rate"], sgst_rate=config["sgst_rate"],
        validity_days=config["quote_validity_days"],
    )
    if not customer and form.get("company_name"):
        quote.company_name = form["company_name"]

    pdf_bytes = renderer(quote, config["company"])
    pdf_path = save_quote_pdf(pdf_bytes, request_id)
    store.insert_quote(quote, request_id, pdf_path, status="generated")

    email_sent = True
    try:
        sender.send_quote(email_addr, name, quote_id, pdf_bytes, config["company"],
                          validity_days=config["quote_validity_days"])
    except DispatchError as e:
        log.error("Quote #%s generated but not delivered: %s", quote_id, e,
                  extra={"quote_id": quote_id})
        email_sent = False

    if config.get("admin_email"):
        try:
            sender.send_admin_notification(config["admin_email"], name, email_addr,
                                           quote_id, len(raw_items))
        except DispatchError as e:
            log.warning("Admin notification for #%s failed: %s", quote_id, e)

    store.update_rfq_request_status(request_id, "quoted")
    log.info("Manual quote #%s for %s: %d priced, %d unmatched", quote_id, email_addr,
             len(priced), len(unmatched),
             extra={"quote_id": quote_id, "total": quote.total, "items": len(priced)})
    return {
        "success": True,
        "quote_id": quote_id,
        "request_id": request_id,
        "matched_count": len(priced),
        "unmatched_count": len(unmatched),
        "total": quote.total,
        "email_sent": email_sent,
        "message": "Quote generated and sent successfully" if email_sent
        else "Quote generated but the email could not be sent",
    }

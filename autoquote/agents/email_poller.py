"""
Email Poller - reads RFQ emails from monitored IMAP mailboxes.

For each active account the reader searches the INBOX with the account's
filters (unread-only, SINCE / BEFORE dates), fetches each message with
BODY.PEEK[] so nothing is marked read until processing finishes, drops
blacklisted senders and hands InboundMessage records to the processor.

EmailSender replies over SMTP (STARTTLS) with the quotation PDF attached.
"""

import base64
import binascii
import email
import imaplib
import logging
import re
import smtplib
from email import encoders
from email.header import decode_header
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import getaddresses, formataddr
from typing import List, Optional

from bs4 import BeautifulSoup
from dateutil import parser as dateparser

from autoquote.core.errors import DispatchError, MailboxError
from autoquote.core.models import Attachment, EmailAccount, InboundMessage

log = logging.getLogger("email_poller")

IMAP_DATE_FMT = "%d-%b-%Y"


def decode_password(encrypted: str) -> str:
    """Stored mailbox passwords are base64 encoded."""
    try:
        return base64.b64decode(encrypted or "", validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise MailboxError(f"Stored password is not valid base64: {e}") from e


def encode_password(password: str) -> str:
    return base64.b64encode(password.encode("utf-8")).decode("ascii")


def _decode_header(header) -> str:
    if not header:
        return ""
    parts = decode_header(str(header))
    result = ""
    for content, charset in parts:
        if isinstance(content, bytes):
            try:
                result += content.decode(charset or "utf-8", errors="replace")
            except LookupError:
                result += content.decode("utf-8", errors="replace")
        else:
            result += content
    return result


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text("\n")
    return re.sub(r'\n\s*\n+', '\n\n', text).strip()


def _part_text(part) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def parse_message(msg, uid: Optional[str] = None) -> InboundMessage:
    """Build an InboundMessage from an email.message.Message (or raw bytes)."""
    if isinstance(msg, (bytes, bytearray)):
        msg = email.message_from_bytes(bytes(msg))

    addresses = getaddresses([_decode_header(msg.get("From", ""))])
    from_name, from_address = addresses[0] if addresses else ("", "")

    text_parts, html_parts, attachments = [], [], []
    for part in msg.walk():
        if part.get_content_maintype() == "multipart":
            continue
        filename = part.get_filename()
        disposition = (part.get("Content-Disposition") or "").lower()
        if filename or disposition.startswith("attachment"):
            content = part.get_payload(decode=True) or b""
            attachments.append(Attachment(
                filename=_decode_header(filename) or "unknown",
                content_type=part.get_content_type(),
                size=len(content),
                content=content,
            ))
        elif part.get_content_type() == "text/plain":
            text_parts.append(_part_text(part))
        elif part.get_content_type() == "text/html":
            html_parts.append(_part_text(part))

    body_html = "\n".join(html_parts)
    body_text = "\n".join(t for t in text_parts if t).strip()
    if not body_text and body_html:
        body_text = html_to_text(body_html)

    received_at = None
    if msg.get("Date"):
        try:
            received_at = dateparser.parse(msg["Date"])
        except (ValueError, OverflowError):
            log.debug("Unparseable Date header: %r", msg["Date"])

    message_id = (msg.get("Message-ID") or "").strip()
    thread_id = (msg.get("In-Reply-To") or "").strip() or message_id

    return InboundMessage(
        message_id=message_id,
        thread_id=thread_id,
        from_address=from_address.strip().lower(),
        from_name=from_name.strip(),
        subject=_decode_header(msg.get("Subject", "")),
        body_text=body_text,
        body_html=body_html,
        received_at=received_at,
        attachments=attachments,
        uid=uid,
    )


def _imap_date(value) -> str:
    """Account filter date in IMAP SEARCH form. Raises MailboxError if unparseable."""
    try:
        return dateparser.parse(str(value)).strftime(IMAP_DATE_FMT)
    except (ValueError, OverflowError) as e:
        raise MailboxError(f"Bad account filter date {value!r}: {e}") from e


class MailboxReader:
    """IMAP session for one monitored account."""

    def __init__(self, account: EmailAccount, imap_factory=imaplib.IMAP4_SSL,
                 folder: str = "INBOX"):
        self.account = account
        self.folder = folder
        self._imap_factory = imap_factory
        self.mail = None

    def connect(self):
        """Open and authenticate the session. Raises MailboxError."""
        password = decode_password(self.account.password_encrypted)
        try:
            self.mail = self._imap_factory(self.account.imap_host, self.account.imap_port)
            self.mail.login(self.account.username, password)
            status, _ = self.mail.select(self.folder)
        except (imaplib.IMAP4.error, OSError) as e:
            self.mail = None
            raise MailboxError(f"IMAP connection to {self.account.email} failed: {e}") from e
        if status != "OK":
            raise MailboxError(f"Cannot open {self.folder} for {self.account.email}")
        log.info("Connected to %s as %s", self.account.imap_host, self.account.username,
                 extra={"account": self.account.email})

    def search_criteria(self) -> str:
        criteria = ["UNSEEN" if self.account.skip_read_emails else "ALL"]
        if self.account.process_from_date:
            criteria.append(f"SINCE {_imap_date(self.account.process_from_date)}")
        if self.account.process_to_date:
            criteria.append(f"BEFORE {_imap_date(self.account.process_to_date)}")
        return "(" + " ".join(criteria) + ")"

    def is_blacklisted(self, address: str) -> bool:
        address = (address or "").lower()
        return any(b.strip().lower() == address for b in self.account.blacklisted_emails)

    def fetch_messages(self) -> List[InboundMessage]:
        """Messages matching the account filters, oldest first, blacklist removed."""
        if self.mail is None:
            raise MailboxError("IMAP not connected")
        criteria = self.search_criteria()
        try:
            status, data = self.mail.uid("search", None, criteria)
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxError(f"IMAP search failed: {e}") from e
        if status != "OK":
            raise MailboxError(f"IMAP search failed: {status}")

        uids = data[0].split() if data and data[0] else []
        log.info("Found %d emails in %s %s", len(uids), self.account.email, criteria,
                 extra={"account": self.account.email})

        messages = []
        for uid_bytes in uids:
            uid = uid_bytes.decode() if isinstance(uid_bytes, bytes) else str(uid_bytes)
            try:
                status, fetched = self.mail.uid("fetch", uid_bytes, "(BODY.PEEK[])")
            except (imaplib.IMAP4.error, OSError) as e:
                raise MailboxError(f"IMAP fetch of {uid} failed: {e}") from e
            if status != "OK" or not fetched or not isinstance(fetched[0], tuple):
                log.warning("Could not fetch message %s", uid)
                continue

            message = parse_message(fetched[0][1], uid=uid)
            if self.is_blacklisted(message.from_address):
                log.info("Skipping blacklisted sender %s", message.from_address,
                         extra={"sender": message.from_address})
                continue
            messages.append(message)
        return messages

    def mark_seen(self, message: InboundMessage):
        if self.mail is None or not message.uid:
            return
        try:
            self.mail.uid("store", message.uid, "+FLAGS", "(\\Seen)")
        except (imaplib.IMAP4.error, OSError) as e:
            log.warning("Could not mark %s seen: %s", message.uid, e)

    def disconnect(self):
        if self.mail is None:
            return
        try:
            self.mail.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            log.debug("IMAP logout: %s", e)
        self.mail = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *exc):
        self.disconnect()


# ═══════════════════════════════════════════════════════════════════════════════
# Email Sender
# ═══════════════════════════════════════════════════════════════════════════════

class EmailSender:
    """Send quotation emails via SMTP."""

    def __init__(self, config, smtp_factory=smtplib.SMTP):
        self.smtp_host = config.get("smtp_host", "")
        self.smtp_port = config.get("smtp_port", 587)
        self.email_addr = config.get("email", "")
        self.username = config.get("username") or self.email_addr
        self.password = config.get("email_password", "")
        self.from_name = config.get("from_name", "")
        self._smtp_factory = smtp_factory

    @classmethod
    def for_account(cls, account: EmailAccount, from_name="", smtp_port=587,
                    smtp_factory=smtplib.SMTP) -> "EmailSender":
        """Reply through the same provider the message arrived on."""
        return cls({
            "smtp_host": account.imap_host.replace("imap", "smtp", 1),
            "smtp_port": smtp_port,
            "email": account.email,
            "username": account.username,
            "email_password": decode_password(account.password_encrypted),
            "from_name": from_name,
        }, smtp_factory=smtp_factory)

    @classmethod
    def from_env(cls, environ, from_name="", smtp_factory=smtplib.SMTP) -> "EmailSender":
        """Sender for manual submissions (SMTP_HOST / SMTP_USER / SMTP_PASSWORD)."""
        return cls({
            "smtp_host": environ.get("SMTP_HOST", "smtp.gmail.com"),
            "smtp_port": int(environ.get("SMTP_PORT", 587)),
            "email": environ.get("SMTP_FROM") or environ.get("SMTP_USER", ""),
            "username": environ.get("SMTP_USER", ""),
            "email_password": environ.get("SMTP_PASSWORD", ""),
            "from_name": from_name,
        }, smtp_factory=smtp_factory)

    def send(self, to, subject, body, attachment: Optional[bytes] = None,
             attachment_name: str = "quote.pdf", headers: Optional[dict] = None):
        """Send one message. Raises DispatchError on any SMTP failure."""
        msg = MIMEMultipart()
        msg["From"] = formataddr((self.from_name, self.email_addr)) if self.from_name \
            else self.email_addr
        msg["To"] = to
        msg["Subject"] = subject
        for name, value in (headers or {}).items():
            if value:
                msg[name] = value
        msg.attach(MIMEText(body, "plain"))

        if attachment:
            part = MIMEBase("application", "pdf")
            part.set_payload(attachment)
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", "attachment", filename=attachment_name)
            msg.attach(part)

        try:
            with self._smtp_factory(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                if self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DispatchError(f"Sending to {to} failed: {e}") from e
        log.info("Sent %r to %s", subject, to, extra={"sender": self.email_addr})
        return True

    def send_quote_reply(self, message: InboundMessage, pdf_bytes: bytes, quote_id: str,
                         company_name: str, validity_days: int = 30):
        """Reply in-thread to an RFQ email with the quotation attached."""
        body = f"""Dear {message.from_name or 'Customer'},

Thank you for your quote request.

Please find attached your detailed quotation #{quote_id}.

This quote is valid for {validity_days} days from the date of issue.

If you have any questions, please don't hesitate to contact us.

Best regards,
{company_name}"""
        return self.send(
            to=message.from_address,
            subject=f"Re: {message.subject}",
            body=body,
            attachment=pdf_bytes,
            attachment_name=f"quote-{quote_id}.pdf",
            headers={"In-Reply-To": message.message_id,
                     "References": message.thread_id},
        )

    def send_quote(self, to, customer_name, quote_id, pdf_bytes, company: dict,
                   validity_days: int = 30):
        """Quotation for a manual web submission."""
        body = f"""Hello {customer_name},

Thank you for your quote request. Please find your detailed quotation attached.

This quote is valid for {validity_days} days.

If you have any questions, please don't hesitate to contact us.

Best regards,
{company.get('name', '')}
{company.get('email', '')}
{company.get('phone', '')}""".rstrip()
        return self.send(to=to, subject=f"Your Quote Request #{quote_id}", body=body,
                         attachment=pdf_bytes, attachment_name=f"quote-{quote_id}.pdf")

    def send_admin_notification(self, admin_email, customer_name, customer_email,
                                quote_id, item_count):
        body = f"""New Quote Request Received

Customer: {customer_name}
Email: {customer_email}
Quote ID: {quote_id}
Items Requested: {item_count}"""
        return self.send(to=admin_email, subject=f"New RFQ Request #{quote_id}", body=body)

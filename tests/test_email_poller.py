"""
Tests for autoquote/agents/email_poller.py - IMAP and SMTP are faked.
"""
import email
import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from autoquote.agents.email_poller import (
    EmailSender, MailboxReader, decode_password, encode_password, html_to_text,
    parse_message,
)
from autoquote.core.errors import DispatchError, MailboxError
from autoquote.core.models import EmailAccount

from conftest import make_message


def _raw(from_header="Ravi Kumar <Buyer@Acme.Example>", subject="RFQ", body="10 bolts",
         message_id="<m1@acme.example>", extra=None):
    msg = MIMEText(body)
    msg["From"] = from_header
    msg["Subject"] = subject
    msg["Message-ID"] = message_id
    msg["Date"] = "Thu, 01 Oct 2026 09:30:00 +0530"
    for k, v in (extra or {}).items():
        msg[k] = v
    return msg.as_bytes()


class FakeIMAP:
    def __init__(self, messages=None, login_error=None):
        self.messages = messages or {}
        self.login_error = login_error
        self.commands = []
        self.logged_out = False

    def __call__(self, host, port):
        self.host, self.port = host, port
        return self

    def login(self, user, password):
        if self.login_error:
            raise self.login_error
        self.user, self.password = user, password

    def select(self, folder):
        return "OK", [b"1"]

    def uid(self, command, *args):
        self.commands.append((command,) + args)
        if command == "search":
            return "OK", [b" ".join(self.messages.keys())]
        if command == "fetch":
            return "OK", [(b"1 (BODY[] {100}", self.messages[args[0]]), b")"]
        return "OK", [None]

    def logout(self):
        self.logged_out = True


class FakeSMTP:
    instances = []

    def __init__(self, host, port, fail=None):
        self.host, self.port = host, port
        self.fail = fail
        self.sent = []
        self.tls = False
        self.login_args = None
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.tls = True

    def login(self, user, password):
        self.login_args = (user, password)

    def send_message(self, msg):
        if self.fail:
            raise self.fail
        self.sent.append(msg)


def _account(**overrides):
    fields = dict(email="rfq@tulsi.example", imap_host="imap.tulsi.example",
                  username="rfq@tulsi.example",
                  password_encrypted=encode_password("app-password"), id=1)
    fields.update(overrides)
    return EmailAccount(**fields)


class TestPasswords:

    def test_round_trip(self):
        assert decode_password(encode_password("s3cret")) == "s3cret"

    def test_invalid_base64(self):
        with pytest.raises(MailboxError):
            decode_password("not base64!!")


class TestParseMessage:

    def test_plain_message(self):
        msg = parse_message(_raw(), uid="7")
        assert msg.from_address == "buyer@acme.example"
        assert msg.from_name == "Ravi Kumar"
        assert msg.subject == "RFQ"
        assert msg.body_text == "10 bolts"
        assert msg.message_id == "<m1@acme.example>"
        assert msg.thread_id == "<m1@acme.example>"
        assert msg.received_at.year == 2026
        assert msg.uid == "7"

    def test_reply_thread_id(self):
        msg = parse_message(_raw(extra={"In-Reply-To": "<root@tulsi.example>"}))
        assert msg.thread_id == "<root@tulsi.example>"

    def test_html_only_body(self):
        mime = MIMEText("<html><style>p{}</style><body><p>Need 5 gloves</p></body></html>",
                        "html")
        mime["From"] = "buyer@acme.example"
        msg = parse_message(email.message_from_bytes(mime.as_bytes()))
        assert msg.body_text == "Need 5 gloves"
        assert "<p>" in msg.body_html

    def test_attachments(self):
        mime = MIMEMultipart()
        mime["From"] = "buyer@acme.example"
        mime["Subject"] = "RFQ sheet"
        mime.attach(MIMEText("see attached"))
        sheet = MIMEApplication(b"Item,Qty\nBolt,5\n", Name="items.csv")
        sheet["Content-Disposition"] = 'attachment; filename="items.csv"'
        mime.attach(sheet)
        msg = parse_message(mime.as_bytes())
        assert msg.body_text == "see attached"
        assert msg.has_attachments
        att = msg.attachments[0]
        assert att.filename == "items.csv"
        assert att.content == b"Item,Qty\nBolt,5\n"
        assert att.size == len(att.content)

    def test_encoded_subject(self):
        msg = parse_message(_raw(subject="=?utf-8?b?UkZRIOKAkyBib2x0cw==?="))
        assert msg.subject == "RFQ – bolts"

    def test_html_to_text_collapses_blank_lines(self):
        assert html_to_text("<div>a</div>\n\n\n<div>b</div>") == "a\n\nb"


class TestMailboxReader:

    def test_search_criteria(self):
        reader = MailboxReader(_account(process_from_date="2026-10-01",
                                        process_to_date="2026-10-15"))
        assert reader.search_criteria() == "(UNSEEN SINCE 01-Oct-2026 BEFORE 15-Oct-2026)"
        assert MailboxReader(_account(skip_read_emails=False)).search_criteria() == "(ALL)"

    def test_unparseable_filter_date(self):
        reader = MailboxReader(_account(process_to_date="yesterday-ish"))
        with pytest.raises(MailboxError, match="yesterday-ish"):
            reader.search_criteria()

    def test_blacklist_case_insensitive(self):
        reader = MailboxReader(_account(blacklisted_emails=["Spam@Acme.example "]))
        assert reader.is_blacklisted("spam@acme.example")
        assert not reader.is_blacklisted("buyer@acme.example")

    def test_fetch_filters_blacklist_and_peeks(self):
        imap = FakeIMAP({
            b"11": _raw(),
            b"12": _raw(from_header="spam@acme.example", message_id="<m2@x>"),
        })
        reader = MailboxReader(_account(blacklisted_emails=["spam@acme.example"]),
                               imap_factory=imap)
        with reader:
            messages = reader.fetch_messages()
            reader.mark_seen(messages[0])
        assert imap.host == "imap.tulsi.example" and imap.port == 993
        assert imap.password == "app-password"
        assert [m.uid for m in messages] == ["11"]
        assert ("fetch", b"11", "(BODY.PEEK[])") in imap.commands
        assert ("store", "11", "+FLAGS", "(\\Seen)") in imap.commands
        assert imap.logged_out

    def test_connect_failure(self):
        import imaplib
        imap = FakeIMAP(login_error=imaplib.IMAP4.error("AUTHENTICATIONFAILED"))
        with pytest.raises(MailboxError):
            MailboxReader(_account(), imap_factory=imap).connect()

    def test_fetch_requires_connection(self):
        with pytest.raises(MailboxError):
            MailboxReader(_account()).fetch_messages()


class TestEmailSender:

    def setup_method(self):
        FakeSMTP.instances = []

    def test_for_account_derives_smtp_host(self):
        sender = EmailSender.for_account(_account(), from_name="Tulsi Traders",
                                         smtp_factory=FakeSMTP)
        assert sender.smtp_host == "smtp.tulsi.example"
        assert sender.password == "app-password"

    def test_from_env(self):
        sender = EmailSender.from_env({"SMTP_HOST": "mail.example", "SMTP_PORT": "2525",
                                       "SMTP_USER": "u@example", "SMTP_PASSWORD": "pw"})
        assert (sender.smtp_host, sender.smtp_port) == ("mail.example", 2525)
        assert sender.email_addr == "u@example"

    def test_quote_reply_threads_and_attaches(self):
        sender = EmailSender.for_account(_account(), from_name="Tulsi Traders",
                                         smtp_factory=FakeSMTP)
        message = make_message(subject="RFQ for bolts")
        sender.send_quote_reply(message, b"%PDF-1.4", "ABCD1234", "Tulsi Traders")

        smtp = FakeSMTP.instances[0]
        assert smtp.tls
        assert smtp.login_args == ("rfq@tulsi.example", "app-password")
        sent = smtp.sent[0]
        assert sent["To"] == "buyer@acme.example"
        assert sent["Subject"] == "Re: RFQ for bolts"
        assert sent["In-Reply-To"] == message.message_id
        assert "Tulsi Traders" in sent["From"]
        parts = [p for p in sent.walk() if p.get_filename()]
        assert parts[0].get_filename() == "quote-ABCD1234.pdf"
        assert parts[0].get_payload(decode=True) == b"%PDF-1.4"

    def test_send_quote_subject(self):
        sender = EmailSender({"smtp_host": "h", "email": "s@x"}, smtp_factory=FakeSMTP)
        sender.send_quote("c@x", "Asha", "ABCD1234", b"%PDF", {"name": "Tulsi"})
        sent = FakeSMTP.instances[0].sent[0]
        assert sent["Subject"] == "Your Quote Request #ABCD1234"
        assert FakeSMTP.instances[0].login_args is None

    def test_smtp_failure_is_dispatch_error(self):
        def factory(host, port):
            return FakeSMTP(host, port, fail=smtplib.SMTPRecipientsRefused({}))
        sender = EmailSender({"smtp_host": "h", "email": "s@x"}, smtp_factory=factory)
        with pytest.raises(DispatchError):
            sender.send("c@x", "subject", "body")

    def test_connection_refused_is_dispatch_error(self):
        def factory(host, port):
            raise ConnectionRefusedError("no route")
        sender = EmailSender({"smtp_host": "h", "email": "s@x"}, smtp_factory=factory)
        with pytest.raises(DispatchError):
            sender.send_admin_notification("a@x", "Asha", "c@x", "ABCD1234", 2)

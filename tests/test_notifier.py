"""
Tests for the SMTP Notifier.

Tests cover:
- TLS mode selection (starttls, implicit tls, none)
- Message headers and welcome text
- Send failures raised as MailError
- Startup validation and relay check raised as ConfigError
"""

import smtplib

import pytest

from newsletter.errors import ConfigError, MailError
from newsletter.notifier import Notifier, OutboundMessage


class FakeSMTP:
    """Stand-in for smtplib.SMTP that records calls instead of connecting."""

    instances = []
    fail_on_connect = False
    fail_on_send = False

    def __init__(self, host, port, timeout=None, context=None):
        if self.fail_on_connect:
            raise ConnectionRefusedError("connection refused")
        self.host = host
        self.port = port
        self.timeout = timeout
        self.context = context
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        self.closed = False
        FakeSMTP.instances.append(self)

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, username, password):
        self.logged_in = (username, password)

    def send_message(self, msg):
        if self.fail_on_send:
            raise smtplib.SMTPRecipientsRefused({msg["To"]: (550, b"no such user")})
        self.sent.append(msg)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class FakeSMTPSSL(FakeSMTP):
    pass


@pytest.fixture(autouse=True)
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_on_connect = False
    FakeSMTP.fail_on_send = False
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(smtplib, "SMTP_SSL", FakeSMTPSSL)
    return FakeSMTP


def make_notifier(tls_mode="starttls", **kwargs) -> Notifier:
    return Notifier.configure(
        host="smtp.example.com",
        port=587,
        username="news@example.com",
        password="secret",
        tls_mode=tls_mode,
        timeout=5,
        verify=kwargs.pop("verify", False),
        **kwargs,
    )


class TestSend:

    def test_starttls_send(self, fake_smtp):
        notifier = make_notifier("starttls")
        notifier.send(OutboundMessage(to="a@x.com", subject="Hi", body="Body text"))

        server = fake_smtp.instances[-1]
        assert type(server) is FakeSMTP
        assert server.started_tls is True
        assert server.timeout == 5
        assert server.logged_in == ("news@example.com", "secret")
        assert server.closed is True

        msg = server.sent[0]
        assert msg["To"] == "a@x.com"
        assert msg["From"] == "news@example.com"
        assert msg["Subject"] == "Hi"
        assert msg.get_content().strip() == "Body text"

    def test_implicit_tls_uses_ssl_client(self, fake_smtp):
        notifier = make_notifier("tls")
        notifier.send(OutboundMessage(to="a@x.com", subject="Hi", body="x"))

        server = fake_smtp.instances[-1]
        assert isinstance(server, FakeSMTPSSL)
        assert server.context is not None
        assert server.started_tls is False

    def test_plain_mode_skips_tls(self, fake_smtp):
        notifier = make_notifier("none")
        notifier.send(OutboundMessage(to="a@x.com", subject="Hi", body="x"))

        server = fake_smtp.instances[-1]
        assert type(server) is FakeSMTP
        assert server.started_tls is False

    def test_custom_sender(self, fake_smtp):
        notifier = make_notifier(sender="Newsletter <hello@example.com>")
        notifier.send(OutboundMessage(to="a@x.com", subject="Hi", body="x"))
        assert fake_smtp.instances[-1].sent[0]["From"] == "Newsletter <hello@example.com>"

    def test_connection_per_send(self, fake_smtp):
        notifier = make_notifier()
        notifier.send(OutboundMessage(to="a@x.com", subject="1", body="x"))
        notifier.send(OutboundMessage(to="b@x.com", subject="2", body="x"))
        assert len(fake_smtp.instances) == 2

    def test_refused_recipient_raises_mail_error(self, fake_smtp):
        notifier = make_notifier()
        fake_smtp.fail_on_send = True

        with pytest.raises(MailError):
            notifier.send(OutboundMessage(to="a@x.com", subject="Hi", body="x"))

        assert fake_smtp.instances[-1].closed is True

    def test_unreachable_relay_raises_mail_error(self, fake_smtp):
        notifier = make_notifier()
        fake_smtp.fail_on_connect = True

        with pytest.raises(MailError):
            notifier.send(OutboundMessage(to="a@x.com", subject="Hi", body="x"))


class TestWelcomeMessage:

    def test_with_name(self):
        message = make_notifier().welcome_message("a@x.com", "Ada")
        assert message.to == "a@x.com"
        assert message.subject == "Welcome to Our Newsletter!"
        assert message.body == "Hello Ada, thank you for subscribing!"

    def test_without_name(self):
        message = make_notifier().welcome_message("a@x.com")
        assert message.body == "Hello, thank you for subscribing!"


class TestConfigure:

    @pytest.mark.parametrize(
        "overrides",
        [
            {"host": ""},
            {"port": 0},
            {"port": 70000},
            {"tls_mode": "ssl3"},
            {"timeout": 0},
        ],
    )
    def test_invalid_parameters(self, overrides):
        params = dict(
            host="smtp.example.com",
            port=587,
            username="u",
            password="p",
            tls_mode="starttls",
            timeout=5,
            verify=False,
        )
        params.update(overrides)
        with pytest.raises(ConfigError):
            Notifier.configure(**params)

    def test_verify_connects_and_logs_in(self, fake_smtp):
        make_notifier(verify=True)

        server = fake_smtp.instances[-1]
        assert server.logged_in == ("news@example.com", "secret")
        assert server.closed is True

    def test_verify_unreachable_relay_is_config_error(self, fake_smtp):
        fake_smtp.fail_on_connect = True
        with pytest.raises(ConfigError):
            make_notifier(verify=True)

    def test_from_settings(self, settings):
        notifier = Notifier.from_settings(settings)
        assert notifier.host == settings.SMTP_HOST
        assert notifier.port == settings.SMTP_PORT
        assert notifier.tls_mode == settings.SMTP_TLS
        assert notifier.sender == settings.SMTP_USERNAME

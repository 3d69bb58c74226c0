"""
Outbound mail over an SMTP relay.

The Notifier is built once at startup and shared by all requests. Each send
opens its own connection, so concurrent sends never share an smtplib client
and a slow relay only holds up the request that is waiting on it.
"""

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from newsletter.errors import ConfigError, MailError

logger = logging.getLogger(__name__)

TLS_MODES = ("starttls", "tls", "none")


@dataclass(frozen=True)
class OutboundMessage:
    """A single email. Lives only for the duration of a send call."""
    to: str
    subject: str
    body: str


class Notifier:
    """
    SMTP mail transport.

    TLS modes:
        starttls: plain connection upgraded with STARTTLS
        tls: implicit TLS (SMTP over SSL)
        none: no encryption
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        tls_mode: str = "starttls",
        timeout: float = 10.0,
        sender: Optional[str] = None,
        welcome_subject: str = "Welcome to Our Newsletter!",
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.tls_mode = tls_mode
        self.timeout = timeout
        self.sender = sender or username
        self.welcome_subject = welcome_subject

    @classmethod
    def configure(
        cls,
        host: str,
        port: int,
        username: str,
        password: str,
        tls_mode: str,
        timeout: float,
        sender: Optional[str] = None,
        welcome_subject: str = "Welcome to Our Newsletter!",
        verify: bool = True,
    ) -> "Notifier":
        """
        Build a transport from startup configuration.

        With verify, one authenticated connection is opened and closed so a
        broken relay stops the process before it starts serving.

        Raises:
            ConfigError: invalid parameters or unreachable relay
        """
        if not host:
            raise ConfigError("SMTP host is empty")
        if not 0 < port < 65536:
            raise ConfigError(f"SMTP port out of range: {port}")
        if tls_mode not in TLS_MODES:
            raise ConfigError(f"Unknown SMTP TLS mode: {tls_mode}")
        if timeout <= 0:
            raise ConfigError(f"SMTP timeout must be positive: {timeout}")

        notifier = cls(
            host=host,
            port=port,
            username=username,
            password=password,
            tls_mode=tls_mode,
            timeout=timeout,
            sender=sender,
            welcome_subject=welcome_subject,
        )
        logger.info(f"SMTP configured: {host}:{port} (tls={tls_mode})")

        if verify:
            notifier.verify()
        return notifier

    @classmethod
    def from_settings(cls, settings) -> "Notifier":
        return cls.configure(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            tls_mode=settings.SMTP_TLS,
            timeout=settings.SMTP_TIMEOUT,
            sender=settings.MAIL_FROM,
            welcome_subject=settings.WELCOME_SUBJECT,
            verify=settings.SMTP_VERIFY_ON_STARTUP,
        )

    def _connect(self) -> smtplib.SMTP:
        if self.tls_mode == "tls":
            server = smtplib.SMTP_SSL(
                self.host,
                self.port,
                timeout=self.timeout,
                context=ssl.create_default_context(),
            )
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if self.tls_mode == "starttls":
                server.starttls(context=ssl.create_default_context())
            if self.username:
                server.login(self.username, self.password)
        except BaseException:
            server.close()
            raise
        return server

    def verify(self) -> None:
        """Open, authenticate and close one connection to the relay."""
        try:
            with self._connect():
                pass
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP relay check failed for {self.host}:{self.port}: {e}")
            raise ConfigError(f"SMTP relay unreachable: {self.host}:{self.port}") from e
        logger.info("SMTP relay reachable")

    def send(self, message: OutboundMessage) -> None:
        """
        Send one message, a single attempt with the configured timeout.

        Raises:
            MailError: on any transport or relay failure
        """
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = message.to
        msg["Subject"] = message.subject
        msg.set_content(message.body)

        try:
            with self._connect() as server:
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error for {message.to}: {e}")
            raise MailError(f"Failed to send email to {message.to}") from e

        logger.info(f"Email sent to {message.to}")

    def welcome_message(self, email: str, name: Optional[str] = None) -> OutboundMessage:
        greeting = f"Hello {name}," if name else "Hello,"
        return OutboundMessage(
            to=email,
            subject=self.welcome_subject,
            body=f"{greeting} thank you for subscribing!",
        )

    def close(self) -> None:
        # Connections are per send; nothing is held between requests
        logger.debug("Notifier closed")

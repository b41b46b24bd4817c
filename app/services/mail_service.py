import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Iterable, Optional

from app.core.config import Settings


logger = logging.getLogger(__name__)

DEFAULT_SUBMISSION_PORT = 587
SSL_PORT = 465


@dataclass(frozen=True)
class MailAttachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


@dataclass(frozen=True)
class MailResult:
    recipient: str
    ok: bool
    port: Optional[int] = None
    error: Optional[str] = None


class MailService:
    """SMTP sender that tries each configured transport in turn.

    ``send_mail`` never raises: delivery problems come back as a failed
    ``MailResult`` and are logged.
    """

    def __init__(
        self,
        host: str,
        port: Optional[int] = None,
        fallback_port: Optional[int] = SSL_PORT,
        username: str = "",
        password: str = "",
        sender: str = "",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.fallback_port = fallback_port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "MailService":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            fallback_port=settings.SMTP_FALLBACK_PORT,
            username=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            sender=settings.SMTP_FROM,
            timeout=settings.SMTP_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.username and self.password)

    def transports(self) -> list[tuple[int, bool]]:
        # An explicit port is used as-is; otherwise try STARTTLS first, then SSL.
        if self.port is not None:
            return [(self.port, self.port == SSL_PORT)]
        transports = [(DEFAULT_SUBMISSION_PORT, False)]
        if self.fallback_port and self.fallback_port != DEFAULT_SUBMISSION_PORT:
            transports.append((self.fallback_port, self.fallback_port == SSL_PORT))
        return transports

    def build_message(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Optional[Iterable[MailAttachment]] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML-capable mail client.")
        message.add_alternative(html, subtype="html")
        for attachment in attachments or ():
            maintype, _, subtype = attachment.mime_type.partition("/")
            message.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return message

    def _deliver(self, message: EmailMessage, port: int, use_ssl: bool) -> None:
        context = ssl.create_default_context()
        if use_ssl:
            with smtplib.SMTP_SSL(self.host, port, timeout=self.timeout, context=context) as server:
                server.login(self.username, self.password)
                server.send_message(message)
            return

        with smtplib.SMTP(self.host, port, timeout=self.timeout) as server:
            server.ehlo()
            server.starttls(context=context)
            server.ehlo()
            server.login(self.username, self.password)
            server.send_message(message)

    def send_mail(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Optional[Iterable[MailAttachment]] = None,
    ) -> MailResult:
        if not self.configured:
            logger.warning("Email service not configured; skipping mail to %s (%s)", to, subject)
            return MailResult(recipient=to, ok=False, error="Email service not configured")

        message = self.build_message(to, subject, html, attachments)
        last_error = "No SMTP transport available"
        for port, use_ssl in self.transports():
            try:
                self._deliver(message, port, use_ssl)
            except (smtplib.SMTPException, OSError) as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning("SMTP delivery to %s via %s:%s failed: %s", to, self.host, port, last_error)
                continue
            logger.info("Email sent to %s via port %s: %s", to, port, subject)
            return MailResult(recipient=to, ok=True, port=port)

        logger.error("All SMTP transports failed for %s: %s", to, last_error)
        return MailResult(recipient=to, ok=False, error=last_error)

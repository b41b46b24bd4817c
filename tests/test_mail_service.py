import smtplib

from app.core.config import Settings
from app.services.mail_service import MailAttachment, MailService


class _FakeSMTP:
    """Records every connection; raises for ports listed in ``failing_ports``."""

    connections: list = []
    failing_ports: set = set()

    def __init__(self, host, port, timeout=None, context=None):
        if port in self.failing_ports:
            raise smtplib.SMTPConnectError(421, b"service not available")
        self.host = host
        self.port = port
        self.messages = []
        self.logged_in = None
        self.started_tls = False
        self.connections.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        return (250, b"ok")

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, username, password):
        self.logged_in = (username, password)

    def send_message(self, message):
        self.messages.append(message)


def _install(monkeypatch, failing_ports=()):
    class _Plain(_FakeSMTP):
        pass

    class _Ssl(_FakeSMTP):
        pass

    _FakeSMTP.connections = []
    _FakeSMTP.failing_ports = set(failing_ports)
    monkeypatch.setattr(smtplib, "SMTP", _Plain)
    monkeypatch.setattr(smtplib, "SMTP_SSL", _Ssl)
    return _Plain, _Ssl


def _mailer(**overrides) -> MailService:
    options = {
        "host": "smtp.example.com",
        "username": "robot@example.com",
        "password": "app-password",
    }
    options.update(overrides)
    return MailService(**options)


def test_unconfigured_mailer_reports_failure_without_connecting(monkeypatch):
    _install(monkeypatch)
    result = MailService(host="smtp.example.com").send_mail("a@example.com", "Hi", "<p>hi</p>")

    assert result.ok is False
    assert result.error == "Email service not configured"
    assert _FakeSMTP.connections == []


def test_transports_prefer_starttls_then_ssl():
    assert _mailer().transports() == [(587, False), (465, True)]
    assert _mailer(port=465).transports() == [(465, True)]
    assert _mailer(port=2525).transports() == [(2525, False)]
    assert _mailer(fallback_port=None).transports() == [(587, False)]


def test_send_uses_starttls_on_587(monkeypatch):
    plain, _ = _install(monkeypatch)
    result = _mailer().send_mail("a@example.com", "Hello", "<p>hello</p>")

    assert result.ok is True
    assert result.port == 587
    connection = _FakeSMTP.connections[0]
    assert isinstance(connection, plain)
    assert connection.started_tls is True
    assert connection.logged_in == ("robot@example.com", "app-password")
    assert connection.messages[0]["To"] == "a@example.com"


def test_falls_back_to_ssl_when_587_fails(monkeypatch):
    _, ssl_class = _install(monkeypatch, failing_ports={587})
    result = _mailer().send_mail("a@example.com", "Hello", "<p>hello</p>")

    assert result.ok is True
    assert result.port == 465
    assert isinstance(_FakeSMTP.connections[0], ssl_class)


def test_all_transports_failing_returns_error(monkeypatch):
    _install(monkeypatch, failing_ports={587, 465})
    result = _mailer().send_mail("a@example.com", "Hello", "<p>hello</p>")

    assert result.ok is False
    assert "SMTPConnectError" in result.error


def test_explicit_port_has_no_fallback(monkeypatch):
    _install(monkeypatch, failing_ports={587})
    result = _mailer(port=587).send_mail("a@example.com", "Hello", "<p>hello</p>")

    assert result.ok is False
    assert _FakeSMTP.connections == []


def test_build_message_carries_html_and_attachment():
    message = _mailer(sender="Requests <requests@example.com>").build_message(
        "a@example.com",
        "Subject line",
        "<p>Body</p>",
        [MailAttachment(filename="equipment-request.pdf", content=b"%PDF-1.4 test")],
    )

    assert message["From"] == "Requests <requests@example.com>"
    assert message["Subject"] == "Subject line"
    attachments = list(message.iter_attachments())
    assert attachments[0].get_filename() == "equipment-request.pdf"
    assert attachments[0].get_content() == b"%PDF-1.4 test"
    assert "<p>Body</p>" in message.get_body(preferencelist=("html",)).get_content()


def test_from_settings_defaults_sender_to_user():
    settings = Settings(SMTP_USER="robot@example.com", SMTP_PASSWORD="secret", SMTP_PORT=465, ENVIRONMENT="test")
    mailer = MailService.from_settings(settings)

    assert mailer.configured is True
    assert mailer.sender == "robot@example.com"
    assert mailer.transports() == [(465, True)]

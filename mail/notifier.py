"""
mail/notifier.py -- Template-rendered email delivery for onboarding.

Templates live in mail/templates/<name>.html. The first line of every template
must be "Subject: <text>"; the rest is the HTML body. Both parts are rendered
with Jinja2, so the subject may reference the same variables as the body.

SmtpNotifier opens one SMTP connection per message. Every transport failure is
re-raised as NotificationError so callers see one error kind regardless of
which smtplib or socket exception fired.

LoggingNotifier is used when MAIL_HOST is empty (local development). It logs
the recipient and template name only. Token material never reaches the log.

Layer rule: mail/ may import from core/ only.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from core.config import Settings
from core.errors import NotificationError

logger = logging.getLogger("identityrbac.mail")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
_SUBJECT_PREFIX = "Subject:"


def _build_env(template_dir: Path, service_name: str) -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape(["html"]),
    )
    env.globals["service_name"] = service_name
    return env


def render(env: Environment, template_name: str, data: dict) -> tuple[str, str]:
    """Render a template and split it into (subject, html_body).

    Raises NotificationError if the template is missing or has no Subject line.
    """
    try:
        template = env.get_template(f"{template_name}.html")
    except TemplateNotFound as exc:
        raise NotificationError(f"unknown mail template {template_name!r}") from exc

    rendered = template.render(**data)
    first_line, _, body = rendered.partition("\n")
    if not first_line.startswith(_SUBJECT_PREFIX):
        raise NotificationError(f"mail template {template_name!r} has no Subject line")
    return first_line[len(_SUBJECT_PREFIX) :].strip(), body.lstrip("\n")


class SmtpNotifier:
    """Send rendered templates through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
        service_name: str = "identity-rbac",
        template_dir: Path = TEMPLATE_DIR,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout
        self._env = _build_env(template_dir, service_name)

    def send(self, to: str, template_name: str, data: dict) -> None:
        subject, body = render(self._env, template_name, data)

        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML-capable mail client.")
        message.add_alternative(body, subtype="html")

        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
                if self._use_tls:
                    smtp.starttls()
                if self._username:
                    smtp.login(self._username, self._password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Mail delivery failed (template=%s): %s", template_name, type(exc).__name__)
            raise NotificationError("mail delivery failed") from exc
        logger.info("Mail sent (template=%s)", template_name)


class LoggingNotifier:
    """Development notifier: renders the template, logs, and sends nothing."""

    def __init__(self, service_name: str = "identity-rbac", template_dir: Path = TEMPLATE_DIR) -> None:
        self._env = _build_env(template_dir, service_name)

    def send(self, to: str, template_name: str, data: dict) -> None:
        subject, _ = render(self._env, template_name, data)
        logger.warning("MAIL_HOST not set; not sending %r (template=%s) to %s", subject, template_name, to)


def build_notifier(settings: Settings) -> SmtpNotifier | LoggingNotifier:
    """Pick the notifier for the configured environment."""
    if not settings.mail_host:
        return LoggingNotifier(service_name=settings.service_name)
    return SmtpNotifier(
        host=settings.mail_host,
        port=settings.mail_port,
        sender=settings.mail_from,
        username=settings.mail_username,
        password=settings.mail_password,
        use_tls=settings.mail_use_tls,
        timeout=settings.request_timeout_seconds,
        service_name=settings.service_name,
    )

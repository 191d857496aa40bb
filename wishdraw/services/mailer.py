from __future__ import annotations

import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Dict, Mapping, Optional, Protocol

from loguru import logger

from wishdraw.core.config import SmtpSettings

EMAIL_SECRET_SANTA = "secret_santa"


class UnknownEmailType(ValueError):
    pass


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    body: str


_TEMPLATES: Dict[str, Dict[str, Dict[str, str]]] = {
    EMAIL_SECRET_SANTA: {
        "en": {
            "subject": "Your Secret Santa for {group_name}",
            "body": (
                "The names for {group_name} have been drawn!\n\n"
                "You are buying a gift for {receiver_name}.\n\n"
                "See their wishlist: {group_url}\n"
            ),
        },
        "nl": {
            "subject": "Je lootje voor {group_name}",
            "body": (
                "De lootjes voor {group_name} zijn getrokken!\n\n"
                "Jij koopt een cadeau voor {receiver_name}.\n\n"
                "Bekijk het verlanglijstje: {group_url}\n"
            ),
        },
    },
}


def render_email(email_type: str, payload: Mapping[str, Any]) -> RenderedEmail:
    templates = _TEMPLATES.get(email_type)
    if templates is None:
        raise UnknownEmailType(f"Unknown email type: {email_type}")

    language = str(payload.get("locale") or "en").split("-")[0].lower()
    template = templates.get(language, templates["en"])
    fields = {key: value for key, value in payload.items() if key != "locale"}
    return RenderedEmail(
        subject=template["subject"].format(**fields),
        body=template["body"].format(**fields),
    )


class EmailTransport(Protocol):
    def send(self, to_addr: str, email: RenderedEmail) -> None:
        """Deliver or raise."""


class LogTransport:
    """Writes outgoing mail to the log instead of sending it."""

    def send(self, to_addr: str, email: RenderedEmail) -> None:
        logger.bind(to=to_addr).info("Email (not sent): {subject}", subject=email.subject)


class SmtpTransport:
    def __init__(self, settings: SmtpSettings) -> None:
        self._settings = settings

    def _connect(self) -> smtplib.SMTP:
        settings = self._settings
        if settings.use_tls:
            server = smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout)
        else:
            server = smtplib.SMTP_SSL(settings.host, settings.port, timeout=settings.timeout)
        try:
            if settings.use_tls:
                server.ehlo()
                server.starttls(context=ssl.create_default_context())
            if settings.user and settings.password:
                server.login(settings.user, settings.password)
        except Exception:
            server.close()
            raise
        return server

    def send(self, to_addr: str, email: RenderedEmail) -> None:
        message = EmailMessage()
        message["Subject"] = email.subject
        message["From"] = self._settings.from_addr
        message["To"] = to_addr
        message.set_content(email.body)

        logger.bind(to=to_addr).debug("Sending email via {host}", host=self._settings.host)
        with self._connect() as server:
            server.send_message(message)


def transport_from_settings(smtp: Optional[SmtpSettings]) -> EmailTransport:
    if smtp is None:
        logger.warning("SMTP_HOST is not set, emails will only be logged")
        return LogTransport()
    return SmtpTransport(smtp)

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import ValidationError

from refugio_api.features.contact.schemas import ContactCategory, ContactRequest, ContactSubmission
from refugio_api.platform.errors import (
    CaptchaError,
    ContactError,
    ContactValidationError,
    InternalError,
    MailRelayError,
    RateLimitError,
)
from refugio_api.platform.rate_limit import RateLimitDecision, RateLimiter
from refugio_api.platform.services.mailer import MailMessage, MailRelay
from refugio_api.platform.services.recaptcha import CaptchaVerifier

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$", re.IGNORECASE)
MESSAGE_MIN_LENGTH = 10
MESSAGE_MAX_LENGTH = 1000

MISSING_FIELDS = "Campos requeridos faltantes"
INVALID_EMAIL = "Correo inválido"
INVALID_TYPE = "Tipo inválido"
INVALID_MESSAGE_LENGTH = f"Mensaje debe tener entre {MESSAGE_MIN_LENGTH} y {MESSAGE_MAX_LENGTH} caracteres"


@dataclass(frozen=True)
class ContactReceipt:
    message_id: str
    rate_limit: RateLimitDecision


def parse_contact_request(raw_body: bytes) -> ContactRequest:
    try:
        return ContactRequest.model_validate_json(raw_body or b"null")
    except ValidationError as exc:
        raise ContactValidationError(MISSING_FIELDS) from exc


def validate_submission(body: ContactRequest) -> ContactSubmission:
    fields = (body.name, body.email, body.type, body.message, body.recaptcha)
    if any(value is None or not value.strip() for value in fields):
        raise ContactValidationError(MISSING_FIELDS)

    if not body.email.isascii() or not EMAIL_PATTERN.match(body.email):
        raise ContactValidationError(INVALID_EMAIL)

    try:
        category = ContactCategory(body.type)
    except ValueError:
        raise ContactValidationError(INVALID_TYPE) from None

    message = body.message.strip()
    if not MESSAGE_MIN_LENGTH <= len(message) <= MESSAGE_MAX_LENGTH:
        raise ContactValidationError(INVALID_MESSAGE_LENGTH)

    return ContactSubmission(
        name=body.name.strip(),
        email=body.email.strip(),
        category=category,
        message=message,
        captcha_token=body.recaptcha.strip(),
    )


def render_contact_email(
    submission: ContactSubmission,
    *,
    client_ip: str,
    received_at: datetime | None = None,
) -> tuple[str, str]:
    received = (received_at or datetime.now(timezone.utc)).isoformat()
    safe_name = html.escape(submission.name)
    safe_email = html.escape(submission.email)
    safe_type = html.escape(submission.category.value)
    safe_ip = html.escape(client_ip)
    safe_message = html.escape(submission.message)

    body_html = f"""
<h2>Nuevo mensaje de contacto</h2>
<ul>
  <li><b>Nombre:</b> {safe_name}</li>
  <li><b>Correo:</b> {safe_email}</li>
  <li><b>Tipo:</b> {safe_type}</li>
  <li><b>IP:</b> {safe_ip}</li>
</ul>
<pre style="white-space:pre-wrap;font-family:system-ui,Segoe UI,Arial,sans-serif">{safe_message}</pre>
<hr>
<small>Origen: Web · reCAPTCHA OK · {received}</small>
"""

    lines = [
        "Nuevo mensaje de contacto",
        "",
        f"Nombre: {submission.name}",
        f"Correo: {submission.email}",
        f"Tipo: {submission.category.value}",
        f"IP: {client_ip}",
        "",
        submission.message,
        "",
        f"Origen: Web · reCAPTCHA OK · {received}",
    ]
    return body_html, "\n".join(lines)


class ContactHandler:
    def __init__(
        self,
        *,
        rate_limiter: RateLimiter,
        captcha_verifier: CaptchaVerifier,
        mail_relay: MailRelay,
        sender: str,
        recipient: str | None,
        subject_prefix: str = "Contacto Mi Refugio",
    ) -> None:
        self._rate_limiter = rate_limiter
        self._captcha_verifier = captcha_verifier
        self._mail_relay = mail_relay
        self._sender = sender
        self._recipient = recipient
        self._subject_prefix = subject_prefix

    async def handle(self, raw_body: bytes, *, client_ip: str) -> ContactReceipt:
        headers: dict[str, str] = {}
        try:
            decision = await self._rate_limiter.check(client_ip or "unknown")
            headers = decision.headers()
            if not decision.allowed:
                logger.info("Rate limit exceeded for %s", client_ip or "unknown")
                raise RateLimitError(f"Rate limit exceeded for {client_ip or 'unknown'}")

            message_id = await self._process(raw_body, client_ip)
        except ContactError as exc:
            exc.headers.update(headers)
            raise
        except Exception as exc:
            logger.exception("Unexpected error while handling contact submission")
            raise InternalError(str(exc), headers=headers) from exc

        return ContactReceipt(message_id=message_id, rate_limit=decision)

    async def _process(self, raw_body: bytes, client_ip: str) -> str:
        submission = validate_submission(parse_contact_request(raw_body))
        await self._verify_captcha(submission.captcha_token, client_ip)

        message = self.build_message(submission, client_ip=client_ip)
        try:
            message_id = await self._mail_relay.send(message)
        except MailRelayError as exc:
            logger.error("Contact mail failed: %s", exc.log_context())
            raise

        logger.info("Contact mail sent: %s", message_id)
        return message_id

    async def _verify_captcha(self, token: str, client_ip: str) -> None:
        try:
            verdict = await self._captcha_verifier.verify(token, client_ip or None)
        except CaptchaError as exc:
            logger.warning("reCAPTCHA verification unavailable: %s", exc)
            raise

        if not verdict.success:
            logger.info("reCAPTCHA rejected: %s", ", ".join(verdict.error_codes) or "no error codes")
            raise CaptchaError("reCAPTCHA verification failed", error_codes=verdict.error_codes)

    def build_message(self, submission: ContactSubmission, *, client_ip: str) -> MailMessage:
        if not self._recipient:
            raise MailRelayError("MAIL_TO is not configured", code="ECONFIG")

        body_html, body_text = render_contact_email(submission, client_ip=client_ip)
        return MailMessage(
            sender=self._sender,
            to=self._recipient,
            reply_to=submission.email,
            subject=f"{self._subject_prefix} — {submission.category.value}",
            html=body_html,
            text=body_text,
        )

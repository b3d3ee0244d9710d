from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formatdate, make_msgid, parseaddr
from typing import Protocol

from refugio_api.platform.errors import MailRelayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailMessage:
    sender: str
    to: str
    reply_to: str | None
    subject: str
    html: str
    text: str | None = None


@dataclass(frozen=True)
class RelayHealth:
    healthy: bool
    error: str | None = None


class MailRelay(Protocol):
    async def send(self, message: MailMessage) -> str: ...

    async def verify(self) -> RelayHealth: ...


def build_email(message: MailMessage) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = message.subject
    msg["From"] = message.sender
    msg["To"] = message.to
    if message.reply_to:
        msg["Reply-To"] = message.reply_to
    msg["Date"] = formatdate(usegmt=True)

    _, sender_address = parseaddr(message.sender)
    _, at, domain = sender_address.rpartition("@")
    if not at or not domain:
        domain = "localhost"
    msg["Message-ID"] = make_msgid(domain=domain)

    msg.set_content(message.text or "Este mensaje requiere un cliente de correo con soporte HTML.")
    msg.add_alternative(message.html, subtype="html")
    return msg


class _PooledConnection:
    def __init__(self, client: smtplib.SMTP) -> None:
        self.client = client
        self.sent = 0

    def close(self) -> None:
        try:
            self.client.quit()
        except (smtplib.SMTPException, OSError):
            self.client.close()


def _relay_error(exc: Exception) -> MailRelayError:
    if isinstance(exc, MailRelayError):
        return exc
    if isinstance(exc, smtplib.SMTPResponseException):
        response = exc.smtp_error
        if isinstance(response, bytes):
            response = response.decode("utf-8", "replace")
        return MailRelayError(
            f"SMTP relay rejected the message: {exc.smtp_code} {response}",
            code=type(exc).__name__,
            response_code=exc.smtp_code,
            response=str(response),
        )
    if isinstance(exc, smtplib.SMTPRecipientsRefused) and exc.recipients:
        address, (smtp_code, response) = next(iter(exc.recipients.items()))
        if isinstance(response, bytes):
            response = response.decode("utf-8", "replace")
        return MailRelayError(
            f"SMTP relay refused recipient {address}: {smtp_code} {response}",
            code=type(exc).__name__,
            response_code=smtp_code,
            response=str(response),
        )
    return MailRelayError(f"SMTP relay unavailable: {exc}", code=type(exc).__name__)


class SMTPMailRelay:
    def __init__(
        self,
        *,
        host: str | None,
        port: int = 465,
        secure: bool = True,
        starttls: bool = True,
        username: str | None = None,
        password: str | None = None,
        timeout_seconds: float = 10.0,
        max_connections: int = 5,
        max_messages: int = 50,
    ) -> None:
        self._host = host
        self._port = int(port)
        self._secure = secure
        self._starttls = starttls
        self._username = username
        self._password = password
        self._timeout = timeout_seconds
        self._max_messages = max(1, max_messages)
        self._slots = asyncio.Semaphore(max(1, max_connections))
        self._idle: list[_PooledConnection] = []

    @property
    def idle_connections(self) -> int:
        return len(self._idle)

    def _connect(self) -> smtplib.SMTP:
        if not self._host:
            raise MailRelayError("SMTP_HOST is not configured", code="ECONFIG")

        if self._secure:
            client: smtplib.SMTP = smtplib.SMTP_SSL(
                self._host,
                self._port,
                timeout=self._timeout,
                context=ssl.create_default_context(),
            )
        else:
            client = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
            if self._starttls:
                client.ehlo()
                client.starttls(context=ssl.create_default_context())
                client.ehlo()

        try:
            if self._username:
                client.login(self._username, self._password or "")
        except Exception:
            client.close()
            raise
        return client

    def _deliver(self, conn: _PooledConnection | None, email: EmailMessage) -> _PooledConnection:
        if conn is not None:
            try:
                code, _ = conn.client.noop()
            except (smtplib.SMTPException, OSError):
                code = None
            if code != 250:
                conn.close()
                conn = None

        if conn is None:
            conn = _PooledConnection(self._connect())

        try:
            conn.client.send_message(email)
        except Exception:
            conn.close()
            raise
        conn.sent += 1
        return conn

    async def send(self, message: MailMessage) -> str:
        email = build_email(message)
        message_id = str(email["Message-ID"])

        async with self._slots:
            conn = self._idle.pop() if self._idle else None
            try:
                conn = await asyncio.to_thread(self._deliver, conn, email)
            except (smtplib.SMTPException, OSError, MailRelayError) as exc:
                raise _relay_error(exc) from exc

            if conn.sent >= self._max_messages:
                await asyncio.to_thread(conn.close)
            else:
                self._idle.append(conn)

        return message_id

    def _check_connection(self) -> None:
        client = self._connect()
        try:
            client.noop()
        finally:
            _PooledConnection(client).close()

    async def verify(self) -> RelayHealth:
        try:
            await asyncio.to_thread(self._check_connection)
        except (smtplib.SMTPException, OSError, MailRelayError) as exc:
            error = _relay_error(exc)
            logger.warning("SMTP verify failed: %s", error)
            return RelayHealth(healthy=False, error=str(error))
        return RelayHealth(healthy=True)

    async def close(self) -> None:
        idle, self._idle = self._idle, []
        for conn in idle:
            await asyncio.to_thread(conn.close)

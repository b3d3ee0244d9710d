import logging
from contextlib import asynccontextmanager
from email.utils import formataddr

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from refugio_api.api.router import api_router, root_router
from refugio_api.features.contact.services import ContactHandler
from refugio_api.platform.config import Settings, settings as default_settings
from refugio_api.platform.errors import ContactError, PayloadTooLargeError
from refugio_api.platform.rate_limit import RateLimiter, build_rate_limiter
from refugio_api.platform.redis import close_redis
from refugio_api.platform.services.mailer import MailRelay, SMTPMailRelay
from refugio_api.platform.services.recaptcha import CaptchaVerifier, RecaptchaVerifier

logger = logging.getLogger(__name__)

RATE_LIMIT_HEADERS = ["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"]
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def build_mail_relay(settings: Settings) -> SMTPMailRelay:
    return SMTPMailRelay(
        host=settings.smtp_host,
        port=settings.smtp_port,
        secure=settings.smtp_secure,
        starttls=settings.smtp_starttls,
        username=settings.smtp_user,
        password=settings.smtp_pass,
        timeout_seconds=settings.smtp_timeout_seconds,
        max_connections=settings.smtp_pool_max_connections,
        max_messages=settings.smtp_pool_max_messages,
    )


def build_captcha_verifier(settings: Settings) -> RecaptchaVerifier:
    return RecaptchaVerifier(
        settings.recaptcha_secret_key,
        verify_url=settings.recaptcha_verify_url,
        timeout_seconds=settings.recaptcha_timeout_seconds,
        expected_hostname=settings.recaptcha_expected_hostname,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    relay = app.state.mail_relay
    if app.state.settings.smtp_verify_on_startup:
        status = await relay.verify()
        if status.healthy:
            logger.info("SMTP ready to send")
        else:
            logger.error("SMTP verify error: %s", status.error)

    yield

    close = getattr(relay, "close", None)
    if close is not None:
        await close()
    await close_redis()


async def contact_error_handler(request: Request, exc: ContactError) -> JSONResponse:
    return JSONResponse(
        {"error": exc.public_message},
        status_code=exc.status_code,
        headers=exc.headers or None,
    )


def create_app(
    settings: Settings | None = None,
    *,
    rate_limiter: RateLimiter | None = None,
    captcha_verifier: CaptchaVerifier | None = None,
    mail_relay: MailRelay | None = None,
) -> FastAPI:
    settings = settings or default_settings
    app = FastAPI(title="Mi Refugio Contact API", lifespan=lifespan)

    mail_relay = mail_relay or build_mail_relay(settings)
    app.state.settings = settings
    app.state.mail_relay = mail_relay
    app.state.contact_handler = ContactHandler(
        rate_limiter=rate_limiter or build_rate_limiter(settings),
        captcha_verifier=captcha_verifier or build_captcha_verifier(settings),
        mail_relay=mail_relay,
        sender=formataddr((settings.smtp_from_name, settings.smtp_user or "")),
        recipient=settings.mail_to,
        subject_prefix=settings.mail_subject_prefix,
    )

    @app.middleware("http")
    async def limit_body_and_secure_headers(request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > settings.max_body_bytes:
            error = PayloadTooLargeError(f"Content-Length {content_length} exceeds limit")
            response = JSONResponse({"error": error.public_message}, status_code=error.status_code)
        else:
            response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    allowed_origins = settings.allowed_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in allowed_origins else allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=RATE_LIMIT_HEADERS,
    )

    app.add_exception_handler(ContactError, contact_error_handler)
    app.include_router(api_router)
    app.include_router(root_router)
    return app


app = create_app()


def run() -> None:
    logging.basicConfig(
        level=default_settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info("Contact API listening on http://%s:%s", default_settings.host, default_settings.port)
    uvicorn.run(app, host=default_settings.host, port=default_settings.port)


if __name__ == "__main__":
    run()

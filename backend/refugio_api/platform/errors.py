from __future__ import annotations


class ContactError(RuntimeError):
    status_code = 500
    default_public_message = "Error interno"

    def __init__(
        self,
        message: str | None = None,
        *,
        public_message: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.public_message = public_message or self.default_public_message
        self.headers: dict[str, str] = dict(headers or {})
        super().__init__(message or self.public_message)


class ContactValidationError(ContactError):
    status_code = 400
    default_public_message = "Campos requeridos faltantes"

    def __init__(self, message: str, **kwargs) -> None:
        super().__init__(message, public_message=message, **kwargs)


class RateLimitError(ContactError):
    status_code = 429
    default_public_message = "Rate limit exceeded"


class CaptchaError(ContactError):
    status_code = 400
    default_public_message = "reCAPTCHA inválido"

    def __init__(self, message: str | None = None, *, error_codes: list[str] | None = None, **kwargs) -> None:
        self.error_codes = list(error_codes or [])
        super().__init__(message, **kwargs)


class MailRelayError(ContactError):
    status_code = 500
    default_public_message = "No se pudo enviar el correo"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        response_code: int | None = None,
        response: str | None = None,
        **kwargs,
    ) -> None:
        self.code = code
        self.response_code = response_code
        self.response = response
        super().__init__(message, **kwargs)

    def log_context(self) -> dict:
        return {
            "message": str(self),
            "code": self.code,
            "response_code": self.response_code,
            "response": self.response,
        }


class InternalError(ContactError):
    status_code = 500
    default_public_message = "Error interno"


class PayloadTooLargeError(ContactError):
    status_code = 413
    default_public_message = "Payload demasiado grande"

from dataclasses import dataclass
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ContactCategory(str, Enum):
    QUESTION = "pregunta"
    SUGGESTION = "sugerencia"
    OTHER = "otro"


class ContactRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    email: str | None = None
    type: str | None = None
    message: str | None = None
    recaptcha: str | None = Field(
        default=None,
        validation_alias=AliasChoices("recaptcha", "captchaToken"),
    )


class ContactResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    error: str


@dataclass(frozen=True)
class ContactSubmission:
    name: str
    email: str
    category: ContactCategory
    message: str
    captcha_token: str

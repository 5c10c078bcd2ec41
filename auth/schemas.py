"""
auth/schemas.py -- Pydantic v2 input shapes for the credential actions.

AuthService validates raw values against these models and converts a pydantic
ValidationError into auth.errors.ValidationError with one message per field,
so the same rules apply whether the caller is the JSON API or anything else.

Only the email is normalized (surrounding whitespace dropped, lowercased) so
that one address maps to one account. Passwords are taken byte for byte.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, BeforeValidator, EmailStr, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from auth.errors import ValidationError


def normalize_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


Email = Annotated[EmailStr, BeforeValidator(normalize_email)]


class SignUpForm(BaseModel):
    email: Email
    password: str = Field(min_length=8, max_length=255)
    confirm_password: str = Field(max_length=255)

    @model_validator(mode="after")
    def passwords_match(self) -> "SignUpForm":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class SignInForm(BaseModel):
    email: Email
    password: str = Field(min_length=1, max_length=255)


class EmailForm(BaseModel):
    email: Email


def parse_form(model: type[BaseModel], **values) -> BaseModel:
    """Validate values against model, raising auth.errors.ValidationError on failure.

    Field errors are keyed by field name; errors raised by a model-level
    validator (e.g. password mismatch) are reported against confirm_password.
    """
    try:
        return model(**values)
    except PydanticValidationError as exc:
        fields: dict[str, str] = {}
        for err in exc.errors():
            loc = err.get("loc") or ()
            name = str(loc[0]) if loc else "confirm_password"
            message = err.get("msg", "Invalid value")
            if message.startswith("Value error, "):
                message = message[len("Value error, ") :]
            fields.setdefault(name, message)
        raise ValidationError(fields) from exc

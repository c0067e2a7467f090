"""
Record types for rows crossing the store boundary, and form validation
applied before any guestbook write.
"""

from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.networks import validate_email
from pydantic_core import PydanticCustomError

NAME_TOO_SHORT = "Name must be at least 2 characters"
NAME_TOO_LONG = "Name must be less than 50 characters"
INVALID_EMAIL = "Please enter a valid email address"
EMPTY_MESSAGE = "Message cannot be empty"
EMPTY_COMMENT = "Comment cannot be empty"
PROFANITY_REJECTED = "Fuck, You can't just hate me here darling!"

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50


# =============================================================================
# Records
# =============================================================================


class Record(BaseModel):
    """Immutable row snapshot, built from ORM objects or realtime payloads."""

    model_config = ConfigDict(from_attributes=True, frozen=True)


class Identity(Record):
    """Signed-in visitor as exposed by the session."""

    id: str
    email: str
    name: str
    avatar_url: str | None = None


class UserRecord(Record):
    id: str
    email: str
    name: str
    image: str | None = None
    provider: str
    provider_sub: str

    def to_identity(self) -> Identity:
        return Identity(id=self.id, email=self.email, name=self.name, avatar_url=self.image)


class MessageRecord(Record):
    id: int
    user_id: str | None = None
    user_image: str
    user_name: str
    user_email: str
    msg: str
    created_at: datetime


class LikeRecord(Record):
    id: int
    message_id: int
    user_identifier: str
    user_id: str | None = None
    created_at: datetime


class CommentRecord(Record):
    id: int
    message_id: int
    user_id: str | None = None
    user_image: str
    user_name: str
    user_email: str
    comment: str
    created_at: datetime


class ToggleLikeResult(BaseModel):
    liked: bool
    likes: list[LikeRecord] = []


# =============================================================================
# Forms
# =============================================================================


class ValidationFailed(Exception):
    """Form input rejected; maps field name to the first error message."""

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


class ProfanityClassifier(Protocol):
    async def is_clean(self, text: str) -> bool: ...


class AuthorForm(BaseModel):
    """Optional author fields shared by messages and comments."""

    name: str | None = None
    email: str | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if len(v) < NAME_MIN_LENGTH:
            raise PydanticCustomError("name_too_short", NAME_TOO_SHORT)
        if len(v) > NAME_MAX_LENGTH:
            raise PydanticCustomError("name_too_long", NAME_TOO_LONG)
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        if not v:
            return v
        try:
            validate_email(v)
        except PydanticCustomError:
            raise PydanticCustomError("invalid_email", INVALID_EMAIL)
        return v


class PostForm(AuthorForm):
    msg: str

    @field_validator("msg")
    @classmethod
    def check_msg(cls, v: str) -> str:
        if len(v) < 1:
            raise PydanticCustomError("empty_message", EMPTY_MESSAGE)
        return v


class CommentForm(AuthorForm):
    comment: str

    @field_validator("comment")
    @classmethod
    def check_comment(cls, v: str) -> str:
        if len(v) < 1:
            raise PydanticCustomError("empty_comment", EMPTY_COMMENT)
        return v


def _collect_errors(exc: ValidationError, empty_messages: dict[str, str]) -> dict[str, str]:
    errors: dict[str, str] = {}
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else "__root__"
        message = error["msg"]
        if error["type"] == "missing":
            message = empty_messages.get(field, message)
        errors.setdefault(field, message)
    return errors


async def _validate(
    form_cls: type[AuthorForm],
    body_field: str,
    empty_message: str,
    data: dict[str, Any],
    classifier: ProfanityClassifier,
):
    errors: dict[str, str] = {}
    form = None
    try:
        form = form_cls.model_validate(data)
    except ValidationError as e:
        errors = _collect_errors(e, {body_field: empty_message})

    # Skip the classifier once the body itself is already invalid
    if body_field not in errors:
        body = data.get(body_field) or ""
        if not await classifier.is_clean(body):
            errors[body_field] = PROFANITY_REJECTED

    if errors:
        raise ValidationFailed(errors)
    return form


async def validate_post(data: dict[str, Any], classifier: ProfanityClassifier) -> PostForm:
    """Validate a message submission; raises ValidationFailed."""
    return await _validate(PostForm, "msg", EMPTY_MESSAGE, data, classifier)


async def validate_comment(data: dict[str, Any], classifier: ProfanityClassifier) -> CommentForm:
    """Validate a comment submission; raises ValidationFailed."""
    return await _validate(CommentForm, "comment", EMPTY_COMMENT, data, classifier)


def is_valid_anonymous_name(name: str | None) -> bool:
    """Anonymous actors must give a name of at least two characters."""
    return bool(name and len(name.strip()) >= NAME_MIN_LENGTH)

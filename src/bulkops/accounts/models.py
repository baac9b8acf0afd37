"""Domain models for temporary-mail accounts and their bulk operations.

Wire models mirror the mail API's JSON (camelCase keys); Python code uses
snake_case attribute names. Both spellings are accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Callable, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from bulkops.runtime.batch import OperationFailure, OperationMetrics

DEFAULT_DOMAIN = "duckmail.sbs"
TEST_PASSWORD = "TestPassword123!"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        """Serialize with API (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ─────────────────────────────────────────────────────────────────────────────
# API Resources
# ─────────────────────────────────────────────────────────────────────────────


class Account(_WireModel):
    """A mailbox account as returned by the mail API.

    ``password`` and ``provider_id`` are local: the API never returns them, the
    manager fills them in after creation so accounts can be validated later.
    """

    id: str
    address: str
    quota: NonNegativeInt = 0
    used: NonNegativeInt = 0
    is_disabled: bool = False
    is_deleted: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    password: str | None = Field(default=None, repr=False)
    provider_id: str | None = None

    @property
    def domain(self) -> str:
        return self.address.rpartition("@")[2]

    @property
    def is_active(self) -> bool:
        return not (self.is_disabled or self.is_deleted)


class Sender(_WireModel):
    address: str
    name: str = ""


class Message(_WireModel):
    """Message header as listed by ``GET /messages``."""

    id: str
    account_id: str | None = None
    msgid: str | None = None
    sender: Sender = Field(alias="from")
    to: list[Sender] = Field(default_factory=list)
    subject: str = ""
    intro: str = ""
    seen: bool = False
    is_deleted: bool = False
    has_attachments: bool = False
    size: NonNegativeInt = 0
    download_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def sender_domain(self) -> str:
        return self.sender.address.rpartition("@")[2].lower()


class Domain(_WireModel):
    id: str
    domain: str
    is_active: bool = True
    is_private: bool = False


class Token(_WireModel):
    id: str
    token: str = Field(repr=False)


# ─────────────────────────────────────────────────────────────────────────────
# Bulk Operation Inputs
# ─────────────────────────────────────────────────────────────────────────────


class AccountCreationOptions(BaseModel):
    """Parameters for a bulk account creation.

    Addresses default to ``{email_prefix}-{timestamp}-{i}@{domain}``; an
    ``email_pattern`` with ``{index}``, ``{timestamp}`` and ``{random}``
    placeholders overrides that scheme. ``batch_size`` and ``concurrency``
    override the manager's configuration for this run only.

    Example:
        >>> AccountCreationOptions(count=10, email_prefix="qa", password="S3cret!pass")
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    count: NonNegativeInt
    email_prefix: Annotated[str, Field(min_length=1)] = "bulk"
    domain: Annotated[str, Field(min_length=1)] = DEFAULT_DOMAIN
    password: Annotated[str, Field(min_length=1, repr=False)]
    batch_size: PositiveInt | None = None
    concurrency: PositiveInt | None = None
    email_pattern: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class MessageFilter(BaseModel):
    """Criteria applied to fetched messages. Unset fields match everything.

    ``sender_email`` and ``sender_domain`` accept one value or several; a
    message matches if its sender equals any of them. Keyword lists match
    when any keyword occurs (case-insensitive). ``content_keywords`` search
    the message preview (``intro``), the only body text a listing carries.
    The date bounds are inclusive and exclude messages without ``created_at``.

    Example:
        >>> MessageFilter(sender_domain=["shop.com", "mail.org"], has_attachments=True, min_size=1024)
    """

    model_config = ConfigDict(frozen=True)

    sender_email: tuple[str, ...] = ()
    sender_domain: tuple[str, ...] = ()
    subject_keywords: tuple[str, ...] = ()
    content_keywords: tuple[str, ...] = ()
    is_read: bool | None = None
    has_attachments: bool | None = None
    min_size: NonNegativeInt | None = None
    max_size: NonNegativeInt | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None

    @field_validator("sender_email", "sender_domain", mode="before")
    @classmethod
    def _one_or_many(cls, v: object) -> object:
        return (v,) if isinstance(v, str) else v

    @field_validator("sender_email", "sender_domain", mode="after")
    @classmethod
    def _lowercase(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(s.lower() for s in v)

    @model_validator(mode="after")
    def _check_ranges(self) -> MessageFilter:
        if self.min_size is not None and self.max_size is not None and self.min_size > self.max_size:
            raise ValueError("min_size must not exceed max_size")
        if self.created_after and self.created_before and self.created_after > self.created_before:
            raise ValueError("created_after must not be later than created_before")
        return self

    def matches(self, message: Message) -> bool:
        if self.sender_email and message.sender.address.lower() not in self.sender_email:
            return False
        if self.sender_domain and message.sender_domain not in self.sender_domain:
            return False
        if self.subject_keywords and not _mentions(message.subject, self.subject_keywords):
            return False
        if self.content_keywords and not _mentions(message.intro, self.content_keywords):
            return False
        if self.is_read is not None and message.seen != self.is_read:
            return False
        if self.has_attachments is not None and message.has_attachments != self.has_attachments:
            return False
        if self.min_size is not None and message.size < self.min_size:
            return False
        if self.max_size is not None and message.size > self.max_size:
            return False
        if self.created_after or self.created_before:
            created = message.created_at
            if created is None:
                return False
            if self.created_after and created < self.created_after:
                return False
            if self.created_before and created > self.created_before:
                return False
        return True


def _mentions(text: str, keywords: tuple[str, ...]) -> bool:
    text = text.lower()
    return any(k.lower() in text for k in keywords)


_SORT_KEYS: dict[str, Callable[[Message], Any]] = {
    "created_at": lambda m: m.created_at,
    "updated_at": lambda m: m.updated_at,
    "size": lambda m: m.size,
    "subject": lambda m: m.subject.lower(),
    "from": lambda m: m.sender.address.lower(),
}


class MessageSort(BaseModel):
    """Ordering for each account's retrieved messages; messages lacking the field go last."""

    model_config = ConfigDict(frozen=True)

    field: Literal["created_at", "updated_at", "size", "subject", "from"] = "created_at"
    direction: Literal["asc", "desc"] = "desc"

    def apply(self, messages: list[Message]) -> list[Message]:
        key = _SORT_KEYS[self.field]
        present = [m for m in messages if key(m) is not None]
        missing = [m for m in messages if key(m) is None]
        return sorted(present, key=key, reverse=self.direction == "desc") + missing


# ─────────────────────────────────────────────────────────────────────────────
# Bulk Operation Results
# ─────────────────────────────────────────────────────────────────────────────


class AccountCreationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_attempted: NonNegativeInt = 0
    success_count: NonNegativeInt = 0
    failure_count: NonNegativeInt = 0
    success_rate: float = 0.0
    total_time_ms: float = 0.0
    average_time_per_account_ms: float = 0.0
    cancelled: bool = False


class BulkAccountResult(BaseModel):
    """Outcome of a bulk creation: created accounts plus per-address failures."""

    model_config = ConfigDict(frozen=True)

    successful: list[Account] = Field(default_factory=list)
    failed: list[OperationFailure] = Field(default_factory=list)
    unprocessed: list[str] = Field(default_factory=list)
    metrics: OperationMetrics = Field(default_factory=OperationMetrics)
    summary: AccountCreationSummary = Field(default_factory=AccountCreationSummary)
    metadata: dict[str, Any] = Field(default_factory=dict)


class AccountValidationFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    account: Account
    reason: str
    details: str | None = None
    suggested_fix: str | None = None


class ValidationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_validated: NonNegativeInt = 0
    valid_count: NonNegativeInt = 0
    invalid_count: NonNegativeInt = 0
    validation_rate: float = 0.0


class AccountValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: list[Account] = Field(default_factory=list)
    invalid: list[AccountValidationFailure] = Field(default_factory=list)
    metrics: OperationMetrics = Field(default_factory=OperationMetrics)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)


class MessageRetrievalResult(BaseModel):
    """Messages per account address, plus accounts whose inbox could not be read."""

    model_config = ConfigDict(frozen=True)

    messages: dict[str, list[Message]] = Field(default_factory=dict)
    failed: list[OperationFailure] = Field(default_factory=list)
    metrics: OperationMetrics = Field(default_factory=OperationMetrics)

    @computed_field
    @property
    def total_messages(self) -> int:
        return sum(len(v) for v in self.messages.values())


class AccountStatistics(BaseModel):
    """Aggregate view over a set of accounts."""

    model_config = ConfigDict(frozen=True)

    total: NonNegativeInt = 0
    active: NonNegativeInt = 0
    disabled: NonNegativeInt = 0
    deleted: NonNegativeInt = 0
    total_quota: NonNegativeInt = 0
    total_used: NonNegativeInt = 0
    average_usage: float = 0.0
    providers: dict[str, int] = Field(default_factory=dict)


__all__ = [
    "DEFAULT_DOMAIN",
    "TEST_PASSWORD",
    "Account",
    "Sender",
    "Message",
    "Domain",
    "Token",
    "AccountCreationOptions",
    "MessageFilter",
    "MessageSort",
    "AccountCreationSummary",
    "BulkAccountResult",
    "AccountValidationFailure",
    "ValidationSummary",
    "AccountValidationResult",
    "MessageRetrievalResult",
    "AccountStatistics",
]

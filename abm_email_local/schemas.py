"""
Request and response schemas for sequence generation.

Defines the inbound generation request (account + contact context and
optional generation overrides), the 3-email output sequence, and the
persistence request used when a sequence is saved. Validation comes in two
flavours: ``validate_*`` raises ``SchemaValidationError`` and ``safe_*``
returns a ``SafeParseResult`` with a field-keyed error report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    RootModel,
    ValidationError,
    field_validator,
    model_validator,
)


VARIANT_ID_PATTERN = r"^\d{3}-[A-Z]+-E[123]$"
SUBJECT_MIN_LENGTH = 5
SUBJECT_MAX_LENGTH = 60
BODY_MIN_LENGTH = 100
MIN_WORDS = 150
MAX_WORDS = 200
SEQUENCE_LENGTH = 3
DEFAULT_MODEL = "gpt-4.1-mini"


class EmailAngle(str, Enum):
    """Rhetorical framing of an email, fixed by its position in the sequence."""

    TIMING = "timing"
    CHALLENGE = "challenge"
    OUTCOME = "outcome"


EXPECTED_ANGLES: List[str] = [angle.value for angle in EmailAngle]


class SchemaValidationError(ValueError):
    """Raised by the throwing validators; carries the field-keyed report."""

    def __init__(self, errors: Dict[str, Any]):
        self.errors = errors
        field_count = len(errors.get("field_errors", {}))
        form_count = len(errors.get("form_errors", []))
        super().__init__(f"Schema validation failed ({field_count} field errors, {form_count} form errors)")


# =============================================================================
# Email output schemas
# =============================================================================

class EmailVariant(BaseModel):
    """One generated email as returned by the model."""

    model_config = ConfigDict(use_enum_values=True)

    # Format: "{accountIndex}-{contactId}-E{1|2|3}"
    variant_id: str = Field(pattern=VARIANT_ID_PATTERN)
    email_number: Literal[1, 2, 3]
    subject_line: str = Field(min_length=SUBJECT_MIN_LENGTH, max_length=SUBJECT_MAX_LENGTH)
    body: str = Field(min_length=BODY_MIN_LENGTH)
    word_count: int = Field(ge=MIN_WORDS, le=MAX_WORDS)
    angle: EmailAngle

    @field_validator("subject_line")
    @classmethod
    def subject_not_reply(cls, v: str) -> str:
        if v.lower().startswith("re:"):
            raise ValueError('Subject cannot start with "Re:"')
        return v


class EmailSequence(RootModel[List[EmailVariant]]):
    """Exactly three emails in timing -> challenge -> outcome order."""

    @model_validator(mode="after")
    def check_length_and_angles(self) -> "EmailSequence":
        emails = self.root
        if len(emails) != SEQUENCE_LENGTH:
            raise ValueError(f"Sequence must contain exactly {SEQUENCE_LENGTH} emails")
        angles = [email.angle for email in emails]
        if angles != EXPECTED_ANGLES:
            raise ValueError("Sequence must follow angle order: timing -> challenge -> outcome")
        return self


# =============================================================================
# Request input schemas
# =============================================================================

class TimingSignal(BaseModel):
    """Structured timing triple used in preference to raw signal text."""

    initiative: str
    timing: str
    why_class_fits: Optional[str] = None


class AccountInput(BaseModel):
    """Account context needed for generation."""

    index: int = Field(ge=1, le=999)
    company_name: str = Field(min_length=1)
    tier: str = Field(min_length=1)
    ehr_system: str = Field(min_length=1)

    employee_count: Optional[float] = None
    timing_signals: Optional[str] = None
    ehr_go_live_date: Optional[str] = None
    key_timing_signals: Optional[str] = None

    structured_timing: Optional[TimingSignal] = None

    qualification_summary: Optional[str] = None
    evidence_summary: Optional[str] = None
    news_summary: Optional[str] = None


class ContactInput(BaseModel):
    """
    Contact context needed for generation.

    The email address is deliberately permissive: it feeds personalization
    only and may be empty for incomplete discovery data.
    """

    contact_id: str = Field(min_length=1)
    full_name: str = Field(min_length=1)
    first_name: str = Field(min_length=1)
    title: str = Field(min_length=1)
    email: str

    persona_match: str = ""

    department: Optional[str] = None
    relevance_notes: Optional[str] = None


class GenerationConfig(BaseModel):
    """Per-request overrides for the model call and rulebook."""

    min_words: int = Field(default=MIN_WORDS, ge=100, le=250)
    max_words: int = Field(default=MAX_WORDS, ge=150, le=300)

    model: str = DEFAULT_MODEL
    temperature: float = Field(default=0.7, ge=0, le=1)

    include_klas_evidence: bool = True
    require_warmth_phrase: bool = True

    @model_validator(mode="after")
    def check_word_bounds(self) -> "GenerationConfig":
        if self.min_words > self.max_words:
            raise ValueError("min_words cannot exceed max_words")
        return self


class GenerateRequest(BaseModel):
    """Full body of a generation request."""

    account: AccountInput
    contact: ContactInput
    config: Optional[GenerationConfig] = None


class SaveEmailRequest(BaseModel):
    """Body of a save request at the persistence boundary (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    account_index: int = Field(alias="accountIndex", ge=1)
    account_name: str = Field(alias="accountName", min_length=1)
    contact_id: str = Field(alias="contactId", min_length=1)
    contact_name: str = Field(alias="contactName", min_length=1)
    contact_title: str = Field(alias="contactTitle")
    emails: EmailSequence

    def to_store_payload(self) -> Dict[str, Any]:
        """Serialize with wire aliases for the storage adapter."""
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Validation helpers
# =============================================================================

@dataclass
class SafeParseResult:
    """Outcome of a non-throwing validation."""

    success: bool
    data: Optional[Any] = None
    errors: Dict[str, Any] = field(default_factory=dict)


def flatten_errors(exc: ValidationError) -> Dict[str, Any]:
    """
    Convert a pydantic ValidationError into a field-keyed report.

    Errors with a location are grouped under their dotted path; errors raised
    by whole-model validators land in ``form_errors``.
    """
    form_errors: List[str] = []
    field_errors: Dict[str, List[str]] = {}

    for error in exc.errors():
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        loc = [str(part) for part in error.get("loc", ()) if part != "__root__"]
        if not loc:
            form_errors.append(message)
            continue
        field_errors.setdefault(".".join(loc), []).append(message)

    return {"form_errors": form_errors, "field_errors": field_errors}


def _safe_validate(model: Any, data: Any) -> SafeParseResult:
    try:
        return SafeParseResult(success=True, data=model.model_validate(data))
    except ValidationError as exc:
        return SafeParseResult(success=False, errors=flatten_errors(exc))


def safe_validate_request(data: Any) -> SafeParseResult:
    """Validate a generation request without raising."""
    return _safe_validate(GenerateRequest, data)


def safe_validate_sequence(data: Any) -> SafeParseResult:
    """Validate a candidate 3-email sequence without raising."""
    return _safe_validate(EmailSequence, data)


def safe_validate_save_request(data: Any) -> SafeParseResult:
    """Validate a save request without raising."""
    return _safe_validate(SaveEmailRequest, data)


def validate_generate_request(data: Any) -> GenerateRequest:
    """Validate a generation request, raising SchemaValidationError on failure."""
    result = safe_validate_request(data)
    if not result.success:
        raise SchemaValidationError(result.errors)
    return result.data


def validate_email_sequence(data: Any) -> EmailSequence:
    """Validate an email sequence, raising SchemaValidationError on failure."""
    result = safe_validate_sequence(data)
    if not result.success:
        raise SchemaValidationError(result.errors)
    return result.data

# MERGED: 5 sections with separation comments
#│   │   ├── SECTION 1: Enumerations and state tables
#│   │   ├── SECTION 2: Session schemas
#│   │   ├── SECTION 3: Collaborator contracts (inbound, extraction, outbound)
#│   │   ├── SECTION 4: Component results
#│   │   └── SECTION 5: Engine result
"""
================================================================================
FILE: permit_session/pipeline/schemas.py
================================================================================

PURPOSE:
    Pydantic data models for the session engine. Single source of truth for
    the persisted Session record, the collaborator contracts and the results
    components hand back to each other.

WORKFLOW:
    1. SECTION 1: StateType / FieldKey enumerations and the allowed
       (type, context) table
    2. SECTION 2: Session, SessionData and the field groups
    3. SECTION 3: InboundMessage, ExtractionRequest/Result, OutboundMessage
    4. SECTION 4: FieldValidationResult, RateLimitDecision, ErrorStatistics
    5. SECTION 5: EngineResult

IMPORTS:
    - pydantic: Data validation and JSON (de)serialization
    - datetime: Timestamps (UTC)
    - enum: Enumerations

KEY FACTS:
    - A Session is constructed only with a valid (type, context) pairing;
      anything else raises InvalidStateError
    - Form data is a fixed, explicit field set: every FieldKey belongs to
      exactly one FieldGroup
    - completed_fields never contains a key twice; history keeps the last 5
    - Extraction payloads use camelCase on the wire (aliases)

TESTING ENVIRONMENT:
    - Build sessions with Session.new("5215512345678")
    - Round-trip with model_dump_json / model_validate_json
"""

# ================================================================================
# IMPORTS
# ================================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from permit_session.config.constants import SESSION_HISTORY_LIMIT
from permit_session.core.exceptions import InvalidStateError

# ================================================================================
# SECTION 1: ENUMERATIONS AND STATE TABLES
# ================================================================================

class StateType(str, Enum):
    """Top-level conversation state"""
    IDLE = "idle"
    MENU = "menu"
    FORM = "form"
    CONFIRMATION = "confirmation"
    STATUS = "status"
    HELP = "help"
    ERROR = "error"
    NOTIFICATION = "notification"


VALID_CONTEXTS: Dict[StateType, Tuple[str, ...]] = {
    StateType.IDLE: (),
    StateType.MENU: ("main", "privacy", "quick_actions", "renewal", "draft", "status"),
    StateType.FORM: ("new_permit", "renewal_edit", "privacy_consent", "field_edit"),
    StateType.CONFIRMATION: ("permit_data", "renewal_data", "privacy_acceptance", "payment"),
    StateType.STATUS: ("checking", "managing", "selecting"),
    StateType.HELP: ("general", "form_help", "payment_help"),
    StateType.ERROR: ("validation", "system", "rate_limit", "recovery"),
    StateType.NOTIFICATION: ("permit_ready", "reminder", "delivery"),
}


def make_state_key(state_type: Union[StateType, str], context: Optional[str]) -> str:
    """'type:context', or just 'type' when there is no context."""
    value = state_type.value if isinstance(state_type, StateType) else str(state_type)
    return f"{value}:{context}" if context else value


def ensure_valid_state(
    state_type: Union[StateType, str],
    context: Optional[str],
) -> StateType:
    """
    Check a (type, context) pairing against VALID_CONTEXTS.

    Returns:
        The StateType enum member

    Raises:
        InvalidStateError: unknown type, or context not allowed for the type
    """
    try:
        resolved = StateType(state_type)
    except ValueError:
        raise InvalidStateError(
            f"Unknown state type: {state_type}",
            context={"state_type": str(state_type), "state_context": context},
        )

    allowed = VALID_CONTEXTS[resolved]
    if context is None:
        if allowed and resolved is not StateType.IDLE:
            raise InvalidStateError(
                f"State type {resolved.value} requires a context",
                context={"state_type": resolved.value, "allowed": list(allowed)},
            )
        return resolved

    if context not in allowed:
        raise InvalidStateError(
            f"Invalid context '{context}' for state type {resolved.value}",
            context={"state_type": resolved.value, "state_context": context, "allowed": list(allowed)},
        )
    return resolved


class FieldGroup(str, Enum):
    """Form data groups"""
    PERSONAL = "personal"
    VEHICLE = "vehicle"


class FieldKey(str, Enum):
    """Every form field the intake collects"""
    NOMBRE_COMPLETO = "nombre_completo"
    CURP_RFC = "curp_rfc"
    DOMICILIO = "domicilio"
    EMAIL = "email"
    MARCA = "marca"
    LINEA = "linea"
    COLOR = "color"
    NUMERO_SERIE = "numero_serie"
    NUMERO_MOTOR = "numero_motor"
    ANO_MODELO = "ano_modelo"


FIELD_GROUPS: Dict[FieldKey, FieldGroup] = {
    FieldKey.NOMBRE_COMPLETO: FieldGroup.PERSONAL,
    FieldKey.CURP_RFC: FieldGroup.PERSONAL,
    FieldKey.DOMICILIO: FieldGroup.PERSONAL,
    FieldKey.EMAIL: FieldGroup.PERSONAL,
    FieldKey.MARCA: FieldGroup.VEHICLE,
    FieldKey.LINEA: FieldGroup.VEHICLE,
    FieldKey.COLOR: FieldGroup.VEHICLE,
    FieldKey.NUMERO_SERIE: FieldGroup.VEHICLE,
    FieldKey.NUMERO_MOTOR: FieldGroup.VEHICLE,
    FieldKey.ANO_MODELO: FieldGroup.VEHICLE,
}

# Required fields, in the order they are asked
PERSONAL_FIELDS: Tuple[FieldKey, ...] = (
    FieldKey.NOMBRE_COMPLETO,
    FieldKey.CURP_RFC,
    FieldKey.DOMICILIO,
)
VEHICLE_FIELDS: Tuple[FieldKey, ...] = (
    FieldKey.MARCA,
    FieldKey.LINEA,
    FieldKey.COLOR,
    FieldKey.NUMERO_SERIE,
    FieldKey.NUMERO_MOTOR,
    FieldKey.ANO_MODELO,
)
FIELD_ORDER: Tuple[FieldKey, ...] = PERSONAL_FIELDS + VEHICLE_FIELDS


def parse_field_key(value: str) -> Optional[FieldKey]:
    """FieldKey for a wire name, None when it is not a known field."""
    try:
        return FieldKey(value)
    except ValueError:
        return None


def utc_from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)

# ================================================================================
# SECTION 2: SESSION SCHEMAS
# ================================================================================

class PersonalInfo(BaseModel):
    """Applicant fields"""
    nombre_completo: Optional[str] = None
    curp_rfc: Optional[str] = None
    domicilio: Optional[str] = None
    email: Optional[str] = None


class VehicleInfo(BaseModel):
    """Vehicle fields"""
    marca: Optional[str] = None
    linea: Optional[str] = None
    color: Optional[str] = None
    numero_serie: Optional[str] = None
    numero_motor: Optional[str] = None
    ano_modelo: Optional[str] = None


class SessionData(BaseModel):
    """
    Collected form data plus a free-form payload for the current state.

    extra holds state-scoped values such as the field being edited or the
    recovery options offered after an error.
    """
    personal: PersonalInfo = Field(default_factory=PersonalInfo)
    vehicle: VehicleInfo = Field(default_factory=VehicleInfo)
    extra: Dict[str, Any] = Field(default_factory=dict)

    def _group_model(self, field: FieldKey) -> BaseModel:
        return self.personal if FIELD_GROUPS[field] is FieldGroup.PERSONAL else self.vehicle

    def get_field(self, field: FieldKey) -> Optional[str]:
        return getattr(self._group_model(field), field.value)

    def set_field(self, field: FieldKey, value: Optional[str]) -> None:
        setattr(self._group_model(field), field.value, value)

    def collected(self) -> Dict[str, str]:
        """Every non-empty field value keyed by wire name."""
        values = {}
        for field in FieldKey:
            value = self.get_field(field)
            if value:
                values[field.value] = value
        return values


class Session(BaseModel):
    """
    Persisted per-identity conversation record.

    The stored JSON is exactly model_dump_json(); state_key is derived and
    ignored on load.
    """

    identity: str = Field(..., min_length=1)
    state_type: StateType = StateType.IDLE
    state_context: Optional[str] = None
    data: SessionData = Field(default_factory=SessionData)
    completed_fields: List[FieldKey] = Field(default_factory=list)
    attempts: Dict[FieldKey, int] = Field(default_factory=dict)
    history: List[str] = Field(default_factory=list)
    return_to: Optional["Session"] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    application_id: Optional[str] = None
    payment_info: Optional[Dict[str, Any]] = None

    @computed_field  # type: ignore[misc]
    @property
    def state_key(self) -> str:
        return make_state_key(self.state_type, self.state_context)

    @field_validator("completed_fields")
    @classmethod
    def _unique_completed(cls, v: List[FieldKey]) -> List[FieldKey]:
        seen: List[FieldKey] = []
        for field in v:
            if field not in seen:
                seen.append(field)
        return seen

    @field_validator("history")
    @classmethod
    def _bounded_history(cls, v: List[str]) -> List[str]:
        return v[-SESSION_HISTORY_LIMIT:]

    @model_validator(mode="after")
    def _valid_state(self) -> "Session":
        ensure_valid_state(self.state_type, self.state_context)
        return self

    @classmethod
    def new(cls, identity: str, now: Optional[float] = None) -> "Session":
        """Fresh idle session."""
        stamp = utc_from_timestamp(now) if now is not None else datetime.now(timezone.utc)
        return cls(identity=identity, created_at=stamp, last_activity_at=stamp)

    def snapshot(self) -> "Session":
        """Deep copy without its own return_to (help snapshots never nest)."""
        return self.model_copy(update={"return_to": None}, deep=True)


Session.model_rebuild()


class CompletionStatus(BaseModel):
    """Progress of the required field set"""
    personal_complete: bool
    vehicle_complete: bool
    is_complete: bool
    missing_personal: List[FieldKey] = Field(default_factory=list)
    missing_vehicle: List[FieldKey] = Field(default_factory=list)
    completed: int = 0
    total: int = len(FIELD_ORDER)

    @computed_field  # type: ignore[misc]
    @property
    def percentage(self) -> int:
        return round(self.completed * 100 / self.total) if self.total else 100

# ================================================================================
# SECTION 3: COLLABORATOR CONTRACTS
# ================================================================================

class InboundMessage(BaseModel):
    """Message handed over by the transport collaborator"""
    identity: str = Field(..., min_length=1, description="Sender phone number")
    text: str = Field(..., alias="rawText", description="Raw message text")
    message_id: Optional[str] = Field(None, alias="messageId", description="Provider message id")
    received_at: Optional[float] = Field(None, alias="receivedAt", description="Epoch seconds (defaults to now)")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "identity": "5215512345678",
                "rawText": "Juan Pérez López",
                "messageId": "wamid.HBgNNTIxNTUxMjM0NTY3OBUCABEYEjU",
            }
        }
    )


class Intent(str, Enum):
    """User intent reported by the extraction collaborator"""
    PROVIDING_INFO = "providing_info"
    ASKING_QUESTION = "asking_question"
    CORRECTING = "correcting"
    CONFIRMING = "confirming"
    CANCELLING = "cancelling"
    OTHER = "other"


class ExtractionIssue(BaseModel):
    """Field-level problem spotted by the extractor"""
    field: Optional[str] = None
    error: str
    suggestion: Optional[str] = None


class ExtractionRequest(BaseModel):
    """Payload sent to the extraction collaborator"""
    model_config = ConfigDict(populate_by_name=True)

    raw_text: str = Field(..., alias="rawText")
    current_state_key: str = Field(..., alias="currentStateKey")
    expected_field: Optional[FieldKey] = Field(None, alias="expectedField")
    collected_data: Dict[str, str] = Field(default_factory=dict, alias="collectedData")


class ExtractionResult(BaseModel):
    """Structured output of the extraction collaborator"""
    model_config = ConfigDict(populate_by_name=True)

    extracted_fields: Dict[str, Any] = Field(default_factory=dict, alias="extractedFields")
    validation_errors: List[ExtractionIssue] = Field(default_factory=list, alias="validationErrors")
    intent: Intent = Intent.PROVIDING_INFO
    clarification_question: Optional[str] = Field(None, alias="clarificationQuestion")
    confidence: Dict[str, float] = Field(default_factory=dict)


class PromptOption(BaseModel):
    """One numbered choice"""
    key: str
    label: str


class StructuredPrompt(BaseModel):
    """Body text with numbered options"""
    body: str
    options: List[PromptOption] = Field(default_factory=list)


class OutboundMessage(BaseModel):
    """Plain text or structured prompt for the transport collaborator"""
    text: Optional[str] = None
    prompt: Optional[StructuredPrompt] = None

    @model_validator(mode="after")
    def _one_payload(self) -> "OutboundMessage":
        if (self.text is None) == (self.prompt is None):
            raise ValueError("OutboundMessage needs exactly one of text or prompt")
        return self

    @classmethod
    def plain(cls, text: str) -> "OutboundMessage":
        return cls(text=text)

    @classmethod
    def choices(cls, body: str, options: List[Tuple[str, str]]) -> "OutboundMessage":
        return cls(prompt=StructuredPrompt(
            body=body,
            options=[PromptOption(key=k, label=label) for k, label in options],
        ))

    def render_text(self) -> str:
        """Numbered-text rendering used by text-only transports."""
        if self.text is not None:
            return self.text
        lines = [self.prompt.body]
        if self.prompt.options:
            lines.append("")
            lines.extend(f"{opt.key}. {opt.label}" for opt in self.prompt.options)
        return "\n".join(lines)

# ================================================================================
# SECTION 4: COMPONENT RESULTS
# ================================================================================

class FieldValidationResult(BaseModel):
    """Outcome of validating one field value"""
    valid: bool
    sanitized_value: Optional[str] = None
    error: Optional[str] = None


class RateLimitScope(str, Enum):
    USER = "user"
    GLOBAL = "global"
    STATE = "state"


class RateLimitDecision(BaseModel):
    """Outcome of consuming one rate-limit point"""
    allowed: bool
    scope: RateLimitScope
    remaining: int = 0
    retry_after: float = 0.0


class ErrorStatistics(BaseModel):
    """Read-only monitoring snapshot of the error tracker"""
    model_config = ConfigDict(populate_by_name=True)

    active_error_tracking: int = Field(0, alias="activeErrorTracking")
    recent_error_total: int = Field(0, alias="recentErrorTotal")


class ValidationIssue(BaseModel):
    """Rejected input found while applying a message to the session"""
    field: Optional[FieldKey] = None
    message: str
    attempts: int = 0

# ================================================================================
# SECTION 5: ENGINE RESULT
# ================================================================================

class EngineStatus(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    SUSPENDED = "suspended"
    RECOVERED = "recovered"


class EngineResult(BaseModel):
    """What handle_message did with one inbound message"""
    status: EngineStatus
    state_key: Optional[str] = None
    replies: List[OutboundMessage] = Field(default_factory=list)
    error_id: Optional[str] = None
    error_kind: Optional[str] = None

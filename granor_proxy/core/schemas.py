from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError
from pydantic import field_validator, model_validator

TRANSACTION_TYPES = ("income", "expense", "credit_card_reversal", "transfer")
TransactionType = Literal["income", "expense", "credit_card_reversal", "transfer"]

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d/%m/%Y %H:%M",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H:%M:%S",
)


@dataclass(frozen=True)
class FieldSpec:
    label: str
    json_schema: dict
    optional: bool = False
    nullable: bool = False

    def prompt_type(self) -> str:
        text = self.label
        if self.nullable:
            text = f"{text} | null"
        if self.optional:
            text = f"{text} (opcional)"
        return text


_STRING = {"type": "string"}
_BOOLEAN = {"type": "boolean"}

# Single source for the prompt contract and the structured-output schema.
FIELD_TABLE = {
    "amount": FieldSpec("number", {"type": "number", "description": "Valor positivo da transação."}),
    "category": FieldSpec("string", {"type": "string", "description": "Nome da categoria."}),
    "date": FieldSpec(
        "Date",
        {
            "anyOf": [{"type": "string", "format": "date-time"}, {"type": "null"}],
            "description": "Data ISO 8601 informada pelo usuário, ou null.",
        },
        nullable=True,
    ),
    "description": FieldSpec("string", dict(_STRING)),
    "type": FieldSpec(
        " | ".join(f'"{value}"' for value in TRANSACTION_TYPES),
        {"type": "string", "enum": list(TRANSACTION_TYPES)},
    ),
    "efetivado": FieldSpec("boolean", dict(_BOOLEAN)),
    "accountId": FieldSpec("string", dict(_STRING), optional=True),
    "creditCardId": FieldSpec("string", dict(_STRING), optional=True),
    "destinationAccountId": FieldSpec("string", dict(_STRING), optional=True),
    "isBudget": FieldSpec("boolean", dict(_BOOLEAN), optional=True),
    "isFixed": FieldSpec("boolean", dict(_BOOLEAN)),
    "isRecurring": FieldSpec("boolean", dict(_BOOLEAN), optional=True),
    "iaReply": FieldSpec("string", {"type": "string", "description": "Comentário ou pergunta do assistente."}),
    "iaDoubt": FieldSpec("boolean", dict(_BOOLEAN), optional=True),
}


def candidate_json_schema() -> dict:
    """JSON schema handed to the schema-constrained generation."""
    return {
        "title": "TransactionCandidate",
        "description": "Transação financeira interpretada a partir da mensagem do usuário.",
        "type": "object",
        "properties": {name: dict(spec.json_schema) for name, spec in FIELD_TABLE.items()},
        "required": [name for name, spec in FIELD_TABLE.items() if not spec.optional],
    }


def parse_date(value):
    """Coerce ``value`` into a datetime, returning None when it can't."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    return None


class CandidateValidationError(ValueError):
    """The structured object did not satisfy the transaction contract."""

    def __init__(self, problems):
        self.problems = problems
        summary = "; ".join(f"{loc}: {msg}" for loc, msg in problems)
        super().__init__(f"Invalid transaction candidate: {summary}")


class TransactionCandidate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: float = Field(ge=0, strict=True)
    category: StrictStr
    date: Optional[datetime] = None
    description: StrictStr
    type: TransactionType
    efetivado: StrictBool
    accountId: Optional[StrictStr] = None
    creditCardId: Optional[StrictStr] = None
    destinationAccountId: Optional[StrictStr] = None
    isBudget: Optional[StrictBool] = None
    isFixed: StrictBool
    isRecurring: Optional[StrictBool] = None
    iaReply: StrictStr
    iaDoubt: Optional[StrictBool] = None

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value):
        return parse_date(value)

    @field_validator("accountId", "creditCardId", "destinationAccountId", mode="before")
    @classmethod
    def _blank_reference(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _single_funding_source(self):
        if self.type != "transfer" and self.accountId and self.creditCardId:
            raise ValueError("accountId and creditCardId cannot both be set unless type is transfer")
        return self

    @model_validator(mode="after")
    def _positive_amount(self):
        # A clarification question may still be missing the value.
        if not self.iaDoubt and self.amount <= 0:
            raise ValueError("amount must be greater than 0 unless iaDoubt is set")
        return self


def validate_candidate(payload) -> TransactionCandidate:
    if isinstance(payload, TransactionCandidate):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    if not isinstance(payload, dict):
        raise CandidateValidationError([("__root__", f"expected an object, got {type(payload).__name__}")])
    try:
        return TransactionCandidate.model_validate(payload)
    except ValidationError as exc:
        problems = [
            (".".join(str(part) for part in error["loc"]) or "__root__", error["msg"])
            for error in exc.errors()
        ]
        raise CandidateValidationError(problems) from exc


@dataclass(frozen=True)
class ResolvedRef:
    id: str


@dataclass(frozen=True)
class UnresolvedRef:
    name: str


Reference = Union[ResolvedRef, UnresolvedRef]


def reference_value(ref: Optional[Reference]) -> Optional[str]:
    if isinstance(ref, ResolvedRef):
        return ref.id
    if isinstance(ref, UnresolvedRef):
        return ref.name
    return None


@dataclass(frozen=True)
class ResolvedTransaction:
    amount: float
    category: str
    date: datetime
    description: str
    type: str
    efetivado: bool
    isFixed: bool
    iaReply: str
    account: Optional[Reference] = None
    creditCard: Optional[Reference] = None
    destinationAccount: Optional[Reference] = None
    isBudget: Optional[bool] = None
    isRecurring: Optional[bool] = None
    iaDoubt: Optional[bool] = None

    @property
    def accountId(self):
        return reference_value(self.account)

    @property
    def creditCardId(self):
        return reference_value(self.creditCard)

    @property
    def destinationAccountId(self):
        return reference_value(self.destinationAccount)

    @property
    def needs_reconciliation(self) -> bool:
        return any(
            isinstance(ref, UnresolvedRef)
            for ref in (self.account, self.creditCard, self.destinationAccount)
        )

    def to_document(self) -> dict:
        """Firestore representation; optional fields are left out when absent."""
        doc = {
            "date": self.date,
            "description": self.description,
            "amount": self.amount,
            "type": self.type,
            "category": self.category,
            "efetivado": self.efetivado,
            "isFixed": self.isFixed,
            "iaReply": self.iaReply,
        }
        optional = {
            "accountId": self.accountId,
            "creditCardId": self.creditCardId,
            "destinationAccountId": self.destinationAccountId,
            "isBudget": self.isBudget,
            "isRecurring": self.isRecurring,
            "iaDoubt": self.iaDoubt,
        }
        doc.update({key: value for key, value in optional.items() if value is not None})
        if self.needs_reconciliation:
            doc["needsReconciliation"] = True
        return doc

import logging
import re
import unicodedata
from datetime import datetime
from zoneinfo import ZoneInfo

from .schemas import ResolvedRef, ResolvedTransaction, TransactionCandidate, UnresolvedRef

LOGGER = logging.getLogger("granor_proxy.resolver")

REFERENCE_TIMEZONE = ZoneInfo("America/Sao_Paulo")


def normalize_name(value) -> str:
    decomposed = unicodedata.normalize("NFD", str(value or ""))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    lowered = re.sub(r"[^a-z0-9\s]", "", stripped.lower())
    return " ".join(lowered.split())


def now_in(tz=REFERENCE_TIMEZONE):
    return datetime.now(tz)


def resolve_date(value, tz=REFERENCE_TIMEZONE, now=None):
    if value is None:
        return now or now_in(tz)
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def resolve_reference(value, records, kind="account"):
    """Map a free-text reference to ``ResolvedRef`` or keep it ``UnresolvedRef``.

    A value that already equals a record id resolves to itself, so running
    this twice is a no-op.
    """
    if isinstance(value, ResolvedRef):
        return value
    if isinstance(value, UnresolvedRef):
        value = value.name
    if not value:
        return None

    if any(record.get("id") == value for record in records):
        return ResolvedRef(value)

    target = normalize_name(value)
    if target:
        for record in records:
            if normalize_name(record.get("name")) == target:
                return ResolvedRef(record["id"])

    LOGGER.warning("No %s matches %r; keeping the unresolved name for reconciliation", kind, value)
    return UnresolvedRef(value)


def resolve_category(label, categories):
    target = normalize_name(label)
    for category in categories:
        name = category.get("name")
        if name and normalize_name(name) == target:
            return name
    if categories:
        LOGGER.info("Category %r not found among the user's categories", label)
    return label


def resolve_candidate(candidate: TransactionCandidate, accounts=(), credit_cards=(), categories=(),
                      tz=REFERENCE_TIMEZONE, now=None) -> ResolvedTransaction:
    return ResolvedTransaction(
        amount=candidate.amount,
        category=resolve_category(candidate.category, categories),
        date=resolve_date(candidate.date, tz=tz, now=now),
        description=candidate.description,
        type=candidate.type,
        efetivado=candidate.efetivado,
        isFixed=candidate.isFixed,
        iaReply=candidate.iaReply,
        account=resolve_reference(candidate.accountId, accounts, "account"),
        creditCard=resolve_reference(candidate.creditCardId, credit_cards, "credit card"),
        destinationAccount=resolve_reference(candidate.destinationAccountId, accounts, "destination account"),
        isBudget=candidate.isBudget,
        isRecurring=candidate.isRecurring,
        iaDoubt=candidate.iaDoubt,
    )

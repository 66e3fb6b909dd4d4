from .agent import Interpretation, TransactionInterpreter
from .pipeline import AgentPipeline, TurnResult, extract_message
from .resolver import normalize_name, resolve_candidate, resolve_reference
from .router import route_turn
from .schemas import FIELD_TABLE, ResolvedTransaction, TransactionCandidate, validate_candidate

__all__ = [
    "AgentPipeline",
    "FIELD_TABLE",
    "Interpretation",
    "ResolvedTransaction",
    "TransactionCandidate",
    "TransactionInterpreter",
    "TurnResult",
    "extract_message",
    "normalize_name",
    "resolve_candidate",
    "resolve_reference",
    "route_turn",
    "validate_candidate",
]

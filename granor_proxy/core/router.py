from .schemas import ResolvedTransaction, TransactionCandidate

FALLBACK_REPLY = "❌ Não foi possível entender a transação."
DESTINATION_QUESTION = "Para qual conta você deseja transferir?"


def _doubt_reply(question):
    return f"🤔 Dúvida: {question}"


def route_turn(transaction: ResolvedTransaction | TransactionCandidate | None, raw_text: str = ""):
    """Decide what happens to a turn.

    Returns ``{"action": "commit"}``, ``{"action": "clarify", "message": ...}``
    or ``{"action": "fallback", "message": ...}``. Only ``commit`` may reach
    the store.
    """
    if transaction is None:
        return {"action": "fallback", "message": (raw_text or "").strip() or FALLBACK_REPLY}

    if transaction.iaDoubt:
        question = transaction.iaReply.strip() or FALLBACK_REPLY
        return {"action": "clarify", "message": _doubt_reply(question)}

    if transaction.type == "transfer" and not transaction.destinationAccountId:
        return {"action": "clarify", "message": _doubt_reply(DESTINATION_QUESTION)}

    return {"action": "commit"}

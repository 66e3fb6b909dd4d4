import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional

from granor_proxy.config import Settings

from .errors import (
    STATUS_COMMITTED,
    STATUS_FAILED,
    STATUS_NEEDS_INPUT,
    EmptyMessageError,
    IdentificationError,
    InterpretationError,
    NotificationError,
    PersistenceError,
)
from .notifier import resolve_channel
from .resolver import resolve_candidate
from .router import route_turn

ACK_MESSAGE = "Processando..."

TYPE_LABELS = {
    "income": "Receita",
    "expense": "Despesa",
    "transfer": "Transferência",
    "credit_card_reversal": "Estorno de Cartão de Crédito",
}


def extract_message(body) -> str:
    """Pull the user's text out of a Telegram update, a flat payload or raw text."""
    if body is None:
        return ""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        return body.strip()

    value = body
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, dict) and message.get("text") is not None:
            value = message["text"]
        elif body.get("text") is not None:
            value = body["text"]
        elif message is not None:
            value = message

    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict) and isinstance(value.get("text"), str):
        return value["text"].strip()
    return json.dumps(value, ensure_ascii=False, default=str)


def extract_chat_id(body):
    if not isinstance(body, dict):
        return None
    message = body.get("message")
    if not isinstance(message, dict):
        return None
    chat = message.get("chat")
    if isinstance(chat, dict):
        return chat.get("id")
    return None


def format_brl(amount) -> str:
    text = f"{amount:,.2f}"
    return "R$" + text.replace(",", "_").replace(".", ",").replace("_", ".")


def build_confirmation(transaction, original_message, raw_text) -> str:
    label = TYPE_LABELS.get(transaction.type, "Transação")
    lines = [
        f"✅ {label} de {format_brl(transaction.amount)} registrada na categoria {transaction.category}.",
        f"Solicitação original: {original_message}",
        f"Resposta do assistente: {transaction.iaReply}",
    ]
    if raw_text:
        lines.append(f"Interpretação: {raw_text}")
    return "\n\n".join(lines)


@dataclass(frozen=True)
class TurnResult:
    status: str
    reply: str
    transaction_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == STATUS_COMMITTED

    def to_body(self) -> dict:
        body = {"success": self.success, "status": self.status, "reply": self.reply}
        if self.transaction_id:
            body["transactionId"] = self.transaction_id
        return body


class AgentPipeline:
    """One chat turn: interpret, resolve, route, then store and notify."""

    def __init__(self, interpreter, store, notifier, settings: Settings | None = None):
        self.interpreter = interpreter
        self.store = store
        self.notifier = notifier
        self.settings = settings or Settings()
        self._logger = logging.getLogger("granor_proxy.pipeline")

    async def _storage(self, awaitable, what):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.settings.storage_timeout)
        except asyncio.TimeoutError as exc:
            raise PersistenceError(f"Timed out trying to {what}") from exc
        except Exception as exc:
            self._logger.exception("Storage failed to %s: %s", what, exc)
            raise PersistenceError(f"Failed to {what}: {exc}") from exc

    async def _notify(self, channel, text):
        try:
            await asyncio.wait_for(
                self.notifier.send_message(channel, text),
                timeout=self.settings.notify_timeout,
            )
        except asyncio.TimeoutError:
            self._logger.error("Chat notification timed out for chat %s", channel.chat_id)
        except NotificationError as exc:
            self._logger.error("Chat notification failed: %s", exc.detail)
        except Exception as exc:
            self._logger.exception("Unexpected chat notification failure: %s", exc)

    async def _load_channel(self, user_id, body):
        try:
            preferences = await asyncio.wait_for(
                self.store.get_preferences(user_id),
                timeout=self.settings.storage_timeout,
            )
        except Exception as exc:
            self._logger.warning("Could not read preferences for %s, using defaults: %s", user_id, exc)
            preferences = {}
        return resolve_channel(
            inbound_chat_id=extract_chat_id(body),
            preferences=preferences,
            default_token=self.settings.telegram_token,
            default_chat_id=self.settings.telegram_chat_id,
        )

    async def _load_references(self, user_id):
        return await self._storage(
            asyncio.gather(
                self.store.list_accounts(user_id),
                self.store.list_credit_cards(user_id),
                self.store.list_categories(user_id),
            ),
            "read accounts, credit cards and categories",
        )

    async def process(self, user_id, body) -> TurnResult:
        user_id = str(user_id or "").strip()
        if not user_id:
            raise IdentificationError("Request without userId")

        message = extract_message(body)
        if not message:
            raise EmptyMessageError(f"Empty message for user {user_id}")
        self._logger.info("Turn for %s: %s", user_id, message)

        channel = await self._load_channel(user_id, body)
        if self.settings.send_ack:
            await self._notify(channel, ACK_MESSAGE)

        try:
            interpretation = await self.interpreter.interpret(message)
        except InterpretationError as exc:
            await self._notify(channel, exc.reply)
            raise

        if interpretation.candidate is None:
            decision = route_turn(None, interpretation.raw_text)
            await self._notify(channel, decision["message"])
            return TurnResult(STATUS_FAILED, decision["message"])

        # A doubt is answered without touching storage.
        if interpretation.candidate.iaDoubt:
            decision = route_turn(interpretation.candidate, interpretation.raw_text)
            await self._notify(channel, decision["message"])
            return TurnResult(STATUS_NEEDS_INPUT, decision["message"])

        accounts, credit_cards, categories = await self._load_references(user_id)
        resolved = resolve_candidate(
            interpretation.candidate,
            accounts=accounts,
            credit_cards=credit_cards,
            categories=categories,
            tz=self.settings.timezone,
        )

        decision = route_turn(resolved, interpretation.raw_text)
        if decision["action"] == "clarify":
            await self._notify(channel, decision["message"])
            return TurnResult(STATUS_NEEDS_INPUT, decision["message"])

        transaction_id = await self._storage(
            self.store.add_transaction(user_id, resolved),
            "write the transaction",
        )
        reply = build_confirmation(resolved, message, interpretation.raw_text)
        await self._notify(channel, reply)
        return TurnResult(STATUS_COMMITTED, reply, transaction_id)

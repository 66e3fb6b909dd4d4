import asyncio
import logging
from datetime import datetime, timedelta

import httpx
import pytest

from granor_proxy.config import Settings
from granor_proxy.core.agent import TransactionInterpreter
from granor_proxy.core.errors import (
    STATUS_COMMITTED,
    STATUS_FAILED,
    STATUS_NEEDS_INPUT,
    EmptyMessageError,
    IdentificationError,
    InterpretationError,
    PersistenceError,
)
from granor_proxy.core.notifier import TelegramNotifier
from granor_proxy.core.pipeline import (
    ACK_MESSAGE,
    AgentPipeline,
    build_confirmation,
    extract_chat_id,
    extract_message,
    format_brl,
)

from fakes import SAO_PAULO, FakeChatModel, FakeNotifier, FakeStore, candidate_payload, make_resolved

ACCOUNTS = [{"id": "acc-main", "name": "Banco Principal"}]


def _pipeline(structured=None, text="raw", store=None, notifier=None, llm=None, **settings):
    settings.setdefault("telegram_token", "bot-token")
    settings.setdefault("telegram_chat_id", "999")
    settings.setdefault("send_ack", False)
    llm = llm or FakeChatModel(text=text, structured=structured)
    pipeline = AgentPipeline(
        TransactionInterpreter(llm=llm),
        store or FakeStore(accounts=ACCOUNTS),
        notifier or FakeNotifier(),
        Settings(**settings),
    )
    return pipeline, llm


def _run(pipeline, user_id, body):
    return asyncio.run(pipeline.process(user_id, body))


def test_expense_is_committed_with_today_in_reference_timezone():
    store = FakeStore(accounts=ACCOUNTS)
    notifier = FakeNotifier()
    pipeline, _ = _pipeline(structured=candidate_payload(), store=store, notifier=notifier)

    result = _run(pipeline, "user-1", {"message": {"text": "gastei 50 reais com uber hoje", "chat": {"id": 42}}})

    assert result.status == STATUS_COMMITTED
    assert result.success is True
    assert result.transaction_id == "tx1"
    [doc] = store.transactions["user-1"]
    assert doc["type"] == "expense"
    assert doc["amount"] == 50
    assert doc["efetivado"] is True
    assert doc["isFixed"] is False
    assert doc["date"].date() == datetime.now(SAO_PAULO).date()
    assert abs(doc["date"] - datetime.now(SAO_PAULO)) < timedelta(seconds=5)
    [(channel, text)] = notifier.sent
    assert channel.chat_id == "42"
    assert text == result.reply
    assert "gastei 50 reais com uber hoje" in text


def test_transfer_without_destination_needs_input_and_is_not_stored():
    store = FakeStore(accounts=ACCOUNTS)
    notifier = FakeNotifier()
    structured = candidate_payload(
        amount=200,
        type="transfer",
        category="Transferência",
        iaDoubt=True,
        iaReply="Para qual conta você quer transferir?",
    )
    pipeline, _ = _pipeline(structured=structured, store=store, notifier=notifier)

    result = _run(pipeline, "user-1", {"text": "transferir 200 para minha poupança"})

    assert result.status == STATUS_NEEDS_INPUT
    assert result.success is False
    assert "Para qual conta" in result.reply
    assert store.transactions == {}
    assert notifier.sent[-1][1] == result.reply


def test_unknown_account_is_stored_unresolved(caplog):
    store = FakeStore(accounts=ACCOUNTS)
    pipeline, _ = _pipeline(structured=candidate_payload(accountId="banco xpto"), store=store)

    with caplog.at_level(logging.WARNING, logger="granor_proxy.resolver"):
        result = _run(pipeline, "user-1", "paguei 30 no mercado com o banco xpto")

    assert result.status == STATUS_COMMITTED
    [doc] = store.transactions["user-1"]
    assert doc["accountId"] == "banco xpto"
    assert doc["needsReconciliation"] is True
    assert "banco xpto" in caplog.text


def test_known_account_name_is_replaced_by_its_id():
    store = FakeStore(accounts=ACCOUNTS)
    pipeline, _ = _pipeline(structured=candidate_payload(accountId="banco principal"), store=store)

    _run(pipeline, "user-1", "gastei 50 no banco principal")

    [doc] = store.transactions["user-1"]
    assert doc["accountId"] == "acc-main"
    assert "needsReconciliation" not in doc


def test_notification_failure_still_reports_success(caplog):
    store = FakeStore(accounts=ACCOUNTS)
    notifier = FakeNotifier(fail=True)
    pipeline, _ = _pipeline(structured=candidate_payload(), store=store, notifier=notifier)

    with caplog.at_level(logging.ERROR, logger="granor_proxy.pipeline"):
        result = _run(pipeline, "user-1", "gastei 50 reais com uber hoje")

    assert result.status == STATUS_COMMITTED
    assert result.reply.startswith("✅ Despesa de R$50,00")
    assert len(store.transactions["user-1"]) == 1
    assert "telegram is down" in caplog.text


@pytest.mark.parametrize("question", ["Qual o valor?", ""])
def test_doubt_never_reaches_the_store(question):
    store = FakeStore(accounts=ACCOUNTS)
    pipeline, _ = _pipeline(structured=candidate_payload(iaDoubt=True, iaReply=question), store=store)

    result = _run(pipeline, "user-1", "gastei no mercado")

    assert result.status == STATUS_NEEDS_INPUT
    assert store.transactions == {}


def test_missing_is_fixed_is_not_committed():
    store = FakeStore(accounts=ACCOUNTS)
    notifier = FakeNotifier()
    pipeline, _ = _pipeline(structured=candidate_payload(isFixed=...), store=store, notifier=notifier)

    with pytest.raises(InterpretationError):
        _run(pipeline, "user-1", "gastei 50")

    assert store.transactions == {}
    assert notifier.sent[-1][1] == InterpretationError.default_reply


@pytest.mark.parametrize("user_id", [None, "", "   "])
def test_missing_user_is_rejected_before_interpretation(user_id):
    store = FakeStore()
    pipeline, llm = _pipeline(structured=candidate_payload(), store=store)

    with pytest.raises(IdentificationError):
        _run(pipeline, user_id, "gastei 50")

    assert llm.calls == []
    assert store.reads == 0


def test_empty_message_is_rejected():
    pipeline, llm = _pipeline(structured=candidate_payload())

    with pytest.raises(EmptyMessageError):
        _run(pipeline, "user-1", {"message": {"text": "   "}})

    assert llm.calls == []


def test_write_failure_aborts_without_confirmation():
    store = FakeStore(accounts=ACCOUNTS, fail_write=True)
    notifier = FakeNotifier()
    pipeline, _ = _pipeline(structured=candidate_payload(), store=store, notifier=notifier)

    with pytest.raises(PersistenceError):
        _run(pipeline, "user-1", "gastei 50")

    assert notifier.sent == []


def test_account_read_failure_aborts_the_turn():
    store = FakeStore(accounts=ACCOUNTS, fail_reads=True)
    pipeline, _ = _pipeline(structured=candidate_payload(), store=store)

    with pytest.raises(PersistenceError):
        _run(pipeline, "user-1", "gastei 50")

    assert store.transactions == {}


def test_missing_object_falls_back_to_free_text():
    store = FakeStore(accounts=ACCOUNTS)
    notifier = FakeNotifier()
    pipeline, _ = _pipeline(structured=None, text="Não entendi a transação.", store=store, notifier=notifier)

    result = _run(pipeline, "user-1", "blá blá")

    assert result.status == STATUS_FAILED
    assert result.reply == "Não entendi a transação."
    assert store.transactions == {}
    assert notifier.sent[-1][1] == "Não entendi a transação."


def test_acknowledgement_is_sent_before_interpretation():
    notifier = FakeNotifier()
    pipeline, _ = _pipeline(structured=candidate_payload(), notifier=notifier, send_ack=True)

    _run(pipeline, "user-1", "gastei 50")

    assert [text for _, text in notifier.sent][0] == ACK_MESSAGE
    assert len(notifier.sent) == 2


def test_user_preferences_choose_the_channel():
    store = FakeStore(accounts=ACCOUNTS, preferences={"telegramToken": "user-token", "telegramChatId": "777"})
    notifier = FakeNotifier()
    pipeline, _ = _pipeline(structured=candidate_payload(), store=store, notifier=notifier)

    _run(pipeline, "user-1", {"text": "gastei 50"})

    channel, _ = notifier.sent[0]
    assert channel.token == "user-token"
    assert channel.chat_id == "777"


def test_default_channel_is_used_outside_chat_sessions():
    notifier = FakeNotifier()
    pipeline, _ = _pipeline(structured=candidate_payload(), notifier=notifier)

    _run(pipeline, "user-1", "gastei 50")

    channel, _ = notifier.sent[0]
    assert channel.token == "bot-token"
    assert channel.chat_id == "999"


@pytest.mark.parametrize(
    "body, expected",
    [
        ("gastei 50", "gastei 50"),
        (b"  gastei 50 ", "gastei 50"),
        ({"message": {"text": "gastei 50", "chat": {"id": 1}}}, "gastei 50"),
        ({"text": "gastei 50"}, "gastei 50"),
        ({"message": "gastei 50"}, "gastei 50"),
        ({"message": {"caption": "foto"}}, '{"caption": "foto"}'),
        ({"amount": 50}, '{"amount": 50}'),
        (None, ""),
    ],
)
def test_extract_message(body, expected):
    assert extract_message(body) == expected


def test_extract_chat_id():
    assert extract_chat_id({"message": {"chat": {"id": 42}}}) == 42
    assert extract_chat_id({"text": "oi"}) is None
    assert extract_chat_id("oi") is None


def test_format_brl():
    assert format_brl(50) == "R$50,00"
    assert format_brl(1234.5) == "R$1.234,50"


def test_confirmation_summarizes_the_turn():
    reply = build_confirmation(make_resolved(type="income", category="Salário", amount=3000.0), "recebi 3000", "{...}")

    assert reply.startswith("✅ Receita de R$3.000,00 registrada na categoria Salário.")
    assert "Solicitação original: recebi 3000" in reply
    assert "Interpretação: {...}" in reply


class _BrokenNotifier(FakeNotifier):
    async def send_message(self, channel, text):
        self.sent.append((channel, text))
        raise RuntimeError("unexpected notifier bug")


@pytest.mark.parametrize("send_ack", [False, True])
def test_unexpected_notifier_error_does_not_fail_a_stored_turn(send_ack, caplog):
    store = FakeStore(accounts=ACCOUNTS)
    pipeline, _ = _pipeline(
        structured=candidate_payload(), store=store, notifier=_BrokenNotifier(), send_ack=send_ack
    )

    with caplog.at_level(logging.ERROR, logger="granor_proxy.pipeline"):
        result = _run(pipeline, "user-1", "gastei 50 reais com uber hoje")

    assert result.status == STATUS_COMMITTED
    assert len(store.transactions["user-1"]) == 1
    assert "unexpected notifier bug" in caplog.text


def test_malformed_user_token_still_commits():
    requests = []

    def _record(request):
        requests.append(request)
        return httpx.Response(200, json={"ok": True})

    notifier = TelegramNotifier(client=httpx.AsyncClient(transport=httpx.MockTransport(_record)))
    store = FakeStore(accounts=ACCOUNTS, preferences={"telegramToken": "123:abc\n"})
    pipeline, _ = _pipeline(structured=candidate_payload(), store=store, notifier=notifier)

    result = _run(pipeline, "u1", "gastei 50")

    assert result.status == STATUS_COMMITTED
    assert len(store.transactions["u1"]) == 1
    assert requests == []


def test_doubt_without_amount_asks_for_it():
    store = FakeStore(accounts=ACCOUNTS)
    notifier = FakeNotifier()
    structured = candidate_payload(amount=0, iaDoubt=True, iaReply="Qual foi o valor?")
    pipeline, _ = _pipeline(structured=structured, store=store, notifier=notifier)

    result = _run(pipeline, "user-1", "gastei no mercado")

    assert result.status == STATUS_NEEDS_INPUT
    assert result.reply == "🤔 Dúvida: Qual foi o valor?"
    assert store.transactions == {}
    assert notifier.sent[-1][1] == result.reply


def test_doubt_is_answered_without_reading_references():
    store = FakeStore(accounts=ACCOUNTS, fail_reads=True)
    structured = candidate_payload(iaDoubt=True, iaReply="Qual categoria?")
    pipeline, _ = _pipeline(structured=structured, store=store)

    result = _run(pipeline, "user-1", "gastei 50")

    assert result.status == STATUS_NEEDS_INPUT
    assert result.reply == "🤔 Dúvida: Qual categoria?"
    assert store.reads == 0

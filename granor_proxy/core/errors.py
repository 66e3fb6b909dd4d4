"""Error taxonomy for a chat turn.

Every error carries a technical ``detail`` for the logs and a ``reply``
that is safe to show to the user. Only identification, interpretation and
persistence errors abort a turn; notification errors are logged by the
pipeline and never reach the caller.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

LOGGER = logging.getLogger("granor_proxy")

STATUS_COMMITTED = "committed"
STATUS_NEEDS_INPUT = "needs_input"
STATUS_FAILED = "failed"


class AgentError(Exception):
    """Base error of the agent pipeline."""

    status_code = 500
    default_reply = "❌ Ocorreu um erro ao processar sua mensagem."

    def __init__(self, detail: str, reply: str | None = None):
        self.detail = detail
        self.reply = reply or self.default_reply
        super().__init__(detail)


class IdentificationError(AgentError):
    status_code = 400
    default_reply = "❌ Usuário não informado ou inválido."


class EmptyMessageError(AgentError):
    status_code = 400
    default_reply = "❌ Mensagem vazia. Descreva a transação que deseja registrar."


class InterpretationError(AgentError):
    status_code = 502
    default_reply = "❌ Não foi possível interpretar a mensagem agora. Tente novamente."


class PersistenceError(AgentError):
    status_code = 500
    default_reply = "❌ Não foi possível salvar a transação. Tente novamente."


class NotificationError(AgentError):
    status_code = 502
    default_reply = "❌ Não foi possível enviar a mensagem para o chat."


def failure_body(reply: str) -> dict:
    return {"success": False, "status": STATUS_FAILED, "reply": reply}


def register_error_handlers(app: FastAPI) -> None:
    """Render pipeline errors into the agent response contract."""

    @app.exception_handler(AgentError)
    async def agent_error_handler(request: Request, exc: AgentError) -> JSONResponse:
        LOGGER.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.detail)
        return JSONResponse(status_code=exc.status_code, content=failure_body(exc.reply))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.error("Unhandled error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content=failure_body(AgentError.default_reply))

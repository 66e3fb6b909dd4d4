import json
import logging
import os

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from granor_proxy.config import load_settings
from granor_proxy.core.agent import TransactionInterpreter
from granor_proxy.core.errors import AgentError, IdentificationError, register_error_handlers
from granor_proxy.core.notifier import TelegramNotifier
from granor_proxy.core.pipeline import AgentPipeline
from granor_proxy.core.store import FirestoreStore

logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger("granor_proxy")

PIPELINE = None
INIT_ERROR = None


def _build_pipeline():
    settings = load_settings()
    interpreter = TransactionInterpreter(
        model_name=settings.model_name,
        project=settings.gcp_project_id,
        location=settings.gcp_location,
        api_key=settings.google_api_key,
        timeout=settings.generation_timeout,
    )
    interpreter.set_up()
    store = FirestoreStore(project=settings.gcp_project_id, timeout=settings.storage_timeout)
    notifier = TelegramNotifier(timeout=settings.notify_timeout)
    return AgentPipeline(interpreter, store, notifier, settings)


def get_pipeline():
    global PIPELINE, INIT_ERROR
    if PIPELINE is None:
        try:
            PIPELINE = _build_pipeline()
            INIT_ERROR = None
            LOGGER.info("Agent pipeline ready")
        except Exception as exc:
            INIT_ERROR = exc
            LOGGER.exception("Failed to initialize agent pipeline: %s", exc)
            raise AgentError(f"Agent pipeline not initialized: {exc}") from exc
    return PIPELINE


def require_user_id(user_id: str | None = Query(None, alias="userId")):
    user_id = (user_id or "").strip()
    if not user_id:
        raise IdentificationError("Request without userId")
    return user_id


async def _read_body(request: Request):
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")


app = FastAPI(title="Granor AI Agent", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)
register_error_handlers(app)


@app.middleware("http")
async def log_requests(request, call_next):
    LOGGER.info("Request: %s %s", request.method, request.url.path)
    response = await call_next(request)
    LOGGER.info("Response: %s", response.status_code)
    return response


@app.get("/health")
def health():
    status = "ok" if PIPELINE is not None and not INIT_ERROR else "degraded"
    if status == "ok":
        detail = "ready"
    elif INIT_ERROR:
        detail = "init_failed"
    else:
        detail = "not_initialized"
    return {"status": status, "detail": detail}


@app.options("/agent")
def agent_options():
    return JSONResponse(
        {},
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization",
        },
    )


@app.post("/agent")
async def agent(
    request: Request,
    user_id: str = Depends(require_user_id),
    pipeline: AgentPipeline = Depends(get_pipeline),
):
    body = await _read_body(request)
    result = await pipeline.process(user_id, body)
    return result.to_body()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run("granor_proxy.main:app", host="0.0.0.0", port=port, log_level="info")

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage

from .errors import InterpretationError
from .rules import AGENT_SYSTEM_PROMPT
from .schemas import CandidateValidationError, TransactionCandidate, candidate_json_schema, validate_candidate


@dataclass(frozen=True)
class Interpretation:
    raw_text: str
    candidate: Optional[TransactionCandidate]


def _message_text(result) -> str:
    content = getattr(result, "content", result)
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict):
                parts.append(str(part.get("text", "")))
            else:
                parts.append(str(part))
        return "".join(parts).strip()
    return str(content or "").strip()


class TransactionInterpreter:
    """Turns a chat message into a raw reply plus a validated candidate.

    Both generations share the compiled system prompt and the user message
    and run concurrently under a single timeout. Any failure of either call
    fails the whole interpretation.
    """

    def __init__(self, llm=None, model_name="gemini-2.5-flash", project=None, location="europe-west1",
                 api_key=None, timeout=30.0, system_prompt=AGENT_SYSTEM_PROMPT):
        self.model_name = model_name
        self.project = project
        self.location = location
        self.api_key = api_key
        self.timeout = timeout
        self.system_prompt = system_prompt
        self._llm = llm
        self._structured = None
        self._logger = logging.getLogger("granor_proxy.agent")

    def set_up(self):
        if self._structured is not None:
            return

        if self._llm is None:
            try:
                from langchain_google_genai import ChatGoogleGenerativeAI
            except Exception as exc:
                msg = f"langchain-google-genai is missing or incompatible: {exc}"
                self._logger.exception(msg)
                raise RuntimeError(msg) from exc

            if self.api_key:
                self._llm = ChatGoogleGenerativeAI(
                    model=self.model_name,
                    temperature=0,
                    google_api_key=self.api_key,
                )
            else:
                if not self.project:
                    raise RuntimeError("GOOGLE_API_KEY or GCP_PROJECT_ID must be set to reach the model")
                self._llm = ChatGoogleGenerativeAI(
                    model=self.model_name,
                    temperature=0,
                    vertexai=True,
                    project=self.project,
                    location=self.location,
                )

        self._structured = self._llm.with_structured_output(candidate_json_schema())
        self._logger.info("Interpreter ready with model %s", self.model_name)

    def _messages(self, message):
        return [SystemMessage(content=self.system_prompt), HumanMessage(content=message)]

    async def _generate_text(self, message):
        result = await self._llm.ainvoke(self._messages(message))
        return _message_text(result)

    async def _generate_object(self, message):
        return await self._structured.ainvoke(self._messages(message))

    async def _generate_both(self, message):
        tasks = [
            asyncio.ensure_future(self._generate_text(message)),
            asyncio.ensure_future(self._generate_object(message)),
        ]
        try:
            return await asyncio.gather(*tasks)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def interpret(self, message: str) -> Interpretation:
        try:
            self.set_up()
        except Exception as exc:
            raise InterpretationError(f"Interpreter setup failed: {exc}") from exc

        try:
            raw_text, structured = await asyncio.wait_for(
                self._generate_both(message),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise InterpretationError(f"Model did not answer within {self.timeout}s") from exc
        except Exception as exc:
            self._logger.exception("Model call failed: %s", exc)
            raise InterpretationError(f"Model call failed: {exc}") from exc

        self._logger.info("Raw interpretation: %s", raw_text)
        if structured is None:
            return Interpretation(raw_text=raw_text, candidate=None)

        try:
            candidate = validate_candidate(structured)
        except CandidateValidationError as exc:
            raise InterpretationError(str(exc)) from exc

        self._logger.info("Structured candidate: %s", candidate.model_dump(exclude_none=True))
        return Interpretation(raw_text=raw_text, candidate=candidate)

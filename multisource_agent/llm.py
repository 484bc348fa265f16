# --------------------------------------------------------------------------------------
# CHAT MODEL ACCESS (local Ollama)
# --------------------------------------------------------------------------------------
# PURPOSE:
#   Single place to build the chat model and to call it with:
#     - a bounded wall-clock timeout (LLM_TIMEOUT_S),
#     - per-call logging (size, latency, and the message list at DEBUG).
#
# NOTES:
#   - The model is a black box: send messages, read back `.content`.
#   - Anything exposing `.invoke(messages, config=...)` works (tests pass fakes).
#   - Keep temperature low for determinism (routing labels must be exact).
# --------------------------------------------------------------------------------------
from __future__ import annotations
import logging, os, time
from typing import Any, List, Sequence

from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.messages import BaseMessage
from langchain_ollama import ChatOllama

from .instrumentation import call_with_timeout, preview

log = logging.getLogger(__name__)
ctx_logger = logging.getLogger("llm_context")

OLLAMA_CHAT_MODEL = os.getenv("OLLAMA_CHAT_MODEL", "llama3.2:1b")
OLLAMA_TEMPERATURE = float(os.getenv("OLLAMA_TEMPERATURE", "0"))
LLM_TIMEOUT_S = float(os.getenv("LLM_TIMEOUT_S", "60"))
FULL_CONTEXT = os.getenv("FULL_CONTEXT", "0") == "1"
CONTEXT_PREVIEW_CHARS = 300


class ModelCallLogHandler(BaseCallbackHandler):
    """Logs one model call made for a single purpose (router, sql, command, compose).

    INFO gets one line at start and one at end with sizes and latency. The message
    list itself goes to the `llm_context` logger at DEBUG, truncated unless
    FULL_CONTEXT=1.
    """

    def __init__(self, label: str):
        self.label = label
        self._t0 = time.perf_counter()

    def _show(self, content: Any) -> str:
        text = _content_text(content)
        return preview(text, len(text) if FULL_CONTEXT else CONTEXT_PREVIEW_CHARS)

    def _ms(self) -> str:
        return f"{(time.perf_counter() - self._t0) * 1000:.1f}"

    def on_chat_model_start(self, serialized, messages, **kwargs):
        batch = messages[0] if messages else []
        self._t0 = time.perf_counter()
        chars = sum(len(_content_text(m.content)) for m in batch)
        log.info(f"[LLM {self.label}] start messages={len(batch)} chars={chars}")
        for i, m in enumerate(batch, 1):
            ctx_logger.debug(f"[CTX {self.label}] {i:02d} {m.type:<6} | {self._show(m.content)}")

    def on_llm_end(self, response, **kwargs):
        generations = response.generations[0] if response.generations else []
        text = generations[0].text if generations else ""
        log.info(f"[LLM {self.label}] ok chars={len(text)} ms={self._ms()}")
        ctx_logger.debug(f"[CTX {self.label}] reply  | {self._show(text)}")

    def on_llm_error(self, error, **kwargs):
        log.warning(f"[LLM {self.label}] fail error={error} ms={self._ms()}")


def make_chat_model(model: str | None = None, temperature: float | None = None) -> ChatOllama:
    name = model or OLLAMA_CHAT_MODEL
    log.info(f"[LLM] model={name}")
    return ChatOllama(
        model=name,
        temperature=OLLAMA_TEMPERATURE if temperature is None else temperature,
        client_kwargs={"timeout": LLM_TIMEOUT_S},
    )


def _content_text(content: Any) -> str:
    # Some providers emit a list of parts instead of a plain string.
    if isinstance(content, (list, tuple)):
        return "".join(p.get("text", "") if isinstance(p, dict) else str(p) for p in content)
    return str(content or "")


def invoke_text(llm, messages: Sequence[BaseMessage], *, timeout: float | None = None, label: str = "llm") -> str:
    """Call the model and return its reply text. Raises on failure or timeout."""
    callbacks: List[BaseCallbackHandler] = [ModelCallLogHandler(label)]
    resp = call_with_timeout(
        llm.invoke,
        list(messages),
        config={"callbacks": callbacks},
        timeout=LLM_TIMEOUT_S if timeout is None else timeout,
        label=label,
    )
    return _content_text(getattr(resp, "content", resp)).strip()


def strip_code_fences(text: str) -> str:
    t = text.strip()
    if t.startswith("```"):
        t = t.split("\n", 1)[1] if "\n" in t else ""
        if t.rstrip().endswith("```"):
            t = t.rstrip()[:-3]
    return t.strip()

# --------------------------------------------------------------------------------------
# COMPOSE NODE (final answer)
# --------------------------------------------------------------------------------------
# PURPOSE:
#   Fold the capability result (or nothing, for "direct") back into a conversational
#   reply with one model call.
#
# PROMPT PER CASE (keyed on CapabilityResult.status):
#   no result            -> direct conversation
#   ok                   -> answer ONLY from the retrieved data
#   empty                -> say nothing matched, suggest rephrasing
#   cancelled            -> acknowledge the user declined the command
#   error/rejected/...   -> explain the failure, no invented data
#
# FALLBACK:
#   Model failure or timeout -> apology + the raw capability content, so counts,
#   cancellations and error messages still reach the user.
# --------------------------------------------------------------------------------------
from __future__ import annotations
import logging
from typing import List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.runnables import RunnableConfig

from ..capabilities import CapabilityResult
from ..llm import OLLAMA_CHAT_MODEL, invoke_text
from ..state import GraphState, session_of

log = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a helpful assistant. Answer conversationally, accurately and concisely."

SOURCE_LABELS = {
    "database_query": "the music database",
    "document_search": "the document collection",
    "execute_command": "an external command",
}

OK_PROMPT = (
    "Answer the question using ONLY the data below, retrieved from {source}. "
    "Keep exact numbers and names. If the data does not answer the question, say so.\n\n"
    "Data:\n{content}"
)
EMPTY_PROMPT = (
    "Nothing matching was found in {source} ({content}). "
    "Tell the user politely and suggest how they could rephrase."
)
CANCELLED_PROMPT = (
    "The user declined to run the command `{command}` that was needed to answer. "
    "Acknowledge that the command execution was cancelled and offer an alternative."
)
FAILED_PROMPT = (
    "Looking up {source} did not work: {content}\n"
    "Explain the problem briefly. Do not invent data."
)

def _instruction(result: CapabilityResult) -> str:
    source = SOURCE_LABELS.get(result.name, result.name)
    if result.status == "ok":
        return OK_PROMPT.format(source=source, content=result.content)
    if result.status == "empty":
        return EMPTY_PROMPT.format(source=source, content=result.content)
    if result.status == "cancelled":
        return CANCELLED_PROMPT.format(command=result.artifact or "")
    return FAILED_PROMPT.format(source=source, content=result.content)

def build_messages(question: str, history: List[BaseMessage], result: Optional[CapabilityResult]) -> List[BaseMessage]:
    system = SYSTEM_PROMPT if result is None else f"{SYSTEM_PROMPT}\n\n{_instruction(result)}"
    # ToolMessages need a matching tool call; the composer only replays the dialogue
    dialogue = [m for m in history if isinstance(m, (HumanMessage, AIMessage))]
    return [SystemMessage(content=system), *dialogue, HumanMessage(content=question)]

def fallback_answer(result: Optional[CapabilityResult]) -> str:
    if result is None:
        return "I'm sorry, I couldn't reach the language model right now. Please try again in a moment."
    return f"I'm sorry, I couldn't compose a full answer right now. Here is what I found:\n\n{result.content}"

def compose_answer(state: GraphState, config: RunnableConfig) -> GraphState:
    session = session_of(config)
    result = state.get("result")
    messages = build_messages(state["user_input"], state.get("history") or [], result)
    composed_by = "model"
    try:
        if session.llm is None:
            raise RuntimeError("no chat model configured")
        answer = invoke_text(session.llm, messages, label="compose")
        if not answer:
            raise ValueError("empty model reply")
    except Exception as e:
        log.warning(f"[COMPOSE] model failed, returning raw content: {e}")
        answer, composed_by = fallback_answer(result), "fallback"
    if result is not None and result.status == "cancelled" and "cancel" not in answer.lower():
        answer = f"{result.content}\n\n{answer}"
    return {
        "answer": answer,
        "meta": {"composed_by": composed_by, "model": getattr(session.llm, "model", OLLAMA_CHAT_MODEL)},
    }

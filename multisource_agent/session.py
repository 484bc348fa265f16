# --------------------------------------------------------------------------------------
# AGENT SESSION
# --------------------------------------------------------------------------------------
# PURPOSE:
#   Owns everything one conversation needs: the chat model, the three data sources,
#   the capability registry and the message history. The compiled graph is shared;
#   the session travels with each invocation in config["configurable"]["session"].
#
# LIFECYCLE:
#   session = AgentSession(...)
#   session.initialize()            # sources come up concurrently; raises only if ALL fail
#   reply = session.process_message("How many artists are in the database?")
#   session.close()
#
# HISTORY:
#   Per turn: HumanMessage, ToolMessage (when a capability ran), AIMessage.
#   The last HISTORY_WINDOW messages are handed to the graph. Discarded on exit.
# --------------------------------------------------------------------------------------
from __future__ import annotations
import logging, os, time, uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage

from .capabilities import build_registry
from .datasources.documents import DocumentDataSource
from .datasources.shell import ShellDataSource
from .datasources.sqlite import SqliteDataSource
from .errors import InitializationFailure
from .graph import graph
from .llm import make_chat_model
from .state import GraphState

log = logging.getLogger(__name__)

THREAD_ID = os.getenv("AGENT_THREAD_ID", "default-thread")
HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", "10"))
MAX_INPUT_CHARS = 5000


class AgentSession:
    def __init__(
        self,
        llm=None,
        sqlite_dir: str | os.PathLike | None = None,
        documents_dir: str | os.PathLike | None = None,
        approver: Callable[[str], bool] | None = None,
        history_window: int = HISTORY_WINDOW,
        session_id: str | None = None,
    ):
        self.llm = llm if llm is not None else make_chat_model()
        self.session_id = session_id or THREAD_ID
        self.history_window = history_window
        self.history: List[BaseMessage] = []
        self.database = SqliteDataSource(sqlite_dir, llm=self.llm)
        self.documents = DocumentDataSource(documents_dir)
        self.shell = ShellDataSource(llm=self.llm, approver=approver)
        self.registry = build_registry(self.database, self.documents, self.shell)
        self.failures: Dict[str, str] = {}

    def initialize(self) -> "AgentSession":
        t0 = time.time()
        providers = {d.name: d.provider for d in self.registry}
        with ThreadPoolExecutor(max_workers=len(providers), thread_name_prefix="init") as pool:
            futures = {name: pool.submit(p.initialize) for name, p in providers.items()}
            for name, fut in futures.items():
                try:
                    fut.result()
                except Exception as e:
                    self.failures[name] = str(e)
                    log.warning(f"[INIT {self.session_id}] {name} unavailable: {e}")
        ready = [name for name in providers if name not in self.failures]
        log.info(f"[INIT {self.session_id}] ready={ready} ms={(time.time() - t0) * 1000:.1f}")
        if not ready:
            raise InitializationFailure(
                "No data source could be initialized: "
                + "; ".join(f"{k}: {v}" for k, v in self.failures.items())
            )
        return self

    def close(self) -> None:
        self.database.close()

    def __enter__(self):
        return self.initialize()

    def __exit__(self, *exc):
        self.close()

    # ------------------------------------------------------------------
    # turns
    # ------------------------------------------------------------------
    def run_turn(self, user_input: str) -> GraphState:
        text = (user_input or "").strip()
        if not text:
            raise ValueError("please enter a question.")
        if len(text) > MAX_INPUT_CHARS:
            raise ValueError(f"your message is too long ({len(text)} characters, limit {MAX_INPUT_CHARS}).")

        rid = uuid.uuid4().hex[:8]
        t0 = time.time()
        window = self.history[-self.history_window:] if self.history_window > 0 else []
        final: GraphState = graph.invoke(
            {"user_input": text, "history": window},
            config={"configurable": {"session": self, "thread_id": self.session_id}},
        )
        self._remember(text, final, rid)
        log.info(
            f"[TURN {self.session_id} {rid}] route={final.get('route')} "
            f"status={getattr(final.get('result'), 'status', None)} ms={(time.time() - t0) * 1000:.1f}"
        )
        return final

    def _remember(self, text: str, final: GraphState, rid: str) -> None:
        self.history.append(HumanMessage(content=text))
        result = final.get("result")
        if result is not None:
            self.history.append(ToolMessage(content=result.content, name=result.name, tool_call_id=f"call_{rid}"))
        self.history.append(AIMessage(content=final.get("answer", "")))

    def process_message(self, user_input: str) -> str:
        try:
            return self.run_turn(user_input).get("answer") or "I'm sorry, I couldn't produce an answer."
        except ValueError as e:
            return f"I'm sorry, {e}"
        except Exception as e:
            log.exception(f"[TURN {self.session_id}] failed")
            return f"I'm sorry, I encountered an error while processing your message: {e}"

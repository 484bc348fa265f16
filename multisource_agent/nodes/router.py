# --------------------------------------------------------------------------------------
# ROUTER NODE
# --------------------------------------------------------------------------------------
# PURPOSE:
#   Decide which capability (if any) handles the user input:
#     - "database" : structured query over the SQLite store
#     - "documents": keyword search over the text corpus
#     - "shell"    : approved shell command for live/external data
#     - "direct"   : plain conversation, no capability call
#
# STRATEGY:
#   1. Ask the model for exactly one label (fixed prompt, criteria taken from the
#      capability descriptors, a few examples, recent history).
#   2. Normalize the label. If it is not a valid route, or the call fails/times out,
#      fall back to KEYWORD_RULES: ordered (pattern, route) pairs, first match wins,
#      default "direct".
#
# OUTPUT:
#   route      : chosen route literal
#   invocation : ToolInvocation for the route's capability (None for "direct")
#   meta       : routed_by = "model" | "keywords", raw model label
# --------------------------------------------------------------------------------------
from __future__ import annotations
import logging, re
from typing import List, Optional, Sequence, Tuple

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.runnables import RunnableConfig

from ..capabilities import question_invocation
from ..llm import invoke_text
from ..state import GraphState, ROUTES, session_of

log = logging.getLogger(__name__)

ROUTER_PROMPT = """You are a routing assistant that decides which data source answers the user's latest message.

Routes:
{routes}
- direct: greetings, general conversation, or questions that need no external data

Examples:
- "How many artists are in the database?" -> database
- "Tell me about Adam Smith" -> documents
- "What's the current weather?" -> shell
- "Hello, how are you?" -> direct

Respond with ONLY ONE word: database, documents, shell, or direct."""

LABEL_ALIASES = {
    "database": "database", "database_query": "database", "sqlite": "database", "sql": "database",
    "documents": "documents", "document": "documents", "document_search": "documents", "docs": "documents", "rag": "documents",
    "shell": "shell", "execute_command": "shell", "bash": "shell", "command": "shell", "tool": "shell",
    "direct": "direct", "chat": "direct", "conversation": "direct",
}

def _kw(*words: str) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(words) + r")\b")

# Evaluated in order; first match wins.
KEYWORD_RULES: List[Tuple[re.Pattern, str]] = [
    (_kw(r"music", r"songs?", r"albums?", r"artists?", r"bands?", r"tracks?", r"genres?", r"playlists?",
         r"customers?", r"invoices?", r"employees?", r"database", r"sql", r"query"), "database"),
    (_kw(r"economics", r"economic", r"economists?", r"economy", r"books?", r"authors?", r"theory",
         r"smith", r"keynes", r"marx", r"ricardo", r"capitalism", r"socialism", r"documents?"), "documents"),
    (_kw(r"weather", r"forecast", r"time", r"date", r"today", r"current", r"latest", r"news", r"headlines?",
         r"search", r"download", r"web", r"internet", r"api", r"ip", r"exchange rates?", r"currency",
         r"system info(?:rmation)?"), "shell"),
]

def normalize_label(raw: Optional[str]) -> Optional[str]:
    for tok in re.findall(r"[a-z_]+", (raw or "").lower()):
        if tok in LABEL_ALIASES:
            return LABEL_ALIASES[tok]
    return None

def keyword_route(text: str) -> str:
    lower = text.lower()
    for pattern, route in KEYWORD_RULES:
        if pattern.search(lower):
            return route
    return "direct"

def _history_lines(history: Sequence[BaseMessage], limit: int = 4) -> str:
    lines = []
    for m in list(history)[-limit:]:
        if isinstance(m, (HumanMessage, AIMessage)):
            who = "User" if isinstance(m, HumanMessage) else "Assistant"
            lines.append(f"{who}: {str(m.content)[:200]}")
    return "\n".join(lines)

def route_node(state: GraphState, config: RunnableConfig) -> GraphState:
    session = session_of(config)
    user_input = state["user_input"]
    routes = "\n".join(f"- {d.route}: {d.summary}" for d in session.registry)
    recent = _history_lines(state.get("history") or [])
    prompt = f"Recent conversation:\n{recent}\n\nUser question: {user_input}" if recent else f"User question: {user_input}"

    raw, route, routed_by = None, None, "model"
    if session.llm is not None:
        try:
            raw = invoke_text(session.llm, [SystemMessage(content=ROUTER_PROMPT.format(routes=routes)),
                                            HumanMessage(content=prompt)], label="router")
            route = normalize_label(raw)
        except Exception as e:
            log.warning(f"[ROUTER] model routing failed, using keywords: {e}")
    if route not in ROUTES:
        route, routed_by = keyword_route(user_input), "keywords"
    log.info(f"[ROUTER] route={route} by={routed_by} raw={raw!r}")

    desc = session.registry.for_route(route)
    invocation = question_invocation(desc.name, user_input) if desc is not None else None
    return {
        "route": route,
        "invocation": invocation,
        "meta": {"routed_by": routed_by, "router_label": raw},
    }

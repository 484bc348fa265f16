from __future__ import annotations
import operator
from typing import TypedDict, List, Dict, Any, Literal, Optional, Annotated

from langchain_core.messages import BaseMessage

from .capabilities import CapabilityResult, ToolInvocation

# ---------------------------------------------------------------------------------------
# PURPOSE OF THIS MODULE
# ---------------------------------------------------------------------------------------
# Typed "GraphState" shared across all LangGraph nodes of one user turn.
#
# MERGE RULES (Annotated reducers):
#   - scalars (route, invocation, result, answer) : last writer wins
#   - meta / timings                              : shallow dict merge
#   - trace                                       : list append
#
# LIFETIME:
#   One GraphState per turn. Conversation history lives on the session and is
#   copied in as `history` (read-only for nodes).
#
# EXTENDING:
#   If you add new keys, pick a reducer on purpose (not accidental overwrites).
# ---------------------------------------------------------------------------------------

Route = Literal["database", "documents", "shell", "direct"]
ROUTES = ("database", "documents", "shell", "direct")

def _merge_dict(prev: Optional[Dict], new: Optional[Dict]):
    merged = {}
    if prev: merged.update(prev)
    if new: merged.update(new)
    return merged

class GraphState(TypedDict, total=False):
    user_input: str                           # Original user utterance
    history: List[BaseMessage]                # Prior turns (windowed by the session)
    route: Route                              # Selected route
    invocation: Optional[ToolInvocation]      # Capability call emitted by the router
    result: Optional[CapabilityResult]        # Capability outcome (None for "direct")
    answer: str                               # Final reply text
    meta: Annotated[Dict[str, Any], _merge_dict]
    timings: Annotated[Dict[str, float], _merge_dict]
    trace: Annotated[List[Dict[str, Any]], operator.add]

def session_of(config) -> Any:
    """The AgentSession running this turn (passed via config["configurable"])."""
    session = ((config or {}).get("configurable") or {}).get("session")
    if session is None:
        raise RuntimeError("graph invoked without a session in config['configurable']")
    return session

# --------------------------------------------------------------------------------------
# COMMAND NODE
# --------------------------------------------------------------------------------------
# PURPOSE:
#   Dispatch the router's invocation to the "execute_command" capability.
#
# SECURITY:
#   The node never builds or runs commands itself. ShellDataSource proposes the
#   command, applies the safety gate, prompts for approval and runs it. A denial comes
#   back as status "cancelled" and the turn continues to compose.
#
# STATE IMPACT:
#   result : CapabilityResult (artifact = the proposed command line, if any)
#   meta   : command / status
# --------------------------------------------------------------------------------------
from __future__ import annotations
from langchain_core.runnables import RunnableConfig

from ..capabilities import question_invocation
from ..datasources.shell import NAME
from ..state import GraphState, session_of

def execute_command(state: GraphState, config: RunnableConfig) -> GraphState:
    session = session_of(config)
    invocation = state.get("invocation") or question_invocation(NAME, state["user_input"])
    result = session.registry.dispatch(invocation)
    return {
        "result": result,
        "meta": {"capability": result.name, "status": result.status, "command": result.artifact},
    }

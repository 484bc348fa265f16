# --------------------------------------------------------------------------------------
# DATABASE NODE
# --------------------------------------------------------------------------------------
# PURPOSE:
#   Dispatch the router's invocation to the "database_query" capability.
#
# STATE IMPACT:
#   result : CapabilityResult (content = formatted rows, scalar sentence, or error text)
#   meta   : sql / sql_origin / database (when a query was generated)
# --------------------------------------------------------------------------------------
from __future__ import annotations
from langchain_core.runnables import RunnableConfig

from ..capabilities import question_invocation
from ..datasources.sqlite import NAME, QuerySpec
from ..state import GraphState, session_of

def database_query(state: GraphState, config: RunnableConfig) -> GraphState:
    session = session_of(config)
    invocation = state.get("invocation") or question_invocation(NAME, state["user_input"])
    result = session.registry.dispatch(invocation)
    meta = {"capability": result.name, "status": result.status}
    if isinstance(result.artifact, QuerySpec):
        meta.update(sql=result.artifact.sql, sql_origin=result.artifact.origin, database=result.artifact.database)
    return {"result": result, "meta": meta}

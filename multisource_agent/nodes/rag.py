# --------------------------------------------------------------------------------------
# DOCUMENT SEARCH NODE
# --------------------------------------------------------------------------------------
# PURPOSE:
#   Dispatch the router's invocation to the "document_search" capability.
#
# DATA CONTRACT:
#   result.artifact : List[SearchResult] (ranked, best first) when status is ok/empty
#   meta.rag_hits   : number of sections returned
#   meta.rag_sources: distinct source documents, in rank order
# --------------------------------------------------------------------------------------
from __future__ import annotations
from langchain_core.runnables import RunnableConfig

from ..capabilities import question_invocation
from ..datasources.documents import NAME
from ..state import GraphState, session_of

def document_search(state: GraphState, config: RunnableConfig) -> GraphState:
    session = session_of(config)
    invocation = state.get("invocation") or question_invocation(NAME, state["user_input"])
    result = session.registry.dispatch(invocation)
    hits = result.artifact if isinstance(result.artifact, list) else []
    return {
        "result": result,
        "meta": {
            "capability": result.name,
            "status": result.status,
            "rag_hits": len(hits),
            "rag_sources": list(dict.fromkeys(h.source_document for h in hits)),
        },
    }

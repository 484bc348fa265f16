# --------------------------------------------------------------------------------------
# LANGGRAPH GRAPH (classifier router)
# Per-field merging specified in state.py via Annotated reducers.
#
#   router -> database_query  -> compose -> END
#          -> document_search -> compose
#          -> execute_command -> compose
#          -> compose (route "direct")
#
# The graph is stateless: providers, model and history belong to the AgentSession
# passed in config["configurable"]["session"]. One compiled graph serves any number
# of sessions.
# --------------------------------------------------------------------------------------
from __future__ import annotations
from langgraph.graph import StateGraph, END

from .instrumentation import instrument
from .state import GraphState
from .nodes.router import route_node
from .nodes.sql import database_query
from .nodes.rag import document_search
from .nodes.tool import execute_command
from .nodes.compose import compose_answer

ROUTE_TO_NODE = {
    "database": "database_query",
    "documents": "document_search",
    "shell": "execute_command",
    "direct": "compose",
}

def _route_decider(state: GraphState):
    return ROUTE_TO_NODE.get(state.get("route") or "direct", "compose")

def build_graph():
    builder = StateGraph(GraphState)
    builder.add_node("router", instrument("router", route_node))
    builder.add_node("database_query", instrument("database_query", database_query))
    builder.add_node("document_search", instrument("document_search", document_search))
    builder.add_node("execute_command", instrument("execute_command", execute_command))
    builder.add_node("compose", instrument("compose", compose_answer))
    builder.set_entry_point("router")

    builder.add_conditional_edges(
        "router",
        _route_decider,
        {node: node for node in ROUTE_TO_NODE.values()},
    )
    builder.add_edge("database_query", "compose")
    builder.add_edge("document_search", "compose")
    builder.add_edge("execute_command", "compose")
    builder.add_edge("compose", END)
    return builder.compile()

graph = build_graph()

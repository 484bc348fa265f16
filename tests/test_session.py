from types import SimpleNamespace

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from conftest import Approver, BrokenLLM, fake_llm
from multisource_agent.datasources.shell import ShellDataSource
from multisource_agent.errors import InitializationFailure
from multisource_agent.session import AgentSession


@pytest.fixture
def make_session(sqlite_dir, documents_dir):
    sessions = []

    def _make(llm, approver=None, **kwargs):
        s = AgentSession(llm=llm, sqlite_dir=sqlite_dir, documents_dir=documents_dir,
                         approver=approver or Approver(False), **kwargs)
        s.initialize()
        sessions.append(s)
        return s

    yield _make
    for s in sessions:
        s.close()


def test_scenario_count_artists(make_session):
    session = make_session(fake_llm("database", "There are 3 artists in the database."))
    state = session.run_turn("How many artists are in the database?")
    assert state["route"] == "database"
    assert state["result"].content == "The result is 3."
    assert "COUNT(*)" in state["meta"]["sql"] and "Artist" in state["meta"]["sql"]
    assert "3" in state["answer"]


def test_scenario_count_survives_model_outage(make_session):
    session = make_session(BrokenLLM())
    answer = session.process_message("How many artists are in the database?")
    assert answer.startswith("I'm sorry")
    assert "The result is 3." in answer


def test_scenario_adam_smith(make_session):
    session = make_session(fake_llm("documents", "Adam Smith was a Scottish economist."))
    state = session.run_turn("Tell me about Adam Smith")
    assert state["route"] == "documents"
    hits = state["result"].artifact
    assert hits and "adam smith" in hits[0].matched_terms
    assert hits[0].source_document == "adam_smith"
    assert state["meta"]["rag_sources"][0] == "adam_smith"
    assert "Adam Smith" in state["answer"]


def test_scenario_time_denied(make_session, no_subprocess):
    approver = Approver(False)
    session = make_session(fake_llm("shell", "Okay, the command execution was cancelled."), approver=approver)
    state = session.run_turn("What time is it?")
    assert state["route"] == "shell"
    assert approver.prompts == ["date"]
    assert state["result"].status == "cancelled"
    assert "cancelled" in state["answer"].lower()
    assert no_subprocess == []


def test_cancellation_is_always_acknowledged(make_session, no_subprocess):
    session = make_session(fake_llm("shell", "Here is something unrelated."))
    answer = session.process_message("What time is it?")
    assert "Command execution was cancelled by user." in answer


def test_scenario_greeting_is_direct(make_session):
    session = make_session(fake_llm("direct", "I'm doing well, thanks for asking!"))
    state = session.run_turn("Hello, how are you?")
    assert state["route"] == "direct"
    assert state.get("result") is None
    assert state["answer"] == "I'm doing well, thanks for asking!"
    assert [t["node"] for t in state["trace"]] == ["router", "compose"]


def test_trace_and_timings_cover_capability_node(make_session):
    session = make_session(fake_llm("database", "Three."))
    state = session.run_turn("How many artists are in the database?")
    assert [t["node"] for t in state["trace"]] == ["router", "database_query", "compose"]
    assert set(state["timings"]) == {"router", "database_query", "compose"}


def test_history_records_turns(make_session):
    session = make_session(fake_llm("database", "Three artists.", "direct", "You're welcome!"))
    session.process_message("How many artists are in the database?")
    session.process_message("Thanks")
    kinds = [type(m) for m in session.history]
    assert kinds == [HumanMessage, ToolMessage, AIMessage, HumanMessage, AIMessage]
    assert session.history[1].name == "database_query"
    assert session.history[1].content == "The result is 3."


def test_history_window_limits_context(make_session):
    session = make_session(fake_llm("direct", "ok"), history_window=2)
    for i in range(3):
        session.process_message(f"Hello {i}")
    state = session.run_turn("Hello again")
    assert [m.content for m in state["history"]] == ["Hello 2", "ok"]


@pytest.mark.parametrize("text", ["", "   ", "x" * 5001])
def test_invalid_input_is_rejected_politely(make_session, text):
    session = make_session(fake_llm("direct", "unused"))
    answer = session.process_message(text)
    assert answer.startswith("I'm sorry")
    assert session.history == []


def test_process_message_never_raises(make_session, monkeypatch):
    session = make_session(fake_llm("direct", "unused"))

    def explode(*args, **kwargs):
        raise RuntimeError("graph exploded")

    monkeypatch.setattr("multisource_agent.session.graph", SimpleNamespace(invoke=explode))
    answer = session.process_message("Hello")
    assert answer.startswith("I'm sorry")
    assert "graph exploded" in answer


def test_unavailable_source_degrades(sqlite_dir, tmp_path):
    session = AgentSession(llm=fake_llm("documents", "Sorry, the documents are unavailable."),
                           sqlite_dir=sqlite_dir, documents_dir=tmp_path / "missing", approver=Approver(False))
    session.initialize()
    assert "document_search" in session.failures
    state = session.run_turn("Tell me about Adam Smith")
    assert state["result"].status == "unavailable"
    assert state["answer"]
    session.close()


def test_total_initialization_failure(tmp_path, monkeypatch):
    def no_shell(self):
        raise InitializationFailure("no shell")

    monkeypatch.setattr(ShellDataSource, "initialize", no_shell)
    session = AgentSession(llm=fake_llm("direct"), sqlite_dir=tmp_path / "a",
                           documents_dir=tmp_path / "b", approver=Approver(False))
    with pytest.raises(InitializationFailure) as exc:
        session.initialize()
    assert "database_query" in str(exc.value) and "execute_command" in str(exc.value)


def test_sessions_do_not_share_history(make_session):
    a = make_session(fake_llm("direct", "hi a"))
    b = make_session(fake_llm("direct", "hi b"))
    a.process_message("Hello from a")
    assert b.history == []
    assert b.process_message("Hello from b") == "hi b"

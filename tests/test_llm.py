import logging

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from conftest import BrokenLLM, fake_llm
from multisource_agent.llm import invoke_text, strip_code_fences


def test_invoke_text_logs_each_call(caplog):
    caplog.set_level(logging.DEBUG)
    reply = invoke_text(fake_llm("  database \n"), [SystemMessage(content="Route it."), HumanMessage(content="hi")],
                        label="router")
    assert reply == "database"
    lines = [r.getMessage() for r in caplog.records]
    assert "[LLM router] start messages=2 chars=11" in lines
    assert any(line.startswith("[LLM router] ok chars=") for line in lines)
    assert any(line.startswith("[CTX router] 02 human") and "hi" in line for line in lines)


def test_invoke_text_raises_model_errors():
    with pytest.raises(ConnectionError):
        invoke_text(BrokenLLM(), [HumanMessage(content="hi")], label="compose")


@pytest.mark.parametrize("raw, expected", [
    ("```sql\nSELECT 1\n```", "SELECT 1"),
    ("```\n$ uptime\n```", "$ uptime"),
    ("  date  ", "date"),
    ("```", ""),
])
def test_strip_code_fences(raw, expected):
    assert strip_code_fences(raw) == expected

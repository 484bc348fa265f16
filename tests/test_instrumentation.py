import threading

import pytest

from multisource_agent.errors import ExecutionFault
from multisource_agent.instrumentation import CallTimeout, call_with_timeout, instrument


def test_call_with_timeout_returns_value():
    assert call_with_timeout(lambda a, b=0: a + b, 2, b=3, timeout=1) == 5


def test_call_with_timeout_reraises_errors():
    def boom():
        raise ConnectionError("ollama is not reachable")

    with pytest.raises(ConnectionError):
        call_with_timeout(boom, timeout=1)


def test_hung_call_is_abandoned_on_daemon_thread():
    release = threading.Event()
    try:
        with pytest.raises(CallTimeout) as exc:
            call_with_timeout(release.wait, timeout=0.05, label="llm")
        assert isinstance(exc.value, ExecutionFault)
        assert "llm timed out" in str(exc.value)
        workers = [t for t in threading.enumerate() if t.name == "timeout-llm"]
        assert workers and all(t.daemon for t in workers)
    finally:
        release.set()


def test_instrument_records_timing_and_trace():
    node = instrument("router", lambda state, config: {"route": "direct"})
    out = node({"trace": []}, {})
    assert out["route"] == "direct"
    assert set(out["timings"]) == {"router"}
    assert out["trace"][0]["node"] == "router" and out["trace"][0]["route"] == "direct"

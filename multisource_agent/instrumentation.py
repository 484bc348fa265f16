# --------------------------------------------------------------------------------------
# INSTRUMENTATION
# --------------------------------------------------------------------------------------
# - instrument()        : wraps a graph node, emits per-node timing + trace deltas.
# - call_with_timeout() : runs a blocking call on a daemon thread with a deadline.
#                         Used for model calls and corpus search (shell commands use
#                         their own deadline in datasources/shell.capture()).
# - preview()           : single-line, length-capped rendering for log messages.
# --------------------------------------------------------------------------------------
from __future__ import annotations
import logging, os, threading, time
from typing import Any, Callable, Dict

from langchain_core.runnables import RunnableConfig

from .errors import ExecutionFault

log = logging.getLogger(__name__)

ENABLE_TRACE = os.getenv("ENABLE_TRACE", "1") == "1"
MAX_TRACE_LEN = int(os.getenv("MAX_TRACE_LEN", "500"))
MAX_LOG_CHARS = int(os.getenv("API_LOG_PREVIEW", "500"))


class CallTimeout(ExecutionFault):
    def __init__(self, label: str, seconds: float):
        super().__init__(f"{label} timed out after {seconds:g}s")
        self.label = label
        self.seconds = seconds


def preview(val: Any, limit: int = MAX_LOG_CHARS) -> str:
    if val is None:
        return ""
    s = str(val).replace("\n", " ")
    return s[:limit] + ("..." if len(s) > limit else "")


def call_with_timeout(fn: Callable[..., Any], *args, timeout: float, label: str = "call", **kwargs):
    # The worker is a daemon thread abandoned (not killed) on timeout, so a hung model
    # call can neither block the caller nor hold up interpreter exit.
    outcome: Dict[str, Any] = {}
    done = threading.Event()

    def _target():
        try:
            outcome["value"] = fn(*args, **kwargs)
        except Exception as e:
            outcome["error"] = e
        finally:
            done.set()

    threading.Thread(target=_target, name=f"timeout-{label}", daemon=True).start()
    if not done.wait(timeout):
        log.warning(f"[TIMEOUT] label={label} after={timeout:g}s")
        raise CallTimeout(label, timeout)
    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("value")


def instrument(node_name: str, fn: Callable[[Dict[str, Any], RunnableConfig], Dict[str, Any]]):
    def _wrapped(state: Dict[str, Any], config) -> Dict[str, Any]:
        if not ENABLE_TRACE:
            return fn(state, config)
        start = time.perf_counter()
        existing_trace_len = len(state.get("trace", []))
        result = fn(state, config) or {}
        dur = time.perf_counter() - start

        result["timings"] = {node_name: dur}
        if existing_trace_len < MAX_TRACE_LEN:
            result["trace"] = [{
                "node": node_name,
                "t": time.time(),
                "dt": round(dur, 6),
                "route": result.get("route") or state.get("route"),
            }]
        log.debug(f"[NODE {node_name}] ms={dur * 1000:.1f}")
        return result

    _wrapped.__name__ = getattr(fn, "__name__", node_name)
    return _wrapped

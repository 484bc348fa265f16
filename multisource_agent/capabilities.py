# --------------------------------------------------------------------------------------
# CAPABILITY DESCRIPTORS + DISPATCH
# --------------------------------------------------------------------------------------
# PURPOSE:
#   Describe each data source to the decision engine (name, description, typed
#   arguments) and dispatch validated invocations to it.
#
# DATA CONTRACT:
#   ToolInvocation   : {"name": <capability>, "arguments": {...}}
#   CapabilityResult : display-ready `content` + a status the composer can branch on:
#       ok | empty | error | rejected | cancelled | unavailable | invalid
#
# GUARANTEES:
#   - Arguments are validated against the descriptor's pydantic schema BEFORE the
#     data source sees them; malformed invocations come back as status "invalid".
#   - dispatch() never raises: data source exceptions become status "error".
# --------------------------------------------------------------------------------------
from __future__ import annotations
import logging, time, uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from .instrumentation import preview

log = logging.getLogger(__name__)

Status = Literal["ok", "empty", "error", "rejected", "cancelled", "unavailable", "invalid"]


@dataclass
class CapabilityResult:
    name: str
    status: Status
    content: str
    artifact: Any = None

    @property
    def failed(self) -> bool:
        return self.status in {"error", "rejected", "unavailable", "invalid"}


class ToolInvocation(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class QuestionArgs(BaseModel):
    question: str = Field(..., min_length=1, description="The user's question, in natural language.")


@dataclass
class CapabilityDescriptor:
    name: str
    route: str
    summary: str                      # one line, used in the routing prompt
    provider: Any                     # exposes run(**arguments), describe(), available
    args_schema: Type[BaseModel] = QuestionArgs

    @property
    def description(self) -> str:
        return self.provider.describe()

    @property
    def available(self) -> bool:
        return bool(getattr(self.provider, "available", False))


@dataclass
class CapabilityRegistry:
    descriptors: List[CapabilityDescriptor] = field(default_factory=list)

    def __post_init__(self):
        names = [d.name for d in self.descriptors]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate capability names: {names}")

    def get(self, name: str) -> Optional[CapabilityDescriptor]:
        return next((d for d in self.descriptors if d.name == name), None)

    def for_route(self, route: str) -> Optional[CapabilityDescriptor]:
        return next((d for d in self.descriptors if d.route == route), None)

    def __iter__(self):
        return iter(self.descriptors)

    def describe(self) -> str:
        lines = []
        for d in self.descriptors:
            state = "" if d.available else " (currently unavailable)"
            lines.append(f"- {d.name}{state}: {d.description}")
        return "\n".join(lines)

    def dispatch(self, invocation: ToolInvocation) -> CapabilityResult:
        rid = uuid.uuid4().hex[:8]
        t0 = time.time()
        desc = self.get(invocation.name)
        if desc is None:
            return self._log(rid, t0, CapabilityResult(
                invocation.name, "invalid", f"Error: unknown capability '{invocation.name}'."))
        try:
            args = desc.args_schema.model_validate(invocation.arguments)
        except ValidationError as e:
            problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
            return self._log(rid, t0, CapabilityResult(
                desc.name, "invalid", f"Error: invalid arguments for {desc.name}: {problems}"))
        if not desc.available:
            reason = getattr(desc.provider, "error", None) or "not initialized"
            return self._log(rid, t0, CapabilityResult(
                desc.name, "unavailable", f"The {desc.name} capability is unavailable: {reason}"))

        log.info(f"[DISPATCH {rid}] capability={desc.name} args={preview(args.model_dump())}")
        try:
            result = desc.provider.run(**args.model_dump())
        except Exception as e:
            log.exception(f"[DISPATCH {rid}] capability={desc.name} raised")
            result = CapabilityResult(desc.name, "error", f"Error: {desc.name} failed: {e}")
        return self._log(rid, t0, result)

    @staticmethod
    def _log(rid: str, t0: float, result: CapabilityResult) -> CapabilityResult:
        log.info(
            f"[TOOL OUT {result.name} {rid}] status={result.status} "
            f"result_preview={preview(result.content)} len={len(result.content)} ms={(time.time() - t0) * 1000:.1f}"
        )
        return result


def build_registry(database, documents, shell) -> CapabilityRegistry:
    return CapabilityRegistry([
        CapabilityDescriptor(
            name="database_query",
            route="database",
            summary="questions about music, albums, artists, tracks, customers, invoices or anything stored in the database",
            provider=database,
        ),
        CapabilityDescriptor(
            name="document_search",
            route="documents",
            summary="questions about economics, economic theory, economists, books or concepts covered by the documents",
            provider=documents,
        ),
        CapabilityDescriptor(
            name="execute_command",
            route="shell",
            summary="questions needing live external data or system information (weather, time, IP, news, exchange rates, web lookups)",
            provider=shell,
        ),
    ])


def question_invocation(name: str, question: str) -> ToolInvocation:
    return ToolInvocation(name=name, arguments={"question": question})

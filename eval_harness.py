from __future__ import annotations
import json, time, statistics, argparse, logging
from typing import List, Dict, Any

from multisource_agent.session import AgentSession

# Routing / answer-quality evaluation over goldens.json.
# Commands are never executed here: the approver always denies.

def load_goldens(path: str) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)

def groundedness(answer: str, facts: List[str]) -> float:
    if not facts:
        return 1.0
    answer_l = answer.lower()
    hits = sum(1 for f in facts if f.lower() in answer_l)
    return hits / len(facts)

def deny_all(command: str) -> bool:
    return False

def run_case(session: AgentSession, case: Dict[str, Any]) -> Dict[str, Any]:
    start = time.perf_counter()
    state = session.run_turn(case["input"])
    latency = time.perf_counter() - start
    result = state.get("result")
    return {
        "id": case["id"],
        "latency_s": latency,
        "route": state.get("route"),
        "route_correct": float(state.get("route") == case.get("expected_route")),
        "groundedness": groundedness(state.get("answer") or "", case.get("facts", [])),
        "status": getattr(result, "status", None),
        "routed_by": (state.get("meta") or {}).get("routed_by"),
    }

def aggregate(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    out = {}
    for metric in ["latency_s", "route_correct", "groundedness"]:
        vals = [r[metric] for r in rows if metric in r]
        if vals:
            out[f"{metric}_mean"] = statistics.mean(vals)
            out[f"{metric}_p95"] = sorted(vals)[max(int(0.95 * len(vals)) - 1, 0)]
    return out

def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--goldens", default="goldens.json")
    ap.add_argument("--sqlite-dir", default=None)
    ap.add_argument("--documents-dir", default=None)
    args = ap.parse_args()
    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    cases = load_goldens(args.goldens)
    session = AgentSession(sqlite_dir=args.sqlite_dir, documents_dir=args.documents_dir, approver=deny_all)
    session.initialize()
    try:
        rows = []
        for c in cases:
            # each case is judged on its own, without earlier turns
            session.history.clear()
            rows.append(run_case(session, c))
    finally:
        session.close()
    print(json.dumps({"cases": rows, "aggregate": aggregate(rows)}, indent=2))

if __name__ == "__main__":
    main()

"""Idempotent merge of partial reasoning traces.

Frames carrying reasoning arrive incrementally and possibly out of order, so
every recipient folds them with ``merge_reasoning_traces``. Rules:

- ``plan``, ``retrieval`` and ``answer`` take the incoming value when present and
  never regress a known value back to ``None``.
- ``debug`` merges key-wise with the same precedence.
- ``error`` prefers the incoming error; an untagged error is attributed to the
  latest stage that has output (answer > retrieval), else to the planner.
- ``streaming`` appends text per stage. Chunks carrying a ``seq`` at or below the
  last applied ``seq`` for that stage are replays and are ignored.
- When nothing changes, the existing object itself is returned.
"""

from dataclasses import replace
from typing import Any, Dict, Optional

from ..core.trace_types import ReasoningError, ReasoningTrace, StreamingChunk


def infer_error_stage(trace: ReasoningTrace) -> str:
    if trace.answer is not None:
        return "answer"
    if trace.retrieval is not None:
        return "retrieval"
    return "planner"


def merge_debug(
    existing: Optional[Dict[str, Any]],
    incoming: Optional[Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    if not incoming:
        return existing
    merged = dict(existing or {})
    for key, value in incoming.items():
        if value is not None:
            merged[key] = value
    return merged


def merge_streaming(
    existing: Optional[Dict[str, StreamingChunk]],
    incoming: Optional[Dict[str, StreamingChunk]],
) -> Optional[Dict[str, StreamingChunk]]:
    if not incoming:
        return existing
    merged = dict(existing or {})
    for stage, chunk in incoming.items():
        if chunk is None:
            continue
        current = merged.get(stage)
        if current is None:
            merged[stage] = replace(chunk)
            continue
        if chunk.seq is not None and current.seq is not None and chunk.seq <= current.seq:
            continue
        text = (current.text or "") + (chunk.text or "")
        merged[stage] = StreamingChunk(
            text=text or None,
            notes=chunk.notes if chunk.notes is not None else current.notes,
            progress=chunk.progress if chunk.progress is not None else current.progress,
            seq=chunk.seq if chunk.seq is not None else current.seq,
        )
    return merged


def merge_error(
    existing: Optional[ReasoningError],
    incoming: Optional[ReasoningError],
    merged: ReasoningTrace,
) -> Optional[ReasoningError]:
    if incoming is None:
        if existing is None or existing.stage:
            return existing
        candidate = existing
    else:
        candidate = incoming
    if candidate.stage:
        return candidate
    return replace(candidate, stage=infer_error_stage(merged))


def merge_reasoning_traces(
    existing: Optional[ReasoningTrace],
    incoming: Optional[ReasoningTrace],
) -> ReasoningTrace:
    if incoming is None:
        return existing if existing is not None else ReasoningTrace()
    base = existing if existing is not None else ReasoningTrace()

    merged = ReasoningTrace(
        plan=incoming.plan if incoming.plan is not None else base.plan,
        retrieval=incoming.retrieval if incoming.retrieval is not None else base.retrieval,
        answer=incoming.answer if incoming.answer is not None else base.answer,
        debug=merge_debug(base.debug, incoming.debug),
        streaming=merge_streaming(base.streaming, incoming.streaming),
    )
    merged.error = merge_error(base.error, incoming.error, merged)

    if existing is not None and merged == existing:
        return existing
    return merged

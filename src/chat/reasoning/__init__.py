"""Reasoning trace reconciliation for frame recipients."""

from .merge import infer_error_stage, merge_reasoning_traces
from .snapshot import TurnSnapshot, fold_reasoning, snapshot_from_frames

__all__ = [
    "TurnSnapshot",
    "fold_reasoning",
    "infer_error_stage",
    "merge_reasoning_traces",
    "snapshot_from_frames",
]

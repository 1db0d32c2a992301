"""Planner stage service."""

from .service import ChatPlanner, PlannerOutput, PlannerResult

__all__ = ["ChatPlanner", "PlannerOutput", "PlannerResult"]

"""Planner error taxonomy.

An empty plan is not an error; it is reported through
:class:`transit_planner.models.itinerary.NoPathReason`.
"""

from __future__ import annotations

from collections.abc import Sequence


class PlannerError(Exception):
    """Base class for planner errors."""


class ScheduleIntegrityError(PlannerError):
    """Raised when static schedule input is malformed or inconsistent.

    Fatal to the schedule version being built; the published snapshot is kept.
    """

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = list(problems)
        shown = "; ".join(self.problems[:5])
        more = f" (+{len(self.problems) - 5} more)" if len(self.problems) > 5 else ""
        super().__init__(f"Schedule integrity check failed: {shown}{more}")


class InvalidRequest(PlannerError):
    """Raised when a planning request is rejected before search."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class UpstreamUnavailable(PlannerError):
    """Raised when the live arrivals source cannot be reached in time."""


class Cancelled(PlannerError):
    """Raised when a request's cancellation signal fires."""

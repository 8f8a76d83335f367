"""Route reliability: aggregates, scoring and snapshot documents."""

from transit_planner.services.reliability.aggregates import DelaySample, build_aggregates
from transit_planner.services.reliability.migrations import (
    SnapshotFormatError,
    load_snapshot,
    load_snapshot_file,
    upgrade_document,
)
from transit_planner.services.reliability.model import (
    ReliabilityModel,
    delay_exceedance_probability,
)

__all__ = [
    "DelaySample",
    "ReliabilityModel",
    "SnapshotFormatError",
    "build_aggregates",
    "delay_exceedance_probability",
    "load_snapshot",
    "load_snapshot_file",
    "upgrade_document",
]

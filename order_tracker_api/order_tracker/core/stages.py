from __future__ import annotations

import re
from enum import Enum
from typing import Dict, Optional, Tuple

from order_tracker.core.errors import InvalidStageError


class Stage(str, Enum):
    """
    Production stages of an order item, declared in pipeline order.

    The declaration order is the rank order; both the transition engine and
    the report aggregator read ranks from here.
    """

    NEW = "NEW"
    MANUFACTURING = "MANUFACTURING"
    QUALITY_CHECK = "QUALITY_CHECK"
    PACKAGING = "PACKAGING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"

    @property
    def rank(self) -> int:
        return STAGE_RANK[self]

    @property
    def label(self) -> str:
        return stage_label(self)


STAGES: Tuple[Stage, ...] = tuple(Stage)
STAGE_RANK: Dict[Stage, int] = {stage: index + 1 for index, stage in enumerate(STAGES)}
INITIAL_STAGE = Stage.NEW
TERMINAL_STAGE = Stage.DELIVERED

# Direction of a transition relative to the item's current stage.
FORWARD = "forward"
REGRESSION = "regression"
UNCHANGED = "unchanged"

_SEPARATORS = re.compile(r"[\s\-]+")


# Alert thresholds (days) for time spent in a stage, used by the stage aging report.
STAGE_THRESHOLDS: Dict[Stage, Dict[str, int]] = {
    Stage.NEW: {"warning_days": 3, "critical_days": 7},
    Stage.MANUFACTURING: {"warning_days": 50, "critical_days": 90},
    Stage.QUALITY_CHECK: {"warning_days": 7, "critical_days": 14},
    Stage.PACKAGING: {"warning_days": 5, "critical_days": 10},
    Stage.IN_TRANSIT: {"warning_days": 45, "critical_days": 60},
    Stage.DELIVERED: {"warning_days": 3, "critical_days": 7},
}
DEFAULT_THRESHOLD = {"warning_days": 30, "critical_days": 60}


# PUBLIC_INTERFACE
def parse_stage(value) -> Stage:
    """
    Resolve user or stored input to a Stage.

    Strings are trimmed, upper-cased and runs of whitespace or hyphens become
    underscores, so "quality check" resolves to QUALITY_CHECK.

    Raises:
        InvalidStageError: value does not name a known stage.
    """
    if isinstance(value, Stage):
        return value
    if isinstance(value, str):
        token = _SEPARATORS.sub("_", value.strip().upper())
        try:
            return Stage(token)
        except ValueError:
            pass
    raise InvalidStageError(
        f"Unknown stage {value!r}. Expected one of: {', '.join(s.value for s in STAGES)}",
        details={"stage": None if value is None else str(value)},
    )


def stage_rank(stage) -> int:
    return STAGE_RANK[parse_stage(stage)]


def stage_label(stage) -> str:
    """Display label, e.g. QUALITY_CHECK -> 'QUALITY CHECK'."""
    return parse_stage(stage).value.replace("_", " ")


def is_terminal_stage(stage) -> bool:
    return parse_stage(stage) is TERMINAL_STAGE


def next_stage(stage) -> Optional[Stage]:
    """Next stage in the pipeline, or None at the terminal stage."""
    index = STAGE_RANK[parse_stage(stage)]
    return STAGES[index] if index < len(STAGES) else None


# PUBLIC_INTERFACE
def classify_transition(current, target) -> str:
    """Return FORWARD, REGRESSION or UNCHANGED for current -> target."""
    current_rank = stage_rank(current)
    target_rank = stage_rank(target)
    if target_rank < current_rank:
        return REGRESSION
    if target_rank > current_rank:
        return FORWARD
    return UNCHANGED


def threshold_days(stage) -> Dict[str, int]:
    try:
        return STAGE_THRESHOLDS[parse_stage(stage)]
    except InvalidStageError:
        return DEFAULT_THRESHOLD


# PUBLIC_INTERFACE
def assess_risk_level(stage, seconds_in_stage: float) -> str:
    """Classify time spent in a stage as 'normal', 'warning' or 'critical'."""
    limits = threshold_days(stage)
    days = seconds_in_stage / 86400
    if days > limits["critical_days"]:
        return "critical"
    if days > limits["warning_days"]:
        return "warning"
    return "normal"

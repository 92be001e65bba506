import pytest

from order_tracker.core.errors import InvalidStageError
from order_tracker.core.stages import (
    FORWARD,
    REGRESSION,
    STAGES,
    UNCHANGED,
    Stage,
    assess_risk_level,
    classify_transition,
    next_stage,
    parse_stage,
    stage_label,
    stage_rank,
)


class TestStageDomain:
    def test_ranks_follow_declaration_order(self):
        assert [stage_rank(s) for s in STAGES] == [1, 2, 3, 4, 5, 6]
        assert STAGES[0] is Stage.NEW
        assert STAGES[-1] is Stage.DELIVERED

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("QUALITY_CHECK", Stage.QUALITY_CHECK),
            ("quality check", Stage.QUALITY_CHECK),
            ("  in-transit ", Stage.IN_TRANSIT),
            (Stage.NEW, Stage.NEW),
        ],
    )
    def test_parse_stage_accepts_common_spellings(self, raw, expected):
        assert parse_stage(raw) is expected

    @pytest.mark.parametrize("raw", ["SHIPPED", "", None, 3])
    def test_parse_stage_rejects_unknown_values(self, raw):
        with pytest.raises(InvalidStageError):
            parse_stage(raw)

    def test_label_and_next_stage(self):
        assert stage_label(Stage.QUALITY_CHECK) == "QUALITY CHECK"
        assert next_stage(Stage.PACKAGING) is Stage.IN_TRANSIT
        assert next_stage(Stage.DELIVERED) is None

    def test_classify_transition(self):
        assert classify_transition(Stage.NEW, Stage.PACKAGING) == FORWARD
        assert classify_transition(Stage.QUALITY_CHECK, Stage.MANUFACTURING) == REGRESSION
        assert classify_transition(Stage.PACKAGING, "packaging") == UNCHANGED


class TestRiskLevel:
    def test_levels_use_stage_thresholds(self):
        day = 86400
        assert assess_risk_level(Stage.QUALITY_CHECK, 2 * day) == "normal"
        assert assess_risk_level(Stage.QUALITY_CHECK, 8 * day) == "warning"
        assert assess_risk_level(Stage.QUALITY_CHECK, 15 * day) == "critical"

    def test_threshold_boundary_is_not_exceeded(self):
        assert assess_risk_level(Stage.NEW, 3 * 86400) == "normal"

"""Unit tests for the unit lifecycle state machine"""

import pytest

from core.models.storyboard import UnitStatus
from core.state_machine import (
    EXTRACT_FROM,
    SCRIPT_FROM,
    SHOOT_FROM,
    InFlightGuard,
    InvalidTransitionError,
    can_transition,
    derive_shoot_status,
    validate_transition,
)


class TestTransitions:

    def test_happy_path(self):
        path = [
            UnitStatus.IDLE, UnitStatus.EXTRACTING, UnitStatus.EXTRACTED, UnitStatus.SCRIPTING,
            UnitStatus.SCRIPTED, UnitStatus.SHOOTING, UnitStatus.COMPLETED,
        ]
        for current, target in zip(path, path[1:]):
            assert validate_transition(current, target) == target

    def test_rollbacks(self):
        assert can_transition(UnitStatus.EXTRACTING, UnitStatus.IDLE)
        assert can_transition(UnitStatus.SCRIPTING, UnitStatus.EXTRACTED)

    def test_completed_unit_can_resume_shooting(self):
        assert can_transition(UnitStatus.COMPLETED, UnitStatus.SHOOTING)

    @pytest.mark.parametrize("current,target", [
        (UnitStatus.IDLE, UnitStatus.SCRIPTING),
        (UnitStatus.IDLE, UnitStatus.COMPLETED),
        (UnitStatus.SCRIPTED, UnitStatus.EXTRACTING),
        (UnitStatus.COMPLETED, UnitStatus.IDLE),
    ])
    def test_undefined_edges_raise(self, current, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(current, target)
        assert exc_info.value.current == current
        assert exc_info.value.target == target

    def test_operation_entry_sets(self):
        assert UnitStatus.SCRIPTED not in EXTRACT_FROM
        assert UnitStatus.IDLE not in SCRIPT_FROM
        assert UnitStatus.COMPLETED in SHOOT_FROM

    def test_derive_shoot_status(self):
        assert derive_shoot_status(True) == UnitStatus.COMPLETED
        assert derive_shoot_status(False) == UnitStatus.SHOOTING

    def test_error_message_includes_reason(self):
        error = InvalidTransitionError(UnitStatus.IDLE, UnitStatus.SHOOTING, "unit has no scenes")
        assert "'idle' to 'shooting': unit has no scenes" in str(error)


class TestInFlightGuard:

    def test_second_acquire_is_refused(self):
        guard = InFlightGuard("extract")
        assert guard.try_acquire("unit_1")
        assert not guard.try_acquire("unit_1")
        assert guard.try_acquire("unit_2")
        assert "unit_1" in guard
        assert len(guard) == 2

    def test_hold_releases_on_error(self):
        guard = InFlightGuard("script")
        guard.try_acquire("unit_1")
        with pytest.raises(RuntimeError):
            with guard.hold("unit_1"):
                raise RuntimeError("boom")
        assert "unit_1" not in guard

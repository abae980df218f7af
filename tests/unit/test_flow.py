"""Tests for the flow guard and derived flow state."""

import pytest

from serenis.domain.flow import (
    DIAGNOSIS_REQUIRED,
    PROFILE_REQUIRED,
    SESSION_INCOMPLETE,
    UNKNOWN_STAGE,
    can_transition_to,
    get_available_transitions,
    get_current_stage,
    get_progress_percentage,
    has_significant_progress,
)
from serenis.domain.session import create_new_session, create_ritual_state, update_ritual_phase
from serenis.domain.types import DiagnosisData, DialogueEntry, FlowStage


def _entry(now, i=0):
    return DialogueEntry(
        phase_id=f"p{i}",
        phase_name=f"Phase {i}",
        question="Q?",
        answer="A.",
        timestamp=now,
    )


def _unchecked_diagnosis(**overrides):
    """Diagnosis bypassing field validation, as a corrupted client might send."""
    data = dict(
        core_belief="I am not good enough",
        emotional_history=["shame"],
        triggers=["work"],
        narrative="",
        origin="",
        intensity=5,
        subcategory="",
    )
    data.update(overrides)
    return DiagnosisData.model_construct(**data)


class TestCanTransitionTo:
    @pytest.mark.parametrize("stage", [FlowStage.IDLE, FlowStage.TEST])
    def test_idle_and_test_always_allowed(self, stage, now):
        assert can_transition_to(stage, create_new_session(now=now)).allowed

    def test_diagnosis_needs_profile(self, now):
        result = can_transition_to(FlowStage.DIAGNOSIS, create_new_session(now=now))

        assert not result.allowed
        assert result.reason == PROFILE_REQUIRED
        assert "ACT Profile Test" in result.suggestion

    def test_diagnosis_allowed_with_profile(self, now, sample_profile):
        session = create_new_session(now=now).model_copy(update={"act_profile": sample_profile})
        assert can_transition_to(FlowStage.DIAGNOSIS, session).allowed

    def test_ritual_needs_profile(self, now, sample_diagnosis):
        session = create_new_session(now=now).model_copy(update={"diagnosis": sample_diagnosis})

        result = can_transition_to(FlowStage.RITUAL, session)
        assert result.reason == PROFILE_REQUIRED

    def test_ritual_needs_diagnosis(self, now, sample_profile):
        session = create_new_session(now=now).model_copy(update={"act_profile": sample_profile})

        result = can_transition_to(FlowStage.RITUAL, session)
        assert not result.allowed
        assert result.reason == DIAGNOSIS_REQUIRED

    def test_ritual_allowed_with_valid_diagnosis(self, sample_session):
        assert can_transition_to(FlowStage.RITUAL, sample_session).allowed

    @pytest.mark.parametrize(
        "overrides",
        [
            {"core_belief": "abcd"},
            {"emotional_history": []},
            {"triggers": []},
            {"intensity": 0},
            {"intensity": 11},
        ],
    )
    def test_ritual_denied_for_invalid_diagnosis(self, overrides, sample_session):
        session = sample_session.model_copy(update={"diagnosis": _unchecked_diagnosis(**overrides)})

        result = can_transition_to(FlowStage.RITUAL, session)
        assert not result.allowed
        assert result.reason == DIAGNOSIS_REQUIRED

    def test_ritual_boundary_values_allowed(self, sample_session):
        diagnosis = _unchecked_diagnosis(core_belief="abcde", intensity=10)
        session = sample_session.model_copy(update={"diagnosis": diagnosis})

        assert can_transition_to(FlowStage.RITUAL, session).allowed

    def test_complete_needs_profile_and_diagnosis(self, now, sample_profile):
        session = create_new_session(now=now).model_copy(update={"act_profile": sample_profile})

        result = can_transition_to(FlowStage.COMPLETE, session)
        assert result.reason == SESSION_INCOMPLETE

    def test_unknown_stage(self, now):
        result = can_transition_to("NOWHERE", create_new_session(now=now))

        assert not result.allowed
        assert result.reason == UNKNOWN_STAGE

    def test_stage_given_as_string(self, now):
        assert can_transition_to("TEST", create_new_session(now=now)).allowed

    def test_result_is_falsy_when_denied(self, now):
        assert not can_transition_to(FlowStage.RITUAL, create_new_session(now=now))
        assert can_transition_to(FlowStage.IDLE, create_new_session(now=now))


class TestGetCurrentStage:
    def test_fresh_session_is_idle(self, now):
        assert get_current_stage(create_new_session(now=now)) == FlowStage.IDLE

    def test_profile_only_is_test(self, now, sample_profile):
        session = create_new_session(now=now).model_copy(update={"act_profile": sample_profile})
        assert get_current_stage(session) == FlowStage.TEST

    def test_diagnosis_is_diagnosis(self, sample_session):
        assert get_current_stage(sample_session) == FlowStage.DIAGNOSIS

    def test_ritual_at_phase_zero_reports_diagnosis(self, sample_session):
        session = sample_session.model_copy(update={"ritual_state": create_ritual_state()})
        assert get_current_stage(session) == FlowStage.DIAGNOSIS

    def test_ritual_in_progress(self, sample_session):
        state = update_ritual_phase(create_ritual_state(), "certeza", "Q?", "A.", False)
        session = sample_session.model_copy(update={"ritual_state": state})

        assert get_current_stage(session) == FlowStage.RITUAL

    def test_completed_wins(self, now):
        session = create_new_session(now=now).model_copy(update={"completed_at": now})
        assert get_current_stage(session) == FlowStage.COMPLETE


class TestAvailableTransitions:
    def test_fresh_session(self, now):
        assert get_available_transitions(create_new_session(now=now)) == [
            FlowStage.IDLE,
            FlowStage.TEST,
        ]

    def test_ready_session(self, sample_session):
        assert get_available_transitions(sample_session) == [
            FlowStage.IDLE,
            FlowStage.TEST,
            FlowStage.DIAGNOSIS,
            FlowStage.RITUAL,
        ]

    def test_completed_session(self, sample_session, now):
        session = sample_session.model_copy(update={"completed_at": now})
        assert FlowStage.COMPLETE in get_available_transitions(session)


class TestProgress:
    def test_fresh_session_is_zero(self, now):
        assert get_progress_percentage(create_new_session(now=now)) == 0

    def test_profile_only_is_25(self, now, sample_profile):
        session = create_new_session(now=now).model_copy(update={"act_profile": sample_profile})
        assert get_progress_percentage(session) == 25

    def test_profile_and_diagnosis_is_50(self, sample_session):
        assert get_progress_percentage(sample_session) == 50

    def test_dialogue_adds_up_to_40(self, sample_session, now):
        three = sample_session.model_copy(update={"dialogue": [_entry(now, i) for i in range(3)]})
        nine = sample_session.model_copy(update={"dialogue": [_entry(now, i) for i in range(9)]})

        assert get_progress_percentage(three) == 70
        assert get_progress_percentage(nine) == 90

    def test_completed_is_100(self, now):
        session = create_new_session(now=now).model_copy(update={"completed_at": now})
        assert get_progress_percentage(session) == 100

    def test_significant_progress(self, now, sample_profile):
        fresh = create_new_session(now=now)

        assert not has_significant_progress(fresh)
        assert has_significant_progress(fresh.model_copy(update={"act_profile": sample_profile}))
        assert has_significant_progress(fresh.model_copy(update={"dialogue": [_entry(now)]}))

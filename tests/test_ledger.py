"""Streak ledger: counter updates for session outcomes."""
from datetime import datetime, timedelta, timezone

from momentum import judgment, ledger, session
from momentum.models import DEFAULT_FAILURE_REASON, ExceptionRuleType

T0 = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def test_success_increments_streak_and_completions(state, chain):
    chain.current_streak = 6
    chain.total_completions = 9
    session.start(state, chain, T0)
    session.extend(state, 5)

    record = session.complete(state, T0 + timedelta(minutes=30))

    assert chain.current_streak == 7
    assert chain.total_completions == 10
    assert chain.last_completed_at == T0 + timedelta(minutes=30)
    assert state.completion_history == [record]
    assert record.was_successful is True
    assert record.is_early_complete is False
    assert record.duration == 25
    assert record.actual_focus_time == 1800


def test_failure_resets_every_counter(state, chain):
    chain.current_streak = 5
    chain.auxiliary_streak = 3
    chain.total_completions = 12
    chain.total_failures = 4
    chain.auxiliary_failures = 2
    chain.last_completed_at = T0 - timedelta(days=1)
    session.start(state, chain, T0)

    record = session.interrupt(state, T0 + timedelta(minutes=7, milliseconds=999))

    assert (chain.current_streak, chain.auxiliary_streak, chain.total_completions,
            chain.total_failures, chain.auxiliary_failures) == (0, 0, 0, 0, 0)
    assert chain.last_completed_at is None
    assert state.completion_history == [record]
    assert record.was_successful is False
    assert record.actual_focus_time == 420


def test_failure_reason_defaults(state, chain):
    session.start(state, chain, T0)
    record = session.interrupt(state, T0 + timedelta(minutes=1), reason="  ")
    assert record.reason_for_failure == DEFAULT_FAILURE_REASON


def test_cancel_changes_nothing(state, chain):
    chain.current_streak = 3
    chain.total_completions = 3
    session.start(state, chain, T0)

    session.cancel(state)

    assert chain.current_streak == 3
    assert chain.total_completions == 3
    assert state.completion_history == []
    assert state.active_session is None


def test_history_keeps_rule_effects_snapshot(state, chain):
    session.start(state, chain, T0)
    session.pause(state, T0)
    session.resume(state, T0 + timedelta(minutes=1))
    judgment.resolve(state, T0 + timedelta(minutes=2), description="tea", rule_type=ExceptionRuleType.NORMAL)

    record = session.complete(state, T0 + timedelta(minutes=26))

    assert [e.description for e in record.rule_effects] == ["tea"]


def test_precommitment_outcomes_touch_auxiliary_counters_only(state, chain):
    chain.current_streak = 2
    ledger.record_precommitment(chain)
    ledger.record_precommitment(chain)
    assert chain.auxiliary_streak == 2

    ledger.record_auxiliary_failure(state, chain)

    assert chain.auxiliary_streak == 0
    assert chain.auxiliary_failures == 1
    assert chain.current_streak == 2

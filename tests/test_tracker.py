"""Tracker: persistence after mutation, cascades and notifications."""
import pytest

from momentum.models import ChainCreateRequest, ChainUpdateRequest, ExceptionRule, ExceptionRuleType
from momentum.tracker import Tracker


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, title, message):
        self.sent.append((title, message))


class BrokenNotifier:
    def notify(self, title, message):
        raise RuntimeError("notification service down")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def tracked(memory_store, clock, notifier):
    tracker = Tracker(store=memory_store, clock=clock, notifier=notifier)
    chain = tracker.create_chain(ChainCreateRequest(name="Deep work", duration=25, auxiliary_duration=15))
    return tracker, chain


def test_create_chain_is_saved(tracked, memory_store, clock):
    tracker, chain = tracked
    assert memory_store.chains[0].id == chain.id
    assert chain.created_at == clock.now()
    assert chain.current_streak == 0


def test_update_chain_only_touches_given_fields(tracked):
    tracker, chain = tracked
    tracker.update_chain(chain.id, ChainUpdateRequest(duration=45))
    assert chain.duration == 45
    assert chain.name == "Deep work"


def test_unknown_chain_raises_value_error(tracker):
    with pytest.raises(ValueError, match="Chain not found"):
        tracker.get_chain("missing")
    with pytest.raises(ValueError):
        tracker.start_session("missing")


def test_full_session_is_persisted(tracked, memory_store, clock, notifier):
    tracker, chain = tracked
    tracker.start_session(chain.id)
    assert memory_store.active_session.chain_id == chain.id

    clock.advance(minutes=25)
    record = tracker.tick_and_complete()

    assert record.was_successful
    assert memory_store.active_session is None
    assert memory_store.chains[0].current_streak == 1
    assert len(memory_store.completion_history) == 1
    assert notifier.sent[-1][0] == "Session complete"


def test_tick_and_complete_waits_for_zero(tracked, clock):
    tracker, chain = tracked
    tracker.start_session(chain.id)
    clock.advance(minutes=24, seconds=59)

    assert tracker.tick_and_complete() is None
    assert tracker.tick() == 1


def test_tick_and_complete_skips_paused_session(tracked, clock):
    tracker, chain = tracked
    tracker.start_session(chain.id)
    clock.advance(minutes=25)
    tracker.pause()
    assert tracker.tick_and_complete() is None


def test_state_survives_reload(tracked, memory_store, clock):
    tracker, chain = tracked
    tracker.start_session(chain.id)
    clock.advance(minutes=2)
    tracker.pause()

    fresh = Tracker(store=memory_store, clock=clock)
    active, owner = fresh.active()

    assert owner.id == chain.id
    assert active.is_paused


def test_judgment_notifies_and_persists_rule(tracked, memory_store, clock, notifier):
    tracker, chain = tracked
    tracker.start_session(chain.id)

    resolution = tracker.judge(description="checked phone", rule_type=ExceptionRuleType.PAUSE)

    assert resolution.applied
    assert memory_store.chains[0].exceptions[0].description == "checked phone"
    assert memory_store.active_session.is_paused
    assert notifier.sent[-1][0] == "Session paused"


def test_failed_notification_does_not_affect_state(memory_store, clock):
    tracker = Tracker(store=memory_store, clock=clock, notifier=BrokenNotifier())
    chain = tracker.create_chain(ChainCreateRequest(name="Run"))
    tracker.start_session(chain.id)
    clock.advance(minutes=25)

    record = tracker.complete()

    assert record.was_successful
    assert chain.current_streak == 1


def test_schedule_sweep_and_auxiliary_judgment(tracked, memory_store, clock, notifier):
    tracker, chain = tracked
    tracker.schedule_chain(chain.id)
    assert memory_store.scheduled_sessions[0].chain_id == chain.id
    assert chain.auxiliary_streak == 1

    clock.advance(minutes=16)
    expired = tracker.sweep_expired()

    assert [s.chain_id for s in expired] == [chain.id]
    assert tracker.awaiting_judgment() == [chain.id]
    assert notifier.sent[-1][0] == "Pre-commitment expired"

    tracker.judge_auxiliary(chain.id, failed=True, reason="forgot")

    assert chain.auxiliary_streak == 0
    assert chain.auxiliary_failures == 1
    assert tracker.awaiting_judgment() == []
    assert tracker.history() == []


def test_delete_chain_cascades(tracked, memory_store, clock):
    tracker, chain = tracked
    other = tracker.create_chain(ChainCreateRequest(name="Other"))
    tracker.start_session(chain.id)
    clock.advance(minutes=25)
    tracker.complete()
    tracker.schedule_chain(chain.id)
    tracker.start_session(chain.id)

    tracker.delete_chain(chain.id)

    assert [c.id for c in tracker.list_chains()] == [other.id]
    assert tracker.history() == []
    assert tracker.list_scheduled() == []
    assert tracker.active() is None
    assert memory_store.active_session is None


def test_delete_chain_keeps_other_active_session(tracked):
    tracker, chain = tracked
    other = tracker.create_chain(ChainCreateRequest(name="Other"))
    tracker.start_session(other.id)

    tracker.delete_chain(chain.id)

    assert tracker.active()[1].id == other.id


def test_update_exceptions_coalesces(tracked, clock):
    tracker, chain = tracked
    rules = [
        ExceptionRule(id="a", description="tea", created_at=clock.now()),
        ExceptionRule(id="b", description="tea ", created_at=clock.now()),
    ]

    tracker.update_exceptions(chain.id, rules, ["bus late", "  "])

    assert [r.id for r in chain.exceptions] == ["a"]
    assert chain.auxiliary_exceptions == ["bus late"]


def test_interrupt_resets_and_saves(tracked, memory_store, clock):
    tracker, chain = tracked
    tracker.start_session(chain.id)
    clock.advance(minutes=25)
    tracker.complete()
    tracker.start_session(chain.id)
    clock.advance(minutes=3)

    record = tracker.interrupt("checked email")

    assert record.reason_for_failure == "checked email"
    assert memory_store.chains[0].current_streak == 0
    assert memory_store.chains[0].total_completions == 0
    assert len(memory_store.completion_history) == 2

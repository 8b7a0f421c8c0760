"""Session state machine.

Idle -> Running <-> Paused -> Completed | Interrupted | Cancelled

Every transition takes the owning AppState and the current time explicitly,
so the machine stays synchronous and can be driven by a manual clock.
Invalid transitions are no-ops: functions return None/False instead of raising.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from momentum import ledger
from momentum.models import (
    DEFAULT_AUXILIARY_SIGNAL,
    ActiveSession,
    AppState,
    Chain,
    CompletionHistory,
    ExceptionRuleType,
    ScheduledSession,
)
from momentum.timefmt import elapsed_ms, is_expired

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60_000


# ─── Pre-commitment ────────────────────────────────────────────────────────


def schedule(state: AppState, chain: Chain, now: datetime) -> Optional[ScheduledSession]:
    """Pre-commit to start `chain` within its auxiliary window (one per chain)."""
    if state.find_scheduled(chain.id) is not None:
        return None

    scheduled = ScheduledSession(
        chain_id=chain.id,
        scheduled_at=now,
        expires_at=now + timedelta(minutes=chain.auxiliary_duration),
        auxiliary_signal=chain.auxiliary_signal or DEFAULT_AUXILIARY_SIGNAL,
    )
    state.scheduled_sessions.append(scheduled)
    ledger.record_precommitment(chain)
    logger.info("Scheduled chain %s until %s", chain.id, scheduled.expires_at.isoformat())
    return scheduled


def cancel_scheduled(state: AppState, chain_id: str) -> bool:
    before = len(state.scheduled_sessions)
    state.scheduled_sessions = [s for s in state.scheduled_sessions if s.chain_id != chain_id]
    return len(state.scheduled_sessions) != before


def sweep_expired(state: AppState, now: datetime) -> list[ScheduledSession]:
    """Remove expired pre-commitments and queue their chains for judgment."""
    expired = [s for s in state.scheduled_sessions if is_expired(s.expires_at, now)]
    if not expired:
        return []

    state.scheduled_sessions = [s for s in state.scheduled_sessions if not is_expired(s.expires_at, now)]
    for scheduled in expired:
        if scheduled.chain_id not in state.awaiting_judgment:
            state.awaiting_judgment.append(scheduled.chain_id)
        logger.info("Pre-commitment for chain %s expired", scheduled.chain_id)
    return expired


# ─── Active session ────────────────────────────────────────────────────────


def start(state: AppState, chain: Chain, now: datetime) -> Optional[ActiveSession]:
    """Start a session for `chain`. Only one session may be active at a time."""
    if state.active_session is not None:
        logger.info("Chain %s not started: session for %s already active",
                    chain.id, state.active_session.chain_id)
        return None

    session = ActiveSession(
        chain_id=chain.id,
        started_at=now,
        duration=chain.duration,
        original_duration=chain.duration,
    )
    state.active_session = session
    cancel_scheduled(state, chain.id)
    logger.info("Started %d minute session for chain %s", chain.duration, chain.id)
    return session


def focus_elapsed_ms(session: ActiveSession, now: datetime) -> int:
    """Elapsed time minus paused time. A running pause is measured up to its start."""
    reference = session.paused_at if session.is_paused and session.paused_at else now
    return elapsed_ms(reference, session.started_at) - session.total_paused_time


def remaining_ms(session: ActiveSession, now: datetime) -> int:
    return max(0, session.duration * MS_PER_MINUTE - focus_elapsed_ms(session, now))


def remaining_seconds(session: ActiveSession, now: datetime) -> int:
    # ceiling: never report zero while time remains
    return -(-remaining_ms(session, now) // 1000)


def tick(state: AppState, now: datetime) -> Optional[int]:
    """Remaining whole seconds for the active session, or None when idle.

    Reaching zero does not complete the session; the caller does that.
    """
    if state.active_session is None:
        return None
    return remaining_seconds(state.active_session, now)


def actual_focus_seconds(session: ActiveSession, now: datetime) -> int:
    # floor: never overcredit
    return max(0, elapsed_ms(now, session.started_at) - session.total_paused_time) // 1000


def pause(state: AppState, now: datetime) -> bool:
    session = state.active_session
    if session is None or session.is_paused:
        return False
    session.is_paused = True
    session.paused_at = now
    return True


def resume(state: AppState, now: datetime) -> bool:
    session = state.active_session
    if session is None or not session.is_paused or session.paused_at is None:
        return False

    pause_ms = max(0, elapsed_ms(now, session.paused_at))
    session.total_paused_time += pause_ms
    session.is_paused = False
    session.paused_at = None

    # the pause effect recorded by a judgment gets its length once it is over
    for effect in reversed(session.rule_effects):
        if effect.rule_type == ExceptionRuleType.PAUSE:
            if effect.time_impact is None:
                effect.time_impact = -(pause_ms // 1000)
            break
    return True


def extend(state: AppState, minutes: Optional[int]) -> bool:
    session = state.active_session
    if session is None or minutes is None or minutes <= 0:
        return False
    session.duration += int(minutes)
    logger.info("Extended session for chain %s by %d minutes", session.chain_id, minutes)
    return True


def _close(state: AppState, now: datetime) -> ActiveSession:
    """Fold a running pause into the paused total and detach the session."""
    resume(state, now)
    session = state.active_session
    state.active_session = None
    return session


def complete(state: AppState, now: datetime, early: bool = False) -> Optional[CompletionHistory]:
    session = state.active_session
    if session is None:
        return None
    chain = state.find_chain(session.chain_id)
    if chain is None:
        logger.warning("Active session references unknown chain %s", session.chain_id)
        return None

    session = _close(state, now)
    return ledger.record_success(state, chain, session, actual_focus_seconds(session, now), now, early=early)


def interrupt(state: AppState, now: datetime, reason: Optional[str] = None) -> Optional[CompletionHistory]:
    session = state.active_session
    if session is None:
        return None
    chain = state.find_chain(session.chain_id)
    if chain is None:
        logger.warning("Active session references unknown chain %s", session.chain_id)
        return None

    session = _close(state, now)
    return ledger.record_failure(state, chain, session, actual_focus_seconds(session, now), now, reason)


def cancel(state: AppState) -> Optional[ActiveSession]:
    """Drop the active session without touching counters or history."""
    session = state.active_session
    if session is None:
        return None
    state.active_session = None
    logger.info("Cancelled session for chain %s", session.chain_id)
    return session

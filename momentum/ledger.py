"""Streak ledger: applies session and pre-commitment outcomes to chain counters.

A failed session resets every counter on the chain, not only the current
streak. Pre-commitment outcomes only touch the auxiliary counters and
never write completion history.
"""
import logging
from datetime import datetime
from typing import Optional

from momentum.models import (
    DEFAULT_FAILURE_REASON,
    ActiveSession,
    AppState,
    Chain,
    CompletionHistory,
)

logger = logging.getLogger(__name__)


def record_success(
    state: AppState,
    chain: Chain,
    session: ActiveSession,
    actual_focus_time: int,
    now: datetime,
    early: bool = False,
) -> CompletionHistory:
    chain.current_streak += 1
    chain.total_completions += 1
    chain.last_completed_at = now

    record = CompletionHistory(
        chain_id=chain.id,
        completed_at=now,
        duration=session.original_duration or session.duration,
        actual_focus_time=actual_focus_time,
        was_successful=True,
        is_early_complete=early,
        rule_effects=[effect.model_copy(deep=True) for effect in session.rule_effects],
    )
    state.completion_history.append(record)
    logger.info("Chain %s completed (%ss focus, streak %d%s)",
                chain.id, actual_focus_time, chain.current_streak, ", early" if early else "")
    return record


def reset_counters(chain: Chain) -> None:
    chain.current_streak = 0
    chain.auxiliary_streak = 0
    chain.total_completions = 0
    chain.total_failures = 0
    chain.auxiliary_failures = 0
    chain.last_completed_at = None


def record_failure(
    state: AppState,
    chain: Chain,
    session: ActiveSession,
    actual_focus_time: int,
    now: datetime,
    reason: Optional[str] = None,
) -> CompletionHistory:
    reset_counters(chain)

    record = CompletionHistory(
        chain_id=chain.id,
        completed_at=now,
        duration=session.original_duration or session.duration,
        actual_focus_time=actual_focus_time,
        was_successful=False,
        reason_for_failure=(reason or "").strip() or DEFAULT_FAILURE_REASON,
        rule_effects=[effect.model_copy(deep=True) for effect in session.rule_effects],
    )
    state.completion_history.append(record)
    logger.info("Chain %s interrupted after %ss: %s", chain.id, actual_focus_time, record.reason_for_failure)
    return record


def record_precommitment(chain: Chain) -> None:
    chain.auxiliary_streak += 1


def _settle_precommitment(state: AppState, chain_id: str) -> None:
    state.scheduled_sessions = [s for s in state.scheduled_sessions if s.chain_id != chain_id]
    state.awaiting_judgment = [cid for cid in state.awaiting_judgment if cid != chain_id]


def record_auxiliary_failure(state: AppState, chain: Chain, reason: Optional[str] = None) -> None:
    chain.auxiliary_streak = 0
    chain.auxiliary_failures += 1
    _settle_precommitment(state, chain.id)
    logger.info("Pre-commitment for chain %s failed: %s", chain.id, reason or DEFAULT_FAILURE_REASON)


def record_auxiliary_allow(state: AppState, chain: Chain, exception: Optional[str]) -> None:
    text = (exception or "").strip()
    if text:
        chain.auxiliary_exceptions.append(text)
    _settle_precommitment(state, chain.id)
    logger.info("Pre-commitment for chain %s excused: %r", chain.id, text)

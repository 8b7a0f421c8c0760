"""Judgment resolver.

Classifies a behaviour reported during a session under an exception rule
(existing or new) and applies that rule's effect to the session. The
failure path skips rule resolution and interrupts the session.
Malformed input degrades to a no-op.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from momentum import ledger, rules, session
from momentum.models import (
    AppState,
    CompletionHistory,
    ExceptionRule,
    ExceptionRuleEffect,
    ExceptionRuleType,
)

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    applied: bool
    rule: Optional[ExceptionRule] = None
    created: bool = False
    history: Optional[CompletionHistory] = None


def _record_effect(state: AppState, rule: ExceptionRule, now: datetime, time_impact: Optional[int] = None) -> None:
    state.active_session.rule_effects.append(ExceptionRuleEffect(
        rule_type=rule.type,
        description=rule.description,
        applied_at=now,
        time_impact=time_impact,
    ))


def _apply(state: AppState, rule: ExceptionRule, now: datetime) -> Resolution:
    if rule.type == ExceptionRuleType.NORMAL:
        _record_effect(state, rule, now)
        return Resolution(True, rule)

    if rule.type == ExceptionRuleType.PAUSE:
        if not session.pause(state, now):
            return Resolution(False, rule)
        # impact is filled in on resume
        _record_effect(state, rule, now)
        return Resolution(True, rule)

    if rule.type == ExceptionRuleType.EXTEND_TIME:
        if not session.extend(state, rule.extend_minutes):
            return Resolution(False, rule)
        _record_effect(state, rule, now, time_impact=rule.extend_minutes * 60)
        return Resolution(True, rule)

    if rule.type == ExceptionRuleType.EARLY_COMPLETE:
        _record_effect(state, rule, now)
        history = session.complete(state, now, early=True)
        return Resolution(history is not None, rule, history=history)

    if rule.type == ExceptionRuleType.CANCEL_FOCUS:
        return Resolution(session.cancel(state) is not None, rule)

    return Resolution(False, rule)


def resolve(
    state: AppState,
    now: datetime,
    rule_id: Optional[str] = None,
    description: Optional[str] = None,
    rule_type: ExceptionRuleType = ExceptionRuleType.NORMAL,
    extend_minutes: Optional[int] = None,
) -> Resolution:
    """Allow a reported behaviour under an existing or new rule."""
    active = state.active_session
    if active is None:
        return Resolution(False)
    chain = state.find_chain(active.chain_id)
    if chain is None:
        return Resolution(False)

    created = False
    if rule_id:
        rule = rules.find_by_id(chain, rule_id)
        if rule is None:
            logger.info("Judgment ignored: rule %s not found on chain %s", rule_id, chain.id)
            return Resolution(False)
    else:
        created = rules.find_by_description(chain, description or "") is None
        rule = rules.add_rule(chain, description or "", rule_type, now, extend_minutes)
        if rule is None:
            return Resolution(False)

    resolution = _apply(state, rule, now)
    resolution.created = created
    return resolution


def fail(state: AppState, now: datetime, reason: Optional[str] = None) -> Optional[CompletionHistory]:
    """The behaviour counts as a violation: interrupt the session."""
    return session.interrupt(state, now, reason)


def judge_auxiliary(
    state: AppState,
    chain_id: str,
    failed: bool,
    reason: Optional[str] = None,
    exception: Optional[str] = None,
) -> bool:
    """Settle an expired or abandoned pre-commitment."""
    chain = state.find_chain(chain_id)
    if chain is None:
        return False
    if failed:
        ledger.record_auxiliary_failure(state, chain, reason)
    else:
        ledger.record_auxiliary_allow(state, chain, exception)
    return True

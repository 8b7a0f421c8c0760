"""Per-chain exception rule store.

Descriptions are unique per chain after trimming and are compared
case-sensitively. Invalid input is ignored rather than raised.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from momentum.models import MAX_EXTEND_MINUTES, Chain, ExceptionRule, ExceptionRuleType

logger = logging.getLogger(__name__)


def generate_rule_id(prefix: str = "rule") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def clamp_extend_minutes(rule_type: ExceptionRuleType, extend_minutes: Optional[int]) -> Optional[int]:
    """Minutes are only kept for extend_time rules and only when positive."""
    if rule_type != ExceptionRuleType.EXTEND_TIME or not extend_minutes or extend_minutes <= 0:
        return None
    return max(1, min(MAX_EXTEND_MINUTES, int(extend_minutes)))


def find_by_description(chain: Chain, description: str) -> Optional[ExceptionRule]:
    wanted = (description or "").strip()
    for rule in chain.exceptions:
        if rule.description.strip() == wanted:
            return rule
    return None


def find_by_id(chain: Chain, rule_id: str) -> Optional[ExceptionRule]:
    for rule in chain.exceptions:
        if rule.id == rule_id:
            return rule
    return None


def add_rule(
    chain: Chain,
    description: str,
    rule_type: ExceptionRuleType,
    now: datetime,
    extend_minutes: Optional[int] = None,
) -> Optional[ExceptionRule]:
    """Add a rule, or return the existing one with the same description.

    Returns None when the description is blank.
    """
    text = (description or "").strip()
    if not text:
        return None

    existing = find_by_description(chain, text)
    if existing is not None:
        return existing

    rule = ExceptionRule(
        id=generate_rule_id(),
        description=text,
        type=rule_type,
        created_at=now,
        extend_minutes=clamp_extend_minutes(rule_type, extend_minutes),
    )
    chain.exceptions.append(rule)
    logger.info("Added %s rule %r to chain %s", rule.type.value, text, chain.id)
    return rule


def remove_rule(chain: Chain, rule_id: str) -> bool:
    before = len(chain.exceptions)
    chain.exceptions = [rule for rule in chain.exceptions if rule.id != rule_id]
    return len(chain.exceptions) != before


def coalesce_rules(rules: list[ExceptionRule]) -> list[ExceptionRule]:
    """Drop blank and duplicate descriptions, keeping the first occurrence."""
    seen = set()
    result = []
    for rule in rules:
        text = rule.description.strip()
        if not text or text in seen:
            continue
        seen.add(text)
        result.append(rule.model_copy(update={
            "description": text,
            "extend_minutes": clamp_extend_minutes(rule.type, rule.extend_minutes),
        }))
    return result

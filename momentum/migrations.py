"""Read-boundary migration of stored records.

Collections are stored as {"version": N, "items": [...]}. A bare list is a
version 1 payload written before the envelope existed. Records from an older
payload run through the upgrade steps registered for each version in between.
Each record is then default-filled and coerced to its typed model here, so
nothing past this module has to deal with old shapes.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar

from pydantic import ValidationError

from momentum.models import (
    DEFAULT_AUXILIARY_SIGNAL,
    ActiveSession,
    Chain,
    CompletionHistory,
    ExceptionRule,
    ExceptionRuleType,
    ScheduledSession,
)
from momentum.rules import clamp_extend_minutes, coalesce_rules, generate_rule_id

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

T = TypeVar("T")


def wrap(items: list[dict]) -> dict:
    return {"version": SCHEMA_VERSION, "items": items}


def unwrap(payload: Any) -> tuple[int, list]:
    if payload is None:
        return SCHEMA_VERSION, []
    if isinstance(payload, list):
        return 1, payload
    if isinstance(payload, dict) and isinstance(payload.get("items"), list):
        return int(payload.get("version") or 1), payload["items"]
    logger.warning("Unrecognized stored payload of type %s, ignoring", type(payload).__name__)
    return SCHEMA_VERSION, []


def _non_negative(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def _positive_or_none(value: Any) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def upgrade_chain_v1(raw: dict, now: datetime) -> dict:
    """Version 1 chains stored exceptions as plain strings."""
    data = dict(raw)
    exceptions = data.get("exceptions")
    if not isinstance(exceptions, list):
        return data
    upgraded = []
    for item in exceptions:
        if isinstance(item, str):
            if not item.strip():
                continue
            item = {
                "id": generate_rule_id("migrated"),
                "description": item.strip(),
                "type": ExceptionRuleType.NORMAL.value,
                "createdAt": now,
            }
        upgraded.append(item)
    data["exceptions"] = upgraded
    return data


def _migrate_rule(raw: Any, now: datetime) -> Optional[ExceptionRule]:
    if not isinstance(raw, dict):
        logger.warning("Dropping exception rule of type %s", type(raw).__name__)
        return None

    rule = dict(raw)
    try:
        rule_type = ExceptionRuleType(rule.get("type") or ExceptionRuleType.NORMAL.value)
    except ValueError:
        rule_type = ExceptionRuleType.NORMAL
    rule["type"] = rule_type.value
    if not rule.get("id"):
        rule["id"] = generate_rule_id("migrated")
    if not rule.get("createdAt"):
        rule["createdAt"] = now
    try:
        rule["extendMinutes"] = clamp_extend_minutes(rule_type, _positive_or_none(rule.get("extendMinutes")))
        return ExceptionRule.model_validate(rule)
    except (ValidationError, TypeError, ValueError) as exc:
        logger.warning("Dropping unreadable exception rule %r: %s", rule.get("id"), exc)
        return None


def migrate_chain(raw: dict, now: datetime) -> Chain:
    data = dict(raw)
    for key in ("currentStreak", "auxiliaryStreak", "totalCompletions", "totalFailures", "auxiliaryFailures"):
        data[key] = _non_negative(data.get(key))
    for key in ("duration", "auxiliaryDuration"):
        if _positive_or_none(data.get(key)) is None:
            data.pop(key, None)
    for key in ("name", "trigger", "description", "auxiliarySignal", "auxiliaryCompletionTrigger"):
        if data.get(key) is None:
            data[key] = ""

    exceptions = data.get("exceptions")
    migrated = [_migrate_rule(item, now) for item in exceptions] if isinstance(exceptions, list) else []
    data["exceptions"] = coalesce_rules([rule for rule in migrated if rule is not None])

    aux = data.get("auxiliaryExceptions")
    data["auxiliaryExceptions"] = [str(item) for item in aux if item is not None] if isinstance(aux, list) else []
    if not data.get("createdAt"):
        data["createdAt"] = now
    return Chain.model_validate(data)


def migrate_scheduled_session(raw: dict) -> ScheduledSession:
    data = dict(raw)
    data["auxiliarySignal"] = data.get("auxiliarySignal") or DEFAULT_AUXILIARY_SIGNAL
    return ScheduledSession.model_validate(data)


def migrate_active_session(raw: dict) -> ActiveSession:
    data = dict(raw)
    data["ruleEffects"] = data.get("ruleEffects") or []
    data["originalDuration"] = data.get("originalDuration") or data.get("duration")
    data["totalPausedTime"] = _non_negative(data.get("totalPausedTime"))
    # paused exactly when a pause start is known
    data["isPaused"] = bool(data.get("isPaused")) and data.get("pausedAt") is not None
    if not data["isPaused"]:
        data["pausedAt"] = None
    return ActiveSession.model_validate(data)


def migrate_history(raw: dict) -> CompletionHistory:
    data = dict(raw)
    if data.get("actualFocusTime") is None:
        # older records were only written for full completions
        data["actualFocusTime"] = _non_negative(data.get("duration")) * 60
    data["ruleEffects"] = data.get("ruleEffects") or []
    data["isEarlyComplete"] = bool(data.get("isEarlyComplete"))
    return CompletionHistory.model_validate(data)


def migrate_all(
    payload: Any,
    migrate: Callable[[dict], T],
    upgrades: Optional[dict[int, Callable[[dict], dict]]] = None,
) -> list[T]:
    """Run each record through the upgrade steps from its payload version, then `migrate`."""
    version, items = unwrap(payload)
    steps = [upgrades[v] for v in range(version, SCHEMA_VERSION) if upgrades and v in upgrades]
    result = []
    for raw in items:
        if not isinstance(raw, dict):
            logger.warning("Skipping non-object record in version %d payload", version)
            continue
        try:
            for step in steps:
                raw = step(raw)
            result.append(migrate(raw))
        except (ValidationError, TypeError, ValueError) as exc:
            logger.warning("Skipping unreadable record in version %d payload: %s", version, exc)
    return result


def migrate_chains(payload: Any, now: datetime) -> list[Chain]:
    return migrate_all(
        payload,
        lambda raw: migrate_chain(raw, now),
        upgrades={1: lambda raw: upgrade_chain_v1(raw, now)},
    )

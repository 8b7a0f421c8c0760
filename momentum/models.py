from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from momentum.timefmt import ensure_utc

MAX_EXTEND_MINUTES = 120
DEFAULT_FAILURE_REASON = "Interrupted by user"
DEFAULT_AUXILIARY_SIGNAL = "Pre-commitment signal"


class CamelModel(BaseModel):
    """Records keep the historical camelCase keys on the wire and in storage."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("*")
    @classmethod
    def timestamps_in_utc(cls, value):
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


class ExceptionRuleType(str, Enum):
    NORMAL = "normal"
    PAUSE = "pause"
    EARLY_COMPLETE = "early_complete"
    EXTEND_TIME = "extend_time"
    CANCEL_FOCUS = "cancel_focus"


class ExceptionRule(CamelModel):
    id: str
    description: str
    type: ExceptionRuleType = ExceptionRuleType.NORMAL
    created_at: datetime
    extend_minutes: Optional[int] = None


class ExceptionRuleEffect(CamelModel):
    rule_type: ExceptionRuleType
    description: str
    applied_at: datetime
    # seconds; negative for pauses, positive for extensions
    time_impact: Optional[int] = None


class Chain(CamelModel):
    id: str
    name: str
    trigger: str = ""
    duration: int = 25
    description: str = ""
    current_streak: int = 0
    auxiliary_streak: int = 0
    total_completions: int = 0
    total_failures: int = 0
    auxiliary_failures: int = 0
    exceptions: list[ExceptionRule] = Field(default_factory=list)
    auxiliary_exceptions: list[str] = Field(default_factory=list)
    auxiliary_signal: str = ""
    auxiliary_duration: int = 15
    auxiliary_completion_trigger: str = ""
    created_at: datetime
    last_completed_at: Optional[datetime] = None


class ScheduledSession(CamelModel):
    chain_id: str
    scheduled_at: datetime
    expires_at: datetime
    auxiliary_signal: str = DEFAULT_AUXILIARY_SIGNAL


class ActiveSession(CamelModel):
    chain_id: str
    started_at: datetime
    duration: int
    is_paused: bool = False
    paused_at: Optional[datetime] = None
    total_paused_time: int = 0
    original_duration: int
    rule_effects: list[ExceptionRuleEffect] = Field(default_factory=list)


class CompletionHistory(CamelModel):
    chain_id: str
    completed_at: datetime
    duration: int
    actual_focus_time: int
    was_successful: bool
    reason_for_failure: Optional[str] = None
    is_early_complete: bool = False
    rule_effects: list[ExceptionRuleEffect] = Field(default_factory=list)


class AppState(BaseModel):
    chains: list[Chain] = Field(default_factory=list)
    scheduled_sessions: list[ScheduledSession] = Field(default_factory=list)
    active_session: Optional[ActiveSession] = None
    completion_history: list[CompletionHistory] = Field(default_factory=list)
    # chains whose pre-commitment expired and still need an auxiliary judgment
    awaiting_judgment: list[str] = Field(default_factory=list)

    def find_chain(self, chain_id: Optional[str]) -> Optional[Chain]:
        for chain in self.chains:
            if chain.id == chain_id:
                return chain
        return None

    def find_scheduled(self, chain_id: str) -> Optional[ScheduledSession]:
        for session in self.scheduled_sessions:
            if session.chain_id == chain_id:
                return session
        return None


# ─── API payloads ──────────────────────────────────────────────────────────


class ChainCreateRequest(CamelModel):
    name: str
    trigger: str = ""
    duration: int = Field(default=25, gt=0)
    description: str = ""
    auxiliary_signal: str = ""
    auxiliary_duration: int = Field(default=15, gt=0)
    auxiliary_completion_trigger: str = ""


class ChainUpdateRequest(CamelModel):
    name: Optional[str] = None
    trigger: Optional[str] = None
    duration: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = None
    auxiliary_signal: Optional[str] = None
    auxiliary_duration: Optional[int] = Field(default=None, gt=0)
    auxiliary_completion_trigger: Optional[str] = None


class RuleCreateRequest(CamelModel):
    description: str
    type: ExceptionRuleType = ExceptionRuleType.NORMAL
    extend_minutes: Optional[int] = None


class ExceptionsUpdateRequest(CamelModel):
    exceptions: list[ExceptionRule]
    auxiliary_exceptions: list[str] = Field(default_factory=list)


class StartSessionRequest(CamelModel):
    chain_id: str


class ExtendRequest(CamelModel):
    minutes: int


class InterruptRequest(CamelModel):
    reason: Optional[str] = None


class JudgmentRequest(CamelModel):
    """Either `rule_id` of an existing rule, or a free-text description."""
    rule_id: Optional[str] = None
    description: Optional[str] = None
    type: ExceptionRuleType = ExceptionRuleType.NORMAL
    extend_minutes: Optional[int] = None


class AuxiliaryJudgmentRequest(CamelModel):
    failed: bool
    reason: Optional[str] = None
    exception: Optional[str] = None


class SessionStatusResponse(CamelModel):
    session: ActiveSession
    chain_name: str
    remaining_seconds: int
    remaining_display: str


class JudgmentResponse(CamelModel):
    applied: bool
    rule: Optional[ExceptionRule] = None
    session: Optional[ActiveSession] = None


class DayTrend(CamelModel):
    date: str
    session_count: int
    successful_sessions: int
    focus_seconds: int


class StatsResponse(CamelModel):
    today_sessions: int
    today_successful_sessions: int
    today_focus_seconds: int
    today_focus_display: str
    last_7_days: list[DayTrend]

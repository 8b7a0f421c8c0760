"""Application service over the session engine.

Owns the AppState, serializes all mutations behind one lock and saves the
touched collections after every mutation. Engine no-ops come back as
None/False; unknown chain ids on chain operations raise ValueError.
"""
import logging
import threading
import uuid
from typing import Optional

from momentum import judgment, rules, session
from momentum.models import (
    ActiveSession,
    AppState,
    Chain,
    ChainCreateRequest,
    ChainUpdateRequest,
    CompletionHistory,
    ExceptionRule,
    ExceptionRuleType,
    ScheduledSession,
    StatsResponse,
)
from momentum.notify import LogNotifier, deliver
from momentum.stats import compute_stats
from momentum.timefmt import SystemClock

logger = logging.getLogger(__name__)

_ACTION_MESSAGES = {
    ExceptionRuleType.NORMAL: ("Behavior allowed", "Allowed by exception rule"),
    ExceptionRuleType.PAUSE: ("Session paused", "Timer paused by exception rule"),
    ExceptionRuleType.EARLY_COMPLETE: ("Session completed early", "Session ended early by exception rule"),
    ExceptionRuleType.EXTEND_TIME: ("Session extended", "Timer extended by exception rule"),
    ExceptionRuleType.CANCEL_FOCUS: ("Session cancelled", "Session cancelled by exception rule, nothing recorded"),
}


class Tracker:
    def __init__(self, store, clock=None, notifier=None):
        self.store = store
        self.clock = clock or SystemClock()
        self.notifier = notifier if notifier is not None else LogNotifier()
        self._lock = threading.RLock()
        self.state = self._load()

    def _load(self) -> AppState:
        return AppState(
            chains=self.store.get_chains(),
            scheduled_sessions=self.store.get_scheduled_sessions(),
            active_session=self.store.get_active_session(),
            completion_history=self.store.get_completion_history(),
        )

    def reload(self) -> None:
        with self._lock:
            self.state = self._load()

    def _save(self, chains=False, scheduled=False, active=False, history=False) -> None:
        if chains:
            self.store.save_chains(self.state.chains)
        if scheduled:
            self.store.save_scheduled_sessions(self.state.scheduled_sessions)
        if active:
            self.store.save_active_session(self.state.active_session)
        if history:
            self.store.save_completion_history(self.state.completion_history)

    def _require_chain(self, chain_id: str) -> Chain:
        chain = self.state.find_chain(chain_id)
        if chain is None:
            raise ValueError("Chain not found")
        return chain

    # ─── Chains ────────────────────────────────────────────────────────────

    def list_chains(self) -> list[Chain]:
        with self._lock:
            return list(self.state.chains)

    def get_chain(self, chain_id: str) -> Chain:
        with self._lock:
            return self._require_chain(chain_id)

    def create_chain(self, request: ChainCreateRequest) -> Chain:
        with self._lock:
            chain = Chain(
                id=str(uuid.uuid4()),
                created_at=self.clock.now(),
                **request.model_dump(),
            )
            self.state.chains.append(chain)
            self._save(chains=True)
            logger.info("Created chain %s (%s)", chain.id, chain.name)
            return chain

    def update_chain(self, chain_id: str, request: ChainUpdateRequest) -> Chain:
        with self._lock:
            chain = self._require_chain(chain_id)
            for field, value in request.model_dump(exclude_none=True).items():
                setattr(chain, field, value)
            self._save(chains=True)
            return chain

    def delete_chain(self, chain_id: str) -> None:
        """Delete a chain with its pre-commitment, its active session and its history."""
        with self._lock:
            self._require_chain(chain_id)
            state = self.state
            state.chains = [c for c in state.chains if c.id != chain_id]
            session.cancel_scheduled(state, chain_id)
            state.awaiting_judgment = [cid for cid in state.awaiting_judgment if cid != chain_id]
            state.completion_history = [h for h in state.completion_history if h.chain_id != chain_id]
            owned = state.active_session is not None and state.active_session.chain_id == chain_id
            if owned:
                state.active_session = None
            self._save(chains=True, scheduled=True, history=True, active=owned)
            logger.info("Deleted chain %s", chain_id)

    # ─── Exception rules ───────────────────────────────────────────────────

    def add_rule(self, chain_id: str, description: str, rule_type: ExceptionRuleType,
                 extend_minutes: Optional[int] = None) -> Optional[ExceptionRule]:
        with self._lock:
            chain = self._require_chain(chain_id)
            rule = rules.add_rule(chain, description, rule_type, self.clock.now(), extend_minutes)
            if rule is not None:
                self._save(chains=True)
            return rule

    def remove_rule(self, chain_id: str, rule_id: str) -> bool:
        with self._lock:
            chain = self._require_chain(chain_id)
            removed = rules.remove_rule(chain, rule_id)
            if removed:
                self._save(chains=True)
            return removed

    def update_exceptions(self, chain_id: str, exceptions: list[ExceptionRule],
                          auxiliary_exceptions: list[str]) -> Chain:
        with self._lock:
            chain = self._require_chain(chain_id)
            chain.exceptions = rules.coalesce_rules(exceptions)
            chain.auxiliary_exceptions = [text.strip() for text in auxiliary_exceptions if text.strip()]
            self._save(chains=True)
            return chain

    # ─── Pre-commitment ────────────────────────────────────────────────────

    def list_scheduled(self) -> list[ScheduledSession]:
        with self._lock:
            return list(self.state.scheduled_sessions)

    def schedule_chain(self, chain_id: str) -> Optional[ScheduledSession]:
        with self._lock:
            chain = self._require_chain(chain_id)
            scheduled = session.schedule(self.state, chain, self.clock.now())
            if scheduled is not None:
                self._save(chains=True, scheduled=True)
            return scheduled

    def cancel_scheduled(self, chain_id: str) -> bool:
        with self._lock:
            cancelled = session.cancel_scheduled(self.state, chain_id)
            if cancelled:
                self._save(scheduled=True)
            return cancelled

    def sweep_expired(self) -> list[ScheduledSession]:
        with self._lock:
            expired = session.sweep_expired(self.state, self.clock.now())
            if expired:
                self._save(scheduled=True)
                for scheduled in expired:
                    chain = self.state.find_chain(scheduled.chain_id)
                    name = chain.name if chain else scheduled.chain_id
                    deliver(self.notifier, "Pre-commitment expired", f'"{name}" needs a judgment')
            return expired

    def awaiting_judgment(self) -> list[str]:
        with self._lock:
            return list(self.state.awaiting_judgment)

    def judge_auxiliary(self, chain_id: str, failed: bool, reason: Optional[str] = None,
                        exception: Optional[str] = None) -> Chain:
        with self._lock:
            chain = self._require_chain(chain_id)
            judgment.judge_auxiliary(self.state, chain_id, failed, reason, exception)
            self._save(chains=True, scheduled=True)
            return chain

    # ─── Active session ────────────────────────────────────────────────────

    def active(self) -> Optional[tuple[ActiveSession, Chain]]:
        """The active session with its chain, or None when idle or orphaned."""
        with self._lock:
            active = self.state.active_session
            if active is None:
                return None
            chain = self.state.find_chain(active.chain_id)
            if chain is None:
                return None
            return active, chain

    def start_session(self, chain_id: str) -> Optional[ActiveSession]:
        with self._lock:
            chain = self._require_chain(chain_id)
            started = session.start(self.state, chain, self.clock.now())
            if started is not None:
                self._save(scheduled=True, active=True)
            return started

    def tick(self) -> Optional[int]:
        with self._lock:
            return session.tick(self.state, self.clock.now())

    def tick_and_complete(self) -> Optional[CompletionHistory]:
        """Complete the running session once its remaining time reaches zero."""
        with self._lock:
            active = self.state.active_session
            if active is None or active.is_paused:
                return None
            if session.tick(self.state, self.clock.now()) != 0:
                return None
            return self.complete()

    def pause(self) -> bool:
        with self._lock:
            paused = session.pause(self.state, self.clock.now())
            if paused:
                self._save(active=True)
            return paused

    def resume(self) -> bool:
        with self._lock:
            resumed = session.resume(self.state, self.clock.now())
            if resumed:
                self._save(active=True)
            return resumed

    def extend(self, minutes: int) -> bool:
        with self._lock:
            extended = session.extend(self.state, minutes)
            if extended:
                self._save(active=True)
            return extended

    def complete(self) -> Optional[CompletionHistory]:
        with self._lock:
            record = session.complete(self.state, self.clock.now())
            if record is not None:
                self._save(chains=True, active=True, history=True)
                self._notify_completed(record)
            return record

    def interrupt(self, reason: Optional[str] = None) -> Optional[CompletionHistory]:
        with self._lock:
            record = judgment.fail(self.state, self.clock.now(), reason)
            if record is not None:
                self._save(chains=True, active=True, history=True)
            return record

    def cancel(self) -> Optional[ActiveSession]:
        with self._lock:
            dropped = session.cancel(self.state)
            if dropped is not None:
                self._save(active=True)
            return dropped

    def judge(self, rule_id: Optional[str] = None, description: Optional[str] = None,
              rule_type: ExceptionRuleType = ExceptionRuleType.NORMAL,
              extend_minutes: Optional[int] = None) -> judgment.Resolution:
        with self._lock:
            resolution = judgment.resolve(self.state, self.clock.now(), rule_id, description,
                                          rule_type, extend_minutes)
            if resolution.rule is None:
                return resolution
            finished = resolution.history is not None
            self._save(chains=True, active=True, history=finished)
            if resolution.applied:
                title, message = _ACTION_MESSAGES[resolution.rule.type]
                if resolution.rule.type == ExceptionRuleType.EXTEND_TIME:
                    message = f"{message} by {resolution.rule.extend_minutes} minutes"
                deliver(self.notifier, title, message)
            return resolution

    def _notify_completed(self, record: CompletionHistory) -> None:
        chain = self.state.find_chain(record.chain_id)
        name = chain.name if chain else record.chain_id
        deliver(self.notifier, "Session complete", f'"{name}" completed')

    # ─── History ───────────────────────────────────────────────────────────

    def history(self, chain_id: Optional[str] = None) -> list[CompletionHistory]:
        with self._lock:
            return [h for h in self.state.completion_history if chain_id is None or h.chain_id == chain_id]

    def stats(self, chain_id: Optional[str] = None) -> StatsResponse:
        with self._lock:
            return compute_stats(self.state.completion_history, self.clock.now(), chain_id=chain_id)

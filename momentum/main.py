import asyncio
import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from momentum import database
from momentum.models import (
    ActiveSession,
    AuxiliaryJudgmentRequest,
    Chain,
    ChainCreateRequest,
    ChainUpdateRequest,
    CompletionHistory,
    ExceptionRule,
    ExceptionsUpdateRequest,
    ExtendRequest,
    InterruptRequest,
    JudgmentRequest,
    JudgmentResponse,
    RuleCreateRequest,
    ScheduledSession,
    SessionStatusResponse,
    StartSessionRequest,
    StatsResponse,
)
from momentum.timefmt import format_duration
from momentum.tracker import Tracker

logger = logging.getLogger(__name__)

app = FastAPI(title="Momentum")

# Basic Auth when BASIC_AUTH_USER and BASIC_AUTH_PASSWORD are set
# auto_error=False so we can skip auth when env vars are unset (local dev, tests)
_scheme = HTTPBasic(auto_error=False)

_tracker: Optional[Tracker] = None
_background_tasks: list[asyncio.Task] = []


def _verify_basic_auth(credentials: HTTPBasicCredentials | None = Security(_scheme)) -> None:
    user = os.environ.get("BASIC_AUTH_USER")
    password = os.environ.get("BASIC_AUTH_PASSWORD")
    if not user or not password:
        return
    if not credentials or credentials.username != user or credentials.password != password:
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})


def get_tracker() -> Tracker:
    global _tracker
    if _tracker is None:
        _tracker = Tracker(store=database)
    return _tracker


def _chain_or_404(tracker: Tracker, chain_id: str) -> Chain:
    try:
        return tracker.get_chain(chain_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Chain not found")


async def _tick_loop(interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(get_tracker().tick_and_complete)
        except Exception:
            logger.exception("Session tick failed")


async def _sweep_loop(interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(get_tracker().sweep_expired)
        except Exception:
            logger.exception("Pre-commitment sweep failed")


@app.on_event("startup")
async def startup():
    database.init_db()
    if os.environ.get("MOMENTUM_TIMERS", "1") == "0":
        return
    tick = float(os.environ.get("MOMENTUM_TICK_SECONDS", "1"))
    sweep = float(os.environ.get("MOMENTUM_SWEEP_SECONDS", "30"))
    _background_tasks.append(asyncio.create_task(_tick_loop(tick)))
    _background_tasks.append(asyncio.create_task(_sweep_loop(sweep)))


@app.on_event("shutdown")
async def shutdown():
    for task in _background_tasks:
        task.cancel()
    _background_tasks.clear()


# ─── Chains ────────────────────────────────────────────────────────────────


@app.get("/api/chains", response_model=list[Chain], dependencies=[Depends(_verify_basic_auth)])
def list_chains(tracker: Tracker = Depends(get_tracker)):
    return tracker.list_chains()


@app.post("/api/chains", response_model=Chain, dependencies=[Depends(_verify_basic_auth)])
def create_chain(body: ChainCreateRequest, tracker: Tracker = Depends(get_tracker)):
    return tracker.create_chain(body)


@app.get("/api/chains/{chain_id}", response_model=Chain, dependencies=[Depends(_verify_basic_auth)])
def get_chain(chain_id: str, tracker: Tracker = Depends(get_tracker)):
    return _chain_or_404(tracker, chain_id)


@app.patch("/api/chains/{chain_id}", response_model=Chain, dependencies=[Depends(_verify_basic_auth)])
def update_chain(chain_id: str, body: ChainUpdateRequest, tracker: Tracker = Depends(get_tracker)):
    _chain_or_404(tracker, chain_id)
    return tracker.update_chain(chain_id, body)


@app.delete("/api/chains/{chain_id}", status_code=204, dependencies=[Depends(_verify_basic_auth)])
def delete_chain(chain_id: str, tracker: Tracker = Depends(get_tracker)):
    _chain_or_404(tracker, chain_id)
    tracker.delete_chain(chain_id)


@app.post("/api/chains/{chain_id}/rules", response_model=ExceptionRule, dependencies=[Depends(_verify_basic_auth)])
def add_rule(chain_id: str, body: RuleCreateRequest, tracker: Tracker = Depends(get_tracker)):
    _chain_or_404(tracker, chain_id)
    rule = tracker.add_rule(chain_id, body.description, body.type, body.extend_minutes)
    if rule is None:
        raise HTTPException(status_code=400, detail="Rule description is empty")
    return rule


@app.delete("/api/chains/{chain_id}/rules/{rule_id}", status_code=204, dependencies=[Depends(_verify_basic_auth)])
def remove_rule(chain_id: str, rule_id: str, tracker: Tracker = Depends(get_tracker)):
    _chain_or_404(tracker, chain_id)
    if not tracker.remove_rule(chain_id, rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")


@app.put("/api/chains/{chain_id}/exceptions", response_model=Chain, dependencies=[Depends(_verify_basic_auth)])
def update_exceptions(chain_id: str, body: ExceptionsUpdateRequest, tracker: Tracker = Depends(get_tracker)):
    _chain_or_404(tracker, chain_id)
    return tracker.update_exceptions(chain_id, body.exceptions, body.auxiliary_exceptions)


@app.get("/api/chains/{chain_id}/history", response_model=list[CompletionHistory], dependencies=[Depends(_verify_basic_auth)])
def chain_history(chain_id: str, tracker: Tracker = Depends(get_tracker)):
    _chain_or_404(tracker, chain_id)
    return tracker.history(chain_id)


# ─── Pre-commitment ────────────────────────────────────────────────────────


@app.get("/api/scheduled", response_model=list[ScheduledSession], dependencies=[Depends(_verify_basic_auth)])
def list_scheduled(tracker: Tracker = Depends(get_tracker)):
    return tracker.list_scheduled()


@app.post("/api/chains/{chain_id}/schedule", response_model=ScheduledSession, dependencies=[Depends(_verify_basic_auth)])
def schedule_chain(chain_id: str, tracker: Tracker = Depends(get_tracker)):
    _chain_or_404(tracker, chain_id)
    scheduled = tracker.schedule_chain(chain_id)
    if scheduled is None:
        raise HTTPException(status_code=409, detail="Chain already scheduled")
    return scheduled


@app.delete("/api/chains/{chain_id}/schedule", status_code=204, dependencies=[Depends(_verify_basic_auth)])
def cancel_schedule(chain_id: str, tracker: Tracker = Depends(get_tracker)):
    if not tracker.cancel_scheduled(chain_id):
        raise HTTPException(status_code=404, detail="No scheduled session")


@app.post("/api/scheduled/sweep", response_model=list[ScheduledSession], dependencies=[Depends(_verify_basic_auth)])
def sweep_scheduled(tracker: Tracker = Depends(get_tracker)):
    return tracker.sweep_expired()


@app.get("/api/judgments/pending", response_model=list[str], dependencies=[Depends(_verify_basic_auth)])
def pending_judgments(tracker: Tracker = Depends(get_tracker)):
    return tracker.awaiting_judgment()


@app.post("/api/chains/{chain_id}/judgment", response_model=Chain, dependencies=[Depends(_verify_basic_auth)])
def auxiliary_judgment(chain_id: str, body: AuxiliaryJudgmentRequest, tracker: Tracker = Depends(get_tracker)):
    _chain_or_404(tracker, chain_id)
    return tracker.judge_auxiliary(chain_id, body.failed, body.reason, body.exception)


# ─── Active session ────────────────────────────────────────────────────────


def _status(tracker: Tracker) -> SessionStatusResponse:
    active = tracker.active()
    if active is None:
        raise HTTPException(status_code=404, detail="No active session")
    session, chain = active
    remaining = tracker.tick() or 0
    return SessionStatusResponse(
        session=session,
        chain_name=chain.name,
        remaining_seconds=remaining,
        remaining_display=format_duration(remaining),
    )


@app.get("/api/session", response_model=SessionStatusResponse, dependencies=[Depends(_verify_basic_auth)])
def session_status(tracker: Tracker = Depends(get_tracker)):
    return _status(tracker)


@app.post("/api/session", response_model=SessionStatusResponse, dependencies=[Depends(_verify_basic_auth)])
def start_session(body: StartSessionRequest, tracker: Tracker = Depends(get_tracker)):
    _chain_or_404(tracker, body.chain_id)
    if tracker.start_session(body.chain_id) is None:
        raise HTTPException(status_code=409, detail="A session is already active")
    return _status(tracker)


@app.post("/api/session/pause", response_model=SessionStatusResponse, dependencies=[Depends(_verify_basic_auth)])
def pause_session(tracker: Tracker = Depends(get_tracker)):
    tracker.pause()
    return _status(tracker)


@app.post("/api/session/resume", response_model=SessionStatusResponse, dependencies=[Depends(_verify_basic_auth)])
def resume_session(tracker: Tracker = Depends(get_tracker)):
    tracker.resume()
    return _status(tracker)


@app.post("/api/session/extend", response_model=SessionStatusResponse, dependencies=[Depends(_verify_basic_auth)])
def extend_session(body: ExtendRequest, tracker: Tracker = Depends(get_tracker)):
    tracker.extend(body.minutes)
    return _status(tracker)


@app.post("/api/session/complete", response_model=CompletionHistory, dependencies=[Depends(_verify_basic_auth)])
def complete_session(tracker: Tracker = Depends(get_tracker)):
    record = tracker.complete()
    if record is None:
        raise HTTPException(status_code=404, detail="No active session")
    return record


@app.post("/api/session/interrupt", response_model=CompletionHistory, dependencies=[Depends(_verify_basic_auth)])
def interrupt_session(body: InterruptRequest, tracker: Tracker = Depends(get_tracker)):
    record = tracker.interrupt(body.reason)
    if record is None:
        raise HTTPException(status_code=404, detail="No active session")
    return record


@app.post("/api/session/cancel", response_model=ActiveSession, dependencies=[Depends(_verify_basic_auth)])
def cancel_session(tracker: Tracker = Depends(get_tracker)):
    dropped = tracker.cancel()
    if dropped is None:
        raise HTTPException(status_code=404, detail="No active session")
    return dropped


@app.post("/api/session/judgment", response_model=JudgmentResponse, dependencies=[Depends(_verify_basic_auth)])
def session_judgment(body: JudgmentRequest, tracker: Tracker = Depends(get_tracker)):
    resolution = tracker.judge(body.rule_id, body.description, body.type, body.extend_minutes)
    active = tracker.active()
    return JudgmentResponse(
        applied=resolution.applied,
        rule=resolution.rule,
        session=active[0] if active else None,
    )


# ─── History ───────────────────────────────────────────────────────────────


@app.get("/api/history", response_model=list[CompletionHistory], dependencies=[Depends(_verify_basic_auth)])
def history(tracker: Tracker = Depends(get_tracker)):
    return tracker.history()


@app.get("/api/stats", response_model=StatsResponse, dependencies=[Depends(_verify_basic_auth)])
def stats(chain_id: Optional[str] = Query(default=None, alias="chainId"), tracker: Tracker = Depends(get_tracker)):
    if chain_id is not None:
        _chain_or_404(tracker, chain_id)
    return tracker.stats(chain_id)

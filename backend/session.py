"""Host-driven session state machine for a scroll.

A scroll walks ``Intro -> module-0 -> module-0-results -> module-1 -> ...``
and finally to ``status == "completed"``. Only the host calls the transitions
here; participants observe ``step``, ``results`` and ``selected_ideas`` through
the change feed. Every transition recomputes what it needs from the current
rows, so retrying one after a failed commit converges on the same state.
"""
import copy
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from aggregation import aggregate
from models import Idea, Response, Scroll
from module_types import is_dataset_builder, is_voting_module
from utils import get_utc_now

logger = logging.getLogger(__name__)

STEP_PATTERN = re.compile(r"^module-(\d+)(-results)?$")


class TransitionError(Exception):
    status_code = 400

class ScrollCompletedError(TransitionError):
    status_code = 409

class TransitionInFlightError(TransitionError):
    status_code = 409

class ModuleClosedError(TransitionError):
    status_code = 409

class NotFoundError(TransitionError):
    status_code = 404


@dataclass(frozen=True)
class Step:
    index: int
    showing_results: bool = False

    @property
    def tag(self) -> str:
        suffix = "-results" if self.showing_results else ""
        return f"module-{self.index}{suffix}"


def parse_step(step: Optional[str]) -> Optional[Step]:
    """``None`` means the session hasn't started (intro screen)."""
    if not step:
        return None
    match = STEP_PATTERN.match(step)
    if not match:
        return None
    return Step(index=int(match.group(1)), showing_results=bool(match.group(2)))


def active_dataset_id(modules: List[dict], index: int) -> Optional[str]:
    """dataset_id of the nearest dataset-builder at or before ``index``."""
    for i in range(min(index, len(modules) - 1), -1, -1):
        if is_dataset_builder(modules[i]["type"]):
            return modules[i].get("dataset_id")
    return None


class TransitionGuard:
    """One host transition per scroll at a time; a second one is refused, not queued."""

    def __init__(self):
        self._in_flight = set()

    def busy(self, scroll_id: str) -> bool:
        return scroll_id in self._in_flight

    @asynccontextmanager
    async def hold(self, scroll_id: str):
        if scroll_id in self._in_flight:
            raise TransitionInFlightError("A transition is already in progress")
        self._in_flight.add(scroll_id)
        try:
            yield
        finally:
            self._in_flight.discard(scroll_id)

guard = TransitionGuard()


# --- helpers ---

def _require_open(scroll: Scroll):
    if scroll.status == "completed":
        raise ScrollCompletedError("Scroll is completed")

def _current_step(scroll: Scroll) -> Step:
    step = parse_step(scroll.step)
    if step is None:
        raise TransitionError("Session has not started")
    if step.index >= len(scroll.modules):
        raise TransitionError("Step points past the last module")
    return step

def _save_modules(scroll: Scroll, modules: List[dict]):
    scroll.modules = modules
    flag_modified(scroll, "modules")

def find_module(scroll: Scroll, module_id: str):
    for index, module in enumerate(scroll.modules):
        if module.get("id") == module_id:
            return index, module
    raise NotFoundError("Module not found")

def require_live_module(scroll: Scroll, module_id: str, *module_types: str):
    """The module participants may write to right now, or ModuleClosedError."""
    index, module = find_module(scroll, module_id)
    if module_types and module["type"] not in module_types:
        raise TransitionError(f"Module does not accept this input ({module['type']})")
    if scroll.status != "active":
        raise ModuleClosedError("Scroll is not accepting input")
    step = parse_step(scroll.step)
    if step is None or step.showing_results or step.index != index:
        raise ModuleClosedError("Module is not open")
    return index, module


async def live_ideas(db: AsyncSession, scroll_id: str, dataset_id: Optional[str]) -> List[Idea]:
    if dataset_id is None:
        return []
    result = await db.execute(
        select(Idea)
        .where(Idea.scroll_id == scroll_id, Idea.dataset_id == dataset_id, Idea.deleted.is_(False))
        .order_by(Idea.created_at, Idea.id)
    )
    return list(result.scalars().all())


async def compute_results(db: AsyncSession, scroll: Scroll, index: int):
    """Run the aggregation for ``modules[index]`` against the current rows."""
    module = scroll.modules[index]
    if not is_voting_module(module["type"]):
        return None
    ideas = await live_ideas(db, scroll.id, active_dataset_id(scroll.modules, index))
    result = await db.execute(
        select(Response)
        .where(Response.scroll_id == scroll.id, Response.module_id == module["id"])
        .order_by(Response.created_at, Response.id)
    )
    return aggregate(module["type"], result.scalars().all(), [idea.id for idea in ideas])


async def _write_results(db: AsyncSession, scroll: Scroll, modules: List[dict], index: int):
    results = await compute_results(db, scroll, index)
    if results is not None:
        modules[index]["results"] = results.model_dump(mode="json")


# --- transitions ---

async def activate(db: AsyncSession, scroll: Scroll) -> List[Idea]:
    """Draft -> active. Copies each dataset module's items into the idea table once."""
    _require_open(scroll)
    if scroll.status != "draft":
        raise TransitionError("Scroll is already active")

    created = []
    for module in scroll.modules:
        if module["type"] != "dataset":
            continue
        for text in module.get("items") or []:
            idea = Idea(
                scroll_id=scroll.id,
                dataset_id=module["dataset_id"],
                text=text,
                created_by="Dataset",
            )
            db.add(idea)
            created.append(idea)

    scroll.status = "active"
    await db.commit()
    logger.info("Scroll %s activated with %d dataset items", scroll.id, len(created))
    return created


async def start_session(db: AsyncSession, scroll: Scroll):
    _require_open(scroll)
    if scroll.status == "draft":
        raise TransitionError("Activate the scroll before starting the session")
    if scroll.step:
        raise TransitionError("Session already started")

    modules = copy.deepcopy(scroll.modules)
    modules[0]["selected_ideas"] = []
    _save_modules(scroll, modules)
    scroll.step = Step(0).tag
    await db.commit()
    logger.info("Scroll %s started", scroll.id)


async def close_module(db: AsyncSession, scroll: Scroll):
    """module-i -> module-i-results, persisting the aggregated results."""
    _require_open(scroll)
    step = _current_step(scroll)
    if step.showing_results:
        raise TransitionError("Module is already closed")
    if step.index + 1 >= len(scroll.modules):
        raise TransitionError("This is the last module; complete the session instead")

    modules = copy.deepcopy(scroll.modules)
    await _write_results(db, scroll, modules, step.index)
    modules[step.index]["selected_ideas"] = []
    _save_modules(scroll, modules)
    scroll.step = Step(step.index, showing_results=True).tag
    await db.commit()
    logger.info("Scroll %s closed module %d", scroll.id, step.index)


async def continue_to_next(db: AsyncSession, scroll: Scroll) -> List[Idea]:
    """module-i-results -> module-(i+1). Unselected items are tombstoned."""
    _require_open(scroll)
    step = _current_step(scroll)
    if not step.showing_results:
        raise TransitionError("Close the module before continuing")
    next_index = step.index + 1
    if next_index >= len(scroll.modules):
        raise TransitionError("There is no module after this one")

    selected = set(scroll.modules[step.index].get("selected_ideas") or [])
    tombstoned = []
    for idea in await live_ideas(db, scroll.id, active_dataset_id(scroll.modules, step.index)):
        if idea.id not in selected:
            idea.deleted = True
            tombstoned.append(idea)

    modules = copy.deepcopy(scroll.modules)
    modules[step.index]["selected_ideas"] = []
    modules[next_index]["selected_ideas"] = []
    _save_modules(scroll, modules)
    scroll.step = Step(next_index).tag
    await db.commit()
    logger.info(
        "Scroll %s continued to module %d, %d ideas dropped",
        scroll.id, next_index, len(tombstoned),
    )
    return tombstoned


async def complete_session(db: AsyncSession, scroll: Scroll):
    _require_open(scroll)
    if scroll.status == "draft":
        raise TransitionError("Scroll has not been activated")
    step = _current_step(scroll)

    modules = copy.deepcopy(scroll.modules)
    await _write_results(db, scroll, modules, step.index)
    _save_modules(scroll, modules)
    scroll.status = "completed"
    await db.commit()
    logger.info("Scroll %s completed at %s", scroll.id, step.tag)


async def _results_selection(db: AsyncSession, scroll: Scroll):
    _require_open(scroll)
    step = _current_step(scroll)
    if not step.showing_results:
        raise TransitionError("Ideas can only be selected while reviewing results")
    ideas = await live_ideas(db, scroll.id, active_dataset_id(scroll.modules, step.index))
    return step, [idea.id for idea in ideas]


async def toggle_selection(db: AsyncSession, scroll: Scroll, idea_id: str) -> List[str]:
    step, live_ids = await _results_selection(db, scroll)
    if idea_id not in live_ids:
        raise NotFoundError("Idea not found")

    modules = copy.deepcopy(scroll.modules)
    selected = modules[step.index].get("selected_ideas") or []
    if idea_id in selected:
        selected.remove(idea_id)
    else:
        selected.append(idea_id)
    modules[step.index]["selected_ideas"] = selected
    _save_modules(scroll, modules)
    await db.commit()
    return selected


async def select_all(db: AsyncSession, scroll: Scroll) -> List[str]:
    """Select every live idea, or clear the selection if all are already selected."""
    step, live_ids = await _results_selection(db, scroll)

    modules = copy.deepcopy(scroll.modules)
    current = set(modules[step.index].get("selected_ideas") or [])
    selected = [] if live_ids and current >= set(live_ids) else live_ids
    modules[step.index]["selected_ideas"] = selected
    _save_modules(scroll, modules)
    await db.commit()
    return selected


# --- module timer ---

def _parse_utc(value: str) -> datetime:
    """Naive UTC, whether the stored timestamp carries an offset or not."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

def remaining_seconds(module: dict, now: Optional[datetime] = None) -> Optional[int]:
    limit = module.get("time_limit")
    if not limit:
        return None
    total = int(limit * 60)
    state = module.get("timer_state") or {}
    if state.get("is_running") and state.get("started_at"):
        now = now or get_utc_now()
        elapsed = (now - _parse_utc(state["started_at"])).total_seconds()
        return max(0, int(total - elapsed))
    if state.get("paused_at") is not None:
        return state["paused_at"]
    return total


async def update_timer(db: AsyncSession, scroll: Scroll, action: str, now: Optional[datetime] = None) -> dict:
    _require_open(scroll)
    step = _current_step(scroll)
    if step.showing_results:
        raise TransitionError("Module is not open")
    module = scroll.modules[step.index]
    if not module.get("time_limit"):
        raise TransitionError("Module has no timer")

    now = now or get_utc_now()
    state = dict(module.get("timer_state") or {"is_running": False, "started_at": None, "paused_at": None})
    if action == "start" and not state.get("is_running"):
        remaining = remaining_seconds(module, now)
        # started_at is shifted back so a resumed timer keeps its elapsed time
        started = now - timedelta(seconds=module["time_limit"] * 60 - remaining)
        state = {"is_running": True, "started_at": started.isoformat(), "paused_at": None}
    elif action == "pause" and state.get("is_running"):
        state = {"is_running": False, "started_at": None, "paused_at": remaining_seconds(module, now)}
    elif action == "reset":
        state = {"is_running": False, "started_at": None, "paused_at": None}

    modules = copy.deepcopy(scroll.modules)
    modules[step.index]["timer_state"] = state
    _save_modules(scroll, modules)
    await db.commit()
    return modules[step.index]


async def record_grouping(db: AsyncSession, scroll: Scroll, index: int, user_id: str, groups: List[dict]):
    """Store one participant's grouping under their stable identity."""
    # Re-read so a concurrent submission from someone else isn't overwritten
    await db.refresh(scroll)
    require_live_module(scroll, scroll.modules[index]["id"], "grouping")
    modules = copy.deepcopy(scroll.modules)
    results = modules[index].get("results") or {"type": "grouping", "groups": {}}
    results["groups"][user_id] = groups
    modules[index]["results"] = results
    _save_modules(scroll, modules)
    await db.commit()
    return results

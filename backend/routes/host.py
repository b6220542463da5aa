from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from database import get_db
from models import Scroll
from schemas import ScrollResponse, TimerAction, TimerResponse
from security import verify_owner_token
from connection_manager import publish_ideas, publish_scroll
import session

router = APIRouter(prefix="/api/scrolls/{scroll_id}/owner/{token}", tags=["host"])

@router.post("/activate", response_model=ScrollResponse)
async def activate_scroll(
    scroll: Scroll = Depends(verify_owner_token),
    db: AsyncSession = Depends(get_db)
):
    async with session.guard.hold(scroll.id):
        created = await session.activate(db, scroll)
    await publish_ideas("insert", created)
    await publish_scroll(scroll)
    return scroll

@router.post("/start", response_model=ScrollResponse)
async def start_session(
    scroll: Scroll = Depends(verify_owner_token),
    db: AsyncSession = Depends(get_db)
):
    async with session.guard.hold(scroll.id):
        await session.start_session(db, scroll)
    await publish_scroll(scroll)
    return scroll

@router.post("/next", response_model=ScrollResponse)
async def close_module(
    scroll: Scroll = Depends(verify_owner_token),
    db: AsyncSession = Depends(get_db)
):
    async with session.guard.hold(scroll.id):
        await session.close_module(db, scroll)
    await publish_scroll(scroll)
    return scroll

@router.post("/continue", response_model=ScrollResponse)
async def continue_to_next(
    scroll: Scroll = Depends(verify_owner_token),
    db: AsyncSession = Depends(get_db)
):
    async with session.guard.hold(scroll.id):
        tombstoned = await session.continue_to_next(db, scroll)
    await publish_ideas("update", tombstoned)
    await publish_scroll(scroll)
    return scroll

@router.post("/complete", response_model=ScrollResponse)
async def complete_session(
    scroll: Scroll = Depends(verify_owner_token),
    db: AsyncSession = Depends(get_db)
):
    async with session.guard.hold(scroll.id):
        await session.complete_session(db, scroll)
    await publish_scroll(scroll)
    return scroll

# Selection is persisted on every click so a host reconnect keeps its progress

@router.post("/selection/all", response_model=List[str])
async def select_all(
    scroll: Scroll = Depends(verify_owner_token),
    db: AsyncSession = Depends(get_db)
):
    selected = await session.select_all(db, scroll)
    await publish_scroll(scroll)
    return selected

@router.post("/selection/{idea_id}", response_model=List[str])
async def toggle_selection(
    idea_id: str,
    scroll: Scroll = Depends(verify_owner_token),
    db: AsyncSession = Depends(get_db)
):
    selected = await session.toggle_selection(db, scroll, idea_id)
    await publish_scroll(scroll)
    return selected

@router.post("/timer", response_model=TimerResponse)
async def update_timer(
    timer_in: TimerAction,
    scroll: Scroll = Depends(verify_owner_token),
    db: AsyncSession = Depends(get_db)
):
    module = await session.update_timer(db, scroll, timer_in.action)
    await publish_scroll(scroll)
    return TimerResponse(
        module_id=module["id"],
        timer_state=module.get("timer_state"),
        remaining_seconds=session.remaining_seconds(module),
    )

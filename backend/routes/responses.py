from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional

from database import get_db
from models import Idea, Response, Scroll
from schemas import (
    GroupingResults,
    GroupingSubmit,
    ModuleResultsResponse,
    RankingSubmit,
    ResponseRow,
    ResponseWrite,
    VoteCreate,
    results_adapter,
)
from security import get_scroll_by_key
from connection_manager import publish_response, publish_scroll
from aggregation import group_name_counts, item_stats
import session

router = APIRouter(prefix="/api/scrolls/{scroll_id}/modules/{module_id}", tags=["responses"])

# Kinds where a participant holds at most one adjustable value per idea
VALUE_MODULES = ("weighted_vote", "likert_vote", "work_estimate")

async def _live_idea_ids(db: AsyncSession, scroll: Scroll, index: int) -> List[str]:
    ideas = await session.live_ideas(db, scroll.id, session.active_dataset_id(scroll.modules, index))
    return [idea.id for idea in ideas]

async def _user_rows(db: AsyncSession, scroll: Scroll, module_id: str, user_id: str) -> List[Response]:
    result = await db.execute(
        select(Response)
        .where(
            Response.scroll_id == scroll.id,
            Response.module_id == module_id,
            Response.created_by == user_id,
        )
        .order_by(Response.created_at, Response.id)
    )
    return list(result.scalars().all())

def _check_value(module: dict, value: float, other_points: float):
    if module["type"] == "weighted_vote":
        if value < 0 or not float(value).is_integer():
            raise HTTPException(status_code=400, detail="Points must be a whole, non-negative number")
        if value > module["max_points_per_item"]:
            raise HTTPException(status_code=400, detail=f"At most {module['max_points_per_item']} points per item")
        if other_points + value > module["total_points"]:
            raise HTTPException(status_code=409, detail="Not enough points left")
    elif module["type"] == "likert_vote":
        if not float(value).is_integer() or not 1 <= value <= module["scale"]:
            raise HTTPException(status_code=400, detail=f"Rating must be between 1 and {module['scale']}")
    elif value < 0:
        raise HTTPException(status_code=400, detail="Estimate cannot be negative")

@router.post("/votes", response_model=ResponseRow)
async def cast_vote(
    module_id: str,
    vote_in: VoteCreate,
    scroll: Scroll = Depends(get_scroll_by_key),
    db: AsyncSession = Depends(get_db)
):
    index, module = session.require_live_module(scroll, module_id, "vote")
    if vote_in.idea_id not in await _live_idea_ids(db, scroll, index):
        raise HTTPException(status_code=404, detail="Idea not found")

    rows = await _user_rows(db, scroll, module_id, vote_in.user_id)
    for row in rows:
        if row.idea_id == vote_in.idea_id:
            # Already voted. Each user can vote for an idea once.
            return row
    if len(rows) >= module["max_votes_per_user"]:
        raise HTTPException(status_code=409, detail="No votes left")

    new_vote = Response(
        scroll_id=scroll.id,
        module_id=module_id,
        idea_id=vote_in.idea_id,
        created_by=vote_in.user_id,
        value=1,
    )
    db.add(new_vote)
    await db.commit()
    await db.refresh(new_vote)

    await publish_response("insert", new_vote)
    return new_vote

@router.put("/responses/{idea_id}", response_model=Optional[ResponseRow])
async def write_response(
    module_id: str,
    idea_id: str,
    response_in: ResponseWrite,
    scroll: Scroll = Depends(get_scroll_by_key),
    db: AsyncSession = Depends(get_db)
):
    """Set (or for weighted votes, clear with 0) the caller's value for one idea."""
    index, module = session.require_live_module(scroll, module_id, *VALUE_MODULES)
    if idea_id not in await _live_idea_ids(db, scroll, index):
        raise HTTPException(status_code=404, detail="Idea not found")

    rows = await _user_rows(db, scroll, module_id, response_in.user_id)
    existing = next((row for row in rows if row.idea_id == idea_id), None)
    other_points = sum(row.value for row in rows if row.idea_id != idea_id)
    _check_value(module, response_in.value, other_points)

    if module["type"] == "weighted_vote" and response_in.value == 0:
        if existing is not None:
            await db.delete(existing)
            await db.commit()
            await publish_response("delete", existing)
        return None

    previous = existing.value if existing is not None else None
    if existing is not None:
        existing.value = response_in.value
        op = "update"
    else:
        existing = Response(
            scroll_id=scroll.id,
            module_id=module_id,
            idea_id=idea_id,
            created_by=response_in.user_id,
            value=response_in.value,
        )
        db.add(existing)
        op = "insert"

    await db.commit()

    if module["type"] == "weighted_vote":
        # A parallel write from the same user may have landed after the first read
        spent = sum(row.value for row in await _user_rows(db, scroll, module_id, response_in.user_id))
        if spent > module["total_points"]:
            if previous is None:
                await db.delete(existing)
            else:
                existing.value = previous
            await db.commit()
            raise HTTPException(status_code=409, detail="Not enough points left")

    await db.refresh(existing)
    await publish_response(op, existing)
    return existing

@router.delete("/responses/{idea_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_response(
    module_id: str,
    idea_id: str,
    user_id: str = Query(..., min_length=1),
    scroll: Scroll = Depends(get_scroll_by_key),
    db: AsyncSession = Depends(get_db)
):
    session.require_live_module(scroll, module_id, *VALUE_MODULES)
    for row in await _user_rows(db, scroll, module_id, user_id):
        if row.idea_id == idea_id:
            await db.delete(row)
            await db.commit()
            await publish_response("delete", row)

@router.post("/rankings", response_model=List[ResponseRow], status_code=status.HTTP_201_CREATED)
async def submit_ranking(
    module_id: str,
    ranking_in: RankingSubmit,
    scroll: Scroll = Depends(get_scroll_by_key),
    db: AsyncSession = Depends(get_db)
):
    index, module = session.require_live_module(scroll, module_id, "rank_order")

    if len(set(ranking_in.idea_ids)) != len(ranking_in.idea_ids):
        raise HTTPException(status_code=400, detail="An idea can only be ranked once")
    if len(ranking_in.idea_ids) > module["max_items"]:
        raise HTTPException(status_code=400, detail=f"Rank at most {module['max_items']} ideas")
    live_ids = set(await _live_idea_ids(db, scroll, index))
    if not live_ids.issuperset(ranking_in.idea_ids):
        raise HTTPException(status_code=404, detail="Idea not found")

    # Rankings are submitted once and never edited
    if await _user_rows(db, scroll, module_id, ranking_in.user_id):
        raise HTTPException(status_code=409, detail="Ranking already submitted")

    rows = [
        Response(
            scroll_id=scroll.id,
            module_id=module_id,
            idea_id=idea_id,
            created_by=ranking_in.user_id,
            value=position,
        )
        for position, idea_id in enumerate(ranking_in.idea_ids, start=1)
    ]
    db.add_all(rows)
    await db.commit()

    for row in rows:
        await publish_response("insert", row)
    return rows

@router.put("/groups", response_model=GroupingResults)
async def submit_grouping(
    module_id: str,
    grouping_in: GroupingSubmit,
    scroll: Scroll = Depends(get_scroll_by_key),
    db: AsyncSession = Depends(get_db)
):
    index, module = session.require_live_module(scroll, module_id, "grouping")

    if len(grouping_in.groups) > module["max_groups"]:
        raise HTTPException(status_code=400, detail=f"At most {module['max_groups']} groups")
    item_ids = [item_id for group in grouping_in.groups for item_id in group.item_ids]
    if len(set(item_ids)) != len(item_ids):
        raise HTTPException(status_code=400, detail="An idea can only be in one group")
    if not set(await _live_idea_ids(db, scroll, index)).issuperset(item_ids):
        raise HTTPException(status_code=404, detail="Idea not found")

    groups = [group.model_dump() for group in grouping_in.groups]
    results = await session.record_grouping(db, scroll, index, grouping_in.user_id, groups)

    await publish_scroll(scroll)
    return results

@router.get("/responses", response_model=List[ResponseRow])
async def list_responses(
    module_id: str,
    user_id: Optional[str] = None,
    scroll: Scroll = Depends(get_scroll_by_key),
    db: AsyncSession = Depends(get_db)
):
    session.find_module(scroll, module_id)
    query = select(Response).where(Response.scroll_id == scroll.id, Response.module_id == module_id)
    if user_id is not None:
        query = query.where(Response.created_by == user_id)
    result = await db.execute(query.order_by(Response.created_at, Response.id))
    return result.scalars().all()

@router.get("/results", response_model=ModuleResultsResponse)
async def get_results(
    module_id: str,
    scroll: Scroll = Depends(get_scroll_by_key),
    db: AsyncSession = Depends(get_db)
):
    index, module = session.find_module(scroll, module_id)
    step = session.parse_step(scroll.step)
    live = (
        scroll.status == "active"
        and step is not None
        and step.index == index
        and not step.showing_results
    )

    if live:
        # Preview while the module is still collecting input
        results = await session.compute_results(db, scroll, index)
        idea_ids = await _live_idea_ids(db, scroll, index)
    else:
        # Closed modules keep reporting ideas that were dropped later on
        result = await db.execute(
            select(Idea.id)
            .where(
                Idea.scroll_id == scroll.id,
                Idea.dataset_id == session.active_dataset_id(scroll.modules, index),
            )
            .order_by(Idea.created_at, Idea.id)
        )
        idea_ids = list(result.scalars().all())
        results = None

    if results is None and module.get("results"):
        results = results_adapter.validate_python(module["results"])

    return ModuleResultsResponse(
        module_id=module_id,
        type=module["type"],
        live=live,
        results=results,
        stats=item_stats(results, idea_ids),
        group_names=group_name_counts(results),
    )

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional

from database import get_db
from models import Idea, Scroll
from schemas import IdeaCreate, IdeaResponse
from security import get_scroll_by_key
from connection_manager import publish_ideas
import session

router = APIRouter(prefix="/api/scrolls/{scroll_id}/ideas", tags=["ideas"])

@router.get("/", response_model=List[IdeaResponse])
async def list_ideas(
    dataset_id: Optional[str] = None,
    module_id: Optional[str] = None,
    include_deleted: bool = False,
    scroll: Scroll = Depends(get_scroll_by_key),
    db: AsyncSession = Depends(get_db)
):
    # module_id resolves to the dataset that module works on
    if module_id is not None:
        index, _ = session.find_module(scroll, module_id)
        dataset_id = session.active_dataset_id(scroll.modules, index)

    query = select(Idea).where(Idea.scroll_id == scroll.id)
    if dataset_id is not None:
        query = query.where(Idea.dataset_id == dataset_id)
    if not include_deleted:
        query = query.where(Idea.deleted.is_(False))

    result = await db.execute(query.order_by(Idea.created_at, Idea.id))
    return result.scalars().all()

@router.post("/", response_model=IdeaResponse, status_code=status.HTTP_201_CREATED)
async def add_idea(
    idea_in: IdeaCreate,
    scroll: Scroll = Depends(get_scroll_by_key),
    db: AsyncSession = Depends(get_db)
):
    step = session.parse_step(scroll.step)
    if step is None or step.index >= len(scroll.modules):
        raise session.ModuleClosedError("Session has not started")
    _, module = session.require_live_module(scroll, scroll.modules[step.index]["id"], "brainstorm")

    if not idea_in.user_id and not module.get("allow_anonymous"):
        raise HTTPException(status_code=400, detail="This brainstorm does not accept anonymous ideas")

    new_idea = Idea(
        scroll_id=scroll.id,
        dataset_id=module["dataset_id"],
        text=idea_in.text,
        created_by=idea_in.user_id,
    )

    db.add(new_idea)
    await db.commit()
    await db.refresh(new_idea)

    await publish_ideas("insert", [new_idea])
    return new_idea

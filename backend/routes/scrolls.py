from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete
import logging

from database import get_db
from models import Idea, Response, Scroll
from module_types import prepare_modules
from schemas import (
    ModulesUpdate,
    ScrollCreate,
    ScrollCreatedResponse,
    ScrollOwnerResponse,
    ScrollResponse,
)
from security import get_scroll_by_key, verify_owner_token
from utils import generate_scroll_key, generate_owner_token, build_share_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scrolls", tags=["scrolls"])

def _dump_modules(modules):
    return prepare_modules([m.model_dump(mode="json", exclude_none=True) for m in modules])

@router.post("/", response_model=ScrollCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_scroll(scroll_in: ScrollCreate, db: AsyncSession = Depends(get_db)):
    # Module order was validated by the schema before we got here
    owner_token = generate_owner_token()
    key = generate_scroll_key()

    new_scroll = Scroll(
        owner_id=scroll_in.owner_id,
        owner_token=owner_token,
        key=key,
        name=scroll_in.name,
        status="draft",
        modules=_dump_modules(scroll_in.modules),
    )

    db.add(new_scroll)
    await db.commit()
    await db.refresh(new_scroll)
    logger.info("Created scroll %s with %d modules", new_scroll.id, len(new_scroll.modules))

    return ScrollCreatedResponse(
        **ScrollResponse.model_validate(new_scroll).model_dump(),
        owner_token=owner_token,
        key=key,
        share_url=build_share_url(new_scroll.id, key),
    )

@router.get("/{scroll_id}", response_model=ScrollResponse)
async def get_scroll(scroll: Scroll = Depends(get_scroll_by_key)):
    return scroll

@router.get("/{scroll_id}/owner/{token}", response_model=ScrollOwnerResponse)
async def get_owner_view(scroll: Scroll = Depends(verify_owner_token)):
    return ScrollOwnerResponse(
        **ScrollResponse.model_validate(scroll).model_dump(),
        key=scroll.key,
        share_url=build_share_url(scroll.id, scroll.key),
    )

@router.put("/{scroll_id}/owner/{token}/modules", response_model=ScrollResponse)
async def update_modules(
    modules_in: ModulesUpdate,
    scroll: Scroll = Depends(verify_owner_token),
    db: AsyncSession = Depends(get_db)
):
    # Activation copies dataset items into the idea table, so the layout is frozen after it
    if scroll.status != "draft":
        raise HTTPException(status_code=409, detail="Modules can only be edited while the scroll is a draft")

    scroll.modules = _dump_modules(modules_in.modules)
    await db.commit()
    await db.refresh(scroll)
    return scroll

@router.delete("/{scroll_id}/owner/{token}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_scroll(
    scroll: Scroll = Depends(verify_owner_token),
    db: AsyncSession = Depends(get_db)
):
    await db.execute(delete(Response).where(Response.scroll_id == scroll.id))
    await db.execute(delete(Idea).where(Idea.scroll_id == scroll.id))
    await db.delete(scroll)
    await db.commit()
    logger.info("Deleted scroll %s", scroll.id)

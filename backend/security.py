from fastapi import Depends, HTTPException, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database import get_db
from models import Scroll

NOT_AVAILABLE = "Scroll not available"

async def get_scroll_by_key(
    scroll_id: str = Path(...),
    key: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db)
) -> Scroll:
    """Dependency for participants: the scroll must exist and the share key must match."""
    result = await db.execute(select(Scroll).where(Scroll.id == scroll_id, Scroll.key == key))
    scroll = result.scalars().first()

    if not scroll:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=NOT_AVAILABLE
        )

    return scroll

async def verify_owner_token(
    scroll_id: str = Path(...),
    token: str = Path(..., min_length=10),
    db: AsyncSession = Depends(get_db)
) -> Scroll:
    """Dependency to verify host access to a scroll."""
    result = await db.execute(select(Scroll).where(Scroll.id == scroll_id))
    scroll = result.scalars().first()

    if not scroll:
        raise HTTPException(status_code=404, detail=NOT_AVAILABLE)

    if scroll.owner_token != token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid owner token"
        )

    return scroll

from sqlalchemy import Column, String, DateTime, Boolean, Float, ForeignKey, Text, JSON, Index
from database import Base
import utils

class Scroll(Base):
    __tablename__ = "scrolls"

    id = Column(String, primary_key=True, default=utils.generate_uuid)
    owner_id = Column(String, nullable=False)
    owner_token = Column(String, nullable=False)
    key = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft")
    step = Column(String, nullable=True)
    modules = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utils.get_utc_now)

class Idea(Base):
    __tablename__ = "ideas"

    id = Column(String, primary_key=True, default=utils.generate_uuid)
    scroll_id = Column(String, ForeignKey("scrolls.id"), nullable=False, index=True)
    dataset_id = Column(String, nullable=True, index=True)
    text = Column(Text, nullable=False)
    created_by = Column(String, nullable=True)
    deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utils.get_utc_now)

class Response(Base):
    """One participant's numeric input against one idea within one module."""
    __tablename__ = "votes"

    id = Column(String, primary_key=True, default=utils.generate_uuid)
    scroll_id = Column(String, ForeignKey("scrolls.id"), nullable=False)
    module_id = Column(String, nullable=False)
    idea_id = Column(String, ForeignKey("ideas.id"), nullable=False)
    created_by = Column(String, nullable=False)
    value = Column(Float, nullable=False, default=1)
    created_at = Column(DateTime, default=utils.get_utc_now)

    __table_args__ = (
        Index("ix_votes_scroll_module", "scroll_id", "module_id"),
    )

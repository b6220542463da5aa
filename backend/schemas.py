from pydantic import BaseModel, Field, ConfigDict, TypeAdapter, field_validator, field_serializer
from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from module_types import MODULE_DEFINITIONS, ModuleOrderError, validate_module_order


def _default(module_type: str, name: str):
    return MODULE_DEFINITIONS[module_type].default_config[name]


def _serialize_dt(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() + 'Z' if dt.tzinfo is None else dt.isoformat()


# --- Results: one payload shape per module type ---

Number = Union[int, float]

class GroupResult(BaseModel):
    id: str
    name: str = Field(..., min_length=1, max_length=100)
    item_ids: List[str] = Field(default_factory=list)

class VoteResults(BaseModel):
    type: Literal["vote"] = "vote"
    votes: Dict[str, List[str]] = Field(default_factory=dict)  # idea_id -> user_ids

class WeightedVoteResults(BaseModel):
    # Stored and served as weightedVotes, the key existing result readers use
    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    type: Literal["weighted_vote"] = "weighted_vote"
    weighted_votes: Dict[str, Dict[str, Number]] = Field(default_factory=dict, alias="weightedVotes")  # user_id -> idea_id -> points

class LikertVoteResults(BaseModel):
    type: Literal["likert_vote"] = "likert_vote"
    ratings: Dict[str, Dict[str, Number]] = Field(default_factory=dict)

class WorkEstimateResults(BaseModel):
    type: Literal["work_estimate"] = "work_estimate"
    estimates: Dict[str, Dict[str, Number]] = Field(default_factory=dict)

class RankOrderResults(BaseModel):
    type: Literal["rank_order"] = "rank_order"
    rankings: Dict[str, List[str]] = Field(default_factory=dict)  # user_id -> idea_ids, best first

class GroupingResults(BaseModel):
    type: Literal["grouping"] = "grouping"
    groups: Dict[str, List[GroupResult]] = Field(default_factory=dict)

ModuleResults = Annotated[
    Union[
        VoteResults,
        WeightedVoteResults,
        LikertVoteResults,
        WorkEstimateResults,
        RankOrderResults,
        GroupingResults,
    ],
    Field(discriminator="type"),
]

results_adapter = TypeAdapter(ModuleResults)


# --- Module configuration ---

class TimerState(BaseModel):
    is_running: bool = False
    started_at: Optional[datetime] = None
    paused_at: Optional[int] = None  # seconds remaining when paused

    @field_serializer('started_at')
    def serialize_dt(self, dt: Optional[datetime], _info):
        return _serialize_dt(dt)

class ModuleBase(BaseModel):
    id: Optional[str] = None
    prompt: Optional[str] = Field(None, max_length=1000)
    results: Optional[ModuleResults] = None
    selected_ideas: List[str] = Field(default_factory=list)
    timer_state: Optional[TimerState] = None

class BrainstormModule(ModuleBase):
    type: Literal["brainstorm"]
    dataset_id: Optional[str] = None
    time_limit: int = Field(_default("brainstorm", "time_limit"), ge=1)  # minutes
    allow_anonymous: bool = _default("brainstorm", "allow_anonymous")

class DatasetModule(ModuleBase):
    type: Literal["dataset"]
    dataset_id: Optional[str] = None
    dataset_name: str = _default("dataset", "dataset_name")
    items: List[str] = Field(default_factory=list)

class VoteModule(ModuleBase):
    type: Literal["vote"]
    max_votes_per_user: int = Field(_default("vote", "max_votes_per_user"), ge=1)

class WeightedVoteModule(ModuleBase):
    type: Literal["weighted_vote"]
    total_points: int = Field(_default("weighted_vote", "total_points"), ge=1)
    max_points_per_item: int = Field(_default("weighted_vote", "max_points_per_item"), ge=1)

class LikertVoteModule(ModuleBase):
    type: Literal["likert_vote"]
    scale: int = Field(_default("likert_vote", "scale"), ge=2, le=10)
    low_label: str = _default("likert_vote", "low_label")
    high_label: str = _default("likert_vote", "high_label")

class RankOrderModule(ModuleBase):
    type: Literal["rank_order"]
    max_items: int = Field(_default("rank_order", "max_items"), ge=1)

class WorkEstimateModule(ModuleBase):
    type: Literal["work_estimate"]
    estimate_type: Literal["hours", "days", "points", "tshirt"] = _default("work_estimate", "estimate_type")

class GroupingModule(ModuleBase):
    type: Literal["grouping"]
    max_groups: int = Field(_default("grouping", "max_groups"), ge=1)

class FrameModule(ModuleBase):
    type: Literal["frame"]

ModuleConfig = Annotated[
    Union[
        BrainstormModule,
        DatasetModule,
        VoteModule,
        WeightedVoteModule,
        LikertVoteModule,
        RankOrderModule,
        WorkEstimateModule,
        GroupingModule,
        FrameModule,
    ],
    Field(discriminator="type"),
]


def _check_order(modules):
    try:
        validate_module_order(m.type for m in modules)
    except ModuleOrderError as exc:
        raise ValueError(str(exc))
    return modules


# --- Scrolls ---

class ScrollCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    owner_id: str = Field(..., min_length=1)
    modules: List[ModuleConfig]

    @field_validator('modules')
    @classmethod
    def modules_in_order(cls, v):
        return _check_order(v)

class ModulesUpdate(BaseModel):
    modules: List[ModuleConfig]

    @field_validator('modules')
    @classmethod
    def modules_in_order(cls, v):
        return _check_order(v)

class ScrollResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    name: str
    status: str
    step: Optional[str] = None
    modules: List[ModuleConfig]
    created_at: datetime

    @field_serializer('created_at')
    def serialize_dt(self, dt: datetime, _info):
        return _serialize_dt(dt)

class ScrollCreatedResponse(ScrollResponse):
    owner_token: str
    key: str
    share_url: str

class ScrollOwnerResponse(ScrollResponse):
    key: str
    share_url: str


# --- Ideas ---

class IdeaCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)
    user_id: Optional[str] = None  # None for anonymous brainstorms

    @field_validator('text')
    @classmethod
    def text_not_empty(cls, v):
        if not v.strip():
            raise ValueError('Idea cannot be empty')
        return v.strip()

class IdeaResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    scroll_id: str
    dataset_id: Optional[str] = None
    text: str
    created_by: Optional[str] = None
    deleted: bool
    created_at: datetime

    @field_serializer('created_at')
    def serialize_dt(self, dt: datetime, _info):
        return _serialize_dt(dt)


# --- Responses ---

class VoteCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    idea_id: str

class ResponseWrite(BaseModel):
    user_id: str = Field(..., min_length=1)
    value: float

class RankingSubmit(BaseModel):
    user_id: str = Field(..., min_length=1)
    idea_ids: List[str] = Field(..., min_length=1)

class GroupingSubmit(BaseModel):
    user_id: str = Field(..., min_length=1)
    groups: List[GroupResult] = Field(..., min_length=1)

class ResponseRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    scroll_id: str
    module_id: str
    idea_id: str
    created_by: str
    value: float
    created_at: datetime

    @field_serializer('created_at')
    def serialize_dt(self, dt: datetime, _info):
        return _serialize_dt(dt)

class ItemStatsResponse(BaseModel):
    idea_id: str
    count: int = 0
    total: float = 0
    mean: float = 0
    variance: float = 0
    score: float = 0
    avg_rank: float = 0

class GroupNameStats(BaseModel):
    name: str
    count: int
    items: Dict[str, int]

class ModuleResultsResponse(BaseModel):
    module_id: str
    type: str
    live: bool  # True while the module is still open and results are a preview
    results: Optional[ModuleResults] = None
    stats: List[ItemStatsResponse] = Field(default_factory=list)
    group_names: List[GroupNameStats] = Field(default_factory=list)


# --- Host controls ---

class TimerAction(BaseModel):
    action: Literal["start", "pause", "reset"]

class TimerResponse(BaseModel):
    module_id: str
    timer_state: Optional[TimerState] = None
    remaining_seconds: Optional[int] = None

"""Catalog of module kinds and the ordering rule a scroll's module list must obey.

Dataset-builder modules produce the item set; analysis modules operate on the
items of the nearest builder before them, so every scroll has to open with a
builder.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

import utils

DATASET_BUILDER = "datasetBuilder"
ANALYSIS = "analysis"


@dataclass(frozen=True)
class ModuleDefinition:
    name: str
    description: str
    category: str
    default_config: Dict[str, object] = field(default_factory=dict)


MODULE_DEFINITIONS: Dict[str, ModuleDefinition] = {
    "brainstorm": ModuleDefinition(
        name="Brainstorm",
        description="Collect ideas from participants",
        category=DATASET_BUILDER,
        default_config={"time_limit": 10, "allow_anonymous": False},
    ),
    "dataset": ModuleDefinition(
        name="Dataset",
        description="Start from a prepared list of items",
        category=DATASET_BUILDER,
        default_config={"dataset_name": "", "items": []},
    ),
    "vote": ModuleDefinition(
        name="Vote",
        description="Simple up/down voting",
        category=ANALYSIS,
        default_config={"max_votes_per_user": 3},
    ),
    "weighted_vote": ModuleDefinition(
        name="Weighted Vote",
        description="Vote with point allocation",
        category=ANALYSIS,
        default_config={"total_points": 10, "max_points_per_item": 5},
    ),
    "likert_vote": ModuleDefinition(
        name="Likert Vote",
        description="Rate on a scale (1-5)",
        category=ANALYSIS,
        default_config={"scale": 5, "low_label": "Low", "high_label": "High"},
    ),
    "rank_order": ModuleDefinition(
        name="Rank Order",
        description="Order items by preference",
        category=ANALYSIS,
        default_config={"max_items": 10},
    ),
    "work_estimate": ModuleDefinition(
        name="Work Estimate",
        description="Estimate effort for items",
        category=ANALYSIS,
        default_config={"estimate_type": "hours"},
    ),
    "grouping": ModuleDefinition(
        name="Grouping",
        description="Organize items into categories",
        category=ANALYSIS,
        default_config={"max_groups": 5},
    ),
    "frame": ModuleDefinition(
        name="Frame",
        description="Show a prompt to all participants",
        category=ANALYSIS,
    ),
}

# Kinds whose results are reduced from per-user Response rows on close
VOTING_MODULES = ("vote", "weighted_vote", "likert_vote", "work_estimate", "rank_order")


class ModuleOrderError(ValueError):
    pass


def default_config(module_type: str) -> Dict[str, object]:
    return dict(MODULE_DEFINITIONS[module_type].default_config)


def category_of(module_type: str) -> str:
    try:
        return MODULE_DEFINITIONS[module_type].category
    except KeyError:
        raise ModuleOrderError(f"Unknown module type: {module_type}") from None


def is_dataset_builder(module_type: str) -> bool:
    return category_of(module_type) == DATASET_BUILDER


def is_voting_module(module_type: str) -> bool:
    return module_type in VOTING_MODULES


def validate_module_order(module_types: Iterable[str]) -> List[str]:
    """Reject module lists that would leave an analysis module without a dataset."""
    module_types = list(module_types)
    if not module_types:
        raise ModuleOrderError("A scroll needs at least one module")
    for module_type in module_types:
        category_of(module_type)
    if not is_dataset_builder(module_types[0]):
        raise ModuleOrderError(
            "The first module must be a Brainstorm or Dataset module"
        )
    return module_types


def prepare_modules(modules: List[dict]) -> List[dict]:
    """Give every module an id and every dataset-builder a dataset_id, and clear host state."""
    prepared = []
    for module in modules:
        module = {**default_config(module["type"]), **module}
        module["id"] = module.get("id") or utils.generate_uuid()
        if is_dataset_builder(module["type"]):
            module["dataset_id"] = module.get("dataset_id") or utils.generate_uuid()
        # Results, selection and timer are written by the session, never by the author
        module["results"] = None
        module["selected_ideas"] = []
        module["timer_state"] = None
        prepared.append(module)
    return prepared

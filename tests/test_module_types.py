import pytest

from module_types import (
    ModuleOrderError,
    category_of,
    is_dataset_builder,
    is_voting_module,
    prepare_modules,
    validate_module_order,
)


def test_dataset_builders_and_analysis_categories() -> None:
    assert is_dataset_builder("brainstorm")
    assert is_dataset_builder("dataset")
    for module_type in ("vote", "weighted_vote", "likert_vote", "rank_order", "work_estimate", "grouping", "frame"):
        assert category_of(module_type) == "analysis"


def test_voting_modules_exclude_grouping_and_builders() -> None:
    assert is_voting_module("rank_order")
    assert is_voting_module("work_estimate")
    assert not is_voting_module("grouping")
    assert not is_voting_module("brainstorm")
    assert not is_voting_module("frame")


def test_first_module_must_build_a_dataset() -> None:
    with pytest.raises(ModuleOrderError, match="first module"):
        validate_module_order(["vote", "brainstorm"])


def test_empty_and_unknown_module_lists_are_rejected() -> None:
    with pytest.raises(ModuleOrderError):
        validate_module_order([])
    with pytest.raises(ModuleOrderError, match="Unknown module type"):
        validate_module_order(["brainstorm", "poll"])


def test_later_builders_may_follow_analysis_modules() -> None:
    order = ["dataset", "vote", "brainstorm", "rank_order"]
    assert validate_module_order(order) == order


def test_prepare_modules_fills_ids_defaults_and_lineage() -> None:
    prepared = prepare_modules([
        {"type": "brainstorm"},
        {"type": "weighted_vote", "total_points": 20, "selected_ideas": ["stale"]},
    ])

    brainstorm, weighted = prepared
    assert brainstorm["id"] and brainstorm["dataset_id"]
    assert brainstorm["time_limit"] == 10
    assert "dataset_id" not in weighted
    assert weighted["total_points"] == 20
    assert weighted["max_points_per_item"] == 5
    assert weighted["selected_ideas"] == []


def test_prepare_modules_discards_session_state_sent_by_the_author() -> None:
    [grouping] = prepare_modules([{
        "type": "grouping",
        "results": {"type": "grouping", "groups": {"ghost": []}},
        "timer_state": {"is_running": True, "started_at": "2024-05-01T12:00:00+00:00", "paused_at": None},
    }])

    assert grouping["results"] is None
    assert grouping["timer_state"] is None


def test_prepare_modules_keeps_existing_identifiers() -> None:
    prepared = prepare_modules([{"type": "dataset", "id": "m-1", "dataset_id": "d-1", "items": ["a"]}])
    assert prepared[0]["id"] == "m-1"
    assert prepared[0]["dataset_id"] == "d-1"

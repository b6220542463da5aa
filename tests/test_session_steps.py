import asyncio
import itertools
from datetime import datetime, timedelta

import pytest

from module_types import is_dataset_builder
from session import (
    Step,
    TransitionGuard,
    TransitionInFlightError,
    active_dataset_id,
    parse_step,
    remaining_seconds,
)


def test_parse_step_reads_live_and_results_tags() -> None:
    assert parse_step("module-0") == Step(0)
    assert parse_step("module-12-results") == Step(12, showing_results=True)
    assert parse_step(None) is None
    assert parse_step("") is None
    assert parse_step("step-3") is None


def test_step_tag_matches_parsed_form() -> None:
    assert Step(3).tag == "module-3"
    assert Step(3, showing_results=True).tag == "module-3-results"
    assert parse_step(Step(4, True).tag) == Step(4, True)


def test_active_dataset_walks_back_to_nearest_builder() -> None:
    modules = [
        {"type": "brainstorm", "dataset_id": "d1"},
        {"type": "vote"},
        {"type": "dataset", "dataset_id": "d2"},
        {"type": "rank_order"},
        {"type": "grouping"},
    ]

    assert [active_dataset_id(modules, i) for i in range(5)] == ["d1", "d1", "d2", "d2", "d2"]


def test_active_dataset_is_none_without_a_builder() -> None:
    assert active_dataset_id([{"type": "vote"}], 0) is None


def test_every_module_of_a_well_formed_scroll_has_a_dataset() -> None:
    kinds = ["brainstorm", "dataset", "vote", "likert_vote", "grouping"]
    for tail in itertools.product(kinds, repeat=3):
        for first in ("brainstorm", "dataset"):
            modules = [
                {"type": kind, "dataset_id": f"d{i}"} if is_dataset_builder(kind) else {"type": kind}
                for i, kind in enumerate((first, *tail))
            ]
            for index in range(len(modules)):
                nearest = max(i for i in range(index + 1) if is_dataset_builder(modules[i]["type"]))
                assert active_dataset_id(modules, index) == f"d{nearest}"


def test_transition_guard_refuses_a_second_transition() -> None:
    guard = TransitionGuard()

    async def scenario():
        async with guard.hold("scroll-1"):
            assert guard.busy("scroll-1")
            with pytest.raises(TransitionInFlightError):
                async with guard.hold("scroll-1"):
                    pass
            # Other scrolls are unaffected
            async with guard.hold("scroll-2"):
                pass
        assert not guard.busy("scroll-1")

    asyncio.run(scenario())


def test_remaining_seconds_tracks_running_and_paused_timers() -> None:
    now = datetime(2024, 5, 1, 12, 0, 0)
    module = {"time_limit": 10}
    assert remaining_seconds(module, now) == 600

    module["timer_state"] = {"is_running": True, "started_at": (now - timedelta(seconds=90)).isoformat(), "paused_at": None}
    assert remaining_seconds(module, now) == 510

    module["timer_state"] = {"is_running": True, "started_at": (now - timedelta(hours=1)).isoformat(), "paused_at": None}
    assert remaining_seconds(module, now) == 0

    module["timer_state"] = {"is_running": False, "started_at": None, "paused_at": 42}
    assert remaining_seconds(module, now) == 42

    assert remaining_seconds({"type": "vote"}, now) is None


def test_remaining_seconds_accepts_offset_timestamps() -> None:
    now = datetime(2024, 5, 1, 12, 0, 0)
    module = {"time_limit": 10}

    for started_at in ("2024-05-01T11:59:00+00:00", "2024-05-01T11:59:00Z", "2024-05-01T13:59:00+02:00"):
        module["timer_state"] = {"is_running": True, "started_at": started_at, "paused_at": None}
        assert remaining_seconds(module, now) == 540

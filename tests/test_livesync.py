from __future__ import annotations

from livesync import LiveScrollView


def _scroll(step: str | None = "module-1", status: str = "active") -> dict:
    return {
        "id": "s1",
        "status": status,
        "step": step,
        "modules": [
            {"id": "m0", "type": "brainstorm", "dataset_id": "d1", "selected_ideas": []},
            {"id": "m1", "type": "vote", "selected_ideas": ["i2"]},
        ],
    }


def _idea(idea_id: str, created_at: str, deleted: bool = False) -> dict:
    return {"id": idea_id, "dataset_id": "d1", "text": idea_id, "deleted": deleted, "created_at": created_at}


def _change(table: str, op: str, row: dict) -> dict:
    return {"type": "change", "table": table, "op": op, "row": row}


def test_visible_ideas_hide_tombstones_and_keep_creation_order() -> None:
    view = LiveScrollView(_scroll(), [
        _idea("i2", "2024-05-01T10:00:02Z"),
        _idea("i1", "2024-05-01T10:00:01Z"),
        _idea("i3", "2024-05-01T10:00:03Z", deleted=True),
    ])

    assert [idea["id"] for idea in view.visible_ideas()] == ["i1", "i2"]
    assert view.selected_ideas() == ["i2"]
    assert view.current_module["id"] == "m1"


def test_redelivered_events_are_harmless() -> None:
    view = LiveScrollView(_scroll())
    event = _change("ideas", "insert", _idea("i1", "2024-05-01T10:00:01Z"))

    view.apply(event)
    view.apply(event)

    assert len(view.visible_ideas()) == 1


def test_latest_row_wins_and_deletes_remove_it() -> None:
    view = LiveScrollView(_scroll())
    vote = {"id": "r1", "module_id": "m1", "idea_id": "i1", "created_by": "u1", "value": 2}

    view.apply(_change("votes", "insert", vote))
    view.apply(_change("votes", "update", {**vote, "value": 5}))
    view.apply(_change("votes", "insert", {**vote, "id": "r2", "created_by": "u2", "value": 1}))

    assert view.live_totals("m1") == {"i1": 6}
    assert view.responses_for("m1", "u1") == {"i1": 5}

    view.apply(_change("votes", "delete", {**vote, "value": 5}))
    assert view.live_totals("m1") == {"i1": 1}


def test_scroll_updates_replace_step_and_status() -> None:
    view = LiveScrollView(_scroll(step=None))
    assert view.step is None
    assert view.visible_ideas() == []

    view.apply(_change("scrolls", "update", _scroll(step="module-0-results")))
    assert view.step.showing_results
    assert not view.completed

    view.apply(_change("scrolls", "update", _scroll(step="module-0-results", status="completed")))
    assert view.completed

    # Updates for another scroll on a shared connection are ignored
    view.apply(_change("scrolls", "update", {**_scroll(step="module-1"), "id": "other"}))
    assert view.step.index == 0


def test_presence_sync_replaces_roster_and_unknown_events_are_skipped() -> None:
    view = LiveScrollView(_scroll())

    view.apply({"type": "presence_sync", "users": [{"key": "u1", "display_name": "One"}]})
    view.apply({"type": "presence_sync", "users": [{"key": "u2", "display_name": "Two"}]})
    view.apply({"type": "cursor", "x": 1})
    view.apply(_change("comments", "insert", {"id": "c1"}))

    assert view.roster == [{"key": "u2", "display_name": "Two"}]

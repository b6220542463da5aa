from __future__ import annotations

import pytest
from fastapi import WebSocketDisconnect

from livesync import LiveScrollView


def _ws_url(scroll, user_id: str, name: str = "", key: str | None = None) -> str:
    return f"/ws/{scroll.id}?key={key or scroll.key}&user_id={user_id}&name={name}"


def test_presence_tracks_who_is_connected(started_scroll) -> None:
    scroll, _ = started_scroll({"type": "vote"})

    with scroll.client.websocket_connect(_ws_url(scroll, "user-1", "Facilitator")) as first:
        assert first.receive_json() == {
            "type": "presence_sync",
            "users": [{"key": "user-1", "display_name": "Facilitator"}],
        }

        with scroll.client.websocket_connect(_ws_url(scroll, "user-2")) as second:
            roster = second.receive_json()["users"]
            assert [user["key"] for user in roster] == ["user-1", "user-2"]
            # Without a display name the user id is shown
            assert roster[1]["display_name"] == "user-2"
            assert first.receive_json()["users"] == roster

        assert [user["key"] for user in first.receive_json()["users"]] == ["user-1"]


def test_heartbeat(started_scroll) -> None:
    scroll, _ = started_scroll({"type": "vote"})

    with scroll.client.websocket_connect(_ws_url(scroll, "user-1")) as ws:
        ws.receive_json()
        ws.send_text("ping")
        assert ws.receive_text() == "pong"


def test_wrong_key_is_refused(started_scroll) -> None:
    scroll, _ = started_scroll({"type": "vote"})

    with pytest.raises(WebSocketDisconnect):
        with scroll.client.websocket_connect(_ws_url(scroll, "user-1", key="not-the-key")) as ws:
            ws.receive_json()


def test_change_feed_drives_a_live_view(started_scroll) -> None:
    scroll, ideas = started_scroll({"type": "vote"})
    view = LiveScrollView(scroll.fetch(), scroll.ideas())

    with scroll.client.websocket_connect(_ws_url(scroll, "user-1")) as ws:
        view.apply(ws.receive_json())
        assert [user["key"] for user in view.roster] == ["user-1"]

        added = scroll.add_idea("Offline mode", "user-2")
        event = ws.receive_json()
        assert (event["type"], event["table"], event["op"]) == ("change", "ideas", "insert")
        view.apply(event)
        assert [idea["id"] for idea in view.visible_ideas()][-1] == added["id"]

        scroll.host("next")
        view.apply(ws.receive_json())
        assert view.step.showing_results

        scroll.host(f"selection/{ideas[0]['id']}")
        view.apply(ws.receive_json())
        assert view.selected_ideas() == [ideas[0]["id"]]

        scroll.host("continue")
        # Dropped ideas arrive as updates, then the scroll moves on
        for _ in range(len(ideas)):
            view.apply(ws.receive_json())
        view.apply(ws.receive_json())

        assert view.step.index == 1
        assert [idea["id"] for idea in view.visible_ideas()] == [ideas[0]["id"]]

        scroll.post(1, "votes", {"user_id": "user-3", "idea_id": ideas[0]["id"]})
        view.apply(ws.receive_json())
        assert view.live_totals(scroll.modules[1]["id"]) == {ideas[0]["id"]: 1}

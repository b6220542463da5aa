from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path

import pytest

_DB_DIR = Path(tempfile.mkdtemp(prefix="scrolls-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR / 'test.db'}"

from fastapi.testclient import TestClient  # noqa: E402

from database import Base, engine  # noqa: E402
from main import app  # noqa: E402


async def _reset_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
def client():
    asyncio.run(_reset_schema())
    with TestClient(app) as test_client:
        yield test_client


class ScrollSession:
    """Drives one scroll through the API as its host and participants."""

    def __init__(self, client: TestClient, created: dict) -> None:
        self.client = client
        self.id = created["id"]
        self.key = created["key"]
        self.token = created["owner_token"]
        self.modules = created["modules"]

    def host(self, action: str, **kwargs):
        return self.client.post(f"/api/scrolls/{self.id}/owner/{self.token}/{action}", **kwargs)

    def fetch(self) -> dict:
        response = self.client.get(f"/api/scrolls/{self.id}", params={"key": self.key})
        assert response.status_code == 200, response.text
        return response.json()

    def add_idea(self, text: str, user_id: str = "user-1") -> dict:
        response = self.client.post(
            f"/api/scrolls/{self.id}/ideas/",
            params={"key": self.key},
            json={"text": text, "user_id": user_id},
        )
        assert response.status_code == 201, response.text
        return response.json()

    def ideas(self, **params) -> list[dict]:
        response = self.client.get(
            f"/api/scrolls/{self.id}/ideas/", params={"key": self.key, **params}
        )
        assert response.status_code == 200, response.text
        return response.json()

    def module_url(self, index: int, suffix: str) -> str:
        return f"/api/scrolls/{self.id}/modules/{self.modules[index]['id']}/{suffix}"

    def post(self, index: int, suffix: str, payload: dict):
        return self.client.post(self.module_url(index, suffix), params={"key": self.key}, json=payload)

    def put(self, index: int, suffix: str, payload: dict):
        return self.client.put(self.module_url(index, suffix), params={"key": self.key}, json=payload)

    def results(self, index: int) -> dict:
        response = self.client.get(self.module_url(index, "results"), params={"key": self.key})
        assert response.status_code == 200, response.text
        return response.json()


@pytest.fixture
def create_scroll(client):
    def _create(modules: list[dict], *, name: str = "Quarterly planning") -> ScrollSession:
        response = client.post(
            "/api/scrolls/",
            json={"name": name, "owner_id": "owner-1", "modules": modules},
        )
        assert response.status_code == 201, response.text
        return ScrollSession(client, response.json())

    return _create


@pytest.fixture
def started_scroll(create_scroll):
    """An active, started scroll whose brainstorm holds three ideas."""

    def _start(*analysis_modules: dict) -> tuple[ScrollSession, list[dict]]:
        scroll = create_scroll([{"type": "brainstorm"}, *analysis_modules])
        assert scroll.host("activate").status_code == 200
        assert scroll.host("start").status_code == 200
        ideas = [
            scroll.add_idea("Ship the mobile app", "user-1"),
            scroll.add_idea("Rewrite the billing service", "user-2"),
            scroll.add_idea("Hire a designer", "user-3"),
        ]
        return scroll, ideas

    return _start


@pytest.fixture
def analysis_scroll(started_scroll):
    """A scroll already moved into its second (analysis) module with every idea carried over."""

    def _advance(*analysis_modules: dict) -> tuple[ScrollSession, list[dict]]:
        scroll, ideas = started_scroll(*analysis_modules)
        assert scroll.host("next").status_code == 200
        assert scroll.host("selection/all").status_code == 200
        assert scroll.host("continue").status_code == 200
        return scroll, ideas

    return _advance

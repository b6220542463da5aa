"""Participant-side read model fed by the scroll's WebSocket change feed.

Events arrive at least once and with no ordering between tables, so every
event is merged last-write-wins into a snapshot and everything a view needs
(current step, visible ideas, live totals) is recomputed from that snapshot.
"""
from typing import Dict, Iterable, List, Optional

from session import Step, active_dataset_id, parse_step


class LiveScrollView:
    def __init__(self, scroll: Optional[dict] = None, ideas: Iterable[dict] = (), responses: Iterable[dict] = ()):
        self.scroll = scroll
        self.ideas: Dict[str, dict] = {idea["id"]: idea for idea in ideas}
        self.responses: Dict[str, dict] = {row["id"]: row for row in responses}
        self.roster: List[dict] = []

    def apply(self, event: dict):
        kind = event.get("type")
        if kind == "presence_sync":
            self.roster = list(event.get("users", []))
            return
        if kind != "change":
            return

        table, op, row = event["table"], event["op"], event["row"]
        if table == "scrolls":
            if self.scroll is None or row.get("id") == self.scroll.get("id"):
                self.scroll = row
            return

        rows = {"ideas": self.ideas, "votes": self.responses}.get(table)
        if rows is None:
            return
        if op == "delete":
            rows.pop(row["id"], None)
        else:
            rows[row["id"]] = row

    @property
    def step(self) -> Optional[Step]:
        if self.scroll is None:
            return None
        return parse_step(self.scroll.get("step"))

    @property
    def completed(self) -> bool:
        return self.scroll is not None and self.scroll.get("status") == "completed"

    @property
    def current_module(self) -> Optional[dict]:
        step = self.step
        if step is None or step.index >= len(self.scroll["modules"]):
            return None
        return self.scroll["modules"][step.index]

    def visible_ideas(self, index: Optional[int] = None) -> List[dict]:
        """Live ideas of the dataset module ``index`` works on (current module by default)."""
        if self.scroll is None:
            return []
        if index is None:
            step = self.step
            if step is None:
                return []
            index = step.index
        dataset_id = active_dataset_id(self.scroll["modules"], index)
        ideas = [
            idea for idea in self.ideas.values()
            if idea.get("dataset_id") == dataset_id and not idea.get("deleted")
        ]
        return sorted(ideas, key=lambda idea: (idea.get("created_at") or "", idea["id"]))

    def selected_ideas(self) -> List[str]:
        module = self.current_module
        return list(module.get("selected_ideas") or []) if module else []

    def live_totals(self, module_id: str) -> Dict[str, float]:
        """Sum of response values per idea, e.g. votes or points cast so far."""
        totals: Dict[str, float] = {}
        for row in self.responses.values():
            if row["module_id"] == module_id:
                totals[row["idea_id"]] = totals.get(row["idea_id"], 0) + row["value"]
        return totals

    def responses_for(self, module_id: str, user_id: str) -> Dict[str, float]:
        return {
            row["idea_id"]: row["value"]
            for row in self.responses.values()
            if row["module_id"] == module_id and row["created_by"] == user_id
        }

"""Reduce raw Response rows into per-module results, and derive display statistics.

Everything here is a pure function of its inputs: the same rows in the same
order always produce the same results, so closing a module twice overwrites
its results with an identical value.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from module_types import is_voting_module
from schemas import (
    GroupNameStats,
    GroupingResults,
    ItemStatsResponse,
    LikertVoteResults,
    RankOrderResults,
    VoteResults,
    WeightedVoteResults,
    WorkEstimateResults,
)
from utils import as_number


def _per_user(rows) -> Dict[str, Dict[str, object]]:
    by_user: Dict[str, Dict[str, object]] = {}
    for row in rows:
        by_user.setdefault(row.created_by, {})[row.idea_id] = as_number(row.value)
    return by_user


def aggregate(module_type: str, rows: Iterable, live_idea_ids: Iterable[str]):
    """Collapse Response rows for one module into its results payload.

    ``rows`` need ``created_by``, ``idea_id`` and ``value`` attributes. Rows for
    ideas outside ``live_idea_ids`` are dropped. Returns ``None`` for module
    kinds that don't collect Response rows.
    """
    if not is_voting_module(module_type):
        return None

    live = set(live_idea_ids)
    rows = [row for row in rows if row.idea_id in live]

    if module_type == "vote":
        votes: Dict[str, List[str]] = {}
        for row in rows:
            votes.setdefault(row.idea_id, []).append(row.created_by)
        return VoteResults(votes=votes)

    if module_type == "weighted_vote":
        return WeightedVoteResults(weighted_votes=_per_user(rows))

    if module_type == "likert_vote":
        return LikertVoteResults(ratings=_per_user(rows))

    if module_type == "work_estimate":
        return WorkEstimateResults(estimates=_per_user(rows))

    # rank_order: each user's rows sorted by rank position, ties keep row order
    ranked: Dict[str, list] = {}
    for row in rows:
        ranked.setdefault(row.created_by, []).append((as_number(row.value), row.idea_id))
    rankings = {
        user_id: [idea_id for _, idea_id in sorted(entries, key=lambda entry: entry[0])]
        for user_id, entries in ranked.items()
    }
    return RankOrderResults(rankings=rankings)


def _spread(values: List[float]):
    if not values:
        return 0, 0
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return mean, variance


def item_stats(results, idea_ids: Iterable[str]) -> List[ItemStatsResponse]:
    """Per-item statistics for display, best first. Ties keep ``idea_ids`` order."""
    idea_ids = list(idea_ids)
    if results is None or isinstance(results, GroupingResults):
        return []

    if isinstance(results, VoteResults):
        stats = [
            ItemStatsResponse(
                idea_id=idea_id,
                count=len(results.votes.get(idea_id, [])),
                total=len(results.votes.get(idea_id, [])),
            )
            for idea_id in idea_ids
        ]
        return sorted(stats, key=lambda s: -s.total)

    if isinstance(results, RankOrderResults):
        stats = []
        for idea_id in idea_ids:
            score = 0
            positions = []
            for ranking in results.rankings.values():
                if idea_id in ranking:
                    position = ranking.index(idea_id)
                    score += len(ranking) - position
                    positions.append(position + 1)
            stats.append(ItemStatsResponse(
                idea_id=idea_id,
                count=len(positions),
                score=score,
                avg_rank=sum(positions) / len(positions) if positions else 0,
            ))
        return sorted(stats, key=lambda s: -s.score)

    if isinstance(results, WeightedVoteResults):
        per_user = results.weighted_votes
    elif isinstance(results, LikertVoteResults):
        per_user = results.ratings
    else:
        per_user = results.estimates

    values = defaultdict(list)
    for allocations in per_user.values():
        for idea_id, value in allocations.items():
            values[idea_id].append(value)

    stats = []
    for idea_id in idea_ids:
        mean, variance = _spread(values[idea_id])
        stats.append(ItemStatsResponse(
            idea_id=idea_id,
            count=len(values[idea_id]),
            total=sum(values[idea_id]),
            mean=mean,
            variance=variance,
        ))
    if isinstance(results, WorkEstimateResults):
        return sorted(stats, key=lambda s: -s.mean)
    return sorted(stats, key=lambda s: -s.total)


def group_name_counts(results: Optional[GroupingResults]) -> List[GroupNameStats]:
    """How often each (normalized) group name was used, and what went into it."""
    if not isinstance(results, GroupingResults):
        return []
    counts: Dict[str, int] = {}
    items: Dict[str, Dict[str, int]] = {}
    for user_groups in results.groups.values():
        for group in user_groups:
            name = group.name.lower().strip()
            counts[name] = counts.get(name, 0) + 1
            bucket = items.setdefault(name, {})
            for item_id in group.item_ids:
                bucket[item_id] = bucket.get(item_id, 0) + 1
    ordered = sorted(counts.items(), key=lambda entry: -entry[1])
    return [GroupNameStats(name=name, count=count, items=items[name]) for name, count in ordered]

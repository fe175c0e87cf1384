from __future__ import annotations

from collections.abc import Callable, Sequence

from beetleboard.models import RankedRecord, StatRecord

Metric = Callable[[StatRecord], int]
_STAT_FIELDS = set(StatRecord.model_fields)


def competition_ranks(sorted_values: Sequence[int]) -> list[int]:
    # Competition ranking over values already sorted high to low:
    # ties share a rank, the next distinct value takes its 1-based position.
    ranks: list[int] = []
    prev: int | None = None
    current = 1
    for index, value in enumerate(sorted_values):
        if prev is not None and value != prev:
            current = index + 1
        ranks.append(current)
        prev = value
    return ranks


def _rank_map(records: Sequence[StatRecord], metric: Metric) -> tuple[list[StatRecord], dict[str, int]]:
    ordered = sorted(records, key=metric, reverse=True)
    ranks = competition_ranks([metric(r) for r in ordered])
    return ordered, {r.username: rank for r, rank in zip(ordered, ranks)}


def rank_records(records: Sequence[StatRecord]) -> list[RankedRecord]:
    """Rank every record on beetles, pokes and social credit independently.

    The result is ordered by beetles descending.
    """
    by_beetles, beetles_ranks = _rank_map(records, lambda r: r.beetles)
    _, pokes_ranks = _rank_map(records, lambda r: r.pokes)
    _, credit_ranks = _rank_map(records, lambda r: r.social_credit)

    return [
        RankedRecord(
            **record.model_dump(include=_STAT_FIELDS),
            rank=beetles_ranks[record.username],
            pokes_rank=pokes_ranks[record.username],
            social_credit_rank=credit_ranks[record.username],
        )
        for record in by_beetles
    ]


def rank_percentile(rank: int, total_users: int | None) -> int | None:
    """Share of the board at or above ``rank``, as shown in "TOP x%" labels."""
    if rank < 1 or not total_users:
        return None
    return round(rank / total_users * 100)

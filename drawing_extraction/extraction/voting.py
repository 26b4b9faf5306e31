"""
Mark-keyed vote tallies shared by the consensus stages.

Entries are keyed by their normalised ``mark``. Each source votes at most
once per key, however many times it repeats the mark, and entries without
a usable mark never take part in a vote.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from drawing_extraction.utils import normalize_item_key


@dataclass(slots=True)
class VoteTally:
    """
    Accumulated support for one mark.

    Attributes:
        key: Normalised mark.
        entry: First entry seen for the key, kept as the output data.
        votes: Sum of the weights of the sources listing the key.
        sources: Number of sources listing the key.
    """

    key: str
    entry: dict[str, Any]
    votes: float = 0.0
    sources: int = 0


def tally_votes(
    sources: Iterable[tuple[list[dict[str, Any]], float]],
) -> list[VoteTally]:
    """
    Tally votes across sources.

    Args:
        sources: ``(entries, weight)`` pairs in priority order.

    Returns:
        Tallies in first-seen order.
    """
    tallies: dict[str, VoteTally] = {}
    for entries, weight in sources:
        seen: set[str] = set()
        for entry in entries:
            key = normalize_item_key(entry.get("mark"))
            if not key or key in seen:
                continue
            seen.add(key)
            tally = tallies.get(key)
            if tally is None:
                tally = tallies[key] = VoteTally(key=key, entry=dict(entry))
            tally.votes += weight
            tally.sources += 1
    return list(tallies.values())


def entries_with_votes(
    sources: Iterable[tuple[list[dict[str, Any]], float]],
    threshold: float,
) -> tuple[list[dict[str, Any]], dict[str, float]]:
    """
    Entries whose accumulated vote reaches ``threshold``.

    Returns:
        Kept entries in first-seen order, and the vote of every key.
    """
    tallies = tally_votes(sources)
    # Sums within 1e-9 of the threshold count as reaching it.
    kept = [t.entry for t in tallies if t.votes >= threshold - 1e-9]
    return kept, {t.key: round(t.votes, 6) for t in tallies}

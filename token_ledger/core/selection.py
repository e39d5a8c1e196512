"""
View selections and series resolution.

A selection decides which sources feed which output series. Group tags
arrive already resolved on each source; nothing here inspects names.
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Tuple, Union

from token_ledger.storage.models import Source

logger = logging.getLogger(__name__)

AGGREGATE_SERIES_NAME = "Total"


@dataclass(frozen=True)
class AllInGroup:
    """Every source in a group, one series per source."""
    group_tag: str


@dataclass(frozen=True)
class SingleSource:
    """Exactly one source as a single series."""
    source_id: str


@dataclass(frozen=True)
class AggregateAll:
    """Every known source collapsed into one series."""


Selection = Union[AllInGroup, SingleSource, AggregateAll]

# (series name, source ids feeding it)
SeriesSpec = Tuple[str, FrozenSet[str]]


def resolve_series(selection: Selection, sources: Iterable[Source]) -> List[SeriesSpec]:
    """Resolve a selection into ordered, uniquely named series.

    Args:
        selection: The view-time selection
        sources: Known sources, in display order

    Returns:
        List of (series_name, source_ids); empty if nothing matches

    Raises:
        ValueError: If selection is not a known selection type
    """
    sources = list(sources)

    if isinstance(selection, AggregateAll):
        if not sources:
            return []
        return [(AGGREGATE_SERIES_NAME, frozenset(s.source_id for s in sources))]

    if isinstance(selection, SingleSource):
        matching = [s for s in sources if s.source_id == selection.source_id][:1]
    elif isinstance(selection, AllInGroup):
        matching = [s for s in sources if s.group_tag == selection.group_tag]
    else:
        raise ValueError(f"Unsupported selection: {selection!r}")

    if not matching:
        logger.debug("Selection %r matched no sources", selection)

    series: List[SeriesSpec] = []
    seen = {}
    for source in matching:
        name = source.display_name
        count = seen.get(name, 0) + 1
        seen[name] = count
        if count > 1:
            name = f"{name} ({count})"
        series.append((name, frozenset([source.source_id])))
    return series


def selected_source_ids(
    selection: Selection,
    sources: Optional[Iterable[Source]] = None
) -> Optional[FrozenSet[str]]:
    """Return the source ids a selection sums over.

    None means "every source", used by AggregateAll when the caller has
    no source list and wants all events counted.
    """
    if sources is None:
        if isinstance(selection, SingleSource):
            return frozenset([selection.source_id])
        if isinstance(selection, AggregateAll):
            return None
        if isinstance(selection, AllInGroup):
            return frozenset()

    ids = set()
    for _, series_ids in resolve_series(selection, sources or []):
        ids.update(series_ids)
    return frozenset(ids)

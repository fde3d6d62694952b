"""
Merger: union of all source batches into one deduplicated, sorted set that
remembers which sources contributed each entry.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List

from blacklist_filter import normalize, sort_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CanonicalSet:
    # canonical entry -> origins that contributed it, in canonical sort order
    origins: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    per_source: Dict[str, int] = field(default_factory=dict)
    total: int = 0
    accepted: int = 0

    def __len__(self):
        return len(self.origins)

    def __iter__(self):
        return iter(self.origins)

    def __contains__(self, entry):
        return entry in self.origins

    @property
    def duplicates(self) -> int:
        return self.accepted - len(self.origins)

    @property
    def rejected(self) -> int:
        return self.total - self.accepted

    def addresses(self) -> List[str]:
        return list(self.origins)


def merge(batches: Iterable) -> CanonicalSet:
    collected: Dict[str, set] = {}
    per_source: Dict[str, int] = {}
    total = accepted = 0
    for batch in batches:
        per_source[batch.origin] = per_source.get(batch.origin, 0) + len(batch.entries)
        for raw in batch.entries:
            total += 1
            entry = normalize(raw)
            if entry is None:
                continue
            accepted += 1
            collected.setdefault(entry, set()).add(batch.origin)

    ordered = {entry: frozenset(collected[entry]) for entry in sorted(collected, key=sort_key)}
    result = CanonicalSet(origins=ordered, per_source=per_source, total=total, accepted=accepted)
    logger.debug(f"Merged {total} entries: {accepted} accepted, {len(result)} unique")
    return result


def log_summary(result: CanonicalSet) -> None:
    logger.info(f"    - {result.rejected:6d} private/invalid IPs removed")
    logger.info(f"    - {result.duplicates:6d} duplicate IPs removed")
    logger.info(f"    = {len(result):6d} unique banned IPs")

"""
Tier catalog mapping Patreon tier ids to local tier labels.
"""

from typing import Dict, Iterable, Iterator, List, Mapping, Optional

from shared.config import DEFAULT_TIERS


class TierCatalog(Mapping[int, str]):
    """Read-only mapping of source tier id to label."""

    def __init__(self, tiers: Mapping[int, str]):
        self._tiers: Dict[int, str] = {int(tier_id): str(label) for tier_id, label in tiers.items()}

    def __getitem__(self, tier_id: int) -> str:
        return self._tiers[tier_id]

    def __iter__(self) -> Iterator[int]:
        return iter(self._tiers)

    def __len__(self) -> int:
        return len(self._tiers)

    def label_for(self, tier_id: int) -> Optional[str]:
        return self._tiers.get(tier_id)

    def labels_for(self, tier_ids: Iterable[int]) -> List[str]:
        """Labels for the given ids in ascending id order, unknown ids skipped."""
        return [self._tiers[tier_id] for tier_id in sorted(tier_ids) if tier_id in self._tiers]


DEFAULT_CATALOG = TierCatalog(DEFAULT_TIERS)

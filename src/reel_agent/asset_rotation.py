"""Background footage catalog and non-repeating rotation."""

import logging
import random
import threading
from pathlib import Path
from typing import Mapping, Optional, Sequence

from reel_agent.errors import NoAssetsAvailable
from reel_agent.models import AssetCategory

logger = logging.getLogger(__name__)

BACKGROUND_EXTENSIONS = {".mp4"}


def discover_catalog(assets_dir: Path) -> dict[AssetCategory, list[Path]]:
    """Scan ``<assets_dir>/<category>/`` for background clips.

    Categories without a directory map to an empty list.
    """
    assets_dir = Path(assets_dir)
    catalog: dict[AssetCategory, list[Path]] = {}
    for category in AssetCategory:
        category_dir = assets_dir / category.value
        if category_dir.is_dir():
            clips = sorted(
                f for f in category_dir.iterdir()
                if f.is_file() and f.suffix.lower() in BACKGROUND_EXTENSIONS
            )
        else:
            clips = []
        catalog[category] = clips
    logger.info(
        "Background catalog: %s",
        ", ".join(f"{c.value}={len(v)}" for c, v in catalog.items()),
    )
    return catalog


class AssetRotationSelector:
    """Picks background clips without repeating one until the category cycles.

    Each category keeps the set of references already handed out. When that
    set covers the whole catalog it is cleared before the next pick, so every
    clip is used once per cycle. History lives in memory only and is scoped
    to this instance.
    """

    def __init__(
        self,
        catalog: Mapping[AssetCategory, Sequence],
        rng: Optional[random.Random] = None,
    ):
        self._catalog = {AssetCategory(c): list(refs) for c, refs in catalog.items()}
        self._used: dict[AssetCategory, set] = {}
        self._rng = rng or random.Random()
        self._lock = threading.Lock()

    @classmethod
    def from_directory(cls, assets_dir: Path, rng: Optional[random.Random] = None) -> "AssetRotationSelector":
        return cls(discover_catalog(assets_dir), rng=rng)

    def catalog(self, category: AssetCategory) -> list:
        return list(self._catalog.get(AssetCategory(category), []))

    def used(self, category: AssetCategory) -> set:
        """Return a copy of the references used in the current cycle."""
        with self._lock:
            return set(self._used.get(AssetCategory(category), set()))

    def select(self, category: AssetCategory):
        """Return a clip reference not yet used in this category's cycle.

        Raises:
            NoAssetsAvailable: If the category has no clips.
        """
        category = AssetCategory(category)
        candidates = self._catalog.get(category, [])
        if not candidates:
            raise NoAssetsAvailable(
                f"No videos available in {category.display_name} category"
            )

        with self._lock:
            used = self._used.setdefault(category, set())
            if len(used) >= len(candidates):
                logger.debug("Rotation cycle complete for %s, resetting", category.value)
                used.clear()

            unused = [ref for ref in candidates if ref not in used]
            choice = self._rng.choice(unused)
            used.add(choice)

        logger.info("Selected background %s from %s", _display(choice), category.value)
        return choice

    def reset(self, category: Optional[AssetCategory] = None) -> None:
        """Forget usage history for one category, or all when omitted."""
        with self._lock:
            if category is None:
                self._used.clear()
            else:
                self._used.pop(AssetCategory(category), None)


def _display(reference) -> str:
    return reference.name if isinstance(reference, Path) else str(reference)

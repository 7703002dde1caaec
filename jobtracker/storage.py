"""
Optional local persistence of the cache.

The file is a convenience for showing something before the first reload
finishes. It is never the system of record: a reload from the store always
replaces what was loaded from here.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .cache import EntityCache
from .logger import get_logger
from .models import Entity, EntityType, entity_from_record

logger = get_logger()


def save_cache(path: Path, cache: EntityCache, owner_id: Optional[str]) -> None:
    store = {
        "owner_id": owner_id,
        "saved_at": datetime.now(timezone.utc).isoformat(),
        "entities": {t.value: [e.to_record() for e in cache.entities(t)] for t in EntityType},
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(store, f, indent=2, ensure_ascii=False)


def load_cache(path: Path, owner_id: Optional[str]) -> Dict[EntityType, List[Entity]]:
    """
    Read a saved cache for ``owner_id``.

    Returns an empty mapping when the file is missing, unreadable, or was
    saved for someone else.
    """
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            content = f.read().strip()
        if not content:
            return {}
        store = json.loads(content)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning("Ignoring unreadable cache file", path=str(path), error=str(e))
        return {}
    if not isinstance(store, dict) or store.get("owner_id") != owner_id:
        return {}
    listings = {}
    for entity_type in EntityType:
        records = store.get("entities", {}).get(entity_type.value, [])
        try:
            listings[entity_type] = [entity_from_record(entity_type, r) for r in records]
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring malformed cache entries", path=str(path), entity_type=entity_type.value, error=str(e))
    return listings

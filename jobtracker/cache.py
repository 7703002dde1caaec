"""
Entity collection cache.

The session-scoped, in-memory view of every entity the signed-in user owns.
Entries are kept per entity type in insertion order, so a removed entity can
be put back exactly where it was. Entities are immutable, which makes a
snapshot a cheap copy of references.

Only the mutation coordinator writes to the cache; everyone else reads or
subscribes.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .logger import get_logger
from .models import Entity, EntityType

logger = get_logger()

CacheKey = Tuple[EntityType, str]
Subscriber = Callable[["EntityCache"], None]


@dataclass(frozen=True)
class CacheSnapshot:
    """Ordered copy of every cache entry at one point in time."""

    entries: Mapping[EntityType, Tuple[Tuple[str, Entity], ...]]
    version: int
    epoch: int

    def get(self, entity_type: EntityType, entity_id: str) -> Optional[Entity]:
        for key, entity in self.entries[entity_type]:
            if key == entity_id:
                return entity
        return None

    def index_of(self, entity_type: EntityType, entity_id: str) -> Optional[int]:
        for index, (key, _) in enumerate(self.entries[entity_type]):
            if key == entity_id:
                return index
        return None


def _insert_at(entries: Dict[str, Entity], index: int, entity: Entity) -> Dict[str, Entity]:
    items = list(entries.items())
    items.insert(index, (entity.id, entity))
    return dict(items)


class EntityCache:
    """
    Mapping of id -> entity per entity type.

    ``version`` increases on every write. ``epoch`` increases on ``clear`` and
    identifies the session a pending write belongs to.
    """

    def __init__(self):
        self._entries: Dict[EntityType, Dict[str, Entity]] = {t: {} for t in EntityType}
        self._subscribers: List[Subscriber] = []
        self.version = 0
        self.epoch = 0

    # Reads

    def get(self, entity_type: EntityType, entity_id: str) -> Optional[Entity]:
        return self._entries[entity_type].get(entity_id)

    def entities(self, entity_type: EntityType) -> List[Entity]:
        return list(self._entries[entity_type].values())

    def index_of(self, entity_type: EntityType, entity_id: str) -> Optional[int]:
        for index, key in enumerate(self._entries[entity_type]):
            if key == entity_id:
                return index
        return None

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    def snapshot(self) -> CacheSnapshot:
        return CacheSnapshot(
            entries={t: tuple(entries.items()) for t, entries in self._entries.items()},
            version=self.version,
            epoch=self.epoch,
        )

    # Subscriptions

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback(cache)`` after every write. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _changed(self) -> None:
        self.version += 1
        for callback in list(self._subscribers):
            try:
                callback(self)
            except Exception as e:
                logger.error("Cache subscriber failed", subscriber=repr(callback), error=str(e))

    # Writes

    def upsert(self, entity: Entity, index: Optional[int] = None) -> None:
        """Replace in place when the id is present, else insert at ``index`` (default: append)."""
        entries = self._entries[entity.entity_type]
        if entity.id in entries or index is None:
            entries[entity.id] = entity
        else:
            self._entries[entity.entity_type] = _insert_at(entries, min(index, len(entries)), entity)
        self._changed()

    def replace_key(self, old_id: str, entity: Entity) -> None:
        """Swap the entry stored under ``old_id`` for ``entity``, keeping its position."""
        entity_type = entity.entity_type
        entries = dict(self._entries[entity_type])
        if entity.id != old_id:
            entries.pop(entity.id, None)
        index = list(entries).index(old_id) if old_id in entries else len(entries)
        entries.pop(old_id, None)
        self._entries[entity_type] = _insert_at(entries, index, entity)
        self._changed()

    def remove(self, entity_type: EntityType, entity_id: str) -> Optional[Tuple[Entity, int]]:
        """Remove an entry. Returns the entity and its former index, or None."""
        index = self.index_of(entity_type, entity_id)
        if index is None:
            return None
        entity = self._entries[entity_type].pop(entity_id)
        self._changed()
        return entity, index

    def replace_all(self, entity_type: EntityType, entities: Iterable[Entity]) -> None:
        self._entries[entity_type] = {e.id: e for e in entities}
        self._changed()

    def restore(self, snapshot: CacheSnapshot) -> None:
        """Make the cache contents equal to ``snapshot``."""
        self._entries = {t: dict(entries) for t, entries in snapshot.entries.items()}
        self._changed()

    def restore_entries(self, snapshot: CacheSnapshot, keys: Iterable[CacheKey]) -> None:
        """
        Restore only ``keys`` from ``snapshot``, each at its former position.

        Keys absent from the snapshot are removed. Everything else keeps its
        current value.
        """
        for entity_type, entity_id in keys:
            entries = self._entries[entity_type]
            entries.pop(entity_id, None)
            previous = snapshot.get(entity_type, entity_id)
            if previous is not None:
                index = snapshot.index_of(entity_type, entity_id)
                self._entries[entity_type] = _insert_at(entries, min(index, len(entries)), previous)
        self._changed()

    def clear(self) -> None:
        """Drop everything and start a new epoch."""
        self._entries = {t: {} for t in EntityType}
        self.epoch += 1
        self._changed()

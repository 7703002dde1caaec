"""
Optimistic mutation coordinator.

Every mutation follows the same shape:

    validate -> wait for the entity's lock -> ownership guard -> snapshot
    -> apply locally -> remote call -> confirm or roll back

The local change is visible before the remote call is issued. A confirmed
mutation replaces the optimistic value with exactly what the store returned.
A failed one puts the cache back the way it was and reports the error.

Invariants:
- At most one pending mutation per entity id; later ones queue on its lock.
- Invalid payloads and signed-out callers never touch the cache.
- Outcomes that arrive after the session ended (cache epoch changed) are
  discarded, never applied.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

from .cache import CacheKey, CacheSnapshot, EntityCache
from .errors import NotFoundError, StoreError, UnauthorizedError, ValidationError
from .identity import Identity
from .logger import get_logger
from .models import Entity, EntityType, new_entity
from .ownership import guard_owned
from .schema import prepare_create, prepare_update

logger = get_logger()

TENTATIVE_PREFIX = "tentative-"

# Board order: newest cards first, companies in the order they were added.
DEFAULT_ORDER = {
    EntityType.JOB: "-created_at",
    EntityType.COMPANY: "created_at",
}


class MutationState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    # Failed before anything was applied locally.
    REJECTED = "rejected"
    # Resolved after the session ended; outcome dropped.
    DISCARDED = "discarded"


_PAST_TENSE = {"create": "created", "update": "updated", "delete": "deleted", "get": "loaded"}


@dataclass(frozen=True)
class MutationResult:
    action: str
    entity_type: EntityType
    entity_id: Optional[str]
    state: MutationState
    entity: Optional[Entity] = None
    error: Optional[StoreError] = None

    @property
    def ok(self) -> bool:
        return self.state is MutationState.CONFIRMED

    @property
    def message(self) -> str:
        """Human-readable outcome for the presentation layer."""
        if self.error is not None:
            return self.error.message
        if self.state is MutationState.DISCARDED:
            return f"{self.entity_type.label} {self.action} dropped: session ended"
        return f"{self.entity_type.label} {_PAST_TENSE.get(self.action, self.action)} successfully"


Listener = Callable[[MutationResult], None]


class MutationCoordinator:
    """
    Applies mutations to the cache optimistically and reconciles them with
    the store through ``adapter``.

    One coordinator serves one signed-in identity. The cache is passed in by
    handle; clearing it (sign-out) ends the coordinator's session.
    """

    def __init__(self, cache: EntityCache, adapter, identity: Identity):
        self.cache = cache
        self.adapter = adapter
        self.identity = identity
        self._locks: Dict[CacheKey, asyncio.Lock] = {}
        self._lock_users: Dict[CacheKey, int] = {}
        self._aliases: Dict[CacheKey, str] = {}
        self._listeners: List[Listener] = []

    def rebind(self, adapter, identity: Identity) -> None:
        """
        Switch to a new credential for the same caller.

        Locks and aliases carry over, so mutations issued after the switch
        still queue behind the ones already in flight.
        """
        if identity.caller_id != self.identity.caller_id:
            raise ValueError("rebind keeps the caller; sign in again to switch users")
        self.adapter = adapter
        self.identity = identity

    # Listeners

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Receive every mutation result. Returns a function that removes the listener."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # Locking

    def _resolve(self, entity_type: EntityType, entity_id: str) -> str:
        """Follow a tentative id to the id the store assigned, if it has one yet."""
        return self._aliases.get((entity_type, entity_id), entity_id)

    def pending(self, entity_type: EntityType, entity_id: str) -> bool:
        lock = self._locks.get((entity_type, self._resolve(entity_type, entity_id)))
        return lock is not None and lock.locked()

    def _checkout(self, key: CacheKey) -> asyncio.Lock:
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        return self._locks.setdefault(key, asyncio.Lock())

    def _checkin(self, key: CacheKey) -> None:
        self._lock_users[key] -= 1
        if not self._lock_users[key]:
            del self._lock_users[key]
            del self._locks[key]

    @asynccontextmanager
    async def _entity_lock(self, entity_type: EntityType, entity_id: str):
        """Hold the per-entity lock; yields the resolved id."""
        entity_id = self._resolve(entity_type, entity_id)
        while True:
            key = (entity_type, entity_id)
            lock = self._checkout(key)
            try:
                await lock.acquire()
            except BaseException:
                self._checkin(key)
                raise
            resolved = self._resolve(entity_type, entity_id)
            if resolved == entity_id:
                break
            # A create confirmed while we waited; queue on the real id instead.
            lock.release()
            self._checkin(key)
            entity_id = resolved
        try:
            yield entity_id
        finally:
            lock.release()
            self._checkin(key)

    # Outcomes

    def _stale(self, epoch: int) -> bool:
        return self.cache.epoch != epoch

    def _finish(self, result: MutationResult, notify: bool = True) -> MutationResult:
        kind = result.entity_type.value
        context = {"action": result.action, "entity_id": result.entity_id}
        if result.state is MutationState.CONFIRMED:
            logger.record_mutation_confirmed(kind)
            logger.info(f"{result.entity_type.label} {result.action} confirmed", **context)
        elif result.state is MutationState.ROLLED_BACK:
            logger.record_mutation_rolled_back(kind, result.error.kind.value)
            logger.warning(f"{result.entity_type.label} {result.action} rolled back", kind=result.error.kind.value, **context)
        elif result.state is MutationState.DISCARDED:
            logger.record_mutation_discarded(kind)
            logger.info(f"{result.entity_type.label} {result.action} discarded after session end", **context)
        elif result.error is not None:
            logger.record_error(result.error.kind.value)
            logger.warning(f"{result.entity_type.label} {result.action} rejected", kind=result.error.kind.value, **context)

        if notify:
            for listener in list(self._listeners):
                listener(result)
        return result

    def _rejected(self, action: str, entity_type: EntityType, entity_id: Optional[str], error: StoreError) -> MutationResult:
        return self._finish(MutationResult(action, entity_type, entity_id, MutationState.REJECTED, error=error))

    def _discarded(self, action: str, entity_type: EntityType, entity_id: Optional[str]) -> MutationResult:
        return self._finish(MutationResult(action, entity_type, entity_id, MutationState.DISCARDED))

    def _restore(self, snapshot: CacheSnapshot, applied_version: int, touched: Iterable[CacheKey]) -> None:
        if self.cache.version == applied_version:
            self.cache.restore(snapshot)
        else:
            # Other entities were written since; put back only what we touched.
            self.cache.restore_entries(snapshot, touched)

    def _abandon(
        self,
        action: str,
        entity_type: EntityType,
        entity_id: str,
        snapshot: CacheSnapshot,
        applied_version: int,
        touched: Iterable[CacheKey],
        epoch: int,
        exc: BaseException,
    ) -> None:
        """Undo the optimistic change when the remote call raised something other than a StoreError."""
        if not self._stale(epoch):
            self._restore(snapshot, applied_version, touched)
        logger.error(f"{entity_type.label} {action} abandoned", entity_id=entity_id, error=f"{type(exc).__name__}: {exc}")

    def _roll_back(
        self,
        action: str,
        entity_type: EntityType,
        entity_id: str,
        snapshot: CacheSnapshot,
        applied_version: int,
        touched: Iterable[CacheKey],
        error: StoreError,
        epoch: int,
    ) -> MutationResult:
        if self._stale(epoch):
            return self._discarded(action, entity_type, entity_id)
        self._restore(snapshot, applied_version, touched)
        return self._finish(MutationResult(action, entity_type, entity_id, MutationState.ROLLED_BACK, error=error))

    def _precheck(self, action: str, entity_type: EntityType, entity_id: Optional[str]) -> Optional[MutationResult]:
        if not self.identity.is_authenticated or self.adapter is None:
            return self._rejected(action, entity_type, entity_id, UnauthorizedError("Unauthorized: not signed in"))
        return None

    def _owned_cached(self, entity_type: EntityType, entity_id: str) -> Optional[Entity]:
        """Cached entity if present, NotFoundError if present but foreign."""
        cached = self.cache.get(entity_type, entity_id)
        if cached is None:
            return None
        return guard_owned(cached, self.identity.caller_id, entity_type, entity_id)

    async def _remote_only(
        self,
        action: str,
        entity_type: EntityType,
        entity_id: str,
        epoch: int,
        call: Callable[[], Awaitable[Entity]],
    ) -> MutationResult:
        """Run a mutation for an entity the cache does not hold; nothing to apply optimistically."""
        try:
            entity = await call()
        except StoreError as e:
            if self._stale(epoch):
                return self._discarded(action, entity_type, entity_id)
            return self._rejected(action, entity_type, entity_id, e)
        if self._stale(epoch):
            return self._discarded(action, entity_type, entity_id)
        if action == "delete":
            self.cache.remove(entity_type, entity_id)
        else:
            self.cache.upsert(entity)
        return self._finish(MutationResult(action, entity_type, entity_id, MutationState.CONFIRMED, entity=entity))

    # Operations

    async def create(self, entity_type: EntityType, fields: Mapping[str, Any]) -> MutationResult:
        """
        Add a tentative entity to the cache, then create it in the store.

        On success the tentative entry is swapped for the stored entity at the
        same position; on failure it is removed.
        """
        try:
            payload = prepare_create(entity_type, fields)
        except ValidationError as e:
            return self._rejected("create", entity_type, None, e)
        rejected = self._precheck("create", entity_type, None)
        if rejected:
            return rejected

        logger.record_mutation_attempt(entity_type.value)
        epoch = self.cache.epoch
        tentative_id = f"{TENTATIVE_PREFIX}{uuid4()}"
        async with self._entity_lock(entity_type, tentative_id):
            snapshot = self.cache.snapshot()
            self.cache.upsert(new_entity(entity_type, tentative_id, self.identity.caller_id, payload))
            applied_version = self.cache.version
            try:
                created = await self.adapter.create(entity_type, payload)
            except StoreError as e:
                return self._roll_back(
                    "create", entity_type, tentative_id, snapshot, applied_version,
                    [(entity_type, tentative_id)], e, epoch,
                )
            except BaseException as e:
                self._abandon("create", entity_type, tentative_id, snapshot, applied_version, [(entity_type, tentative_id)], epoch, e)
                raise
            if self._stale(epoch):
                return self._discarded("create", entity_type, created.id)
            self._aliases[(entity_type, tentative_id)] = created.id
            self.cache.replace_key(tentative_id, created)
            return self._finish(MutationResult("create", entity_type, created.id, MutationState.CONFIRMED, entity=created))

    async def update(self, entity_type: EntityType, entity_id: str, fields: Mapping[str, Any]) -> MutationResult:
        """Apply ``fields`` locally, then send the changed ones to the store."""
        try:
            payload = prepare_update(entity_type, fields)
        except ValidationError as e:
            return self._rejected("update", entity_type, entity_id, e)
        rejected = self._precheck("update", entity_type, entity_id)
        if rejected:
            return rejected

        logger.record_mutation_attempt(entity_type.value)
        epoch = self.cache.epoch
        async with self._entity_lock(entity_type, entity_id) as entity_id:
            if self._stale(epoch):
                return self._discarded("update", entity_type, entity_id)
            try:
                current = self._owned_cached(entity_type, entity_id)
            except NotFoundError as e:
                return self._rejected("update", entity_type, entity_id, e)
            if current is None:
                return await self._remote_only(
                    "update", entity_type, entity_id, epoch,
                    lambda: self.adapter.update(entity_type, entity_id, payload),
                )

            before = current.to_record()
            optimistic = current.with_fields(payload)
            after = optimistic.to_record()
            changed = {k: payload[k] for k in payload if before.get(k) != after.get(k)}

            snapshot = self.cache.snapshot()
            self.cache.upsert(optimistic)
            applied_version = self.cache.version
            try:
                confirmed = await self.adapter.update(entity_type, entity_id, changed or payload)
            except StoreError as e:
                return self._roll_back(
                    "update", entity_type, entity_id, snapshot, applied_version,
                    [(entity_type, entity_id)], e, epoch,
                )
            except BaseException as e:
                self._abandon("update", entity_type, entity_id, snapshot, applied_version, [(entity_type, entity_id)], epoch, e)
                raise
            if self._stale(epoch):
                return self._discarded("update", entity_type, entity_id)
            self.cache.upsert(confirmed)
            return self._finish(MutationResult("update", entity_type, entity_id, MutationState.CONFIRMED, entity=confirmed))

    async def delete(self, entity_type: EntityType, entity_id: str) -> MutationResult:
        """Remove locally, then delete in the store; re-insert at the old position on failure."""
        rejected = self._precheck("delete", entity_type, entity_id)
        if rejected:
            return rejected

        logger.record_mutation_attempt(entity_type.value)
        epoch = self.cache.epoch
        async with self._entity_lock(entity_type, entity_id) as entity_id:
            if self._stale(epoch):
                return self._discarded("delete", entity_type, entity_id)
            try:
                current = self._owned_cached(entity_type, entity_id)
            except NotFoundError as e:
                return self._rejected("delete", entity_type, entity_id, e)
            if current is None:
                return await self._remote_only(
                    "delete", entity_type, entity_id, epoch,
                    lambda: self.adapter.delete(entity_type, entity_id),
                )

            snapshot = self.cache.snapshot()
            self.cache.remove(entity_type, entity_id)
            applied_version = self.cache.version
            try:
                deleted = await self.adapter.delete(entity_type, entity_id)
            except StoreError as e:
                return self._roll_back(
                    "delete", entity_type, entity_id, snapshot, applied_version,
                    [(entity_type, entity_id)], e, epoch,
                )
            except BaseException as e:
                self._abandon("delete", entity_type, entity_id, snapshot, applied_version, [(entity_type, entity_id)], epoch, e)
                raise
            if self._stale(epoch):
                return self._discarded("delete", entity_type, entity_id)
            return self._finish(MutationResult("delete", entity_type, entity_id, MutationState.CONFIRMED, entity=deleted))

    async def get(self, entity_type: EntityType, entity_id: str) -> MutationResult:
        """
        Fetch one entity from the store and reconcile the cache with it.

        A NotFound answer evicts any cached copy.
        """
        rejected = self._precheck("get", entity_type, entity_id)
        if rejected:
            return rejected
        epoch = self.cache.epoch
        async with self._entity_lock(entity_type, entity_id) as entity_id:
            try:
                entity = await self.adapter.get(entity_type, entity_id)
            except StoreError as e:
                if self._stale(epoch):
                    return self._discarded("get", entity_type, entity_id)
                if isinstance(e, NotFoundError):
                    self.cache.remove(entity_type, entity_id)
                return self._finish(MutationResult("get", entity_type, entity_id, MutationState.REJECTED, error=e), notify=False)
            if self._stale(epoch):
                return self._discarded("get", entity_type, entity_id)
            self.cache.upsert(entity)
            return self._finish(MutationResult("get", entity_type, entity_id, MutationState.CONFIRMED, entity=entity), notify=False)

    async def reload(self) -> bool:
        """
        Replace the cache contents with a fresh listing of every entity type.

        Returns False when the session ended before the listing arrived.

        Raises:
            StoreError: when a listing fails; the cache is left unchanged
        """
        if not self.identity.is_authenticated or self.adapter is None:
            raise UnauthorizedError("Unauthorized: not signed in")
        epoch = self.cache.epoch
        listings: Dict[EntityType, List[Entity]] = {}
        for entity_type in EntityType:
            listings[entity_type] = await self.adapter.list(entity_type, order=DEFAULT_ORDER[entity_type])
        if self._stale(epoch):
            logger.info("Reload discarded after session end")
            return False
        for entity_type, entities in listings.items():
            self.cache.replace_all(entity_type, entities)
        logger.debug("Cache reloaded", **{t.value: len(e) for t, e in listings.items()})
        return True

    def prime(self, listings: Mapping[EntityType, List[Entity]]) -> None:
        """Seed the cache from local persistence before the first reload."""
        for entity_type, entities in listings.items():
            owned = [e for e in entities if e.owner_id == self.identity.caller_id]
            self.cache.replace_all(entity_type, owned)

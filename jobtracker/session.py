"""
Session lifecycle around the cache and the coordinator.

A TrackerSession owns one cache for as long as the process runs and reacts
to identity transitions: signing in clears the cache and reloads it from the
store for the new caller; signing out clears it. Every sign-in as a
different caller gets a fresh coordinator, so nothing pending from a previous
identity can write into the new session. A refreshed token for the same
caller keeps the coordinator, whose entity locks still order pending work.
"""

import asyncio
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from .board import companies_starred_first, jobs_by_stage, stale_company_ids
from .cache import EntityCache
from .coordinator import Listener, MutationCoordinator, MutationResult
from .identity import Identity
from .logger import get_logger
from .models import Company, Entity, EntityType, Job, Stage
from .storage import load_cache, save_cache

logger = get_logger()

AdapterFactory = Callable[[Identity], Any]


class TrackerSession:
    """Entry point for the presentation layer."""

    def __init__(
        self,
        adapter_factory: AdapterFactory,
        cache: Optional[EntityCache] = None,
        cache_path: Optional[Path] = None,
    ):
        self._adapter_factory = adapter_factory
        self.cache = cache if cache is not None else EntityCache()
        self.cache_path = cache_path
        self.identity = Identity.anonymous()
        self._listeners: List[Listener] = []
        self.coordinator = self._new_coordinator(self.identity)

    def _new_coordinator(self, identity: Identity) -> MutationCoordinator:
        adapter = self._adapter_factory(identity) if identity.is_authenticated else None
        coordinator = MutationCoordinator(self.cache, adapter, identity)
        coordinator.add_listener(self._dispatch)
        return coordinator

    def _dispatch(self, result: MutationResult) -> None:
        if result.ok and self.cache_path is not None:
            self._persist()
        for listener in list(self._listeners):
            listener(result)

    def _persist(self) -> None:
        try:
            save_cache(self.cache_path, self.cache, self.identity.caller_id)
        except OSError as e:
            logger.warning("Could not save cache", path=str(self.cache_path), error=str(e))

    # Identity transitions

    @property
    def is_authenticated(self) -> bool:
        return self.identity.is_authenticated

    async def set_identity(self, identity: Identity) -> None:
        """
        React to the identity provider.

        Raises:
            StoreError: when the reload after signing in fails; the session
                stays signed in with an empty cache
        """
        previous = self.identity
        if identity == previous:
            return
        self.identity = identity
        if not identity.is_authenticated:
            if previous.is_authenticated:
                logger.info("Signed out; clearing cache", caller_id=previous.caller_id)
                self.cache.clear()
            self.coordinator = self._new_coordinator(identity)
            return

        if previous.is_authenticated and previous.caller_id == identity.caller_id:
            # Same user, new credential: keep the cache and pending work, swap the adapter.
            self.coordinator.rebind(self._adapter_factory(identity), identity)
            return

        logger.info("Signed in; loading entities", caller_id=identity.caller_id)
        self.cache.clear()
        self.coordinator = self._new_coordinator(identity)
        if self.cache_path is not None:
            saved = load_cache(self.cache_path, identity.caller_id)
            if saved:
                self.coordinator.prime(saved)
        await self.reload()

    async def sign_in(self, caller_id: str, token: str) -> None:
        await self.set_identity(Identity.signed_in(caller_id, token))

    async def sign_out(self) -> None:
        await self.set_identity(Identity.anonymous())

    async def reload(self) -> bool:
        reloaded = await self.coordinator.reload()
        if reloaded and self.cache_path is not None:
            self._persist()
        return reloaded

    # Observation

    def subscribe(self, callback: Callable[[EntityCache], None]) -> Callable[[], None]:
        """Observe cache contents after every change."""
        return self.cache.subscribe(callback)

    def on_result(self, listener: Listener) -> Callable[[], None]:
        """Receive success/failure feedback for every mutation."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def list(self, entity_type: EntityType) -> List[Entity]:
        return self.cache.entities(entity_type)

    def board(self) -> Dict[Stage, List[Job]]:
        return jobs_by_stage(self.cache.entities(EntityType.JOB))

    def companies(self) -> List[Company]:
        return companies_starred_first(self.cache.entities(EntityType.COMPANY))

    # Generic operations

    async def get(self, entity_type: EntityType, entity_id: str) -> MutationResult:
        return await self.coordinator.get(entity_type, entity_id)

    async def create(self, entity_type: EntityType, fields: Mapping[str, Any]) -> MutationResult:
        return await self.coordinator.create(entity_type, fields)

    async def update(self, entity_type: EntityType, entity_id: str, fields: Mapping[str, Any]) -> MutationResult:
        return await self.coordinator.update(entity_type, entity_id, fields)

    async def delete(self, entity_type: EntityType, entity_id: str) -> MutationResult:
        return await self.coordinator.delete(entity_type, entity_id)

    # Jobs

    async def add_job(self, title: str, company: str, notes: str = "", status: Optional[str] = None) -> MutationResult:
        fields = {"title": title, "company": company, "notes": notes, "position": {"x": 0, "y": 0}}
        fields["status"] = status or Stage.WISHLIST.value
        return await self.create(EntityType.JOB, fields)

    async def move_job(self, job_id: str, stage: str) -> MutationResult:
        return await self.update(EntityType.JOB, job_id, {"status": stage})

    # Companies

    async def add_company(self, name: str = "", custom: bool = False) -> MutationResult:
        fields = {"custom_company": name} if custom else {"company": name}
        return await self.create(EntityType.COMPANY, fields)

    async def rename_company(self, company_id: str, name: str, custom: bool = False) -> MutationResult:
        """Pick a listed name or type a custom one; the other is cleared."""
        if custom:
            fields = {"company": "", "custom_company": name}
        else:
            fields = {"company": name, "custom_company": ""}
        return await self.update(EntityType.COMPANY, company_id, fields)

    def _company_or_none(self, company_id: str) -> Optional[Company]:
        return self.cache.get(EntityType.COMPANY, company_id)

    async def toggle_star(self, company_id: str) -> MutationResult:
        company = self._company_or_none(company_id)
        starred = not company.starred if company else True
        return await self.update(EntityType.COMPANY, company_id, {"starred": starred})

    async def toggle_updated(self, company_id: str, today: Optional[date] = None) -> MutationResult:
        """Flip the updated mark; marking as updated stamps today's date."""
        company = self._company_or_none(company_id)
        updated = not company.updated if company else True
        fields: Dict[str, Any] = {"updated": updated}
        if updated:
            fields["last_updated"] = (today or date.today()).isoformat()
        return await self.update(EntityType.COMPANY, company_id, fields)

    async def review_companies(self, frequency: str, today: Optional[date] = None) -> List[MutationResult]:
        """Clear the updated mark on every company not refreshed within ``frequency``."""
        stale = stale_company_ids(self.cache.entities(EntityType.COMPANY), frequency, today)
        return list(await asyncio.gather(
            *(self.update(EntityType.COMPANY, company_id, {"updated": False}) for company_id in stale)
        ))

"""
Store adapters.

An adapter turns typed list/get/create/update/delete calls into calls
against the authoritative store, scoped to the identity it was built for,
and reports every failure as a StoreError. Adapters never retry.
"""

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Protocol

import requests

from .errors import (
    ErrorKind,
    StoreError,
    TransportError,
    UnauthorizedError,
    ValidationError,
    error_for_kind,
)
from .identity import Identity
from .logger import get_logger
from .models import Entity, EntityType, entity_from_record
from .schema import sanitize_fields
from .store_service import EntityStore

logger = get_logger()

STATUS_KINDS = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.UNAUTHORIZED,
    404: ErrorKind.NOT_FOUND,
    422: ErrorKind.VALIDATION,
}


class StoreAdapter(Protocol):
    async def list(self, entity_type: EntityType, order: Optional[str] = None) -> List[Entity]: ...

    async def get(self, entity_type: EntityType, entity_id: str) -> Entity: ...

    async def create(self, entity_type: EntityType, fields: Mapping[str, Any]) -> Entity: ...

    async def update(self, entity_type: EntityType, entity_id: str, fields: Mapping[str, Any]) -> Entity: ...

    async def delete(self, entity_type: EntityType, entity_id: str) -> Entity: ...


def _update_payload(fields: Mapping[str, Any]) -> Dict[str, Any]:
    payload = sanitize_fields(fields)
    if not payload:
        raise ValidationError("Update payload cannot be empty")
    return payload


def error_from_response(resp) -> StoreError:
    """Build a StoreError from an HTTP error response."""
    message = None
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
        elif isinstance(error, str):
            message = error
    kind = STATUS_KINDS.get(resp.status_code, ErrorKind.TRANSPORT)
    return error_for_kind(kind, message or f"Store request failed ({resp.status_code})")


def _decode(entity_type: EntityType, record: Any) -> Entity:
    """Entity from a response record; a record of the wrong shape is a transport failure."""
    if not isinstance(record, dict):
        raise TransportError("Store returned an unreadable response")
    try:
        return entity_from_record(entity_type, record)
    except (TypeError, KeyError, ValueError, AttributeError) as e:
        logger.error("Store returned a malformed record", entity_type=entity_type.value, error=str(e))
        raise TransportError("Store returned an unreadable response")


class RemoteStoreAdapter:
    """
    HTTP/JSON adapter for the store API.

    Blocking requests run in a worker thread so the session's event loop is
    free while a call is in flight.
    """

    def __init__(
        self,
        base_url: str,
        identity: Identity,
        http: Optional[requests.Session] = None,
        timeout: float = 15.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.identity = identity
        self.http = http or requests.Session()
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        if not self.identity.is_authenticated or not self.identity.token:
            raise UnauthorizedError("Unauthorized: not signed in")
        return {
            "Authorization": f"Bearer {self.identity.token}",
            "Accept": "application/json",
        }

    def _request(self, method: str, path: str, json: Any = None, params: Optional[Dict[str, str]] = None) -> Any:
        """Issue one request and decode its JSON body.

        Raises:
            StoreError: kind derived from the status code, or transport on
                network failure and unreadable bodies
        """
        url = f"{self.base_url}/api/{path}"
        headers = self._headers()
        logger.record_api_call()
        try:
            resp = self.http.request(method, url, json=json, params=params, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning("Store request timed out", method=method, url=url)
            raise TransportError("Store request timed out. Try again later.")
        except requests.exceptions.RequestException as e:
            logger.error("Store request error", method=method, url=url, error=str(e))
            raise TransportError(f"Store request error: {e}")

        if resp.status_code >= 400:
            error = error_from_response(resp)
            logger.debug("Store rejected request", method=method, url=url, status=resp.status_code, kind=error.kind.value)
            raise error
        try:
            return resp.json()
        except ValueError:
            logger.error("Store returned a non-JSON body", method=method, url=url, status=resp.status_code)
            raise TransportError("Store returned an unreadable response")

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def list(self, entity_type: EntityType, order: Optional[str] = None) -> List[Entity]:
        params = {"order": order} if order else None
        records = await self._call("GET", entity_type.value, params=params)
        if not isinstance(records, list):
            raise TransportError("Store returned an unreadable response")
        return [_decode(entity_type, r) for r in records]

    async def get(self, entity_type: EntityType, entity_id: str) -> Entity:
        record = await self._call("GET", f"{entity_type.value}/{entity_id}")
        return _decode(entity_type, record)

    async def create(self, entity_type: EntityType, fields: Mapping[str, Any]) -> Entity:
        record = await self._call("POST", entity_type.value, json=sanitize_fields(fields))
        return _decode(entity_type, record)

    async def update(self, entity_type: EntityType, entity_id: str, fields: Mapping[str, Any]) -> Entity:
        record = await self._call("PUT", f"{entity_type.value}/{entity_id}", json=_update_payload(fields))
        return _decode(entity_type, record)

    async def delete(self, entity_type: EntityType, entity_id: str) -> Entity:
        body = await self._call("DELETE", f"{entity_type.value}/{entity_id}")
        if isinstance(body, dict):
            body = body.get("deleted", body)
        return _decode(entity_type, body)


class LocalStoreAdapter:
    """Adapter that calls an in-process EntityStore (offline CLI mode, tests)."""

    def __init__(self, store: EntityStore, identity: Identity):
        self.store = store
        self.identity = identity

    async def _caller(self) -> str:
        if not self.identity.is_authenticated or not self.identity.caller_id:
            raise UnauthorizedError("Unauthorized: not signed in")
        logger.record_api_call()
        # Yield once so callers see the same suspension point as a network call.
        await asyncio.sleep(0)
        return self.identity.caller_id

    async def list(self, entity_type: EntityType, order: Optional[str] = None) -> List[Entity]:
        return self.store.list_entities(entity_type, await self._caller(), order=order)

    async def get(self, entity_type: EntityType, entity_id: str) -> Entity:
        return self.store.get(entity_type, entity_id, await self._caller())

    async def create(self, entity_type: EntityType, fields: Mapping[str, Any]) -> Entity:
        return self.store.create(entity_type, await self._caller(), sanitize_fields(fields))

    async def update(self, entity_type: EntityType, entity_id: str, fields: Mapping[str, Any]) -> Entity:
        payload = _update_payload(fields)
        return self.store.update(entity_type, entity_id, await self._caller(), payload)

    async def delete(self, entity_type: EntityType, entity_id: str) -> Entity:
        return self.store.delete(entity_type, entity_id, await self._caller())

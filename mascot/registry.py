import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, List, Optional
from urllib.parse import urljoin, urlparse

import httpx
from pydantic import ValidationError

from .errors import RegistryLoadError
from .schemas import RegistryEntry

logger = logging.getLogger("uvicorn.error")


def parse_registry(payload: Any) -> List[RegistryEntry]:
    """Validate a registry document; bad rows and repeated ids are skipped."""
    if isinstance(payload, dict) and isinstance(payload.get("links"), list):
        payload = payload["links"]
    if not isinstance(payload, list):
        raise RegistryLoadError("Registry document must be a JSON array")
    entries: List[RegistryEntry] = []
    seen = set()
    for idx, raw in enumerate(payload):
        if not isinstance(raw, dict):
            continue
        try:
            entry = RegistryEntry.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Registry entry %s skipped: %s", idx, exc.errors()[:1])
            continue
        if entry.id in seen:
            logger.warning("Registry entry id %s repeated; keeping the first", entry.id)
            continue
        seen.add(entry.id)
        entries.append(entry)
    return entries


class LinkRegistry:
    """In-memory snapshot of the vetted link catalog.

    The snapshot is refreshed after ``ttl_s`` seconds, revalidating with the
    last ETag when the source is HTTP. If a refresh fails the previous snapshot
    keeps being served; with no snapshot at all ``RegistryLoadError`` is raised.
    The cache is an optimisation only; nothing relies on it surviving between
    invocations.
    """

    def __init__(
        self,
        url: Optional[str] = "/links.json",
        *,
        path: Optional[str] = None,
        ttl_s: float = 300.0,
        timeout_s: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url
        self.path = Path(path) if path else None
        self.ttl_s = ttl_s
        self.timeout_s = timeout_s
        self.clock = clock
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_s)
        self._entries: Optional[List[RegistryEntry]] = None
        self._etag: Optional[str] = None
        self._loaded_at: Optional[float] = None

    @property
    def snapshot(self) -> Optional[List[RegistryEntry]]:
        return self._entries

    def is_fresh(self) -> bool:
        if self._entries is None or self._loaded_at is None:
            return False
        return self.clock() - self._loaded_at < self.ttl_s

    def invalidate(self) -> None:
        self._loaded_at = None

    def resolve_url(self, origin: Optional[str]) -> str:
        target = self.url or "/links.json"
        if urlparse(target).scheme:
            return target
        if not origin:
            raise RegistryLoadError(f"Cannot resolve relative registry URL {target} without an origin")
        return urljoin(origin.rstrip("/") + "/", target.lstrip("/"))

    async def load(self, origin: Optional[str] = None) -> List[RegistryEntry]:
        if self.is_fresh():
            return list(self._entries or [])
        try:
            if self.path is not None:
                entries = self._read_file(self.path)
            else:
                entries = await self._fetch(self.resolve_url(origin))
        except RegistryLoadError as exc:
            if self._entries is not None:
                logger.warning("Registry refresh failed, serving stale snapshot: %s", exc)
                return list(self._entries)
            raise
        self._entries = entries
        self._loaded_at = self.clock()
        return list(entries)

    def _read_file(self, path: Path) -> List[RegistryEntry]:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise RegistryLoadError(f"Cannot read registry file {path}: {exc}") from exc
        return parse_registry(payload)

    async def _fetch(self, url: str) -> List[RegistryEntry]:
        headers = {"Accept": "application/json"}
        if self._etag and self._entries is not None:
            headers["If-None-Match"] = self._etag
        try:
            resp = await self.client.get(url, headers=headers, timeout=self.timeout_s)
        except httpx.RequestError as exc:
            raise RegistryLoadError(f"Registry request to {url} failed: {exc}") from exc
        if resp.status_code == 304 and self._entries is not None:
            logger.debug("Registry %s not modified", url)
            return self._entries
        if resp.status_code >= 400:
            raise RegistryLoadError(f"Registry request to {url} returned {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise RegistryLoadError(f"Registry at {url} is not valid JSON: {exc}") from exc
        entries = parse_registry(payload)
        self._etag = resp.headers.get("etag")
        logger.info("Registry loaded from %s (%d entries)", url, len(entries))
        return entries

    async def close(self) -> None:
        if self._owns_client and not self.client.is_closed:
            await self.client.aclose()

import asyncio
import logging
import time
from typing import Callable, Dict, Generic, List, Optional, Tuple, TypeVar
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx

from .schemas import CuratedSource

logger = logging.getLogger("uvicorn.error")

UNAVAILABLE_MARKER = "(link unavailable)"
TRACKING_PARAMS = {"gclid", "fbclid", "mc_cid", "mc_eid", "ref", "igshid", "msclkid"}

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Tiny per-key cache with an injected clock."""

    def __init__(self, ttl_s: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self.clock = clock
        self._items: Dict[str, Tuple[float, V]] = {}

    def get(self, key: str) -> Optional[V]:
        item = self._items.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self.clock() - stored_at >= self.ttl_s:
            self._items.pop(key, None)
            return None
        return value

    def set(self, key: str, value: V) -> None:
        self._items[key] = (self.clock(), value)

    def __len__(self) -> int:
        return len(self._items)


def strip_tracking(url: str) -> str:
    parsed = urlparse(url)
    if not parsed.query:
        return url
    kept = [
        (k, v)
        for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if not k.lower().startswith("utm_") and k.lower() not in TRACKING_PARAMS
    ]
    return urlunparse(parsed._replace(query=urlencode(kept)))


def origin_of(url: str) -> Optional[str]:
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}/"


def probe_candidates(url: str) -> List[str]:
    ordered: List[str] = []
    for candidate in (url, strip_tracking(url), origin_of(url)):
        if candidate and candidate not in ordered:
            ordered.append(candidate)
    return ordered


class LinkValidator:
    """Reachability checks for outbound links, cached per URL."""

    def __init__(
        self,
        *,
        timeout_s: float = 4.5,
        ttl_s: float = 24 * 60 * 60,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout_s = timeout_s
        self.cache: TTLCache[bool] = TTLCache(ttl_s, clock=clock)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout_s,
            follow_redirects=True,
            headers={"User-Agent": "mascot-link-check/1.0"},
        )

    async def _probe(self, url: str) -> bool:
        for method in ("HEAD", "GET"):
            try:
                resp = await self.client.request(method, url, timeout=self.timeout_s)
            except httpx.HTTPError as exc:
                logger.debug("Link probe %s %s failed: %s", method, url, exc)
                continue
            if resp.status_code < 400:
                return True
        return False

    async def check(self, url: str) -> bool:
        if not url or not urlparse(url).scheme.startswith("http"):
            return False
        cached = self.cache.get(url)
        if cached is not None:
            return cached
        ok = False
        for candidate in probe_candidates(url):
            if await self._probe(candidate):
                ok = True
                break
        self.cache.set(url, ok)
        return ok

    async def filter_sources(self, sources: List[CuratedSource]) -> List[CuratedSource]:
        """Keep live sources; dead ones become title-only entries marked unavailable."""
        checks = await asyncio.gather(
            *(self.check(src.url) if src.url else _true() for src in sources),
            return_exceptions=True,
        )
        result: List[CuratedSource] = []
        for src, ok in zip(sources, checks):
            if ok is True:
                result.append(src)
                continue
            if isinstance(ok, BaseException):
                logger.warning("Link check for %s raised: %s", src.url, ok)
            result.append(
                CuratedSource(id=src.id, title=f"{src.title} {UNAVAILABLE_MARKER}", file_id=src.file_id)
            )
        return result

    async def close(self) -> None:
        if self._owns_client and not self.client.is_closed:
            await self.client.aclose()


async def _true() -> bool:
    return True

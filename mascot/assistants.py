import json
import logging
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .errors import ProtocolError, RemoteServiceError
from .schemas import FileInfo, MessageList, Run, Thread, ThreadMessage

logger = logging.getLogger("uvicorn.error")

DEFAULT_BASE_URL = "https://api.openai.com/v1"

M = TypeVar("M", bound=BaseModel)


def parse_payload(model: Type[M], data: Any, url: str) -> M:
    """Validate one remote response shape; unexpected shapes fail loudly."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError(f"Unexpected response shape from {url}: {exc.errors()[:1]}") from exc


class AssistantsClient:
    """Thin async client for the thread/message/run endpoints of the assistants API."""

    def __init__(
        self,
        api_key: Optional[str],
        assistant_id: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.assistant_id = assistant_id
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        # Each call carries its own timeout so a hung request cannot eat the poll deadline.
        self.client = client or httpx.AsyncClient(
            timeout=timeout_s,
            limits=httpx.Limits(max_connections=16, max_keepalive_connections=8),
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "OpenAI-Beta": "assistants=v2",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = await self.client.request(
                method,
                url,
                json=payload,
                params=params,
                headers=self._headers(),
                timeout=self.timeout_s,
            )
        except httpx.TimeoutException as exc:
            raise RemoteServiceError(url, 504, str(exc), reason="timeout") from exc
        except httpx.RequestError as exc:
            raise RemoteServiceError(url, 502, str(exc), reason="unreachable") from exc
        text = resp.text
        if resp.is_error:
            raise RemoteServiceError(url, resp.status_code, text, reason=resp.reason_phrase)
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"JSON parse error from {url}: {exc}") from exc

    async def create_thread(self) -> Thread:
        data = await self._request("POST", "/threads")
        return parse_payload(Thread, data, "/threads")

    async def add_message(self, thread_id: str, content: str) -> None:
        await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            payload={"role": "user", "content": content},
        )

    async def create_run(self, thread_id: str, instructions: Optional[str] = None) -> Run:
        body: Dict[str, Any] = {"assistant_id": self.assistant_id}
        if instructions:
            body["instructions"] = instructions
        path = f"/threads/{thread_id}/runs"
        data = await self._request("POST", path, payload=body)
        return parse_payload(Run, data, path)

    async def get_run(self, thread_id: str, run_id: str) -> Run:
        path = f"/threads/{thread_id}/runs/{run_id}"
        data = await self._request("GET", path)
        return parse_payload(Run, data, path)

    async def latest_message(self, thread_id: str) -> Optional[ThreadMessage]:
        path = f"/threads/{thread_id}/messages"
        data = await self._request("GET", path, params={"order": "desc", "limit": 1})
        listing = parse_payload(MessageList, data, path)
        return listing.data[0] if listing.data else None

    async def get_file(self, file_id: str) -> FileInfo:
        path = f"/files/{file_id}"
        data = await self._request("GET", path)
        return parse_payload(FileInfo, data, path)

    async def fetch_file_content(self, file_id: str) -> Tuple[int, str, bytes]:
        """Raw download for the file proxy route; status is passed through untouched."""
        url = f"{self.base_url}/files/{file_id}/content"
        headers = {"Authorization": f"Bearer {self.api_key}", "OpenAI-Beta": "assistants=v2"}
        try:
            resp = await self.client.get(url, headers=headers, timeout=self.timeout_s)
        except httpx.RequestError as exc:
            raise RemoteServiceError(url, 502, str(exc), reason="unreachable") from exc
        content_type = resp.headers.get("content-type") or "application/octet-stream"
        return resp.status_code, content_type, resp.content

    async def close(self) -> None:
        # Safe to call multiple times
        if not self.client.is_closed:
            await self.client.aclose()

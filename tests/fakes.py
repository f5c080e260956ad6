from typing import Any, Dict, List, Optional, Tuple

from mascot.errors import RemoteServiceError
from mascot.schemas import FileInfo, Run, RunError, Thread, ThreadMessage


def assistant_message(
    text: str,
    *,
    file_ids: Optional[List[str]] = None,
    status: Optional[str] = "completed",
    role: str = "assistant",
) -> ThreadMessage:
    annotations = [
        {"type": "file_citation", "text": f"【4:{idx}†source】", "file_citation": {"file_id": fid}}
        for idx, fid in enumerate(file_ids or [])
    ]
    return ThreadMessage.model_validate(
        {
            "id": "msg_1",
            "role": role,
            "status": status,
            "content": [{"type": "text", "text": {"value": text, "annotations": annotations}}],
        }
    )


class FakeClock:
    """Monotonic clock whose sleep only advances time."""

    def __init__(self, start: float = 1000.0, call_cost: float = 0.0) -> None:
        self.now = start
        self.call_cost = call_cost
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAssistantsClient:
    def __init__(
        self,
        statuses: Optional[List[str]] = None,
        reply: Optional[ThreadMessage] = None,
        last_error: Optional[str] = None,
        peek_messages: Optional[List[Optional[ThreadMessage]]] = None,
        files: Optional[Dict[str, str]] = None,
        clock: Optional[FakeClock] = None,
    ) -> None:
        self.statuses = list(statuses or ["completed"])
        self.reply = reply if reply is not None else assistant_message("Hello from the assistant.")
        self.last_error = last_error
        self.peek_messages = list(peek_messages or [])
        self.files = files or {}
        self.clock = clock
        self.calls: List[Tuple[str, Any]] = []
        self.thread_counter = 0
        self.closed = False

    def _tick(self) -> None:
        if self.clock is not None and self.clock.call_cost:
            self.clock.advance(self.clock.call_cost)

    async def create_thread(self) -> Thread:
        self.thread_counter += 1
        thread_id = f"thread_{self.thread_counter}"
        self.calls.append(("create_thread", thread_id))
        return Thread(id=thread_id)

    async def add_message(self, thread_id: str, content: str) -> None:
        self.calls.append(("add_message", {"thread_id": thread_id, "content": content}))

    async def create_run(self, thread_id: str, instructions: Optional[str] = None) -> Run:
        self.calls.append(("create_run", {"thread_id": thread_id, "instructions": instructions}))
        return Run(id="run_1", status="queued")

    async def get_run(self, thread_id: str, run_id: str) -> Run:
        self._tick()
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        self.calls.append(("get_run", status))
        error = RunError(code="rate_limit_exceeded", message=self.last_error) if self.last_error else None
        return Run(id=run_id, status=status, last_error=error)

    async def latest_message(self, thread_id: str) -> Optional[ThreadMessage]:
        self._tick()
        self.calls.append(("latest_message", thread_id))
        if self.peek_messages:
            return self.peek_messages.pop(0) if len(self.peek_messages) > 1 else self.peek_messages[0]
        return self.reply

    async def get_file(self, file_id: str) -> FileInfo:
        self.calls.append(("get_file", file_id))
        if file_id not in self.files:
            raise RemoteServiceError(f"http://assistants.test/files/{file_id}", 404, "not found")
        return FileInfo(id=file_id, filename=self.files[file_id])

    async def fetch_file_content(self, file_id: str) -> Tuple[int, str, bytes]:
        self.calls.append(("fetch_file_content", file_id))
        if file_id in self.files:
            return 200, "application/pdf", b"%PDF-1.4 fake"
        return 404, "application/json", b'{"error": "No such file"}'

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def close(self) -> None:
        self.closed = True

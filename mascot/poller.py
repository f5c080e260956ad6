import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from .assistants import AssistantsClient
from .errors import RunFailedError, RunTimeoutError, UnsupportedRunStateError
from .schemas import Run, RunStatus, ThreadMessage

logger = logging.getLogger("uvicorn.error")

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class Completed:
    thread_id: str
    run: Optional[Run] = None
    message: Optional[ThreadMessage] = None
    polls: int = 0


@dataclass(frozen=True)
class Pending:
    thread_id: str
    polls: int = 0


PollOutcome = Union[Completed, Pending]


class Backoff:
    """Exponential delay schedule, capped per step."""

    def __init__(self, initial_s: float = 0.7, factor: float = 1.3, max_s: float = 2.2):
        self.initial_s = initial_s
        self.factor = factor
        self.max_s = max_s
        self.current = min(initial_s, max_s)

    def next_delay(self) -> float:
        delay = self.current
        self.current = min(self.max_s, self.current * self.factor)
        return delay


def check_run_status(run: Run) -> bool:
    """True when the run completed; raise for the other terminal states."""
    status = run.status
    if status == RunStatus.COMPLETED.value:
        return True
    if status == RunStatus.FAILED.value:
        message = run.last_error.message if run.last_error and run.last_error.message else None
        raise RunFailedError(message or "Assistant run failed")
    if status in (RunStatus.EXPIRED.value, RunStatus.CANCELLED.value):
        raise RunTimeoutError(f"Run {status}")
    if status == RunStatus.REQUIRES_ACTION.value:
        raise UnsupportedRunStateError("Run requires action (tools not handled).")
    if status not in (RunStatus.QUEUED.value, RunStatus.IN_PROGRESS.value):
        logger.debug("Run %s reported unrecognised status %s; still waiting", run.id, status)
    return False


def is_finished_reply(message: Optional[ThreadMessage]) -> bool:
    # Assistant messages are created "in_progress" while the run is still writing them.
    if message is None or message.role != "assistant":
        return False
    return message.status in (None, "completed")


class RunPoller:
    """Waits for a remote run under a wall-clock deadline.

    Every wait is capped at the time left before the deadline, so a call never
    outlives ``deadline + one poll`` and an unfinished run yields ``Pending``
    instead of an error. Clock and sleep are injectable for tests.
    """

    def __init__(
        self,
        client: AssistantsClient,
        *,
        deadline_s: float = 55.0,
        peek_deadline_s: Optional[float] = None,
        initial_delay_s: float = 0.7,
        backoff_factor: float = 1.3,
        max_delay_s: float = 2.2,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.client = client
        self.deadline_s = deadline_s
        self.peek_deadline_s = deadline_s if peek_deadline_s is None else peek_deadline_s
        self.initial_delay_s = initial_delay_s
        self.backoff_factor = backoff_factor
        self.max_delay_s = max_delay_s
        self.clock = clock
        self.sleep = sleep

    def _backoff(self) -> Backoff:
        return Backoff(self.initial_delay_s, self.backoff_factor, self.max_delay_s)

    async def _wait(self, backoff: Backoff, deadline_at: float) -> bool:
        remaining = deadline_at - self.clock()
        if remaining <= 0:
            return False
        await self.sleep(min(backoff.next_delay(), remaining))
        return True

    async def await_completion(
        self, thread_id: str, run_id: str, deadline_s: Optional[float] = None
    ) -> PollOutcome:
        budget = self.deadline_s if deadline_s is None else deadline_s
        deadline_at = self.clock() + budget
        backoff = self._backoff()
        polls = 0
        while await self._wait(backoff, deadline_at):
            run = await self.client.get_run(thread_id, run_id)
            polls += 1
            if check_run_status(run):
                logger.info("Run %s on thread %s completed after %d polls", run_id, thread_id, polls)
                return Completed(thread_id=thread_id, run=run, polls=polls)
        logger.info("Run %s on thread %s still pending after %.1fs", run_id, thread_id, budget)
        return Pending(thread_id=thread_id, polls=polls)

    async def peek(self, thread_id: str, deadline_s: Optional[float] = None) -> PollOutcome:
        """Only look for an assistant reply as the newest message; never starts a run."""
        budget = self.peek_deadline_s if deadline_s is None else deadline_s
        deadline_at = self.clock() + budget
        backoff = self._backoff()
        polls = 0
        while await self._wait(backoff, deadline_at):
            message = await self.client.latest_message(thread_id)
            polls += 1
            if is_finished_reply(message):
                return Completed(thread_id=thread_id, message=message, polls=polls)
        logger.info("Peek on thread %s found no reply within %.1fs", thread_id, budget)
        return Pending(thread_id=thread_id, polls=polls)

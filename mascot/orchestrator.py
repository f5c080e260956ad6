import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, cast

from .assembler import extract_output, safe_assemble
from .assistants import AssistantsClient
from .categories import resolve_category
from .config import AppSettings
from .curation import curate_sources, file_sources
from .errors import MascotError, RegistryLoadError, RequestValidationError
from .liveness import LinkValidator
from .poller import Pending, RunPoller
from .registry import LinkRegistry
from .schemas import CuratedSource, MascotRequest, ThreadMessage

logger = logging.getLogger("uvicorn.error")

FOLLOWUP_INSTRUCTIONS = """
FOLLOW-UP MODE:
Return ONLY these two sections using markdown headings:
## Why this matters
<≤120 words in plain English>

## Sources
- [Readable title 1](https://valid.au.url/...)
- [Readable title 2](https://valid.au.url/...)
(3–5 items, markdown links only)

End with: "Information only — not a medical diagnosis. In an emergency call 000."
"""


@dataclass(frozen=True)
class SubmittedTurn:
    thread_id: str
    run_id: str
    first_turn: bool


@dataclass
class TurnResult:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


async def submit_turn(
    client: AssistantsClient,
    thread_id: Optional[str],
    message: str,
    followup: bool = False,
) -> SubmittedTurn:
    """Create or reuse a thread, append the user message and start a run.

    A missing thread id marks the first turn; follow-up instructions are never
    sent on the first turn so a confused client cannot truncate the first answer.
    """
    first_turn = not thread_id
    if not thread_id:
        thread = await client.create_thread()
        thread_id = thread.id
        logger.info("Created thread %s", thread_id)
    await client.add_message(thread_id, message)
    instructions = FOLLOWUP_INSTRUCTIONS if followup and not first_turn else None
    run = await client.create_run(thread_id, instructions=instructions)
    logger.info(
        "Started run %s on thread %s (followup=%s, first_turn=%s)",
        run.id,
        thread_id,
        bool(instructions),
        first_turn,
    )
    return SubmittedTurn(thread_id=thread_id, run_id=run.id, first_turn=first_turn)


def validate_request(req: MascotRequest) -> None:
    if req.peek:
        if not req.thread_id:
            raise RequestValidationError("Missing thread_id")
        return
    if not (req.message or "").strip():
        raise RequestValidationError("Missing message")


class MascotService:
    """One widget turn: submit or peek, wait under the deadline, then attach sources."""

    def __init__(
        self,
        settings: AppSettings,
        client: AssistantsClient,
        poller: RunPoller,
        registry: LinkRegistry,
        validator: Optional[LinkValidator] = None,
    ):
        self.settings = settings
        self.client = client
        self.poller = poller
        self.registry = registry
        self.validator = validator

    async def handle(self, req: MascotRequest, origin: Optional[str] = None) -> TurnResult:
        validate_request(req)
        self.settings.require_remote()
        category = resolve_category(req.category_label, req.message)

        if req.peek:
            outcome = await self.poller.peek(cast(str, req.thread_id))
            if isinstance(outcome, Pending):
                return TurnResult(202, {"pending": True, "thread_id": outcome.thread_id})
            message = outcome.message
            thread_id = outcome.thread_id
        else:
            turn = await submit_turn(self.client, req.thread_id, cast(str, req.message), req.followup)
            outcome = await self.poller.await_completion(turn.thread_id, turn.run_id)
            if isinstance(outcome, Pending):
                return TurnResult(202, {"pending": True, "thread_id": turn.thread_id})
            message = await self.client.latest_message(turn.thread_id)
            thread_id = turn.thread_id

        raw_output = extract_output(message)
        sources = await self.collect_sources(req.message, category, message, origin)
        output = safe_assemble(raw_output, sources)
        return TurnResult(
            200,
            {"output": output, "sources": [src.public() for src in sources], "thread_id": thread_id},
        )

    async def collect_sources(
        self,
        prompt: Optional[str],
        category: Optional[str],
        message: Optional[ThreadMessage],
        origin: Optional[str],
    ) -> List[CuratedSource]:
        sources: List[CuratedSource] = []
        if prompt:
            sources = await self.curate(prompt, category, origin)
        if message is not None:
            cited = await self.resolve_file_citations(message)
            sources = file_sources(cited, sources, self.settings.max_sources)
        if self.validator is not None and sources:
            try:
                sources = await self.validator.filter_sources(sources)
            except Exception as exc:
                logger.warning("Link verification failed, keeping unverified sources: %s", exc)
        return sources

    async def curate(self, prompt: str, category: Optional[str], origin: Optional[str]) -> List[CuratedSource]:
        try:
            entries = await self.registry.load(origin)
            return curate_sources(
                entries,
                category,
                prompt,
                max_sources=self.settings.max_sources,
                preferred_ids=self.settings.preferred_source_ids,
            )
        except RegistryLoadError as exc:
            logger.warning("Link registry unavailable: %s", exc)
            return []
        except Exception:
            logger.exception("Source curation failed")
            return []

    async def resolve_file_citations(self, message: ThreadMessage) -> List[CuratedSource]:
        """Best-effort filenames for file citations; lookup failures fall back to the id."""
        resolved: List[CuratedSource] = []
        seen = set()
        for annotation in message.annotations:
            citation = annotation.file_citation
            if annotation.type != "file_citation" or citation is None or citation.file_id in seen:
                continue
            seen.add(citation.file_id)
            title = citation.file_id
            try:
                info = await self.client.get_file(citation.file_id)
                title = info.filename or title
            except MascotError as exc:
                logger.warning("File lookup for %s failed: %s", citation.file_id, exc.message)
            resolved.append(CuratedSource(id=citation.file_id, title=title, file_id=citation.file_id))
        return resolved

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    REQUIRES_ACTION = "requires_action"


NON_TERMINAL_STATUSES = {RunStatus.QUEUED.value, RunStatus.IN_PROGRESS.value}


class MascotRequest(BaseModel):
    message: Optional[str] = None
    thread_id: Optional[str] = None
    followup: bool = False
    category_label: Optional[str] = Field(default=None, alias="categoryLabel")
    peek: bool = False

    model_config = {"populate_by_name": True, "extra": "ignore"}


# --- Remote (assistants API) shapes ---


class Thread(BaseModel):
    id: str

    model_config = {"extra": "ignore"}


class RunError(BaseModel):
    code: Optional[str] = None
    message: Optional[str] = None


class Run(BaseModel):
    id: str
    status: str
    last_error: Optional[RunError] = None

    model_config = {"extra": "ignore"}

    @property
    def is_terminal(self) -> bool:
        return self.status not in NON_TERMINAL_STATUSES


class FileCitation(BaseModel):
    file_id: str
    quote: Optional[str] = None


class Annotation(BaseModel):
    type: str
    text: Optional[str] = None
    file_citation: Optional[FileCitation] = None

    model_config = {"extra": "ignore"}


class TextBlock(BaseModel):
    value: str = ""
    annotations: List[Annotation] = Field(default_factory=list)


class ContentPart(BaseModel):
    type: str
    text: Optional[TextBlock] = None

    model_config = {"extra": "ignore"}


class ThreadMessage(BaseModel):
    id: Optional[str] = None
    role: str
    status: Optional[str] = None
    content: List[ContentPart] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    def text_block(self) -> Optional[TextBlock]:
        for part in self.content:
            if part.type == "text" and part.text is not None and part.text.value:
                return part.text
        return None

    @property
    def text(self) -> Optional[str]:
        block = self.text_block()
        return block.value if block else None

    @property
    def annotations(self) -> List[Annotation]:
        block = self.text_block()
        return list(block.annotations) if block else []


class MessageList(BaseModel):
    data: List[ThreadMessage] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class FileInfo(BaseModel):
    id: str
    filename: Optional[str] = None

    model_config = {"extra": "ignore"}


# --- Link registry / curation ---


class RegistryEntry(BaseModel):
    id: str
    title: str = ""
    url: Optional[str] = None
    domain: Optional[str] = None
    category: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("category", "keywords", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, list):
            return [str(item) for item in value if item]
        return value


class CuratedSource(BaseModel):
    id: Optional[str] = None
    title: str
    url: Optional[str] = None
    domain: Optional[str] = None
    file_id: Optional[str] = None

    def public(self) -> dict:
        return self.model_dump(exclude_none=True)

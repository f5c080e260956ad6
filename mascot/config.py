import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import ConfigurationError

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "MASCOT_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}


class PollingConfig(BaseModel):
    deadline_s: float = 55.0
    peek_deadline_s: Optional[float] = None
    initial_delay_ms: int = 700
    backoff_factor: float = 1.3
    max_delay_ms: int = 2200

    @property
    def effective_peek_deadline_s(self) -> float:
        if self.peek_deadline_s is None:
            return self.deadline_s
        return self.peek_deadline_s


class AppSettings(BaseModel):
    openai_api_key: Optional[str] = None
    assistant_id: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    remote_timeout_s: float = 20.0

    links_url: str = "/links.json"
    links_path: Optional[str] = None
    registry_ttl_s: float = 300.0
    registry_timeout_s: float = 5.0

    polling: PollingConfig = Field(default_factory=PollingConfig)

    max_sources: int = 4
    preferred_source_ids: List[str] = Field(default_factory=list)
    verify_links: bool = False
    link_check_timeout_s: float = 4.5
    link_cache_ttl_s: float = 24 * 60 * 60

    host: str = "0.0.0.0"
    port: int = 8000

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        if data.get("openai_api_key"):
            data["openai_api_key"] = "********"
        return data

    @property
    def configured(self) -> bool:
        return bool(self.openai_api_key and self.assistant_id)

    def require_remote(self) -> None:
        """Fail fast before any network call when credentials are missing."""
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.assistant_id:
            missing.append("OPENAI_ASSISTANT_ID")
        if missing:
            raise ConfigurationError(f"Missing configuration: {', '.join(missing)}")


_INT_FIELDS = ("port", "max_sources")
_FLOAT_FIELDS = (
    "remote_timeout_s",
    "registry_ttl_s",
    "registry_timeout_s",
    "link_check_timeout_s",
    "link_cache_ttl_s",
)
_POLLING_ENV = {
    "deadline_s": ("POLL_DEADLINE_S", float),
    "peek_deadline_s": ("PEEK_DEADLINE_S", float),
    "initial_delay_ms": ("POLL_INITIAL_DELAY_MS", int),
    "backoff_factor": ("POLL_BACKOFF_FACTOR", float),
    "max_delay_ms": ("POLL_MAX_DELAY_MS", int),
}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "openai_api_key": os.getenv("OPENAI_API_KEY"),
        "assistant_id": os.getenv("OPENAI_ASSISTANT_ID"),
        "openai_base_url": os.getenv("OPENAI_BASE_URL"),
        "remote_timeout_s": os.getenv("REMOTE_TIMEOUT_S"),
        "links_url": os.getenv("LINKS_URL"),
        "links_path": os.getenv("LINKS_PATH"),
        "registry_ttl_s": os.getenv("REGISTRY_TTL_S"),
        "registry_timeout_s": os.getenv("REGISTRY_TIMEOUT_S"),
        "max_sources": os.getenv("MAX_SOURCES"),
        "preferred_source_ids": os.getenv("PREFERRED_SOURCE_IDS"),
        "verify_links": os.getenv("VERIFY_LINKS"),
        "link_check_timeout_s": os.getenv("LINK_CHECK_TIMEOUT_S"),
        "link_cache_ttl_s": os.getenv("LINK_CACHE_TTL_S"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
    }
    cleaned: Dict[str, Any] = {k: v for k, v in env_map.items() if v not in (None, "")}
    for key in _INT_FIELDS:
        if key in cleaned:
            cleaned[key] = int(cleaned[key])
    for key in _FLOAT_FIELDS:
        if key in cleaned:
            cleaned[key] = float(cleaned[key])
    if "verify_links" in cleaned:
        cleaned["verify_links"] = str(cleaned["verify_links"]).lower() in ENV_OVERRIDE_TRUE
    if "preferred_source_ids" in cleaned:
        cleaned["preferred_source_ids"] = [
            part.strip() for part in cleaned["preferred_source_ids"].split(",") if part.strip()
        ]
    polling: Dict[str, Any] = {}
    for field_name, (env_key, cast) in _POLLING_ENV.items():
        raw = os.getenv(env_key)
        if raw not in (None, ""):
            polling[field_name] = cast(raw)
    if polling:
        cleaned["polling"] = polling
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except json.JSONDecodeError:
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        merged = {**file_data, **env_data}
        polling = {**(file_data.get("polling") or {}), **(env_data.get("polling") or {})}
    else:
        merged = {**env_data, **file_data}
        polling = {**(env_data.get("polling") or {}), **(file_data.get("polling") or {})}
    if polling:
        merged["polling"] = polling
    # Secrets usually live only in the environment.
    if not merged.get("openai_api_key") and env_data.get("openai_api_key"):
        merged["openai_api_key"] = env_data["openai_api_key"]
    return AppSettings(**merged)

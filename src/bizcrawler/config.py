import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# --- Defaults ---
DEFAULT_DENY_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.svg', '.webp', '.ico', '.bmp',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.tar', '.gz', '.rar', '.7z', '.dmg', '.exe', '.iso',
    '.mp4', '.avi', '.mov', '.mp3', '.wav',
    '.css', '.js', '.xml', '.rss',
)
LLM_API_KEY_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}
DEFAULT_LLM_MODELS = {
    "anthropic": "claude-3-5-sonnet-latest",
    "google": "gemini-1.5-flash-latest",
    "deepseek": "deepseek-chat",
}
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
# --- End Defaults ---


def _getenv_str(name: str, default: str = "") -> str:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else default


def _getenv_int(name: str, default: int, *, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    try:
        value = int(raw) if raw not in (None, "") else default
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}. Using default {default}.")
        value = default
    if minimum is not None:
        value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _getenv_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        return float(raw) if raw not in (None, "") else default
    except ValueError:
        logger.warning(f"Invalid number for {name}: {raw!r}. Using default {default}.")
        return default


def _getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _getenv_csv(name: str, default: Tuple[str, ...] = ()) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    # LLM
    llm_mode: str = "anthropic"
    llm_model: Optional[str] = None
    llm_temperature: float = 0.1
    llm_max_tokens: int = 1024
    anthropic_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    deepseek_api_key: Optional[str] = None
    deepseek_api_base: Optional[str] = None
    max_content_length: int = 15000

    # Crawl
    concurrency: int = 3
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_jitter: float = 0.5
    navigation_timeout_ms: int = 60000
    run_timeout_secs: Optional[float] = 3600.0
    deny_extensions: Tuple[str, ...] = DEFAULT_DENY_EXTENSIONS

    # Browser / egress
    headless: bool = True
    block_resources: bool = True
    user_agent: str = USER_AGENT
    proxy_urls: Tuple[str, ...] = ()

    # Storage
    storage_dir: Path = Path("storage")

    @property
    def api_key(self) -> Optional[str]:
        return {
            "anthropic": self.anthropic_api_key,
            "google": self.google_api_key,
            "deepseek": self.deepseek_api_key,
        }.get(self.llm_mode)

    @property
    def model_name(self) -> str:
        return self.llm_model or DEFAULT_LLM_MODELS.get(self.llm_mode, "")

    def require_credentials(self) -> None:
        """Fail fast when the selected LLM provider has no API key."""
        if self.llm_mode not in LLM_API_KEY_VARS:
            raise ConfigurationError(
                f"Invalid LLM_MODE '{self.llm_mode}'. Use one of: {', '.join(sorted(LLM_API_KEY_VARS))}."
            )
        if not self.api_key:
            raise ConfigurationError(
                f"{LLM_API_KEY_VARS[self.llm_mode]} must be set for LLM_MODE '{self.llm_mode}' (environment or .env file)."
            )


def load_settings() -> Settings:
    """Build Settings from the environment (and a .env file when present)."""
    load_dotenv()
    run_timeout = _getenv_float("RUN_TIMEOUT_SECS", 3600.0)
    return Settings(
        llm_mode=_getenv_str("LLM_MODE", "anthropic").lower(),
        llm_model=_getenv_str("LLM_MODEL") or None,
        llm_temperature=_getenv_float("LLM_TEMPERATURE", 0.1),
        llm_max_tokens=_getenv_int("LLM_MAX_TOKENS", 1024, minimum=1),
        anthropic_api_key=_getenv_str("ANTHROPIC_API_KEY") or None,
        google_api_key=_getenv_str("GOOGLE_API_KEY") or None,
        deepseek_api_key=_getenv_str("DEEPSEEK_API_KEY") or None,
        deepseek_api_base=_getenv_str("DEEPSEEK_API_BASE") or None,
        max_content_length=_getenv_int("MAX_CONTENT_LENGTH", 15000, minimum=1),
        concurrency=_getenv_int("CRAWL_CONCURRENCY", 3, minimum=1, maximum=10),
        max_attempts=_getenv_int("MAX_ATTEMPTS", 3, minimum=1),
        retry_base_delay=max(0.0, _getenv_float("RETRY_BASE_DELAY", 1.0)),
        retry_max_delay=max(0.0, _getenv_float("RETRY_MAX_DELAY", 30.0)),
        retry_jitter=max(0.0, _getenv_float("RETRY_JITTER", 0.5)),
        navigation_timeout_ms=_getenv_int("NAVIGATION_TIMEOUT_MS", 60000, minimum=1000),
        run_timeout_secs=run_timeout if run_timeout > 0 else None,
        deny_extensions=tuple(ext.lower() if ext.startswith(".") else f".{ext.lower()}"
                              for ext in _getenv_csv("DENY_EXTENSIONS", DEFAULT_DENY_EXTENSIONS)),
        headless=_getenv_bool("HEADLESS", True),
        block_resources=_getenv_bool("BLOCK_RESOURCES", True),
        user_agent=_getenv_str("USER_AGENT", USER_AGENT),
        proxy_urls=_getenv_csv("PROXY_URLS"),
        storage_dir=Path(_getenv_str("STORAGE_DIR", "storage")),
    )


class JobInput(BaseModel):
    """Input of one crawl job, accepted in the camelCase form used by job files."""
    model_config = ConfigDict(populate_by_name=True)

    start_urls: List[str] = Field(default_factory=list, alias="startUrls", validate_default=True)
    max_pages_to_crawl: int = Field(default=1, alias="maxPagesToCrawl")
    include_screenshots: bool = Field(default=False, alias="includeScreenshots")

    @field_validator('start_urls', mode='before')
    @classmethod
    def flatten_start_urls(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        urls = []
        for item in v:
            # Accept both "https://..." and {"url": "https://..."}
            url = item.get("url") if isinstance(item, dict) else item
            if isinstance(url, str) and url.strip():
                urls.append(url.strip())
        return urls

    @field_validator('start_urls')
    @classmethod
    def validate_start_urls(cls, v):
        if not v:
            raise ValueError('At least one URL must be provided in startUrls')
        return v

    @field_validator('max_pages_to_crawl')
    @classmethod
    def validate_max_pages(cls, v):
        if v < 1:
            raise ValueError('maxPagesToCrawl must be at least 1')
        return v

    def snapshot(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def load_job_input(data: Optional[Dict[str, Any]]) -> JobInput:
    """Validate raw job input, turning validation problems into ConfigurationError."""
    if isinstance(data, JobInput):
        return data
    try:
        return JobInput.model_validate(data or {})
    except ValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        raise ConfigurationError(f"Invalid job input: {messages}") from e

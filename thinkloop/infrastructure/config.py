import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ENV_PREFIX = "THINKLOOP_"


class MemoryCategoryConfig(BaseModel):
    name: str
    subcategory: str
    description: str = ""


DEFAULT_MEMORY_CATEGORIES = [
    MemoryCategoryConfig(name="profiles", subcategory="basic", description="Facts about the user"),
    MemoryCategoryConfig(name="profiles", subcategory="work", description="Work, projects and colleagues"),
    MemoryCategoryConfig(name="preferences", subcategory="hobbies", description="Interests and tastes"),
    MemoryCategoryConfig(name="resources", subcategory="notes", description="Saved notes and snippets"),
    MemoryCategoryConfig(name="events", subcategory="personal", description="Things that happened"),
]


class Settings(BaseModel):
    """Runtime configuration for the agent backend"""

    service_name: str = "thinkloop"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    log_format: str = "json"

    model: str = "gpt-4o"
    alt_model: Optional[str] = "gpt-4o-mini"
    plan_model: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"

    max_steps: int = Field(default=5, ge=1)
    max_idle_steps: int = Field(default=3, ge=1)
    max_recursion_steps: int = Field(default=25, ge=1)
    max_tool_context: int = Field(default=10, ge=1)
    context_tools: List[str] = Field(default_factory=lambda: ["memory", "calendar", "linear"])
    tool_timeout_seconds: float = Field(default=30.0, gt=0)

    search_default_limit: int = Field(default=15, ge=1)
    memory_search_limit: int = Field(default=5, ge=1)
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_check_period_seconds: float = Field(default=60.0, gt=0)
    memory_categories: List[MemoryCategoryConfig] = Field(
        default_factory=lambda: list(DEFAULT_MEMORY_CATEGORIES)
    )

    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[str] = None
    langfuse_host: Optional[str] = None

    @property
    def langfuse_enabled(self) -> bool:
        return bool(self.langfuse_public_key and self.langfuse_secret_key)

    @property
    def planning_model(self) -> str:
        return self.plan_model or self.model


def _env_overrides(fields: Dict[str, Any]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for name in fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is None or raw == "":
            continue
        if name == "context_tools":
            overrides[name] = [item.strip() for item in raw.split(",") if item.strip()]
        else:
            overrides[name] = raw
    return overrides


def load_settings(env_file: Optional[str] = None, **overrides: Any) -> Settings:
    """Build Settings from the environment (and an optional .env file)"""

    load_dotenv(env_file)
    values = _env_overrides(Settings.model_fields)
    values.pop("memory_categories", None)
    values.update(overrides)
    return Settings(**values)

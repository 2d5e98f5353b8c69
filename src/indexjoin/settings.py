"""Runtime settings loaded from environment variables."""
import json
from functools import lru_cache
from typing import Annotated, Any, List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Comma-separated or JSON array in the environment
StrList = Annotated[List[str], NoDecode]


class EngineSettings(BaseSettings):
    """Runtime configuration for the join engine, its search backend and HTTP service."""

    model_config = SettingsConfigDict(env_prefix="INDEXJOIN_", env_file=".env", extra="ignore")

    # Search engine connection
    es_host: str = Field(default="http://localhost:9200", description="Elasticsearch base URL.")
    es_username: Optional[str] = Field(default=None, description="Basic auth user name.")
    es_password: Optional[str] = Field(default=None, description="Basic auth password.")
    es_api_key: Optional[str] = Field(default=None, description="API key, takes precedence over basic auth.")
    es_ca_cert: Optional[str] = Field(default=None, description="Path to a CA bundle for TLS verification.")
    es_request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds.")
    es_allowed_indices: StrList = Field(
        default_factory=list,
        description="Indices the engine may query. Empty means no restriction.",
    )
    stored_query_index: str = Field(default="saved_queries", description="Index holding stored queries.")

    # Join engine limits
    preview_fetch_limit: int = Field(default=1000, ge=1, le=1000)
    preview_sample_size: int = Field(default=20, ge=1, le=1000)
    preview_top_keys: int = Field(default=10, ge=1)
    result_top_keys: int = Field(default=10, ge=1)
    key_mode: Literal["typed", "string"] = Field(
        default="typed",
        description="'typed' compares keys by kind and value, 'string' stringifies every key first.",
    )
    fetch_workers: int = Field(default=2, ge=1, description="Concurrent fetches per join stage.")
    strict_fields: bool = Field(default=False, description="Check join fields against index mappings before fetching.")

    # Service
    project_name: str = Field(default="indexjoin")
    allow_origins: StrList = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = Field(default="INFO")

    @field_validator("es_allowed_indices", "allow_origins", mode="before")
    @classmethod
    def split_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


@lru_cache
def get_settings() -> EngineSettings:
    """Return cached settings."""
    return EngineSettings()

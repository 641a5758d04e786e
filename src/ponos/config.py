"""Strict validation for worker options and environment settings."""

import sys
from collections.abc import Callable
from functools import lru_cache
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import WorkerConfigError

FALSY_STRINGS = {"", "0", "false", "no", "off"}


class WorkerSettings(BaseSettings):
    """Process environment overrides for workers.

    Read once when a worker is created; a running worker never consults the
    environment again.
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    timeout: int = Field(
        default=0,
        ge=0,
        description="Default task timeout in milliseconds (0 disables the timeout)",
    )

    monitor_disabled: bool = Field(
        default=False,
        description="Suppress every call to the metrics client",
    )

    min_retry_delay: int = Field(
        default=1,
        ge=1,
        description="Initial retry delay in milliseconds",
    )

    max_retry_delay: int = Field(
        default=sys.maxsize,
        ge=0,
        description="Ceiling on the retry delay in milliseconds",
    )

    max_num_retries: int = Field(
        default=sys.maxsize,
        ge=0,
        description="Number of attempts after which a job is stopped",
    )

    @field_validator("monitor_disabled", mode="before")
    @classmethod
    def parse_truthy(cls, v: Any) -> bool:
        """Treat any non-empty, non-falsy string as set."""
        if isinstance(v, str):
            return v.strip().lower() not in FALSY_STRINGS
        return bool(v)


class WorkerOptions(BaseModel):
    """Options for a single worker, validated once at construction."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    queue: str = Field(min_length=1)
    task: Callable[..., Any]
    job: Any
    log: Any
    done: Callable[..., Any]

    job_schema: Any = None
    ms_timeout: NonNegativeInt | None = None
    error_cat: Any = None
    monitor: Any = None
    max_num_retries: NonNegativeInt | None = None
    max_retry_delay: NonNegativeInt | None = None
    final_retry_fn: Callable[..., Any] | None = None

    @field_validator("log")
    @classmethod
    def validate_log(cls, v: Any) -> Any:
        """Worker derives its own logger through ``child()``."""
        if not callable(getattr(v, "child", None)):
            raise ValueError("must expose a child() method")
        return v

    @field_validator("job_schema")
    @classmethod
    def validate_job_schema(cls, v: Any) -> TypeAdapter[Any] | None:
        """Accept a TypeAdapter or a BaseModel subclass; normalize to a TypeAdapter."""
        if v is None or isinstance(v, TypeAdapter):
            return v
        if isinstance(v, type) and issubclass(v, BaseModel):
            return TypeAdapter(v)
        raise ValueError("must be a pydantic TypeAdapter or BaseModel subclass")


def _describe(error: dict[str, Any]) -> str:
    """Render one pydantic error as ``"field" <problem>``."""
    field = ".".join(str(part) for part in error["loc"]) or "options"
    kind = error["type"]
    if kind == "missing":
        problem = "is required"
    elif kind == "extra_forbidden":
        problem = "is not allowed"
    elif kind in ("int_parsing", "int_type", "int_from_float"):
        problem = "must be a number"
    elif kind == "greater_than_equal":
        problem = f"must be larger than or equal to {error['ctx']['ge']}"
    elif kind == "value_error":
        problem = str(error["ctx"]["error"])
    else:
        problem = error["msg"]
    return f'"{field}" {problem}'


def _config_error(e: ValidationError) -> WorkerConfigError:
    errors = e.errors()
    return WorkerConfigError(
        "; ".join(_describe(error) for error in errors),
        data={"fields": [".".join(str(p) for p in error["loc"]) for error in errors]},
    )


def validate_options(options: dict[str, Any]) -> WorkerOptions:
    """Validate raw worker options.

    Raises:
        WorkerConfigError: naming every missing or invalid field
    """
    try:
        return WorkerOptions(**options)
    except ValidationError as e:
        raise _config_error(e) from e


@lru_cache(maxsize=1)
def load_settings() -> WorkerSettings:
    """Read worker settings from the environment, once per process.

    Call ``load_settings.cache_clear()`` to pick up changed variables.

    Raises:
        WorkerConfigError: If an environment override is malformed
    """
    try:
        return WorkerSettings()
    except ValidationError as e:
        raise _config_error(e) from e

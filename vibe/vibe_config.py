"""
Configuration surface for the vibe runtime.

Precedence: explicit keyword > environment variable > ``vibe.yaml`` in the
working directory > built-in default.
"""
from __future__ import annotations

import os
import sys
import logging
from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict, YamlConfigSettingsSource


class VibeSettings(BaseSettings):
    """Settings for the generator, the stores and the executor."""

    model_config = SettingsConfigDict(
        yaml_file="vibe.yaml",
        extra="ignore",
        populate_by_name=True,
    )

    # Generator
    api_key: str = Field("", validation_alias="LLM_API_KEY")
    model: str = Field("gpt-4", validation_alias="LLM_MODEL")
    base_url: str = Field("https://api.openai.com/v1", validation_alias="LLM_BASE_URL")
    temperature: float = Field(0.6, validation_alias="LLM_TEMPERATURE")
    max_tokens: int = Field(2000, validation_alias="LLM_MAX_TOKENS")
    timeout: float = Field(60.0, validation_alias="LLM_TIMEOUT")

    # Stores
    cache_dir: str = Field(".vibe/cache", validation_alias="CACHE_DIR")
    log_dir: Optional[str] = Field(None, validation_alias="LOG_DIR")

    # Validation and execution
    strict: bool = Field(False, validation_alias="STRICT")
    max_depth: int = Field(5, ge=1, validation_alias="VIBE_MAX_DEPTH")
    enforce_depth: bool = Field(True, validation_alias="VIBE_ENFORCE_DEPTH")

    log_level: str = Field("WARNING", validation_alias="VIBE_LOG_LEVEL")

    def __init__(self, **values: Any):
        # explicit values are keyed by env name so they merge over the environment source
        aliases = {
            name: info.validation_alias
            for name, info in type(self).model_fields.items()
            if isinstance(info.validation_alias, str)
        }
        super().__init__(**{aliases.get(k, k): v for k, v in values.items()})

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings):
        return (init_settings, env_settings, YamlConfigSettingsSource(settings_cls))

    @property
    def resolved_log_dir(self) -> str:
        """``log_dir`` if set, otherwise a ``logs`` directory beside the cache."""
        if self.log_dir:
            return self.log_dir
        parent = os.path.dirname(os.path.normpath(self.cache_dir))
        return os.path.join(parent, "logs") if parent else "logs"


def configure_logging(level: str | int = "WARNING") -> logging.Logger:
    """Send records of the ``vibe`` logger tree to stderr."""
    logger = logging.getLogger("vibe")
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    if not any(getattr(h, "_vibe_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler._vibe_handler = True
        logger.addHandler(handler)
    return logger


__all__ = ["VibeSettings", "configure_logging"]

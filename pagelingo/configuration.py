"""Prepper-backed configuration loader for pagelingo."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping, Optional, Sequence, Tuple

from dotenv import dotenv_values
from prepper import (
    ConfigNotFound,
    Field,
    IoError,
    SchemaError,
    SchemaModel,
    ValidationError,
    model_validator,
)
from prepper.config import ConfigInstance
from prepper.loaders import _parse_file, _path_to_source, discover_file_paths
from prepper.merge import merge_layer
from prepper.provenance import ProvenanceRecorder

from .batching import ALLOWED_RATIOS
from .errors import ConfigurationError, TranslationProviderConfigurationError
from .structures import RenderMode

APP_NAME = "Pagelingo"


class PagelingoConfig(SchemaModel):
    """Schema describing all supported configuration options."""

    LLM_PROVIDER: Literal["azure_openai", "openai", "echo"] = Field(
        default="openai",
        description="Large language model provider selection.",
    )
    AZURE_OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    AZURE_OPENAI_ENDPOINT: str | None = Field(default=None)
    AZURE_OPENAI_API_VERSION: str | None = Field(default=None)
    AZURE_OPENAI_DEPLOYMENT_NAME: str | None = Field(default=None)
    OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    OPENAI_BASE_URL: str | None = Field(default=None)
    PAGELINGO_MODEL: str | None = Field(default=None, description="Model override.")
    PAGELINGO_TARGET_LANGUAGE: str = Field(default="zh-CN")
    PAGELINGO_SOURCE_LANGUAGE: str = Field(default="auto")
    PAGELINGO_TOKEN_BUDGET: int = Field(
        default=8000,
        description="Token budget per request (input and output).",
    )
    PAGELINGO_CEILING_RATIO: float = Field(
        default=0.5,
        description="Share of the budget reserved for input tokens.",
    )
    PAGELINGO_CONCURRENCY: int = Field(default=6)
    PAGELINGO_SHORT_TEXT_THRESHOLD: int = Field(default=50)
    PAGELINGO_MERGE_LENGTH_CEILING: int = Field(default=1000)
    PAGELINGO_MERGE_COUNT_CEILING: int = Field(default=10)
    PAGELINGO_ENABLE_MERGE: bool = Field(default=True)
    PAGELINGO_ENABLE_TOKEN_AWARE_BATCHING: bool = Field(default=True)
    PAGELINGO_TEMPERATURE: float = Field(default=0.3)
    PAGELINGO_MAX_TOKENS: int = Field(default=2000)
    PAGELINGO_REQUEST_TIMEOUT: float = Field(default=30.0, description="Seconds.")
    PAGELINGO_BATCH_DELAY: float = Field(default=0.0, description="Seconds.")
    PAGELINGO_PROVIDER_DEBUG: bool = Field(default=False)

    @model_validator(mode="before")
    def _normalise_provider(data: Any) -> Any:
        if isinstance(data, dict):
            raw_value = data.get("LLM_PROVIDER")
            if isinstance(raw_value, str):
                normalized = raw_value.strip().lower().replace("-", "_")
                synonyms = {
                    "azure_open_ai": "azure_openai",
                    "azureopenai": "azure_openai",
                    "azure": "azure_openai",
                }
                normalized = synonyms.get(normalized, normalized)
                if normalized not in {"openai", "azure_openai", "echo"}:
                    normalized = "openai"
                data["LLM_PROVIDER"] = normalized
        return data


@dataclass(frozen=True)
class TranslationOptions:
    """Validated knobs for one translation run."""

    target_language: str = "zh-CN"
    source_language: str = "auto"
    provider: str = "openai"
    model: Optional[str] = None
    mode: RenderMode = RenderMode.REPLACE
    token_budget: int = 8000
    ceiling_ratio: float = 0.5
    max_concurrency: int = 6
    short_text_threshold: int = 50
    max_merged_length: int = 1000
    max_merged_count: int = 10
    enable_merge: bool = True
    token_aware_batching: bool = True
    temperature: float = 0.3
    max_tokens: int = 2000
    request_timeout: float = 30.0
    batch_delay: float = 0.0
    max_group_size: int = 8
    exclude_rules: Tuple[str, ...] = field(default_factory=tuple)
    provider_debug: bool = False

    def __post_init__(self) -> None:
        errors: list[str] = []
        try:
            object.__setattr__(self, "mode", RenderMode.parse(self.mode))
        except ValueError:
            errors.append(f"mode must be replace or bilingual, got {self.mode!r}.")
        if not self.target_language or not self.target_language.strip():
            errors.append("target_language must not be empty.")
        if self.token_budget < 100:
            errors.append(f"token_budget must be at least 100, got {self.token_budget}.")
        if self.ceiling_ratio not in ALLOWED_RATIOS:
            errors.append(
                f"ceiling_ratio must be one of {ALLOWED_RATIOS}, got {self.ceiling_ratio}."
            )
        if self.max_concurrency < 1:
            errors.append("max_concurrency must be at least 1.")
        if self.short_text_threshold < 0:
            errors.append("short_text_threshold must not be negative.")
        if self.max_merged_length < 1 or self.max_merged_count < 1:
            errors.append("merge ceilings must be positive.")
        if not 0.0 <= self.temperature <= 2.0:
            errors.append("temperature must lie between 0 and 2.")
        if self.max_tokens < 1:
            errors.append("max_tokens must be positive.")
        if self.request_timeout <= 0:
            errors.append("request_timeout must be positive.")
        if self.batch_delay < 0:
            errors.append("batch_delay must not be negative.")
        if self.max_group_size < 1:
            errors.append("max_group_size must be at least 1.")
        if errors:
            bullet_list = "\n".join(f"- {message}" for message in errors)
            raise ConfigurationError("Invalid translation options:\n" + bullet_list)
        if not isinstance(self.exclude_rules, tuple):
            object.__setattr__(self, "exclude_rules", tuple(self.exclude_rules))

    @property
    def settings_key(self) -> dict[str, str]:
        """Settings whose change invalidates a previous translation."""

        return {
            "target_language": self.target_language,
            "source_language": self.source_language,
            "mode": self.mode.value,
        }


@lru_cache(maxsize=1)
def _load_config_instance(app_dir: Path | None = None) -> ConfigInstance:
    """Load configuration layers once and cache the immutable instance."""

    base_dir = app_dir or Path.cwd()
    try:
        provenance = ProvenanceRecorder()
        combined = _load_discovered_yaml(app_dir=base_dir, provenance=provenance)
        _merge_env_sources(
            combined,
            provenance=provenance,
            app_dir=base_dir,
            schema=PagelingoConfig,
        )

        if not combined:
            raise ConfigNotFound("No configuration sources were found.")

        model = PagelingoConfig.validate(combined, provenance=provenance)
        _validate_provider_settings(model)

        return ConfigInstance(
            model=model,
            provenance=provenance,
            env_prefix=None,
            schema_cls=PagelingoConfig,
        )
    except ConfigNotFound as exc:
        raise TranslationProviderConfigurationError(
            "No configuration sources were found. Provide settings via a home YAML "
            "file, a local config.yaml, a .env file, or environment variables."
        ) from exc
    except IoError as exc:
        raise TranslationProviderConfigurationError(
            f"Configuration files could not be read: {exc}"
        ) from exc
    except SchemaError as exc:
        raise TranslationProviderConfigurationError(
            f"Configuration schema error: {exc}"
        ) from exc
    except ValidationError as exc:
        issues = _format_validation_errors(exc.to_dict())
        raise TranslationProviderConfigurationError(issues) from exc


def _load_discovered_yaml(
    *,
    app_dir: Path,
    provenance: ProvenanceRecorder,
) -> dict[str, Any]:
    """Load YAML configuration files using Prepper's discovery rules."""

    result: dict[str, Any] = {}
    discovered = discover_file_paths(
        APP_NAME,
        "yaml",
        app_dir=app_dir,
        extra_paths=None,
    )
    for path, label in discovered:
        parsed = _parse_file(path, "yaml")
        if not isinstance(parsed, Mapping):
            raise IoError(
                f"Invalid configuration file {path}: expected a mapping at the root."
            )
        source = _path_to_source(label, "yaml", path)
        merge_layer(result, parsed, provenance=provenance, source=source, layer="file")
    return result


def _merge_env_sources(
    target: dict[str, Any],
    *,
    provenance: ProvenanceRecorder,
    app_dir: Path,
    schema: type[SchemaModel],
) -> None:
    """Merge .env and process environment variables into the target mapping."""

    allowed = set(schema.__field_infos__.keys())

    def merge_values(values: Mapping[str, str], *, source_prefix: str) -> None:
        for key, value in sorted(values.items()):
            if value is None or key not in allowed:
                continue
            merge_layer(
                target,
                {key: value},
                provenance=provenance,
                source=f"env:{source_prefix}:{key}",
                layer="env",
            )

    dotenv_path = app_dir / ".env"
    if dotenv_path.exists():
        dotenv_content = dotenv_values(dotenv_path)
        merge_values(
            {k: v for k, v in dotenv_content.items() if v is not None},
            source_prefix=".env",
        )

    merge_values(
        {k: v for k, v in os.environ.items() if isinstance(v, str)},
        source_prefix="process",
    )


def _validate_provider_settings(settings: PagelingoConfig) -> None:
    provider = settings.LLM_PROVIDER
    errors: list[str] = []

    if provider == "openai":
        if not settings.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY is required when LLM_PROVIDER is 'openai'.")
    elif provider == "azure_openai":
        missing = [
            name
            for name, value in {
                "AZURE_OPENAI_API_KEY": settings.AZURE_OPENAI_API_KEY,
                "AZURE_OPENAI_ENDPOINT": settings.AZURE_OPENAI_ENDPOINT,
                "AZURE_OPENAI_API_VERSION": settings.AZURE_OPENAI_API_VERSION,
                "AZURE_OPENAI_DEPLOYMENT_NAME": settings.AZURE_OPENAI_DEPLOYMENT_NAME,
            }.items()
            if not value
        ]
        if missing:
            errors.append(
                "The following Azure OpenAI settings must be provided when "
                f"LLM_PROVIDER is 'azure_openai': {', '.join(missing)}."
            )

    if errors:
        bullet_list = "\n".join(f"- {message}" for message in errors)
        raise TranslationProviderConfigurationError(
            "Configuration validation errors detected:\n" + bullet_list
        )


def _format_validation_errors(entries: Sequence[dict[str, Any]]) -> str:
    details: list[str] = []
    for entry in entries:
        path = entry.get("path") or []
        if isinstance(path, (list, tuple)):
            location = ".".join(str(part) for part in path if part not in {None, ""})
        else:
            location = str(path)
        message = str(entry.get("message") or entry.get("msg") or "Invalid value")
        source = entry.get("source")
        origin = f" (source: {source})" if source else ""
        prefix = f"{location}: " if location else ""
        details.append(f"- {prefix}{message}{origin}")
    return "Configuration validation errors detected:\n" + "\n".join(details)


def get_config(app_dir: Path | None = None) -> ConfigInstance:
    """Return the immutable configuration instance."""

    return _load_config_instance(app_dir=app_dir)


def get_settings(app_dir: Path | None = None) -> PagelingoConfig:
    """Return the validated schema model for typed access."""

    return get_config(app_dir=app_dir).model()


def options_from_settings(settings: PagelingoConfig, **overrides: Any) -> TranslationOptions:
    """Convert the schema model into run options; ``None`` overrides are ignored."""

    values: dict[str, Any] = {
        "target_language": settings.PAGELINGO_TARGET_LANGUAGE,
        "source_language": settings.PAGELINGO_SOURCE_LANGUAGE,
        "provider": settings.LLM_PROVIDER,
        "model": settings.PAGELINGO_MODEL,
        "token_budget": settings.PAGELINGO_TOKEN_BUDGET,
        "ceiling_ratio": settings.PAGELINGO_CEILING_RATIO,
        "max_concurrency": settings.PAGELINGO_CONCURRENCY,
        "short_text_threshold": settings.PAGELINGO_SHORT_TEXT_THRESHOLD,
        "max_merged_length": settings.PAGELINGO_MERGE_LENGTH_CEILING,
        "max_merged_count": settings.PAGELINGO_MERGE_COUNT_CEILING,
        "enable_merge": settings.PAGELINGO_ENABLE_MERGE,
        "token_aware_batching": settings.PAGELINGO_ENABLE_TOKEN_AWARE_BATCHING,
        "temperature": settings.PAGELINGO_TEMPERATURE,
        "max_tokens": settings.PAGELINGO_MAX_TOKENS,
        "request_timeout": settings.PAGELINGO_REQUEST_TIMEOUT,
        "batch_delay": settings.PAGELINGO_BATCH_DELAY,
        "provider_debug": settings.PAGELINGO_PROVIDER_DEBUG,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return TranslationOptions(**values)


def load_config(app_dir: Path | None = None, **overrides: Any) -> TranslationOptions:
    """Load layered settings and return validated translation options."""

    return options_from_settings(get_settings(app_dir=app_dir), **overrides)

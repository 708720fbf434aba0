"""Configuration models and loaders for codegrader."""

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from codegrader.execution.base import DEFAULT_TIMEOUT_MS
from codegrader.execution.local_exec import default_scratch_root
from codegrader.languages import LanguageConfig, LanguageRegistry, UnsupportedLanguageError

CONFIG_FILE_NAMES: tuple[str, ...] = ("codegrader.yaml", "codegrader.yml", "pyproject.toml")


class ConfigError(ValueError):
    """Raised when a configuration file is malformed."""


@dataclass(frozen=True)
class ExecutorConfig:
    """Configuration for the code execution engine."""

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class LanguageOverride:
    """Replacement or additional toolchain declared in configuration.

    Fields left as None inherit from the built-in toolchain of the same id.
    """

    extension: str | None = None
    compile: str | None = None
    run: str | None = None
    source_stem: str | None = None


@dataclass(frozen=True)
class GraderConfig:
    """Top-level configuration for the grading engine.

    Attributes:
        scratch_dir: Directory under which per-execution scratch space is created.
        executor: Configuration for code execution.
        languages: Toolchain overrides keyed by language id.
        log_level: Logging level name.
    """

    scratch_dir: Path = field(default_factory=default_scratch_root)
    executor: ExecutorConfig = field(default_factory=lambda: ExecutorConfig())
    languages: dict[str, LanguageOverride] = field(default_factory=dict)
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> GraderConfig:
    """Load grader configuration from disk.

    Args:
        path: Optional path to a configuration file or a directory containing one.

    Returns:
        Parsed GraderConfig with defaults applied when no config exists.

    Raises:
        ConfigError: If the file type is unsupported or its content is malformed.
    """

    config_path = _resolve_config_path(path)
    if config_path is None:
        return GraderConfig()

    if config_path.suffix in {".yaml", ".yml"}:
        raw_data = _load_yaml(config_path)
    elif config_path.suffix == ".toml":
        raw_data = _load_toml(config_path)
    else:
        raise ConfigError(f"Unsupported config file type: {config_path}")

    return _parse_grader_config(raw_data, base_path=config_path.parent)


def config_to_dict(config: GraderConfig) -> dict[str, Any]:
    """Serialize a GraderConfig into a JSON-compatible dictionary."""

    return {
        "scratch_dir": str(config.scratch_dir),
        "log_level": config.log_level,
        "executor": {
            "timeout_ms": config.executor.timeout_ms,
            "env": dict(config.executor.env),
        },
        "languages": {
            language_id: {
                key: value
                for key, value in (
                    ("extension", override.extension),
                    ("compile", override.compile),
                    ("run", override.run),
                    ("source_stem", override.source_stem),
                )
                if value is not None
            }
            for language_id, override in config.languages.items()
        },
    }


def update_timeout(config: GraderConfig, timeout_ms: int) -> GraderConfig:
    """Return a config copy with an updated default timeout."""

    return replace(config, executor=replace(config.executor, timeout_ms=timeout_ms))


def build_language_registry(config: GraderConfig) -> LanguageRegistry:
    """Build the toolchain table from the defaults and configured overrides.

    Raises:
        ConfigError: If a new language is declared without extension and run command.
    """

    base = LanguageRegistry()
    overrides: list[LanguageConfig] = []
    for language_id, override in config.languages.items():
        try:
            current = base.resolve(language_id)
        except UnsupportedLanguageError:
            if override.extension is None or override.run is None:
                raise ConfigError(
                    f"Language '{language_id}' requires 'extension' and 'run'."
                ) from None
            current = LanguageConfig(
                id=language_id.lower(),
                file_extension=override.extension,
                run_command_template=override.run,
            )
        overrides.append(
            replace(
                current,
                file_extension=override.extension or current.file_extension,
                run_command_template=override.run or current.run_command_template,
                compile_command_template=(
                    override.compile
                    if override.compile is not None
                    else current.compile_command_template
                ),
                source_stem=override.source_stem or current.source_stem,
            )
        )
    return base.with_overrides(overrides)


def _resolve_config_path(path: Path | None) -> Path | None:
    candidate_paths: list[Path] = []
    if path is None:
        candidate_paths.extend(Path(name) for name in CONFIG_FILE_NAMES)
    elif path.is_dir():
        candidate_paths.extend(path / name for name in CONFIG_FILE_NAMES)
    else:
        candidate_paths.append(path)

    for candidate in candidate_paths:
        if candidate.exists():
            return candidate
    return None


def _load_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as handle:
        try:
            data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    if path.name == "pyproject.toml":
        tool_config = data.get("tool", {}).get("codegrader", {})
        if not isinstance(tool_config, dict):
            raise ConfigError("tool.codegrader must be a mapping.")
        return tool_config
    return data


def _load_yaml(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None
    if data is not None:
        if not isinstance(data, dict):
            raise ConfigError("YAML configuration must be a mapping.")
        return data
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "PyYAML is required to parse non-JSON YAML configuration files."
        ) from exc
    parsed = yaml.safe_load(text)
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigError("YAML configuration must be a mapping.")
    return parsed


def _parse_grader_config(raw_data: dict[str, Any], base_path: Path) -> GraderConfig:
    executor_config = _parse_executor_config(raw_data.get("executor", {}))
    languages = _parse_language_overrides(raw_data.get("languages", {}))

    scratch_raw = raw_data.get("scratch_dir")
    if scratch_raw is None:
        scratch_dir = default_scratch_root()
    else:
        scratch_dir = Path(str(scratch_raw))
        if not scratch_dir.is_absolute():
            scratch_dir = (base_path / scratch_dir).resolve()

    return GraderConfig(
        scratch_dir=scratch_dir,
        executor=executor_config,
        languages=languages,
        log_level=str(raw_data.get("log_level", "INFO")),
    )


def _parse_executor_config(raw: Any) -> ExecutorConfig:
    if not isinstance(raw, dict):
        return ExecutorConfig()
    env = raw.get("env", {})
    env_map: dict[str, str] = {}
    if isinstance(env, dict):
        env_map = {str(key): str(value) for key, value in env.items()}
    try:
        timeout_ms = int(raw.get("timeout_ms", DEFAULT_TIMEOUT_MS))
    except (TypeError, ValueError) as exc:
        raise ConfigError("executor.timeout_ms must be an integer.") from exc
    if timeout_ms <= 0:
        raise ConfigError("executor.timeout_ms must be positive.")
    return ExecutorConfig(timeout_ms=timeout_ms, env=env_map)


def _parse_language_overrides(raw: Any) -> dict[str, LanguageOverride]:
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("languages must be a mapping of language id to toolchain.")
    overrides: dict[str, LanguageOverride] = {}
    for language_id, item in raw.items():
        if not isinstance(item, dict):
            raise ConfigError(f"Toolchain for '{language_id}' must be a mapping.")
        overrides[str(language_id).lower()] = LanguageOverride(
            extension=_optional_str(item.get("extension")),
            compile=_optional_str(item.get("compile")),
            run=_optional_str(item.get("run")),
            source_stem=_optional_str(item.get("source_stem")),
        )
    return overrides


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None

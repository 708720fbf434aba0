"""Language toolchain table used by the execution engine."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping


class UnsupportedLanguageError(ValueError):
    """Raised when a language identifier has no registered toolchain."""


@dataclass(frozen=True)
class LanguageConfig:
    """Toolchain definition for one language.

    Command templates are ``str.format`` templates. The placeholders are
    ``{source}`` (shell-quoted source path), ``{binary}`` (shell-quoted path of
    the compiled artifact), ``{stem}`` (source file name without extension) and
    ``{dir}`` (shell-quoted scratch directory).

    Attributes:
        id: Language identifier, lower case.
        file_extension: Source file extension without the leading dot.
        run_command_template: Template producing the run command.
        compile_command_template: Optional template producing the compile command.
        source_stem: Fixed file stem for the materialized source, if the
            toolchain requires one (Java wants the file named after its class).
        artifact_suffix: Suffix appended to the source path to form ``{binary}``.
    """

    id: str
    file_extension: str
    run_command_template: str
    compile_command_template: str | None = None
    source_stem: str | None = None
    artifact_suffix: str = ".out"

    @property
    def requires_compilation(self) -> bool:
        """Return whether a compile step precedes the run step."""

        return self.compile_command_template is not None

    def source_name(self, execution_id: str) -> str:
        """Return the file name the source is written to for an execution."""

        stem = self.source_stem or execution_id
        return f"{stem}.{self.file_extension}"

    def artifact_path(self, source_path: Path) -> Path:
        """Return the compiled artifact path derived from a source path."""

        return source_path.with_name(source_path.name + self.artifact_suffix)

    def run_command(self, source_path: Path) -> str:
        """Render the run command for a materialized source file."""

        return self._render(self.run_command_template, source_path)

    def compile_command(self, source_path: Path) -> str | None:
        """Render the compile command, or None for interpreted languages."""

        if self.compile_command_template is None:
            return None
        return self._render(self.compile_command_template, source_path)

    def _render(self, template: str, source_path: Path) -> str:
        return template.format(
            source=shlex.quote(str(source_path)),
            binary=shlex.quote(str(self.artifact_path(source_path))),
            stem=source_path.stem,
            dir=shlex.quote(str(source_path.parent)),
        )


def default_language_configs() -> list[LanguageConfig]:
    """Return the built-in toolchains."""

    return [
        LanguageConfig(
            id="javascript",
            file_extension="js",
            run_command_template="node {source}",
        ),
        LanguageConfig(
            id="python",
            file_extension="py",
            run_command_template="python3 {source}",
        ),
        LanguageConfig(
            id="java",
            file_extension="java",
            compile_command_template="javac {source}",
            run_command_template="java {stem}",
            source_stem="Main",
        ),
        LanguageConfig(
            id="c",
            file_extension="c",
            compile_command_template="gcc {source} -o {binary}",
            run_command_template="{binary}",
        ),
        LanguageConfig(
            id="cpp",
            file_extension="cpp",
            compile_command_template="g++ {source} -o {binary}",
            run_command_template="{binary}",
        ),
    ]


class LanguageRegistry:
    """Immutable mapping from language identifiers to toolchains."""

    def __init__(self, configs: Iterable[LanguageConfig] | None = None) -> None:
        """Initialize the registry.

        Args:
            configs: Toolchains to register. Defaults to the built-in table.

        Raises:
            ValueError: If two toolchains share an identifier.
        """

        table: dict[str, LanguageConfig] = {}
        for config in default_language_configs() if configs is None else configs:
            key = config.id.lower()
            if key in table:
                raise ValueError(f"Language '{key}' is registered twice")
            table[key] = config
        self._configs: Mapping[str, LanguageConfig] = MappingProxyType(table)

    def resolve(self, language: str) -> LanguageConfig:
        """Return the toolchain for a language identifier.

        Args:
            language: Identifier such as ``"python"``; matched case-insensitively.

        Returns:
            The registered LanguageConfig.

        Raises:
            UnsupportedLanguageError: If the language is not registered.
        """

        try:
            return self._configs[language.strip().lower()]
        except (KeyError, AttributeError) as exc:
            raise UnsupportedLanguageError(f"Unsupported language: {language}") from exc

    def languages(self) -> list[str]:
        """Return registered language identifiers in registration order."""

        return list(self._configs)

    def with_overrides(self, overrides: Iterable[LanguageConfig]) -> LanguageRegistry:
        """Return a new registry where the given toolchains replace or extend this one."""

        merged = dict(self._configs)
        for config in overrides:
            merged[config.id.lower()] = config
        return LanguageRegistry(merged.values())

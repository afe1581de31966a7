"""Workflow definition sources.

The engine only consumes parsed, checked definitions. Sources are where definitions come
from: in memory (tests, embedding hosts) or YAML files on disk. Loaded definitions are
cached and never mutated; `reload()` swaps the cache under the same lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from importlib import resources
from pathlib import Path
from typing import Any, Protocol

import yaml

from workflow_engine.errors import DefinitionError, UnknownWorkflowError

from .model import WorkflowDefinition, check_workflow

logger = logging.getLogger(__name__)

_SUFFIXES = (".yaml", ".yml")


class WorkflowSource(Protocol):
    def load_workflow(self, name: str) -> WorkflowDefinition: ...

    def list_workflows(self) -> list[str]: ...


class InMemoryWorkflowSource:
    """Serve already-built definitions, keyed by their name."""

    def __init__(self, definitions: Iterable[WorkflowDefinition]) -> None:
        self._definitions: dict[str, WorkflowDefinition] = {}
        for definition in definitions:
            check_workflow(definition)
            if definition.name in self._definitions:
                raise DefinitionError(
                    f"Duplicate workflow name {definition.name!r}", workflow=definition.name
                )
            self._definitions[definition.name] = definition

    def load_workflow(self, name: str) -> WorkflowDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise UnknownWorkflowError(name, available=self.list_workflows()) from None

    def list_workflows(self) -> list[str]:
        return sorted(self._definitions)


def parse_workflow_yaml(text: str, *, origin: str = "<string>") -> WorkflowDefinition:
    """Parse and check a YAML workflow definition.

    Raises:
        DefinitionError: the YAML is invalid or the definition fails validation.
    """
    try:
        raw: Any = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DefinitionError(f"Invalid YAML in {origin}: {e}") from e
    if not isinstance(raw, dict):
        raise DefinitionError(f"Workflow file {origin} must contain a mapping")
    return WorkflowDefinition.from_mapping(raw)


class DirectoryWorkflowSource:
    """Load `<name>.yaml` / `<name>.yml` from one or more directories.

    Earlier directories shadow later ones, so a project directory placed first
    overrides bundled definitions of the same name.
    """

    def __init__(self, *directories: Path) -> None:
        self._directories = tuple(Path(d) for d in directories)
        self._lock = threading.Lock()
        self._cache: dict[str, WorkflowDefinition] = {}

    @property
    def directories(self) -> tuple[Path, ...]:
        return self._directories

    def _find(self, name: str) -> Path | None:
        if not _is_plain_name(name):
            return None
        for directory in self._directories:
            for suffix in _SUFFIXES:
                candidate = directory / f"{name}{suffix}"
                if candidate.is_file():
                    return candidate
        return None

    def load_workflow(self, name: str) -> WorkflowDefinition:
        with self._lock:
            cached = self._cache.get(name)
            if cached is not None:
                return cached

            path = self._find(name)
            if path is None:
                raise UnknownWorkflowError(name, available=self._list_unlocked())

            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise DefinitionError(
                    f"Could not read workflow file {path}: {e}", workflow=name
                ) from e
            definition = parse_workflow_yaml(text, origin=str(path))
            if definition.name != name:
                raise DefinitionError(
                    f"Workflow file {path} declares name {definition.name!r}, expected {name!r}",
                    workflow=name,
                )
            self._cache[name] = definition
            logger.info(
                "Loaded workflow definition",
                extra={"workflow": name, "path": str(path), "states": len(definition.states)},
            )
            return definition

    def list_workflows(self) -> list[str]:
        with self._lock:
            return self._list_unlocked()

    def _list_unlocked(self) -> list[str]:
        names: set[str] = set()
        for directory in self._directories:
            if not directory.is_dir():
                continue
            for path in directory.iterdir():
                if path.suffix in _SUFFIXES and path.is_file():
                    names.add(path.stem)
        return sorted(names)

    def reload(self) -> None:
        """Drop cached definitions; they are re-read on next access."""
        with self._lock:
            self._cache = {}
        logger.info("Workflow definition cache cleared")


def _is_plain_name(name: str) -> bool:
    """Workflow names map to file stems; anything that could leave the directory is refused."""
    return bool(name) and "/" not in name and "\\" not in name and name not in (".", "..")


def bundled_workflows_dir() -> Path:
    return Path(str(resources.files("workflow_engine.workflow") / "resources"))


def bundled_workflow_source(extra_dir: Path | None = None) -> DirectoryWorkflowSource:
    """Source over the bundled definitions, optionally shadowed by `extra_dir`."""
    directories = [bundled_workflows_dir()]
    if extra_dir is not None:
        directories.insert(0, extra_dir)
    return DirectoryWorkflowSource(*directories)

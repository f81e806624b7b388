"""
PromptX Definition Loader

Entities are markdown files with a YAML front matter block (name,
description, capabilities, any other metadata) followed by the body.
Primitives are Python files defining ``Primitive`` subclasses.

Each definition loads independently: a broken file is reported in the
LoadReport and the scan continues.
"""

import inspect
import os
import re
import types
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple, Type

import yaml

from .capability import Primitive
from ..errors import DefinitionLoadError
from ...utils.logger import get_logger

logger = get_logger(__name__)

_FRONT_MATTER = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)(.*)\Z", re.DOTALL)


@dataclass
class EntityDefinition:
    """Parsed entity source"""

    config: Dict[str, Any]
    body: str
    path: str

    @property
    def name(self) -> str:
        return self.config["name"]


@dataclass
class LoadReport:
    """Outcome of loading a directory of definitions"""

    loaded: List[str] = field(default_factory=list)
    failed: List[DefinitionLoadError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loaded": list(self.loaded),
            "failed": [{"path": e.path, "reason": e.reason} for e in self.failed],
        }


def parse_front_matter(text: str) -> Tuple[Dict[str, Any], str]:
    """
    Split a definition into its YAML config and markdown body.

    Raises:
        ValueError: If the front matter is not valid YAML or not a mapping
    """
    match = _FRONT_MATTER.match(text)
    if not match:
        return {}, text.strip()

    raw_config, body = match.groups()
    try:
        config = yaml.safe_load(raw_config)
    except yaml.YAMLError as e:
        raise ValueError(f"invalid front matter: {e}") from e

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ValueError("front matter must be a mapping")

    return config, body.strip()


def load_entity_definition(path: str) -> EntityDefinition:
    """
    Load one entity definition file.

    Raises:
        DefinitionLoadError: If the file is unreadable or its config is malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise DefinitionLoadError(path, str(e)) from e

    try:
        config, body = parse_front_matter(text)
    except ValueError as e:
        raise DefinitionLoadError(path, str(e)) from e

    config.setdefault("name", Path(path).stem)
    capabilities = config.get("capabilities") or []
    if not isinstance(capabilities, list) or not all(isinstance(c, str) for c in capabilities):
        raise DefinitionLoadError(path, "capabilities must be a list of names")
    config["capabilities"] = capabilities

    return EntityDefinition(config=config, body=body, path=path)


def load_entity_definitions(directory: str) -> Tuple[List[EntityDefinition], List[DefinitionLoadError]]:
    """Load every ``*.md`` file in a directory, collecting failures instead of raising."""
    definitions, failures = [], []
    for path in sorted(Path(directory).glob("*.md")):
        try:
            definitions.append(load_entity_definition(str(path)))
        except DefinitionLoadError as e:
            logger.warning("Skipping entity definition", path=str(path), reason=e.reason)
            failures.append(e)
    return definitions, failures


def load_primitive_classes(path: str) -> List[Type[Primitive]]:
    """
    Execute a Python file as a fresh module and return the Primitive
    subclasses it defines.

    The file is compiled from its current text on every call, so a file
    rewritten at runtime is never served from a bytecode cache.

    Raises:
        DefinitionLoadError: If the module fails to run or defines no primitives
    """
    try:
        source = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise DefinitionLoadError(path, f"cannot read file: {e}") from e

    module = types.ModuleType(f"promptx_primitives.{Path(path).stem}")
    module.__file__ = path
    try:
        exec(compile(source, path, "exec"), module.__dict__)
    except Exception as e:
        # User code: any failure is confined to this one definition
        raise DefinitionLoadError(path, f"{type(e).__name__}: {e}") from e

    classes = [
        obj
        for _, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, Primitive) and obj is not Primitive and obj.__module__ == module.__name__
    ]
    if not classes:
        raise DefinitionLoadError(path, "no Primitive subclasses defined")
    return classes


def load_primitive_definitions(directory: str) -> Tuple[List[Primitive], List[DefinitionLoadError]]:
    """Instantiate the primitives of every ``*.py`` file in a directory."""
    primitives, failures = [], []
    for path in sorted(Path(directory).glob("*.py")):
        if path.name.startswith("_"):
            continue
        try:
            instances = []
            for cls in load_primitive_classes(str(path)):
                try:
                    instances.append(cls())
                except Exception as e:
                    raise DefinitionLoadError(str(path), f"{cls.__name__}(): {e}") from e
            primitives.extend(instances)
        except DefinitionLoadError as e:
            logger.warning("Skipping primitive definition", path=str(path), reason=e.reason)
            failures.append(e)
    return primitives, failures


def entity_definition_path(directory: str, name: str) -> str:
    return os.path.join(directory, f"{name}.md")

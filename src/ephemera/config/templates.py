"""Reading and writing key/value configuration files.

Two syntaxes are understood, chosen from the file name (a trailing
``.template`` is ignored):

- ``.yaml`` / ``.yml``: a YAML mapping; nested mappings are flattened to
  dotted keys.
- anything else: Java-style properties, one ``key = value`` per line with
  ``#`` or ``!`` comments.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from ephemera.errors import ConfigurationError, ErrorCode

TEMPLATE_SUFFIX = ".template"


class ConfigFormat(Enum):
    """On-disk syntax of a configuration file."""

    PROPERTIES = "properties"
    YAML = "yaml"

    @classmethod
    def for_path(cls, path: str | Path) -> ConfigFormat:
        name = Path(path).name
        if name.endswith(TEMPLATE_SUFFIX):
            name = name[: -len(TEMPLATE_SUFFIX)]
        if Path(name).suffix.lower() in (".yaml", ".yml"):
            return cls.YAML
        return cls.PROPERTIES


def strip_template_suffix(name: str) -> str:
    if name.endswith(TEMPLATE_SUFFIX):
        return name[: -len(TEMPLATE_SUFFIX)]
    return name


def parse_properties(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line[0] in "#!":
            continue
        positions = [i for i in (line.find("="), line.find(":")) if i >= 0]
        if not positions:
            values[line] = ""
            continue
        sep = min(positions)
        values[line[:sep].strip()] = line[sep + 1 :].strip()
    return values


def format_properties(values: Mapping[str, Any]) -> str:
    lines = [f"{key} = {value}" for key, value in values.items()]
    return "\n".join(lines) + "\n"


def flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into a single level of dotted keys."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            result.update(flatten(value, dotted))
        else:
            result[dotted] = value
    return result


def render_value(key: str, value: Any) -> str:
    """Render an override as the string a properties file would hold.

    Raises:
        ConfigurationError: If the value is not a scalar.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float, Path)):
        return str(value)
    raise ConfigurationError(
        message=f"Override for '{key}' must be a scalar, got {type(value).__name__}",
        key=key,
        error_code=ErrorCode.MERGE_CONFLICT,
    )


def read_config(path: str | Path) -> dict[str, Any]:
    """Load a template or generated config into a flat dotted-key mapping.

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(
            message="Configuration template not found",
            path=str(path),
            error_code=ErrorCode.TEMPLATE_MISSING,
        )
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            message=f"Cannot read configuration template: {e}",
            path=str(path),
            error_code=ErrorCode.TEMPLATE_MISSING,
            cause=e,
        ) from e

    if ConfigFormat.for_path(path) is ConfigFormat.PROPERTIES:
        return dict(parse_properties(text))

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            message=f"Failed to parse YAML template: {e}",
            path=str(path),
            cause=e,
        ) from e
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(
            message=f"Template must be a YAML mapping, got {type(data).__name__}",
            path=str(path),
        )
    return flatten(data)


def yaml_value(key: str, value: Any) -> Any:
    """Return ``value`` in a form ``yaml.safe_dump`` accepts, keeping bools and numbers typed.

    Lists, nested mappings and nulls carried over from a YAML template are
    kept.

    Raises:
        ConfigurationError: If the value cannot be represented.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [yaml_value(key, item) for item in value]
    if isinstance(value, Mapping):
        return {str(name): yaml_value(key, item) for name, item in value.items()}
    if isinstance(value, Path):
        return str(value)
    return render_value(key, value)


def unflatten(values: Mapping[str, Any]) -> dict[str, Any]:
    """Rebuild nested mappings from dotted keys, the inverse of :func:`flatten`.

    Raises:
        ConfigurationError: If a key is used both as a value and as a parent.
    """
    result: dict[str, Any] = {}
    for dotted, value in values.items():
        parts = str(dotted).split(".")
        node = result
        for depth, part in enumerate(parts[:-1]):
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConfigurationError(
                    message=f"'{'.'.join(parts[: depth + 1])}' is both a value and a parent of '{dotted}'",
                    key=str(dotted),
                    error_code=ErrorCode.MERGE_CONFLICT,
                )
            node = child
        if isinstance(node.get(parts[-1]), dict):
            raise ConfigurationError(
                message=f"'{dotted}' is both a value and a parent of other keys",
                key=str(dotted),
                error_code=ErrorCode.MERGE_CONFLICT,
            )
        node[parts[-1]] = value
    return result


def write_config(path: str | Path, values: Mapping[str, Any], fmt: ConfigFormat) -> None:
    """Write ``values`` to ``path`` in the given syntax.

    YAML output is nested again from the dotted keys, so a nested template
    keeps its shape.

    Raises:
        ConfigurationError: If a value cannot be rendered or the file cannot
            be written.
    """
    path = Path(path)
    if fmt is ConfigFormat.YAML:
        nested = unflatten({key: yaml_value(key, value) for key, value in values.items()})
        try:
            content = yaml.safe_dump(nested, default_flow_style=False, sort_keys=False)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                message=f"Cannot render configuration as YAML: {e}",
                path=str(path),
                error_code=ErrorCode.MERGE_CONFLICT,
                cause=e,
            ) from e
    else:
        content = format_properties({key: render_value(key, value) for key, value in values.items()})
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            message=f"Cannot write configuration: {e}",
            path=str(path),
            error_code=ErrorCode.OUTPUT_NOT_WRITABLE,
            cause=e,
        ) from e

"""YAML / JSON encoding of result documents.

YAML is the canonical on-disk format; JSON is written alongside it for
consumers that cannot read YAML. Both encodings round-trip the plain nested
mappings produced by the models' ``to_hash()`` methods.

Error contract:
    :func:`read_mapping` raises ``ValueError`` for an unsupported extension,
    undecodable content, or a top-level value that is not a mapping.
    ``OSError`` from the file system propagates unchanged. Callers translate
    both into the error type of their own layer.
"""

import json
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

YAML_SUFFIXES: tuple[str, ...] = (".yaml", ".yml")
JSON_SUFFIXES: tuple[str, ...] = (".json",)


def dump_yaml(data: Mapping[str, Any] | list[Any]) -> str:
    """Block-style YAML, insertion order preserved."""
    return yaml.safe_dump(
        _plain(data),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )


def dump_json(data: Mapping[str, Any] | list[Any]) -> str:
    """Indented JSON with a trailing newline."""
    return json.dumps(_plain(data), indent=2, ensure_ascii=False) + "\n"


def loads_mapping(text: str, suffix: str) -> dict[str, Any]:
    """Decode ``text`` according to a file ``suffix``.

    Raises:
        ValueError: Unsupported suffix, invalid content, or non-mapping root.
    """
    suffix = suffix.lower()
    try:
        if suffix in YAML_SUFFIXES:
            data: Any = yaml.safe_load(text)
        elif suffix in JSON_SUFFIXES:
            data = json.loads(text)
        else:
            raise ValueError(f"Unsupported file format: {suffix or '(none)'}")
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Expected a mapping at the document root, got {type(data).__name__}"
        )
    return data


def read_mapping(path: Path) -> dict[str, Any]:
    """Read and decode a ``.yaml``, ``.yml`` or ``.json`` file."""
    return loads_mapping(path.read_text(encoding="utf-8"), path.suffix)


def write_text_atomic(path: Path, text: str) -> None:
    """Write ``text`` via a temp file and rename, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp: Path = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


def write_mapping(path: Path, data: Mapping[str, Any] | list[Any]) -> Path:
    """Encode ``data`` according to the suffix of ``path`` and write it."""
    suffix: str = path.suffix.lower()
    if suffix in YAML_SUFFIXES:
        write_text_atomic(path, dump_yaml(data))
    elif suffix in JSON_SUFFIXES:
        write_text_atomic(path, dump_json(data))
    else:
        raise ValueError(f"Unsupported file format: {suffix or '(none)'}")
    return path


def _plain(value: Any) -> Any:
    """Strip enum members and tuples so ``safe_dump`` accepts the tree."""
    if isinstance(value, Mapping):
        return {_plain_key(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_plain(v) for v in value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    return value


def _plain_key(key: Any) -> Any:
    if isinstance(key, Enum):
        return key.value
    return key

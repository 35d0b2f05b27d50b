"""Content-type detection from raw bytes.

Backends receive a resolver at construction time and call it on the full
contents of every file they read. Resolution never fails: when nothing
matches, :data:`DEFAULT_CONTENT_TYPE` is returned.

Detection order:
    1. JSON (orjson): arrays/objects are JSON, bare scalars are plain text
    2. YAML (PyYAML): mappings/sequences are YAML, bare scalars are plain text
    3. Magic bytes (filetype)
    4. ``application/octet-stream``
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol, TypeAlias, runtime_checkable

import filetype  # type: ignore[import-untyped]
import orjson
import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
JSON_CONTENT_TYPE = "application/json; charset=utf-8"
YAML_CONTENT_TYPE = "text/yaml; charset=utf-8"
PLAIN_TEXT_CONTENT_TYPE = "text/plain"


@runtime_checkable
class ContentTypeResolver(Protocol):
    """Maps a byte buffer to a MIME type."""

    def resolve(self, data: bytes) -> str:
        """Return the content type of ``data`` or the default."""
        ...


ResolverLike: TypeAlias = ContentTypeResolver | Callable[[bytes], str]


class _FunctionResolver:
    """Adapts a plain ``bytes -> str`` callable to the resolver protocol."""

    def __init__(self, func: Callable[[bytes], str]) -> None:
        self._func = func

    def resolve(self, data: bytes) -> str:
        return self._func(data)

    def __repr__(self) -> str:
        return f"_FunctionResolver({self._func!r})"


def as_resolver(resolver: ResolverLike | None) -> ContentTypeResolver:
    """Coerce a resolver, a callable or ``None`` into a resolver."""
    if resolver is None:
        return DefaultContentTypeResolver()
    if isinstance(resolver, ContentTypeResolver):
        return resolver
    if callable(resolver):
        return _FunctionResolver(resolver)
    raise TypeError(f"expected a ContentTypeResolver or callable, got {type(resolver)!r}")


class _Tagged:
    """A YAML node carrying an application-specific tag (``!Ref foo``)."""

    __slots__ = ("tag", "value")

    def __init__(self, tag: str, value: Any) -> None:
        self.tag = tag
        self.value = value


class _SniffLoader(yaml.SafeLoader):
    """Safe loader that wraps unknown tags instead of rejecting them."""


def _construct_tagged(loader: _SniffLoader, tag_suffix: str, node: yaml.Node) -> _Tagged:
    value: Any
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)  # type: ignore[arg-type]
    return _Tagged(node.tag, value)


_SniffLoader.add_multi_constructor("", _construct_tagged)


def _untag(value: Any) -> Any:
    while isinstance(value, _Tagged):
        value = value.value
    return value


def _is_structured(value: Any) -> bool:
    return isinstance(value, (dict, list, tuple, set))


class DefaultContentTypeResolver:
    """JSON/YAML-aware resolver backed by the ``filetype`` signature database.

    Args:
        sniff_json: Try to parse the buffer as JSON first
        sniff_yaml: Try to parse the buffer as YAML when JSON did not match
    """

    def __init__(self, sniff_json: bool = True, sniff_yaml: bool = True) -> None:
        self.sniff_json = sniff_json
        self.sniff_yaml = sniff_yaml

    def resolve(self, data: bytes) -> str:
        if not data:
            return DEFAULT_CONTENT_TYPE

        if self.sniff_json:
            content_type = self._sniff_json(data)
            if content_type is not None:
                return content_type

        if self.sniff_yaml:
            content_type = self._sniff_yaml(data)
            if content_type is not None:
                return content_type

        return self._sniff_magic(data)

    @staticmethod
    def _sniff_json(data: bytes) -> str | None:
        try:
            value = orjson.loads(data)
        except orjson.JSONDecodeError:
            return None
        # A bare string or number carries no structure
        return JSON_CONTENT_TYPE if _is_structured(value) else PLAIN_TEXT_CONTENT_TYPE

    @staticmethod
    def _sniff_yaml(data: bytes) -> str | None:
        try:
            value = _untag(yaml.load(data, Loader=_SniffLoader))  # nosec B506 - SafeLoader subclass
        except (yaml.YAMLError, ValueError, TypeError, RecursionError):
            return None
        return YAML_CONTENT_TYPE if _is_structured(value) else PLAIN_TEXT_CONTENT_TYPE

    @staticmethod
    def _sniff_magic(data: bytes) -> str:
        mime = filetype.guess_mime(data)
        if mime is None:
            logger.debug(f"No signature matched {len(data)} bytes, using default content type")
            return DEFAULT_CONTENT_TYPE
        return str(mime)

    def __repr__(self) -> str:
        return (
            f"DefaultContentTypeResolver(sniff_json={self.sniff_json}, "
            f"sniff_yaml={self.sniff_yaml})"
        )


_default = DefaultContentTypeResolver()


def default_resolver(data: bytes) -> str:
    """Resolve ``data`` with the default JSON/YAML/magic-byte resolver."""
    return _default.resolve(data)

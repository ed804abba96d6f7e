"""Handler declarations consumed by the handler aggregation compiler."""

from __future__ import annotations

import re
from collections.abc import Mapping as MappingABC
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import HandlerConfigurationError

__all__ = [
    "HTTP_METHODS",
    "HandlerDeclaration",
    "declaration_from_mapping",
    "infer_method",
    "with_inferred_method",
]


HTTP_METHODS: tuple[str, ...] = (
    "get",
    "head",
    "patch",
    "post",
    "put",
    "delete",
    "connect",
    "options",
    "trace",
)

# ``users.get.ts`` and ``users.get.d.ts`` both carry the ``get`` token.
_METHOD_SUFFIX = re.compile(rf"\.({'|'.join(HTTP_METHODS)})(\.\w+)*$")


class HandlerDeclaration(BaseModel):
    """A single request handler bound to a route.

    An empty ``route`` matches every path. ``method`` is ``None`` when the
    handler accepts any HTTP method.
    """

    route: str = Field(default="", description="Route pattern, e.g. /api/:id.")
    handler: str = Field(description="Module id implementing the handler.")
    method: str | None = Field(default=None)
    lazy: bool = Field(
        default=False,
        description="Load the module on first request instead of at startup.",
    )
    middleware: bool = Field(default=False)

    model_config = {"frozen": True, "str_strip_whitespace": True}

    @field_validator("handler")
    @classmethod
    def _require_handler(cls, value: str) -> str:
        if not value:
            raise ValueError("Handler module id cannot be blank.")
        return value

    @field_validator("method")
    @classmethod
    def _normalize_method(cls, value: str | None) -> str | None:
        if not value:
            return None
        normalized = value.lower()
        if normalized not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {value!r}")
        return normalized


def declaration_from_mapping(raw: Any) -> HandlerDeclaration:
    """Build a :class:`HandlerDeclaration` from a configuration payload.

    Raises:
        HandlerConfigurationError: If the payload is not a mapping, lacks a
            handler module id or carries invalid values.
    """

    if not isinstance(raw, MappingABC):
        raise HandlerConfigurationError(
            f"Unsupported handler declaration: {raw!r}"
        )
    handler = raw.get("handler")
    if not isinstance(handler, str) or not handler.strip():
        raise HandlerConfigurationError(
            f"Handler declaration for route {raw.get('route', '')!r} is "
            "missing a handler module id."
        )
    try:
        return HandlerDeclaration(**raw)
    except ValidationError as exc:
        raise HandlerConfigurationError(
            f"Invalid handler declaration for {handler!r}: {exc}"
        ) from exc


def infer_method(handler: str) -> str | None:
    """Return the HTTP method encoded in a handler file name, if any.

    Example:
        >>> infer_method("handlers/users.get.ts")
        'get'
        >>> infer_method("handlers/users.ts") is None
        True
    """

    match = _METHOD_SUFFIX.search(handler)
    return match.group(1) if match else None


def with_inferred_method(declaration: HandlerDeclaration) -> HandlerDeclaration:
    """Fill a missing method from the handler's file name suffix."""

    if declaration.method:
        return declaration
    method = infer_method(declaration.handler)
    if method is None:
        return declaration
    return declaration.model_copy(update={"method": method})

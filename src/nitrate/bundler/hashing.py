"""Stable identifiers derived from module paths."""

from __future__ import annotations

import hashlib
from enum import StrEnum

__all__ = [
    "DEFAULT_HASH_ALGORITHM",
    "MIN_IDENTIFIER_LENGTH",
    "ImportVariant",
    "hash_text",
    "identifier",
]


DEFAULT_HASH_ALGORITHM = "sha256"
MIN_IDENTIFIER_LENGTH = 6


class ImportVariant(StrEnum):
    """How a module is bound inside generated source."""

    EAGER = "eager"
    LAZY = "lazy"


# Prefixes start with different letters so the two namespaces never overlap.
_PREFIXES = {
    ImportVariant.EAGER: "h",
    ImportVariant.LAZY: "lazy",
}


def hash_text(text: str, *, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """Return the full hex digest of ``text`` encoded as UTF-8."""

    return hashlib.new(algorithm, text.encode("utf-8")).hexdigest()


def identifier(
    path: str,
    variant: ImportVariant = ImportVariant.EAGER,
    *,
    length: int = 8,
) -> str:
    """Return a binding name for ``path`` that is stable across runs.

    Example:
        >>> identifier("routes/index.ts")
        'he890464e'
        >>> identifier("routes/index.ts", ImportVariant.LAZY)
        'lazye890464e'

    Raises:
        ValueError: If ``path`` is empty or ``length`` is too short.
    """

    if not path:
        raise ValueError("Cannot derive an identifier from an empty path.")
    if length < MIN_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Identifier length must be >= {MIN_IDENTIFIER_LENGTH}."
        )
    digest = hash_text(path)[:length]
    return f"{_PREFIXES[ImportVariant(variant)]}{digest}"

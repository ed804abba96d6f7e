"""Domain-specific exceptions raised while preparing a bundle."""

from __future__ import annotations


class NitrateError(RuntimeError):
    """Base error for build policy failures."""


class HandlerConfigurationError(NitrateError):
    """Raised when a handler declaration is malformed."""


class DuplicateVirtualModuleError(NitrateError):
    """Raised when two generators claim the same virtual module id."""


class UnresolvedModuleError(NitrateError):
    """Raised when strict externals mode cannot bundle an import."""

    def __init__(self, module_id: str, importer: str | None) -> None:
        self.module_id = module_id
        self.importer = importer
        super().__init__(
            f"Cannot resolve {module_id!r} from {importer!r} and externals "
            "are not allowed!"
        )


__all__ = [
    "DuplicateVirtualModuleError",
    "HandlerConfigurationError",
    "NitrateError",
    "UnresolvedModuleError",
]

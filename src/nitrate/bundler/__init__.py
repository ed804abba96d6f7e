"""Bundler policy surface: virtual modules, chunking and externals."""

from __future__ import annotations

from .chunks import (
    ChunkClassifier,
    FallbackRule,
    PrefixRule,
    RouteOwnershipRule,
    TaskOwnershipRule,
    build_chunk_classifier,
    route_group,
)
from .declarations import HandlerDeclaration, infer_method
from .diagnostics import HandlerTableDumpState, dump_handler_table
from .errors import (
    DuplicateVirtualModuleError,
    HandlerConfigurationError,
    NitrateError,
    UnresolvedModuleError,
)
from .externals import (
    ExternalDecision,
    LegacyExternalsPolicy,
    ModuleDisposition,
    PermissiveExternalsPolicy,
    StrictExternalsPolicy,
    build_externals_policy,
)
from .handlers import (
    HANDLERS_MODULE_ID,
    HandlerTable,
    ImportPlan,
    compose_handler_table,
    plan_imports,
    render_handlers_module,
)
from .hashing import ImportVariant, identifier
from .resolution import FallbackResolver, ResolutionOptions, ResolvedModule
from .session import BuildSession, BundlerConfig
from .virtual import VIRTUAL_PREFIX, VirtualModuleRegistry

__all__ = [
    "HANDLERS_MODULE_ID",
    "VIRTUAL_PREFIX",
    "BuildSession",
    "BundlerConfig",
    "ChunkClassifier",
    "DuplicateVirtualModuleError",
    "ExternalDecision",
    "FallbackResolver",
    "FallbackRule",
    "HandlerConfigurationError",
    "HandlerDeclaration",
    "HandlerTable",
    "HandlerTableDumpState",
    "ImportPlan",
    "ImportVariant",
    "LegacyExternalsPolicy",
    "ModuleDisposition",
    "NitrateError",
    "PermissiveExternalsPolicy",
    "PrefixRule",
    "ResolutionOptions",
    "ResolvedModule",
    "RouteOwnershipRule",
    "StrictExternalsPolicy",
    "TaskOwnershipRule",
    "UnresolvedModuleError",
    "VirtualModuleRegistry",
    "build_chunk_classifier",
    "build_externals_policy",
    "compose_handler_table",
    "dump_handler_table",
    "identifier",
    "infer_method",
    "plan_imports",
    "render_handlers_module",
    "route_group",
]

"""Upstream collaborators: retrieval/generation backend and agent alias resolution."""

from .alias import AliasResolver, HttpAliasResolver, StaticAliasResolver, get_alias_resolver
from .backend import (
    AGENT_ROUTE,
    KNOWLEDGE_BASE_ROUTE,
    HttpUpstreamBackend,
    UpstreamBackend,
    UpstreamOptions,
    UpstreamResult,
    get_upstream_backend,
)

__all__ = [
    "AliasResolver",
    "HttpAliasResolver",
    "StaticAliasResolver",
    "get_alias_resolver",
    "AGENT_ROUTE",
    "KNOWLEDGE_BASE_ROUTE",
    "HttpUpstreamBackend",
    "UpstreamBackend",
    "UpstreamOptions",
    "UpstreamResult",
    "get_upstream_backend",
]

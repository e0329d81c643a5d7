"""Collaborator contracts consumed by the entity engine.

The engine never authenticates, authorizes or stores file bytes itself; it
only talks to these small interfaces, which the hosting application wires in.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from schemas.scope import Scope


@dataclass(frozen=True)
class StoredObject:
    """Metadata of a binary object held by the object store"""
    id: str
    filename: str
    size: int
    mime_type: str
    url: str
    tenant_id: Optional[str] = None
    project_id: Optional[str] = None
    variants: dict[str, str] = field(default_factory=dict)  # style name -> url


@runtime_checkable
class ScopeResolver(Protocol):
    def current_scope(self) -> Scope:
        ...


@runtime_checkable
class AccessChecker(Protocol):
    def may_access(self, scope: Scope, target_type: str, target_id: Any) -> bool:
        ...


@runtime_checkable
class ObjectStore(Protocol):
    def get(self, object_id: str) -> Optional[StoredObject]:
        ...

    def read(self, object_id: str) -> Optional[bytes]:
        ...


class FixedScopeResolver:
    """Scope resolver for callers that already know their scope (CLI, jobs)"""

    def __init__(self, tenant_id: str, project_id: str):
        self._scope = Scope(tenant_id=tenant_id, project_id=project_id)

    def current_scope(self) -> Scope:
        return self._scope

"""
External collaborator interfaces (``access_kernel.domain.collaborators``).

The kernel never decides who is blacklisted or who an actor is; it asks.
Both collaborators are injected through service constructors.  The static
implementations are in-memory and suit tests and single-site deployments.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable
from uuid import UUID


class ActorRole(str, Enum):
    TENANT_ADMIN = "tenant_admin"
    MERCHANT_ADMIN = "merchant_admin"
    SECURITY = "security"


@dataclass(frozen=True)
class Actor:
    """A staff member as resolved by the identity provider."""

    actor_id: UUID
    roles: frozenset[ActorRole] = field(default_factory=frozenset)
    merchant_id: UUID | None = None

    def has_role(self, role: ActorRole) -> bool:
        return role in self.roles

    def administers(self, merchant_id: UUID) -> bool:
        """Tenant admins administer every merchant; merchant admins their own."""
        if self.has_role(ActorRole.TENANT_ADMIN):
            return True
        return (
            self.has_role(ActorRole.MERCHANT_ADMIN)
            and self.merchant_id is not None
            and self.merchant_id == merchant_id
        )

    def can_decide(self, merchant_id: UUID) -> bool:
        """May approve or reject requests for ``merchant_id``."""
        return self.administers(merchant_id)

    def can_manage_credentials(self, merchant_id: UUID) -> bool:
        """May refresh or revoke credentials for ``merchant_id``."""
        return self.has_role(ActorRole.SECURITY) or self.administers(merchant_id)


@runtime_checkable
class Blacklist(Protocol):
    def is_blacklisted(self, name: str, phone: str) -> bool: ...


@runtime_checkable
class ActorDirectory(Protocol):
    def get_actor(self, actor_id: UUID) -> Actor | None: ...


class StaticBlacklist:
    """Blacklist backed by fixed phone numbers and names.

    Names compare case-insensitively with surrounding whitespace ignored.
    """

    def __init__(self, phones: Iterable[str] = (), names: Iterable[str] = ()):
        self._phones = frozenset(p.strip() for p in phones)
        self._names = frozenset(n.strip().casefold() for n in names)

    def is_blacklisted(self, name: str, phone: str) -> bool:
        return (
            phone.strip() in self._phones
            or name.strip().casefold() in self._names
        )


class StaticActorDirectory:
    """Actor directory backed by a fixed set of actors."""

    def __init__(self, actors: Iterable[Actor] = ()):
        self._actors: dict[UUID, Actor] = {a.actor_id: a for a in actors}

    def add(self, actor: Actor) -> None:
        self._actors[actor.actor_id] = actor

    def get_actor(self, actor_id: UUID) -> Actor | None:
        return self._actors.get(actor_id)

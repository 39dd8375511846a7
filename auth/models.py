"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; the store and routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class User:
    """A registered identity.

    id is assigned at construction time (random UUID text) so callers can read
    it back after IdentityStore.create_user() without a second query.
    user_name doubles as the login name; registration sets it to the email.
    password_hash is filled in by the store and never leaves the auth/ layer.
    """

    email: str
    user_name: str
    full_name: str | None = None
    id: str = field(default_factory=_new_id)
    password_hash: str | None = None
    created_at: str | None = None


@dataclass
class Role:
    name: str
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class IdentityError:
    """One validation or persistence failure reported by the identity store."""

    code: str
    description: str


@dataclass
class IdentityResult:
    """Outcome of a mutating store operation.

    Store methods report expected failures (policy violations, duplicates,
    concurrency conflicts) through this object instead of raising, so routes
    can surface the first description to the client.
    """

    succeeded: bool
    errors: list[IdentityError] = field(default_factory=list)

    @classmethod
    def success(cls) -> IdentityResult:
        return cls(succeeded=True)

    @classmethod
    def failed(cls, *errors: IdentityError) -> IdentityResult:
        return cls(succeeded=False, errors=list(errors))

    def has_code(self, *codes: str) -> bool:
        return any(e.code in codes for e in self.errors)

    @property
    def first_description(self) -> str | None:
        return self.errors[0].description if self.errors else None


@dataclass
class Principal:
    """The caller identity reconstructed from a validated bearer token.

    claims is the decoded JWT payload. Accessors normalise the role claim,
    which is always issued as a list but may arrive as a bare string from
    other issuers sharing the key.
    """

    claims: dict

    @property
    def user_id(self) -> str | None:
        return self.claims.get("nameid") or self.claims.get("sub")

    @property
    def name(self) -> str | None:
        return self.claims.get("unique_name") or self.claims.get("email")

    @property
    def roles(self) -> list[str]:
        raw = self.claims.get("role", [])
        if isinstance(raw, str):
            return [raw]
        return list(raw)

    def has_role(self, role: str) -> bool:
        return role in self.roles

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

Role = Literal[
    "sme_user",
    "buyer",
    "partner_user",
    "qa_reviewer",
    "instructor",
    "platform_admin",
]

KNOWN_ROLES: frozenset[str] = frozenset(
    {"sme_user", "buyer", "partner_user", "qa_reviewer", "instructor", "platform_admin"}
)


@dataclass(frozen=True, slots=True)
class PortalContext:
    """
    Request-scoped identity.

    - uid: Firebase Auth uid
    - role: `role` custom claim (defaults to sme_user when absent)
    """

    uid: str
    role: str = "sme_user"
    claims: Mapping[str, Any] = field(default_factory=dict)

    def has_role(self, *roles: str) -> bool:
        return self.role in roles

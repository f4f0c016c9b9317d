from __future__ import annotations

from dataclasses import dataclass


ROLE_PARTNER = "PARTNER"
ROLE_LAWYER = "LAWYER"
ROLE_ASSISTANT = "ASSISTANT"
ROLE_ACCOUNTANT = "ACCOUNTANT"
ALL_ROLES = (ROLE_PARTNER, ROLE_LAWYER, ROLE_ASSISTANT, ROLE_ACCOUNTANT)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller, resolved from an access token."""

    user_id: str
    tenant_id: str
    role: str
    email: str
    ip: str | None = None
    user_agent: str | None = None

    @property
    def is_partner(self) -> bool:
        return self.role == ROLE_PARTNER

from __future__ import annotations

from datetime import datetime
import logging
from typing import Protocol


LOGGER = logging.getLogger(__name__)


class AccountNotifier(Protocol):
    def send_password_reset(
        self, *, recipient: str, tenant_id: str, code: str, expires_at: datetime
    ) -> None: ...

    def send_invitation(
        self,
        *,
        recipient: str,
        tenant_id: str,
        firm_name: str,
        role: str,
        invite_url: str,
        expires_at: datetime,
    ) -> None: ...


class LoggingAccountNotifier:
    """Development delivery: logs that a message went out, never the secret itself."""

    def send_password_reset(
        self, *, recipient: str, tenant_id: str, code: str, expires_at: datetime
    ) -> None:
        LOGGER.info(
            "Password reset code issued",
            extra={
                "recipient": recipient,
                "tenant_id": tenant_id,
                "expires_at": expires_at.isoformat(),
            },
        )

    def send_invitation(
        self,
        *,
        recipient: str,
        tenant_id: str,
        firm_name: str,
        role: str,
        invite_url: str,
        expires_at: datetime,
    ) -> None:
        LOGGER.info(
            "Team invitation issued",
            extra={
                "recipient": recipient,
                "tenant_id": tenant_id,
                "firm_name": firm_name,
                "role": role,
                "expires_at": expires_at.isoformat(),
            },
        )

"""Template variable resolution.

Values come from built-in helpers (dates, serial), the firm, the current
user, an optional client and matter, and manual input. When variable
definitions are supplied each key is resolved strictly by its source and
dotted path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
import re
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from sijil_api.db.models import Client, Matter, Tenant, User, utcnow
from sijil_api.errors import NotFoundError
from sijil_api.schemas import TemplateVariable
from sijil_api.security import CurrentUser
from sijil_api.services.dates import (
    format_date_arabic,
    format_hijri_arabic,
    parse_date_value,
    to_iso_date,
)
from sijil_api.services.matter_service import ensure_matter_access


LOGGER = logging.getLogger(__name__)

SOURCES = ("client", "matter", "org", "user", "computed", "manual")
PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")


@dataclass(frozen=True)
class ResolvedTemplateContext:
    values: dict[str, str]
    missing_required: list[str]
    used_sources: dict[str, bool]


@dataclass(frozen=True)
class RenderedTemplate:
    text: str
    unknown_keys: list[str] = field(default_factory=list)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def get_path_value(source: Mapping[str, Any] | None, path: str | None) -> Any:
    parts = [part for part in (path or "").strip().split(".") if part]
    if not parts or source is None:
        return ""
    current: Any = source
    for part in parts:
        if not isinstance(current, Mapping):
            return ""
        current = current.get(part)
    return "" if current is None else current


def apply_formatting(value: str, fmt: str | None, transform: str | None) -> str:
    result = value.strip()
    if fmt == "date":
        parsed = parse_date_value(result)
        if parsed is not None:
            result = format_date_arabic(parsed)
    if transform == "upper":
        result = result.upper()
    elif transform == "lower":
        result = result.lower()
    return result


def computed_values(org: Mapping[str, Any], now: datetime) -> tuple[dict[str, str], list[str]]:
    values = {
        "date.today": format_date_arabic(now),
        "date.today_iso": to_iso_date(now),
        "doc.serial": "",
        "org.name": _stringify(org.get("name")),
    }
    missing: list[str] = []
    try:
        values["date.hijri_today"] = format_hijri_arabic(now)
    except (ValueError, IndexError):
        LOGGER.warning("Unable to compute Hijri date", exc_info=True)
        missing.append("date.hijri_today")
    return values, missing


def build_context(
    *,
    org: Mapping[str, Any],
    user: Mapping[str, Any],
    client: Mapping[str, Any] | None = None,
    matter: Mapping[str, Any] | None = None,
    manual_values: Mapping[str, str] | None = None,
    variables: Iterable[TemplateVariable] | None = None,
    now: datetime | None = None,
) -> ResolvedTemplateContext:
    manual_values = dict(manual_values or {})
    definitions = list(variables or [])
    computed, missing_required = computed_values(org, now or utcnow())

    values: dict[str, str] = dict(computed)
    used_sources = {
        "client": client is not None,
        "matter": matter is not None,
        "org": True,
        "user": True,
        "computed": True,
        "manual": bool(manual_values),
    }

    values["org.id"] = _stringify(org.get("id"))
    values["org.name"] = _stringify(org.get("name"))
    for key in ("id", "email", "name", "phone"):
        values[f"user.{key}"] = _stringify(user.get(key))
    if client is not None:
        for key in ("id", "type", "name", "identity_no", "commercial_no", "email", "phone", "notes"):
            values[f"client.{key}"] = _stringify(client.get(key))
    if matter is not None:
        for key in ("id", "client_id", "title", "status", "summary"):
            values[f"matter.{key}"] = _stringify(matter.get(key))
        for key in ("created_at", "updated_at"):
            raw = matter.get(key)
            values[f"matter.{key}"] = format_date_arabic(raw) if isinstance(raw, datetime) else ""

    if definitions:
        normalized_manual = {
            str(key).strip(): _stringify(value).strip() for key, value in manual_values.items()
        }
        sources_by_name = {"client": client, "matter": matter, "org": org, "user": user}
        used_by_variables = dict.fromkeys(SOURCES, False)
        resolved: dict[str, str] = {}

        for variable in definitions:
            key = variable.key.strip()
            if not key:
                continue
            used_by_variables[variable.source] = True
            if variable.source == "computed":
                raw: Any = computed.get(key, "")
            elif variable.source == "manual":
                raw = normalized_manual.get(key)
                if raw is None:
                    raw = variable.default_value or ""
            else:
                raw = get_path_value(sources_by_name[variable.source], variable.path)

            formatted = apply_formatting(_stringify(raw), variable.format, variable.transform)
            resolved[key] = formatted
            if variable.required and not formatted.strip():
                missing_required.append(key)

        used_sources["client"] = used_sources["client"] and used_by_variables["client"]
        used_sources["matter"] = used_sources["matter"] and used_by_variables["matter"]
        for name in ("org", "user", "computed", "manual"):
            used_sources[name] = used_by_variables[name]
        values.update(resolved)
    else:
        for key, value in manual_values.items():
            name = str(key).strip()
            if name:
                values[name] = _stringify(value).strip()

    return ResolvedTemplateContext(
        values=values,
        missing_required=list(dict.fromkeys(key for key in missing_required if key)),
        used_sources=used_sources,
    )


def render_template(body: str, values: Mapping[str, str]) -> RenderedTemplate:
    unknown: list[str] = []

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in values:
            return values[key]
        if key not in unknown:
            unknown.append(key)
        return ""

    return RenderedTemplate(text=PLACEHOLDER_PATTERN.sub(_replace, body), unknown_keys=unknown)


class TemplateResolver:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self._now = now_fn or utcnow

    def resolve(
        self,
        actor: CurrentUser,
        *,
        client_id: str | None = None,
        matter_id: str | None = None,
        manual_values: Mapping[str, str] | None = None,
        variables: Iterable[TemplateVariable] | None = None,
    ) -> ResolvedTemplateContext:
        with self.session_factory() as session:
            return self.resolve_in_session(
                session,
                actor,
                client_id=client_id,
                matter_id=matter_id,
                manual_values=manual_values,
                variables=variables,
            )

    def resolve_in_session(
        self,
        session: Session,
        actor: CurrentUser,
        *,
        client_id: str | None = None,
        matter_id: str | None = None,
        manual_values: Mapping[str, str] | None = None,
        variables: Iterable[TemplateVariable] | None = None,
    ) -> ResolvedTemplateContext:
        tenant = session.get(Tenant, actor.tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")
        user = session.scalars(
            select(User).where(User.id == actor.user_id, User.tenant_id == actor.tenant_id)
        ).first()

        client = None
        if client_id and client_id.strip():
            client = session.scalars(
                select(Client).where(Client.id == client_id.strip(), Client.tenant_id == tenant.id)
            ).first()
        matter = None
        if matter_id and matter_id.strip():
            matter = session.scalars(
                select(Matter).where(Matter.id == matter_id.strip(), Matter.tenant_id == tenant.id)
            ).first()
            if matter is not None:
                ensure_matter_access(matter, actor)

        return build_context(
            org={"id": tenant.id, "name": tenant.firm_name, "logo_url": tenant.logo_url},
            user={
                "id": actor.user_id,
                "email": user.email if user else actor.email,
                "name": user.name if user else "",
                "phone": "",
            },
            client=_client_values(client) if client else None,
            matter=_matter_values(matter) if matter else None,
            manual_values=manual_values,
            variables=variables,
            now=self._now(),
        )


def _client_values(client: Client) -> dict[str, Any]:
    return {
        "id": client.id,
        "type": client.client_type,
        "name": client.name,
        "identity_no": client.identity_no,
        "commercial_no": client.commercial_no,
        "email": client.email,
        "phone": client.phone,
        "notes": client.notes,
    }


def _matter_values(matter: Matter) -> dict[str, Any]:
    return {
        "id": matter.id,
        "client_id": matter.client_id,
        "title": matter.title,
        "status": matter.status,
        "summary": matter.description,
        "assignee_id": matter.assignee_id,
        "is_private": matter.is_private,
        "created_at": matter.created_at,
        "updated_at": matter.updated_at,
    }

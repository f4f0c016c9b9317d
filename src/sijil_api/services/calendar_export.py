from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from sijil_api.db.models import Task


def _format_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _fold(line: str) -> list[str]:
    # RFC 5545 lines are limited to 75 octets; continuation lines start with a space.
    encoded = line.encode("utf-8")
    if len(encoded) <= 75:
        return [line]
    parts: list[str] = []
    current = ""
    limit = 75
    for char in line:
        if len((current + char).encode("utf-8")) > limit:
            parts.append(current)
            current = " "
            limit = 75
        current += char
    parts.append(current)
    return parts


def build_task_calendar(
    tasks: Iterable[Task],
    *,
    calendar_name: str,
    generated_at: datetime,
) -> str:
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Sijil//Tasks//AR",
        "CALSCALE:GREGORIAN",
        f"X-WR-CALNAME:{_escape(calendar_name)}",
    ]
    stamp = _format_utc(generated_at)
    for task in tasks:
        if task.due_date is None:
            continue
        lines.extend(
            [
                "BEGIN:VEVENT",
                f"UID:task-{task.id}@sijil",
                f"DTSTAMP:{stamp}",
                f"DTSTART:{_format_utc(task.due_date)}",
                f"SUMMARY:{_escape(task.title)}",
                f"STATUS:{'COMPLETED' if task.status == 'DONE' else 'CONFIRMED'}",
            ]
        )
        if task.description:
            lines.append(f"DESCRIPTION:{_escape(task.description)}")
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")

    folded: list[str] = []
    for line in lines:
        folded.extend(_fold(line))
    return "\r\n".join(folded) + "\r\n"

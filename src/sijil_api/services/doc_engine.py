from __future__ import annotations

from dataclasses import dataclass, field

import fitz


PAGE_WIDTH = 595
PAGE_HEIGHT = 842
MARGIN = 50
EMPTY_VALUE = "—"


@dataclass(frozen=True)
class DocField:
    label: str
    value: str


@dataclass(frozen=True)
class DocParams:
    org_name: str
    title: str
    subtitle: str
    date: str
    fields: list[DocField] = field(default_factory=list)


class PdfCanvas:
    """Top-down text flow on A4 pages with simple word wrapping."""

    def __init__(self) -> None:
        self.document = fitz.open()
        self.page = self.document.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        self.y = float(MARGIN)

    @property
    def content_width(self) -> float:
        return PAGE_WIDTH - MARGIN * 2

    def text(
        self,
        value: str,
        *,
        size: float = 12,
        bold: bool = False,
        color: tuple[float, float, float] = (0, 0, 0),
        align: str = "left",
        line_spacing: float = 1.5,
    ) -> None:
        fontname = "hebo" if bold else "helv"
        for line in self._wrap(value, fontname=fontname, size=size):
            if self.y + size > PAGE_HEIGHT - MARGIN:
                self.page = self.document.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
                self.y = float(MARGIN)
            width = fitz.get_text_length(line, fontname=fontname, fontsize=size)
            x = float(MARGIN)
            if align == "center":
                x = (PAGE_WIDTH - width) / 2
            elif align == "right":
                x = PAGE_WIDTH - MARGIN - width
            self.y += size
            self.page.insert_text((x, self.y), line, fontsize=size, fontname=fontname, color=color)
            self.y += size * (line_spacing - 1)

    def gap(self, points: float) -> None:
        self.y += points

    def rule(self) -> None:
        self.page.draw_line(
            (MARGIN, self.y),
            (PAGE_WIDTH - MARGIN, self.y),
            color=(0.8, 0.8, 0.8),
            width=0.5,
        )

    def to_bytes(self) -> bytes:
        try:
            return self.document.tobytes(garbage=4, deflate=True)
        finally:
            self.document.close()

    def _wrap(self, value: str, *, fontname: str, size: float) -> list[str]:
        lines: list[str] = []
        current = ""
        for word in value.split(" "):
            candidate = f"{current} {word}" if current else word
            width = fitz.get_text_length(candidate, fontname=fontname, fontsize=size)
            if width > self.content_width and current:
                lines.append(current)
                current = word
            else:
                current = candidate
        if current:
            lines.append(current)
        return lines


def build_document_pdf(params: DocParams) -> bytes:
    canvas = PdfCanvas()
    canvas.text(params.org_name, size=18, bold=True, align="center")
    canvas.text(params.subtitle, size=14, color=(0.4, 0.4, 0.4), align="center")
    canvas.gap(10)
    canvas.rule()
    canvas.gap(20)

    canvas.text(params.title, size=16, bold=True)
    canvas.text(f"Date: {params.date}", size=10, color=(0.6, 0.6, 0.6))
    canvas.gap(10)

    for item in params.fields:
        canvas.text(f"{item.label}:", bold=True)
        canvas.text(item.value or EMPTY_VALUE)
        canvas.gap(5)
    return canvas.to_bytes()

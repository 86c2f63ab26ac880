# render_core.py
# -*- coding: utf-8 -*-
"""
render_core — растровый экспорт раскладки (PNG) для отчётов и карточек заказов.

Что рисуем:
- партию из batch_core: контур стола, сетка 20 мм, отступ от стенок,
  footprint каждой штуки своим цветом и номером (с 1), подпись внизу;
- раскладку одинаковых объектов из calc_core: вид сверху одного слоя z
  или вид спереди на весь штабель.

Пустой вход (нет партий, объект не помещается) — заглушка, не исключение.
Зависимости: pillow.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Optional, Tuple

from PIL import Image, ImageDraw

from batch_core import BatchResult
from calc_core import PackingResult, format_print_time
from mesh_core import Dimensions
from settings_core import DEFAULT_SETTINGS, Printer, Settings


PALETTE = ("#4ade80", "#f472b6", "#60a5fa", "#fb923c", "#a78bfa", "#fbbf24", "#2dd4bf", "#f87171")
VIEWS = ("top", "front")


@dataclass(frozen=True)
class RenderStyle:
    """Визуальные параметры."""
    size_px: int = 640                      # ширина картинки
    padding_px: int = 24
    caption_px: int = 28                    # высота полосы подписи
    bg_rgb: Tuple[int, int, int] = (248, 249, 251)
    bed_rgb: Tuple[int, int, int] = (255, 255, 255)
    bed_outline_rgb: Tuple[int, int, int] = (55, 55, 55)
    grid_rgb: Tuple[int, int, int] = (228, 230, 235)
    grid_step_mm: float = 20.0
    margin_rgb: Tuple[int, int, int] = (239, 68, 68)
    item_outline_rgb: Tuple[int, int, int] = (40, 40, 40)
    text_rgb: Tuple[int, int, int] = (40, 40, 40)


@dataclass
class RenderResult:
    status: str                 # normal | placeholder
    png_bytes: bytes
    meta: Dict[str, Any]


# ---------------------------- Public API ----------------------------

def render_batch_png(
    result: Optional[BatchResult],
    index: int,
    printer: Printer,
    *,
    settings: Settings = DEFAULT_SETTINGS,
    style: RenderStyle = RenderStyle(),
) -> RenderResult:
    """Партия index (с 0) на столе printer."""
    t0 = time.perf_counter()
    meta: Dict[str, Any] = {"batch": index, "items": 0, "ms": None}
    if result is None or not result.batches or not (0 <= index < len(result.batches)):
        meta["ms"] = _ms(t0)
        return RenderResult("placeholder", _placeholder_png(style, text="NO BATCHES"), meta)

    batch = result.batches[index]
    canvas = _BedCanvas(printer.width, printer.depth, style)
    canvas.grid()
    canvas.margin(settings.wall_margin)
    for n, it in enumerate(batch.items):
        canvas.box(it.x, it.y, it.width, it.depth, PALETTE[n % len(PALETTE)], str(n + 1))
    canvas.caption(
        f"Batch {index + 1}/{result.batch_count}: {batch.item_count} items,"
        f" max height {batch.max_height:.1f} mm, {format_print_time(batch.print_time_s)}"
    )
    meta["items"] = batch.item_count
    meta["ms"] = _ms(t0)
    return RenderResult("normal", canvas.png(), meta)


def render_packing_png(
    packing: Optional[PackingResult],
    dimensions: Dimensions,
    printer: Printer,
    *,
    layer: int = 0,
    view: str = "top",
    settings: Settings = DEFAULT_SETTINGS,
    style: RenderStyle = RenderStyle(),
) -> RenderResult:
    """
    Сетка одинаковых объектов. Позиции в packing — от внутреннего угла стола,
    поэтому при рисовании сдвигаются на wall margin.
    view="top": слой layer; view="front": весь штабель (x по ширине, z по высоте).
    """
    if view not in VIEWS:
        raise ValueError(f"Unknown view {view!r}; expected one of {', '.join(VIEWS)}")
    t0 = time.perf_counter()
    meta: Dict[str, Any] = {"view": view, "layer": layer, "items": 0, "ms": None}
    if packing is None or not packing.fits_in_printer or not packing.positions:
        meta["ms"] = _ms(t0)
        return RenderResult("placeholder", _placeholder_png(style, text="DOES NOT FIT"), meta)

    m = settings.wall_margin
    w, d = packing.footprint
    h = dimensions.height

    if view == "top":
        canvas = _BedCanvas(printer.width, printer.depth, style)
        canvas.grid()
        canvas.margin(m)
        cells = packing.layer(layer)
        for n, p in enumerate(cells):
            canvas.box(m + p.x, m + p.y, w, d, PALETTE[0], str(n + 1))
        canvas.caption(f"Layer {layer + 1}/{packing.count_z}: {len(cells)} items ({packing.arrangement})")
        meta["items"] = len(cells)
    else:
        canvas = _BedCanvas(printer.width, printer.height, style)
        canvas.grid()
        seen = set()
        for p in packing.positions:
            key = (p.x, p.z)
            if key in seen:
                continue
            seen.add(key)
            row = int(round(p.z / h)) if h > 0 else 0
            # z снизу вверх: у картинки ось y направлена вниз
            canvas.box(m + p.x, printer.height - p.z - h, w, h, PALETTE[row % len(PALETTE)], "")
        canvas.caption(f"Front: {packing.count_x} × {packing.count_z}, stack {packing.bed_height_used:.1f} mm")
        meta["items"] = len(seen)

    meta["ms"] = _ms(t0)
    return RenderResult("normal", canvas.png(), meta)


# ---------------------------- Internals ----------------------------

class _BedCanvas:
    """Прямоугольник span_x × span_y мм, вписанный в картинку; ось y — вниз."""

    def __init__(self, span_x: float, span_y: float, style: RenderStyle):
        self.style = style
        S = int(style.size_px)
        pad = int(style.padding_px)
        self.span_x = float(span_x)
        self.span_y = float(span_y)
        self.k = (S - 2 * pad) / max(self.span_x, 1e-9)
        H = int(round(self.span_y * self.k)) + 2 * pad + int(style.caption_px)
        self.ox = pad
        self.oy = pad
        self.img = Image.new("RGB", (S, H), style.bg_rgb)
        self.draw = ImageDraw.Draw(self.img)
        self.draw.rectangle(self._rect(0, 0, self.span_x, self.span_y),
                            fill=style.bed_rgb, outline=style.bed_outline_rgb, width=2)

    def _pt(self, x: float, y: float) -> Tuple[float, float]:
        return self.ox + x * self.k, self.oy + y * self.k

    def _rect(self, x: float, y: float, w: float, h: float):
        x0, y0 = self._pt(x, y)
        x1, y1 = self._pt(x + w, y + h)
        return (x0, y0, x1, y1)

    def grid(self) -> None:
        step = float(self.style.grid_step_mm)
        if step <= 0:
            return
        x = step
        while x < self.span_x:
            self.draw.line((*self._pt(x, 0), *self._pt(x, self.span_y)), fill=self.style.grid_rgb)
            x += step
        y = step
        while y < self.span_y:
            self.draw.line((*self._pt(0, y), *self._pt(self.span_x, y)), fill=self.style.grid_rgb)
            y += step
        # контур поверх сетки
        self.draw.rectangle(self._rect(0, 0, self.span_x, self.span_y),
                            outline=self.style.bed_outline_rgb, width=2)

    def margin(self, m: float) -> None:
        if m <= 0 or 2 * m >= min(self.span_x, self.span_y):
            return
        self.draw.rectangle(self._rect(m, m, self.span_x - 2 * m, self.span_y - 2 * m),
                            outline=self.style.margin_rgb, width=1)

    def box(self, x: float, y: float, w: float, h: float, color: str, label: str) -> None:
        r = self._rect(x, y, w, h)
        self.draw.rectangle(r, fill=color, outline=self.style.item_outline_rgb, width=1)
        if label:
            cx = (r[0] + r[2]) / 2
            cy = (r[1] + r[3]) / 2
            self.draw.text((cx - 3 * len(label), cy - 5), label, fill=self.style.text_rgb)

    def caption(self, text: str) -> None:
        _, H = self.img.size
        self.draw.text((self.style.padding_px, H - self.style.caption_px + 6), text, fill=self.style.text_rgb)

    def png(self) -> bytes:
        return _encode_png(self.img)


def _ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


def _placeholder_png(style: RenderStyle, *, text: str = "PREVIEW") -> bytes:
    """Всегда успешная заглушка."""
    S = int(style.size_px)
    img = Image.new("RGB", (S, S // 2), style.bg_rgb)
    draw = ImageDraw.Draw(img)

    pad = max(8, S // 20)
    draw.rectangle((pad, pad, S - pad, S // 2 - pad), outline=(200, 200, 200), width=2)

    msg = (text or "PREVIEW")[:18]
    tw = 6 * len(msg)
    th = 10
    draw.text(((S - tw) / 2, (S // 2 - th) / 2), msg, fill=(120, 120, 120))

    return _encode_png(img)


def _encode_png(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG", optimize=True)
    return buf.getvalue()

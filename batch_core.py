# -*- coding: utf-8 -*-
"""
batch_core.py — раскладка набора разных деталей по партиям (загрузкам стола).

Алгоритм (полочная укладка, жадно к углу стола):
1) каждая позиция разворачивается по qty в штучные элементы; штука, которая
   не помещается на стол ни как есть, ни повёрнутой на 90° (или выше стола),
   сразу уходит в unpacked;
2) остальные сортируются по высоте (высокие первыми, сортировка стабильная);
3) для каждой штуки перебираются целые (x, y) с шагом 1 мм, x внешний цикл;
   позиция годится, если прямоугольник с зазором spacing не пересекается
   ни с одним уже поставленным; берётся минимум x + y (первый при равенстве);
   пробуются обе ориентации, при равенстве x + y — без поворота;
4) не встала — партия закрывается, штука пробуется на пустом столе;
   не встала и там — unpacked + запись в errors (NoValidPlacement).

Перебор позиций векторизован на numpy: сетка кандидатов × уже поставленные.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from calc_core import format_print_time, fmt_money, print_time_seconds
from calc_errors import InvalidInput, NoValidPlacement
from settings_core import DEFAULT_SETTINGS, Printer, Settings


# ---------- Типы ----------
@dataclass(frozen=True)
class BatchItemSpec:
    """Позиция на входе: footprint уже в выбранной ориентации, unit_cost — за штуку."""
    id: str
    width: float
    depth: float
    height: float
    volume: float
    unit_cost: float
    quantity: int = 1


@dataclass(frozen=True)
class UnitItem:
    id: str
    width: float
    depth: float
    height: float
    volume: float
    cost: float


@dataclass(frozen=True)
class PlacedItem:
    """Поставленная штука; width/depth — как стоит на столе (после поворота)."""
    id: str
    x: float
    y: float
    z: float
    width: float
    depth: float
    height: float
    volume: float
    cost: float
    rotated: bool = False

    def to_dict(self) -> dict:
        return {"id": self.id, "x": self.x, "y": self.y, "z": self.z,
                "width": self.width, "depth": self.depth, "height": self.height,
                "volume": self.volume, "cost": self.cost, "rotated": self.rotated}


@dataclass(frozen=True)
class Batch:
    items: Tuple[PlacedItem, ...]
    max_height: float
    print_time_s: float

    @property
    def item_count(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict:
        return {"items": [i.to_dict() for i in self.items], "itemCount": self.item_count,
                "maxHeight": self.max_height, "printTime": self.print_time_s}


@dataclass(frozen=True)
class BedParams:
    available_width: float
    available_depth: float
    available_height: float
    wall_margin: float
    spacing: float
    layer_time_s: float
    layer_height_mm: float = 0.1


def bed_params_for(printer: Printer, settings: Settings = DEFAULT_SETTINGS) -> BedParams:
    return BedParams(
        available_width=printer.width - 2 * settings.wall_margin,
        available_depth=printer.depth - 2 * settings.wall_margin,
        available_height=printer.height,
        wall_margin=settings.wall_margin,
        spacing=settings.object_spacing,
        layer_time_s=printer.layer_time_s,
        layer_height_mm=settings.layer_height_mm,
    )


@dataclass(frozen=True)
class BatchResult:
    items: Tuple[UnitItem, ...]
    packed: Tuple[UnitItem, ...]
    unpacked: Tuple[UnitItem, ...]
    batches: Tuple[Batch, ...]
    errors: Tuple[dict, ...] = field(default=())

    @property
    def total_items(self) -> int:
        return len(self.packed) + len(self.unpacked)

    @property
    def packed_items(self) -> int:
        return len(self.packed)

    @property
    def total_volume(self) -> float:
        return sum(i.volume for i in self.items)

    @property
    def packed_volume(self) -> float:
        return sum(i.volume for i in self.packed)

    @property
    def total_cost(self) -> float:
        return sum(i.cost for i in self.items)

    @property
    def packed_cost(self) -> float:
        return sum(i.cost for i in self.packed)

    @property
    def batch_count(self) -> int:
        return len(self.batches)

    @property
    def print_time_s(self) -> float:
        # партии печатаются последовательно
        return sum(b.print_time_s for b in self.batches)

    def to_dict(self) -> dict:
        return {
            "totalItems": self.total_items,
            "packedItems": self.packed_items,
            "totalVolume": self.total_volume,
            "packedVolume": self.packed_volume,
            "totalCost": self.total_cost,
            "packedCost": self.packed_cost,
            "batchCount": self.batch_count,
            "batches": [b.to_dict() for b in self.batches],
            "unpacked": [i.id for i in self.unpacked],
            "printTime": self.print_time_s,
            "errors": [dict(e) for e in self.errors],
        }


# ---------- Подготовка ----------
def coerce_qty(qty) -> int:
    """
    Приводит qty к int и валидирует (>=1).
    """
    if isinstance(qty, bool):
        raise InvalidInput(f"qty must be int >= 1, got: {qty!r}")
    try:
        q = int(qty)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"qty must be int >= 1, got: {qty!r}") from e
    if q < 1 or q != qty and not isinstance(qty, str):
        raise InvalidInput(f"qty must be int >= 1, got: {qty!r}")
    return q


def _positive(value, label: str, *, allow_zero: bool = False) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{label} must be a number, got {value!r}") from None
    if not math.isfinite(f) or f < 0 or (f == 0 and not allow_zero):
        raise InvalidInput(f"{label} must be a positive number, got {value!r}")
    return f


def expand_items(specs: Iterable[BatchItemSpec]) -> Tuple[List[UnitItem], List[dict]]:
    """qty -> штучные элементы "{id}-{i}". Битая позиция — в errors, остальные идут дальше."""
    units: List[UnitItem] = []
    errors: List[dict] = []
    for spec in specs:
        try:
            q = coerce_qty(spec.quantity)
            w = _positive(spec.width, "width")
            d = _positive(spec.depth, "depth")
            h = _positive(spec.height, "height")
            v = _positive(spec.volume, "volume", allow_zero=True)
            c = _positive(spec.unit_cost, "unit_cost", allow_zero=True)
        except InvalidInput as exc:
            errors.append({"id": spec.id, "error": str(exc), "kind": type(exc).__name__})
            continue
        units.extend(UnitItem(f"{spec.id}-{i}", w, d, h, v, c) for i in range(q))
    return units, errors


def fits_bed(item: UnitItem, bed: BedParams) -> bool:
    if item.height > bed.available_height:
        return False
    aw, ad = bed.available_width, bed.available_depth
    return (item.width <= aw and item.depth <= ad) or (item.depth <= aw and item.width <= ad)


# ---------- Поиск позиции ----------
def find_position(
    placed: Sequence[PlacedItem],
    width: float,
    depth: float,
    bed: BedParams,
) -> Optional[Tuple[float, float]]:
    """
    Ближайшая к углу (минимум x + y) свободная позиция для footprint width × depth.
    Кандидаты: x = margin + k, k = 0.. пока x <= available_width - width (так же y).
    None — места нет.
    """
    m = bed.wall_margin
    nx = int(math.floor(bed.available_width - width - m)) + 1
    ny = int(math.floor(bed.available_depth - depth - m)) + 1
    if nx <= 0 or ny <= 0:
        return None
    xs = m + np.arange(nx, dtype=np.float64)
    ys = m + np.arange(ny, dtype=np.float64)
    if not placed:
        return float(xs[0]), float(ys[0])

    s = bed.spacing
    px = np.array([p.x for p in placed])
    py = np.array([p.y for p in placed])
    pw = np.array([p.width for p in placed])
    pd = np.array([p.depth for p in placed])

    # (nx, k) и (ny, k): пересечение по каждой оси отдельно
    hit_x = (xs[:, None] < px + pw + s) & (px < xs[:, None] + width + s)
    hit_y = (ys[:, None] < py + pd + s) & (py < ys[:, None] + depth + s)
    # угол свободен: лучше (m, m) ничего нет
    if not (hit_x[0] & hit_y[0]).any():
        return float(xs[0]), float(ys[0])
    # занята, если хоть с одним поставленным пересекается по обеим осям;
    # float32 (BLAS): счётчики точны до 2**24
    blocked = (hit_x.astype(np.float32) @ hit_y.T.astype(np.float32)) > 0
    if blocked.all():
        return None

    score = xs[:, None] + ys[None, :]
    score = np.where(blocked, np.inf, score)
    flat = int(np.argmin(score))          # C-порядок: первый при равенстве в обходе x, затем y
    i, j = divmod(flat, ny)
    return float(xs[i]), float(ys[j])


def _place(placed: List[PlacedItem], item: UnitItem, bed: BedParams) -> Optional[PlacedItem]:
    regular = find_position(placed, item.width, item.depth, bed)
    rotated = find_position(placed, item.depth, item.width, bed)
    if regular is None and rotated is None:
        return None
    use_rotated = regular is None or (rotated is not None and sum(rotated) < sum(regular))
    x, y = rotated if use_rotated else regular
    w, d = (item.depth, item.width) if use_rotated else (item.width, item.depth)
    return PlacedItem(item.id, x, y, 0.0, w, d, item.height, item.volume, item.cost, use_rotated)


def _close(placed: List[PlacedItem], bed: BedParams) -> Batch:
    max_h = max(p.z + p.height for p in placed)
    return Batch(
        items=tuple(placed),
        max_height=max_h,
        print_time_s=print_time_seconds(max_h, bed.layer_time_s, bed.layer_height_mm),
    )


# ---------- Публичное API ----------
def pack_batches(specs: Iterable[BatchItemSpec], bed: BedParams) -> BatchResult:
    """Раскладка по партиям. Не бросает: проблемы отдельных штук — в unpacked/errors."""
    units, errors = expand_items(specs)

    candidates: List[UnitItem] = []
    unpacked: List[UnitItem] = []
    for u in units:
        (candidates if fits_bed(u, bed) else unpacked).append(u)

    candidates.sort(key=lambda u: u.height, reverse=True)

    batches: List[Batch] = []
    packed: List[UnitItem] = []
    current: List[PlacedItem] = []
    for item in candidates:
        pi = _place(current, item, bed)
        if pi is None and current:
            batches.append(_close(current, bed))
            current = []
            pi = _place(current, item, bed)
        if pi is None:
            unpacked.append(item)
            exc = NoValidPlacement(f"{item.id}: {item.width:g} × {item.depth:g} mm does not fit an empty bed")
            errors.append({"id": item.id, "error": str(exc), "kind": type(exc).__name__})
            continue
        current.append(pi)
        packed.append(item)
    if current:
        batches.append(_close(current, bed))

    return BatchResult(
        items=tuple(units),
        packed=tuple(packed),
        unpacked=tuple(unpacked),
        batches=tuple(batches),
        errors=tuple(errors),
    )


def pack_for_printer(specs: Iterable[BatchItemSpec], printer: Printer,
                     settings: Settings = DEFAULT_SETTINGS) -> BatchResult:
    return pack_batches(specs, bed_params_for(printer, settings))


# ---------- Отчёт ----------
def render_batch_report(result: BatchResult, *, currency: str = "USD", printer_name: str = "") -> str:
    lines = []
    title = "Раскладка по партиям" + (f" — {printer_name}" if printer_name else "")
    lines.append(title + "\n")
    lines.append(
        f"• Штук: {result.packed_items} из {result.total_items} | Партий: {result.batch_count}"
        f" | Время печати: {format_print_time(result.print_time_s)}\n"
    )
    lines.append(
        f"• Объём: {result.packed_volume:.2f} из {result.total_volume:.2f} см³"
        f" | Стоимость: {fmt_money(result.packed_cost, currency)} из {fmt_money(result.total_cost, currency)}\n"
    )
    lines.append("-" * 42 + "\n")
    for n, b in enumerate(result.batches, 1):
        rot = sum(1 for i in b.items if i.rotated)
        lines.append(
            f"Партия {n}: {b.item_count} шт, высота {b.max_height:.1f} мм,"
            f" печать {format_print_time(b.print_time_s)}"
            + (f", повёрнуто {rot}" if rot else "") + "\n"
        )
    if result.unpacked:
        lines.append("-" * 42 + "\n")
        lines.append("Не поместились: " + ", ".join(i.id for i in result.unpacked) + "\n")
    for e in result.errors:
        lines.append(f"Ошибка: {e['id']}: {e['error']}\n")
    return "".join(lines)

# -*- coding: utf-8 -*-
"""
calc_core.py — чистое ядро калькулятора порошковой 3D-печати.

Цели:
- Никакого UI. Один источник правды для: расхода материалов, стоимости,
  раскладки одинаковых объектов на столе принтера, ориентации, времени печати,
  текстового отчёта.
- Все настройки приходят параметром (Settings), глобального состояния нет;
  одинаковый вход -> одинаковый выход.

Границы ошибок:
- calc_cost / estimate_job / estimate_stl никогда не бросают: ошибка возвращается
  полями ok/error/error_kind (сообщение для пользователя, не traceback).
- Низкоуровневые pack_single_bed / resolve_orientation бросают InvalidInput.
"""
from __future__ import annotations

import math
import warnings as _warnings
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

import mesh_core
from calc_errors import InvalidInput, MalformedMesh, MeshTooLarge, UnsupportedCurrency
from mesh_core import Dimensions, MeshAnalysis
from settings_core import (
    CURRENCY_SYMBOLS,
    DEFAULT_SETTINGS,
    GLAZE_FIXED_G,
    GLAZE_G_PER_CM3,
    Printer,
    Settings,
    nz,
)

ORIENTATIONS = ("flat", "vertical")


# ---------- Утилиты ----------
def layer_count(height_mm: float, layer_height_mm: float) -> int:
    # округление до 1e-9 гасит шум деления (50 / 0.1 и т.п.)
    return int(math.ceil(round(height_mm / layer_height_mm, 9)))


def print_time_seconds(height_mm: float, layer_time_s: float, layer_height_mm: float) -> float:
    return layer_count(height_mm, layer_height_mm) * float(layer_time_s)


def format_print_time(seconds: Optional[float]) -> str:
    if seconds is None or not math.isfinite(nz(seconds, float("nan"))):
        return "N/A"
    s = max(0.0, float(seconds))
    h = int(s // 3600)
    m = int((s % 3600) // 60)
    return f"{h}ч {m:02d}м"


def fmt_money(v: float, currency: str) -> str:
    s = f"{nz(v):,.2f}".replace(",", " ")
    if s.endswith(".00"):
        s = s[:-3]
    return CURRENCY_SYMBOLS.get(currency, currency + " ") + s


def _line(label: str, value: str, width: int = 14) -> str:
    return f"  {label:<28}{value:>{width}}\n"


def _finite_positive(value, label: str) -> float:
    if isinstance(value, bool):
        raise InvalidInput(f"{label} must be a positive number, got {value!r}")
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{label} must be a positive number, got {value!r}") from None
    if not math.isfinite(f) or f <= 0:
        raise InvalidInput(f"{label} must be a positive number, got {value!r}")
    return f


def validate_dimensions(dimensions) -> Dimensions:
    """Dimensions | {"width","depth","height"} | (w, d, h) -> Dimensions; иначе InvalidInput."""
    if dimensions is None:
        raise InvalidInput("dimensions are required")
    if isinstance(dimensions, Dimensions):
        w, d, h = dimensions.as_tuple()
    elif isinstance(dimensions, dict):
        missing = [k for k in ("width", "depth", "height") if k not in dimensions]
        if missing:
            raise InvalidInput(f"dimensions: missing field(s) {', '.join(missing)}")
        w, d, h = dimensions["width"], dimensions["depth"], dimensions["height"]
    else:
        try:
            w, d, h = dimensions
        except (TypeError, ValueError):
            raise InvalidInput(f"dimensions: expected (width, depth, height), got {dimensions!r}") from None
    return Dimensions(
        _finite_positive(w, "width"),
        _finite_positive(d, "depth"),
        _finite_positive(h, "height"),
    )


def validate_volume(volume_cm3) -> float:
    return _finite_positive(volume_cm3, "volume")


# ---------- Материалы и стоимость ----------
@dataclass(frozen=True)
class MaterialUsage:
    powder_kg: float
    binder_ml: float
    silica_g: float
    glaze_g: float

    @property
    def total_weight_g(self) -> float:
        return self.powder_kg * 1000.0 + self.silica_g + self.glaze_g


@dataclass(frozen=True)
class CostBreakdown:
    powder: float
    binder: float
    silica: float
    glaze: float
    total: float

    def to_dict(self) -> dict:
        return {"powder": self.powder, "binder": self.binder, "silica": self.silica,
                "glaze": self.glaze, "total": self.total}


@dataclass(frozen=True)
class CostResult:
    ok: bool
    currency: str
    usage: Optional[MaterialUsage] = None
    costs: Optional[CostBreakdown] = None
    warnings: Tuple[str, ...] = ()
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def total(self) -> float:
        return self.costs.total if self.costs is not None else 0.0


def glaze_usage_g(volume_cm3: float) -> float:
    """Глазурь, г. Свободный член — расход на нанесение, при V→0 остаётся 31.76 г."""
    return GLAZE_G_PER_CM3 * volume_cm3 + GLAZE_FIXED_G


def material_usage(volume_cm3: float, apply_glaze: bool, settings: Settings = DEFAULT_SETTINGS) -> MaterialUsage:
    return MaterialUsage(
        powder_kg=volume_cm3 * settings.powder_kg_per_cm3,
        binder_ml=volume_cm3 * settings.binder_ml_per_cm3,
        silica_g=volume_cm3 * settings.silica_g_per_cm3,
        glaze_g=glaze_usage_g(volume_cm3) if apply_glaze else 0.0,
    )


def _currency_warnings(currency: Optional[str], settings: Settings) -> Tuple[str, List[str]]:
    code, _, fallback = settings.resolve_prices(currency)
    out: List[str] = []
    if fallback:
        requested = currency or settings.currency
        out.append(f"Unsupported currency {requested!r}; using {code} pricing")
    return code, out


def calc_cost(
    dimensions,
    volume_cm3,
    *,
    apply_glaze: bool = True,
    currency: Optional[str] = None,
    settings: Settings = DEFAULT_SETTINGS,
) -> CostResult:
    """
    Расход материалов и стоимость одной детали.
    total = powder + binder + silica + glaze без промежуточных округлений.
    Не бросает: ошибка -> CostResult(ok=False, error=..., error_kind=...).
    """
    code = currency or settings.currency
    try:
        validate_dimensions(dimensions)
        vol = validate_volume(volume_cm3)
        code, warns = _currency_warnings(currency, settings)
        prices = settings.resolve_prices(code)[1]

        usage = material_usage(vol, bool(apply_glaze), settings)
        c_powder = usage.powder_kg * prices.powder
        c_binder = usage.binder_ml * prices.binder
        c_silica = usage.silica_g * prices.silica
        c_glaze = usage.glaze_g * prices.glaze
        costs = CostBreakdown(
            powder=c_powder,
            binder=c_binder,
            silica=c_silica,
            glaze=c_glaze,
            total=c_powder + c_binder + c_silica + c_glaze,
        )
        result = CostResult(ok=True, currency=code, usage=usage, costs=costs, warnings=tuple(warns))
    except Exception as exc:
        return CostResult(ok=False, currency=code, error=str(exc), error_kind=type(exc).__name__)
    # вне try: предупреждение не превращается в ok=False
    for msg in result.warnings:
        _warnings.warn(msg, UnsupportedCurrency, stacklevel=2)
    return result


# ---------- Раскладка одинаковых объектов на одном столе ----------
@dataclass(frozen=True)
class Position:
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class PackingResult:
    """
    Сетка countX × countY × countZ. Координаты — от внутреннего угла стола
    (уже за вычетом wall margin). Порядок позиций: z внешний, y средний, x внутренний.
    """
    fits_in_printer: bool
    count_x: int = 0
    count_y: int = 0
    count_z: int = 0
    total_objects: int = 0
    positions: Tuple[Position, ...] = ()
    bed_height_used: float = 0.0
    footprint: Tuple[float, float] = (0.0, 0.0)
    rotated: bool = False

    @property
    def arrangement(self) -> str:
        return f"{self.count_x} × {self.count_y} × {self.count_z}"

    def layer(self, k: int) -> List[Position]:
        """Позиции слоя k (рендер фильтрует по z)."""
        z_values = sorted({p.z for p in self.positions})
        if k < 0 or k >= len(z_values):
            return []
        z = z_values[k]
        return [p for p in self.positions if p.z == z]


NO_FIT = PackingResult(fits_in_printer=False)


def fits_in_printer(dimensions, printer: Printer, wall_margin: float, *, allow_rotation: bool = True) -> bool:
    """Помещается ли объект вообще; при allow_rotation пробуется и поворот на 90° в XY."""
    dims = validate_dimensions(dimensions)
    aw = printer.width - 2 * wall_margin
    ad = printer.depth - 2 * wall_margin
    if dims.height > printer.height:
        return False
    if dims.width <= aw and dims.depth <= ad:
        return True
    return bool(allow_rotation and dims.depth <= aw and dims.width <= ad)


def generate_positions(width: float, depth: float, height: float,
                       count_x: int, count_y: int, count_z: int, spacing: float) -> Tuple[Position, ...]:
    return tuple(
        Position(i * (width + spacing), j * (depth + spacing), k * height)
        for k in range(count_z)
        for j in range(count_y)
        for i in range(count_x)
    )


def pack_single_bed(
    dimensions,
    printer: Printer,
    settings: Settings = DEFAULT_SETTINGS,
    *,
    allow_rotation: bool = False,
) -> PackingResult:
    """
    Сколько одинаковых коробок помещается на стол.
    По умолчанию поворот НЕ пробуется (как в исходном поведении);
    allow_rotation=True — опция: если не влезает как есть, пробуем depth × width.
    """
    dims = validate_dimensions(dimensions)
    margin = settings.wall_margin
    spacing = settings.object_spacing
    aw = printer.width - 2 * margin
    ad = printer.depth - 2 * margin

    w, d, h = dims.as_tuple()
    rotated = False
    if w > aw or d > ad or h > printer.height:
        if not (allow_rotation and d <= aw and w <= ad and h <= printer.height):
            return NO_FIT
        w, d = d, w
        rotated = True

    count_x = math.floor((aw + spacing) / (w + spacing))
    count_y = math.floor((ad + spacing) / (d + spacing))
    count_z = math.floor(printer.height / h)
    return PackingResult(
        fits_in_printer=True,
        count_x=count_x,
        count_y=count_y,
        count_z=count_z,
        total_objects=count_x * count_y * count_z,
        positions=generate_positions(w, d, h, count_x, count_y, count_z, spacing),
        bed_height_used=count_z * h,
        footprint=(w, d),
        rotated=rotated,
    )


@dataclass(frozen=True)
class PrinterEstimate:
    printer: Printer
    packing: PackingResult
    print_time_s: Optional[float]     # None == "N/A" (не помещается)
    batch_cost: float

    def to_dict(self) -> dict:
        p = self.packing
        return {
            "printer": self.printer.name,
            "fitsInPrinter": p.fits_in_printer,
            "countX": p.count_x,
            "countY": p.count_y,
            "countZ": p.count_z,
            "totalObjects": p.total_objects,
            "arrangement": p.arrangement,
            "bedHeightUsed": p.bed_height_used,
            "printTime": self.print_time_s if self.print_time_s is not None else "N/A",
            "batchCost": self.batch_cost,
        }


def printer_estimate(
    dimensions,
    printer: Printer,
    unit_cost: float,
    settings: Settings = DEFAULT_SETTINGS,
    *,
    allow_rotation: bool = False,
) -> PrinterEstimate:
    packing = pack_single_bed(dimensions, printer, settings, allow_rotation=allow_rotation)
    if not packing.fits_in_printer:
        return PrinterEstimate(printer=printer, packing=packing, print_time_s=None, batch_cost=0.0)
    t = print_time_seconds(packing.bed_height_used, printer.layer_time_s, settings.layer_height_mm)
    return PrinterEstimate(
        printer=printer,
        packing=packing,
        print_time_s=t,
        batch_cost=packing.total_objects * unit_cost,
    )


# ---------- Ориентация ----------
@dataclass(frozen=True)
class OrientedLayout:
    name: str
    dimensions: Dimensions
    print_time_s: float
    scale: float = 1.0

    @property
    def scaled(self) -> bool:
        return self.scale < 1.0


@dataclass(frozen=True)
class OrientationSet:
    raw: Dimensions
    flat: OrientedLayout
    vertical: OrientedLayout

    def get(self, name: str) -> OrientedLayout:
        if name == "flat":
            return self.flat
        if name == "vertical":
            return self.vertical
        raise InvalidInput(f"Unknown orientation {name!r}; expected one of {', '.join(ORIENTATIONS)}")


def resolve_orientation(raw, settings: Settings = DEFAULT_SETTINGS) -> OrientationSet:
    """
    flat: самый короткий размер по Z (меньше слоёв, больше площадь);
    vertical: самый длинный по Z. Считается всегда от исходных размеров.
    Если длинный размер выше самого высокого принтера, vertical масштабируется
    равномерно до его высоты (политика «уменьшить до размера», scale < 1).
    """
    dims = validate_dimensions(raw)
    s, m, l = sorted(dims.as_tuple())
    ref = settings.reference_printer
    lh = settings.layer_height_mm

    flat = OrientedLayout(
        name="flat",
        dimensions=Dimensions(l, m, s),
        print_time_s=print_time_seconds(s, ref.layer_time_s, lh),
    )

    max_h = settings.tallest_printer.height
    if l <= max_h:
        vertical = OrientedLayout(
            name="vertical",
            dimensions=Dimensions(s, m, l),
            print_time_s=print_time_seconds(l, ref.layer_time_s, lh),
        )
    else:
        k = max_h / l
        vertical = OrientedLayout(
            name="vertical",
            dimensions=Dimensions(s * k, m * k, max_h),
            print_time_s=print_time_seconds(max_h, ref.layer_time_s, lh),
            scale=k,
        )
    return OrientationSet(raw=dims, flat=flat, vertical=vertical)


# ---------- Сводный расчёт ----------
@dataclass(frozen=True)
class JobEstimate:
    ok: bool
    dimensions: Optional[Dimensions]
    volume_cm3: float
    cost: Optional[CostResult]
    printers: Dict[str, PrinterEstimate] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def print_time_s(self) -> Optional[float]:
        """Опорное время: максимум по принтерам, куда объект помещается."""
        times = [p.print_time_s for p in self.printers.values() if p.print_time_s is not None]
        return max(times) if times else None

    def to_dict(self) -> dict:
        out = {
            "ok": self.ok,
            "dimensions": self.dimensions.to_dict() if self.dimensions else None,
            "volume": self.volume_cm3,
            "currency": self.cost.currency if self.cost else None,
            "materialUsage": None,
            "costs": None,
            "printers": {k: v.to_dict() for k, v in self.printers.items()},
            "warnings": list(self.warnings),
            "error": self.error,
        }
        if self.cost is not None and self.cost.ok:
            u = self.cost.usage
            out["materialUsage"] = {"powder": u.powder_kg, "binder": u.binder_ml,
                                    "silica": u.silica_g, "glaze": u.glaze_g}
            out["costs"] = self.cost.costs.to_dict()
        return out


def estimate_job(
    dimensions,
    volume_cm3,
    *,
    apply_glaze: bool = True,
    currency: Optional[str] = None,
    settings: Settings = DEFAULT_SETTINGS,
    allow_rotation: bool = False,
) -> JobEstimate:
    """Стоимость детали + раскладка/время/стоимость партии на каждом принтере. Не бросает."""
    cost = calc_cost(dimensions, volume_cm3, apply_glaze=apply_glaze, currency=currency, settings=settings)
    if not cost.ok:
        return JobEstimate(ok=False, dimensions=None, volume_cm3=nz(volume_cm3), cost=cost,
                           error=cost.error, error_kind=cost.error_kind)
    try:
        dims = validate_dimensions(dimensions)
        printers = {
            key: printer_estimate(dims, printer, cost.total, settings, allow_rotation=allow_rotation)
            for key, printer in settings.printers.items()
        }
    except Exception as exc:
        return JobEstimate(ok=False, dimensions=None, volume_cm3=nz(volume_cm3), cost=cost,
                           error=str(exc), error_kind=type(exc).__name__)
    return JobEstimate(ok=True, dimensions=dims, volume_cm3=float(volume_cm3), cost=cost,
                       printers=printers, warnings=cost.warnings)


@dataclass(frozen=True)
class StlEstimate:
    ok: bool
    analysis: Optional[MeshAnalysis] = None
    orientations: Optional[OrientationSet] = None
    orientation: str = "flat"
    job: Optional[JobEstimate] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


def estimate_stl(
    buf,
    *,
    orientation: str = "flat",
    apply_glaze: bool = True,
    currency: Optional[str] = None,
    settings: Settings = DEFAULT_SETTINGS,
    analysis: Optional[MeshAnalysis] = None,
) -> StlEstimate:
    """
    Полный поток: байты STL -> объём/габариты -> ориентация -> стоимость и раскладка.
    analysis можно передать готовым (посчитан в воркере). Не бросает.
    """
    try:
        if analysis is None:
            analysis = mesh_core.analyze_stl_bytes(buf, max_triangles=settings.max_stl_triangles)
        orientations = resolve_orientation(analysis.dimensions, settings)
        layout = orientations.get(orientation)
    except (MalformedMesh, MeshTooLarge, InvalidInput) as exc:
        return StlEstimate(ok=False, analysis=analysis, orientation=orientation,
                           error=str(exc), error_kind=type(exc).__name__)
    volume = analysis.volume_cm3
    if layout.scaled:
        # объём масштабируется вместе с габаритами
        volume = volume * layout.scale ** 3
    job = estimate_job(layout.dimensions, volume, apply_glaze=apply_glaze,
                       currency=currency, settings=settings)
    if job.ok and layout.scaled:
        note = f"{layout.name} layout scaled to {layout.scale * 100:.1f}% to fit printer height"
        job = replace(job, warnings=tuple(job.warnings) + (note,))
    return StlEstimate(ok=job.ok, analysis=analysis, orientations=orientations, orientation=orientation,
                       job=job, error=job.error, error_kind=job.error_kind)


# ---------- Отчёт ----------
def render_report(job: JobEstimate, *, name: str = "Деталь", brief: bool = True) -> str:
    if not job.ok:
        return f"Деталь: {name}\nОшибка расчёта: {job.error}\n"

    cost = job.cost
    cur = cost.currency
    d = job.dimensions
    u = cost.usage
    c = cost.costs

    head = []
    head.append(f"Деталь: {name}\n")
    head.append(f"• Габариты: {d.width:.1f} × {d.depth:.1f} × {d.height:.1f} мм | Объём: {job.volume_cm3:.2f} см³\n")
    head.append(f"• Вес материалов: {u.total_weight_g:.1f} г | Время печати: {format_print_time(job.print_time_s)}\n")
    for w in job.warnings:
        head.append(f"• Внимание: {w}\n")
    head.append("-" * 42 + "\n")

    body = []
    rows = (("Порошок", c.powder, f"{u.powder_kg:.3f} кг"),
            ("Связующее", c.binder, f"{u.binder_ml:.2f} мл"),
            ("Кремнезём", c.silica, f"{u.silica_g:.2f} г"),
            ("Глазурь", c.glaze, f"{u.glaze_g:.2f} г"))
    for label, value, qty in rows:
        if brief and value <= 0:
            continue
        share = (value / c.total * 100.0) if c.total > 0 else 0.0
        line = _line(label, fmt_money(value, cur)).rstrip("\n")
        body.append(f"{line}  ({share:.1f}%)" + (f"  {qty}" if not brief else "") + "\n")
    body.append("-" * 42 + "\n")
    body.append(f"ИТОГО за штуку: {fmt_money(c.total, cur)}\n")

    for est in job.printers.values():
        pr = est.printer
        if est.packing.fits_in_printer:
            body.append(
                f"{pr.name}: {est.packing.arrangement} = {est.packing.total_objects} шт"
                f" | печать {format_print_time(est.print_time_s)}"
                f" | партия {fmt_money(est.batch_cost, cur)}\n"
            )
        else:
            body.append(
                f"{pr.name}: не помещается (макс. {pr.width:g} × {pr.depth:g} × {pr.height:g} мм)\n"
            )
    return "".join(head + body)

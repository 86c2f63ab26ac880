# -*- coding: utf-8 -*-
"""
material_core.py — расширенная оценка материалов: поддержки, отходы, глазурь по площади.

Геометрия на входе — явный вариант:
  MeshGeometry(triangles)            — треугольники (N, 3, 3), мм;
  BoxApproximation(width, depth, height) — коробка, мм.
Оценка поддержек грубая (эвристика), физику нависаний не моделируем.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

import mesh_core
from calc_core import fmt_money, glaze_usage_g, validate_dimensions, validate_volume
from calc_errors import InvalidInput
from settings_core import DEFAULT_SETTINGS, MaterialPrices, Settings

WASTE_POWDER = 0.05
WASTE_BINDER = 0.08
WASTE_SILICA = 0.03
WASTE_GLAZE = 0.10

SUPPORT_DENSITY = 0.3
GLAZE_THICKNESS_MM = 0.2
ECONOMIC_GLAZE_FACTOR = 0.9
OVERHANG_COS = float(np.cos(np.pi / 4))     # 45°
SUPPORT_HEIGHT_SHARE = 0.25
BOX_SUPPORT_SHARE = {"vertical": 0.15, "flat": 0.05}

GLAZE_FORMULAS = ("standard", "economic")


# ---------- Геометрия ----------
@dataclass(frozen=True, eq=False)
class MeshGeometry:
    triangles: np.ndarray

    @classmethod
    def from_stl_bytes(cls, buf, *, max_triangles: int = mesh_core.MAX_STL_TRIANGLES) -> "MeshGeometry":
        return cls(mesh_core.stl_triangles(buf, max_triangles=max_triangles))


@dataclass(frozen=True)
class BoxApproximation:
    width: float
    depth: float
    height: float


Geometry = Union[MeshGeometry, BoxApproximation]


def box_surface_mm2(width: float, depth: float, height: float) -> float:
    return 2.0 * (width * height + width * depth + depth * height)


def build_axis(tri: np.ndarray, orientation: str) -> int:
    """Ось печати для сетки: flat — по самому короткому габариту, vertical — по самому длинному."""
    mins, maxs = mesh_core.bbox(tri)
    ext = maxs - mins
    return int(np.argmax(ext)) if orientation == "vertical" else int(np.argmin(ext))


def estimate_support_volume(geometry: Optional[Geometry], orientation: str = "flat") -> float:
    """
    Объём поддержек, см³.
    Сетка: площадь граней, нормаль которых смотрит вниз круче 45° от оси печати,
    × четверть высоты объекта. Коробка: 15 % объёма для vertical, 5 % для flat.
    """
    if orientation not in BOX_SUPPORT_SHARE:
        raise InvalidInput(f"Unknown orientation {orientation!r}; expected flat or vertical")
    if geometry is None:
        return 0.0

    if isinstance(geometry, BoxApproximation):
        w, d, h = geometry.width, geometry.depth, geometry.height
        return w * d * h * BOX_SUPPORT_SHARE[orientation] / 1000.0

    tri = np.asarray(geometry.triangles, dtype=np.float64)
    if tri.size == 0:
        return 0.0
    axis = build_axis(tri, orientation)

    cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
    norm = np.linalg.norm(cross, axis=1)
    ok = norm > 0
    # компонента единичной нормали вдоль оси печати
    dot = np.zeros_like(norm)
    dot[ok] = cross[ok, axis] / norm[ok]
    overhang_area = float(0.5 * norm[dot < -OVERHANG_COS].sum())

    mins, maxs = mesh_core.bbox(tri)
    height = float(maxs[axis] - mins[axis])
    return overhang_area * height * SUPPORT_HEIGHT_SHARE / 1000.0


# ---------- Материалы ----------
@dataclass(frozen=True)
class MaterialLine:
    main: float
    support: float
    waste: float

    @property
    def total(self) -> float:
        return self.main + self.support + self.waste

    def to_dict(self) -> dict:
        return {"main": self.main, "support": self.support, "waste": self.waste, "total": self.total}


@dataclass(frozen=True)
class MaterialEstimate:
    powder_kg: MaterialLine
    binder_ml: MaterialLine
    silica_g: MaterialLine
    glaze_g: MaterialLine
    surface_cm2: float
    volume_cm3: float
    support_volume_cm3: float
    effective_support_cm3: float

    @property
    def total_weight_g(self) -> float:
        return self.powder_kg.total * 1000.0 + self.silica_g.total + self.glaze_g.total

    def to_dict(self) -> dict:
        return {
            "material": {
                "powder": self.powder_kg.to_dict(),
                "binder": self.binder_ml.to_dict(),
                "silica": self.silica_g.to_dict(),
                "glaze": self.glaze_g.to_dict(),
            },
            "surfaceArea": self.surface_cm2,
            "volume": self.volume_cm3,
            "supportVolume": self.support_volume_cm3,
            "effectiveSupportVolume": self.effective_support_cm3,
            "totalWeight": self.total_weight_g,
        }


def estimate_materials(
    volume_cm3: float,
    dimensions,
    *,
    apply_glaze: bool = True,
    glaze_formula: str = "standard",
    glaze_thickness_mm: float = GLAZE_THICKNESS_MM,
    include_supports: bool = False,
    support_volume_cm3: float = 0.0,
    support_density: float = SUPPORT_DENSITY,
    surface_mm2: Optional[float] = None,
    settings: Settings = DEFAULT_SETTINGS,
) -> MaterialEstimate:
    """
    Материалы с поддержками и отходами.
    surface_mm2 не задана — берётся площадь габаритной коробки 2(wh + wd + dh).
    Отходы: порошок 5 %, связующее 8 %, кремнезём 3 %, глазурь 10 % (от main + support).
    """
    vol = validate_volume(volume_cm3)
    dims = validate_dimensions(dimensions)
    if glaze_formula not in GLAZE_FORMULAS:
        raise InvalidInput(f"Unknown glaze formula {glaze_formula!r}; expected standard or economic")

    if surface_mm2 is None:
        surface_mm2 = box_surface_mm2(*dims.as_tuple())
    surface_cm2 = surface_mm2 / 100.0

    glaze = 0.0
    if apply_glaze:
        if glaze_formula == "standard":
            glaze = glaze_usage_g(vol)
        else:
            glaze = surface_cm2 * glaze_thickness_mm * ECONOMIC_GLAZE_FACTOR

    eff = support_volume_cm3 * support_density if include_supports and support_volume_cm3 > 0 else 0.0

    def line(per_cm3: float, waste: float) -> MaterialLine:
        main = vol * per_cm3
        sup = eff * per_cm3
        return MaterialLine(main, sup, (main + sup) * waste)

    return MaterialEstimate(
        powder_kg=line(settings.powder_kg_per_cm3, WASTE_POWDER),
        binder_ml=line(settings.binder_ml_per_cm3, WASTE_BINDER),
        silica_g=line(settings.silica_g_per_cm3, WASTE_SILICA),
        glaze_g=MaterialLine(glaze, 0.0, glaze * WASTE_GLAZE),
        surface_cm2=surface_cm2,
        volume_cm3=vol,
        support_volume_cm3=float(support_volume_cm3),
        effective_support_cm3=eff,
    )


def material_cost(estimate: MaterialEstimate, prices: MaterialPrices) -> dict:
    powder = estimate.powder_kg.total * prices.powder
    binder = estimate.binder_ml.total * prices.binder
    silica = estimate.silica_g.total * prices.silica
    glaze = estimate.glaze_g.total * prices.glaze
    return {"powder": powder, "binder": binder, "silica": silica, "glaze": glaze,
            "total": powder + binder + silica + glaze}


def render_material_report(estimate: MaterialEstimate, costs: dict, currency: str = "USD") -> str:
    rows = (
        ("Порошок", estimate.powder_kg, "кг", "powder", 3),
        ("Связующее", estimate.binder_ml, "мл", "binder", 1),
        ("Кремнезём", estimate.silica_g, "г", "silica", 1),
        ("Глазурь", estimate.glaze_g, "г", "glaze", 1),
    )
    out = ["Оценка материалов\n"]
    out.append(f"• Объём: {estimate.volume_cm3:.2f} см³ | Поверхность: {estimate.surface_cm2:.1f} см²\n")
    if estimate.effective_support_cm3 > 0:
        out.append(
            f"• Поддержки: {estimate.support_volume_cm3:.2f} см³"
            f" (эффективно {estimate.effective_support_cm3:.2f} см³)\n"
        )
    out.append("-" * 42 + "\n")
    for label, ln, unit, key, nd in rows:
        out.append(
            f"  {label:<12}{ln.main:>10.{nd}f} + {ln.support:.{nd}f} + {ln.waste:.{nd}f}"
            f" = {ln.total:.{nd}f} {unit}  {fmt_money(costs.get(key, 0.0), currency)}\n"
        )
    out.append("-" * 42 + "\n")
    out.append(f"Вес: {estimate.total_weight_g:.1f} г | ИТОГО: {fmt_money(costs.get('total', 0.0), currency)}\n")
    return "".join(out)

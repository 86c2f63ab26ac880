# -*- coding: utf-8 -*-
"""
settings_core.py — конфигурация калькулятора порошковой печати.

- Settings — неизменяемое значение; каждая публичная функция расчёта получает его
  параметром. Передача Settings в вызов и есть «снимок» на входе: смена настроек
  видна в следующем расчёте и не видна в уже идущем.
- Формат хранения (совместим с сохранёнными проектами):
    {currency, printerType, wallMargin, objectSpacing,
     materials: {powderDensity, binderRatio, silicaDensity, prices}}
- Битые/отсутствующие поля не валят загрузку: берётся значение по умолчанию,
  в список warnings добавляется пояснение.
"""
from __future__ import annotations

import copy
import json
import math
import os
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from calc_errors import ConfigError


# ---------- Утилиты ----------
def nz(v, d=0.0) -> float:
    try:
        f = float(v)
        if math.isfinite(f):
            return f
    except (TypeError, ValueError):
        pass
    return d


def deep_merge(dst: dict, src: dict) -> dict:
    """Глубокое слияние словарей src в dst (in-place). Возвращает dst."""
    for k, v in (src or {}).items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            deep_merge(dst[k], v)
        else:
            dst[k] = v
    return dst


def set_by_dotted_path(d: dict, path: str, value):
    """Устанавливает значение по точечному пути (например, 'materials.prices.USD.powder')."""
    keys = path.split('.')
    cur = d
    for k in keys[:-1]:
        if k not in cur or not isinstance(cur[k], dict):
            cur[k] = {}
        cur = cur[k]
    cur[keys[-1]] = value


def parse_kv_override(pairs):
    """Парсит список key=val. Пытается привести val к bool/int/float, иначе оставляет строкой."""
    out = {}
    for kv in pairs or []:
        if '=' not in kv:
            raise ValueError(f"Invalid override '{kv}', expected key=val")
        k, v = kv.split('=', 1)
        vv = v
        try:
            if v.lower() in ('true', 'false'):
                vv = (v.lower() == 'true')
            elif '.' in v:
                vv = float(v)
            else:
                vv = int(v)
        except ValueError:
            pass
        set_by_dotted_path(out, k, vv)
    return out


# ---------- Типы ----------
@dataclass(frozen=True)
class Printer:
    name: str
    width: float
    depth: float
    height: float
    layer_time_s: float      # секунд на слой 0.1 мм


@dataclass(frozen=True)
class MaterialPrices:
    """Цена за единицу: порошок за кг, связующее за мл, кремнезём за г, глазурь за г."""
    powder: float
    binder: float
    silica: float
    glaze: float

    def to_dict(self) -> dict:
        return {"powder": self.powder, "binder": self.binder, "silica": self.silica, "glaze": self.glaze}


# ---------- Defaults ----------
DEFAULT_CURRENCY = "USD"
DEFAULT_PRINTER_TYPE = "400"
DEFAULT_WALL_MARGIN = 10.0       # мм от стенки
DEFAULT_OBJECT_SPACING = 15.0    # мм между объектами
LAYER_HEIGHT_MM = 0.1

POWDER_KG_PER_CM3 = 0.002        # 2 г на см³
BINDER_ML_PER_CM3 = 0.27         # 270 мл на литр
SILICA_G_PER_CM3 = 0.55
GLAZE_G_PER_CM3 = 0.1615
GLAZE_FIXED_G = 31.76            # фиксированный расход на нанесение, не ноль при V→0

DEFAULT_PRINTERS: Dict[str, Printer] = {
    "400": Printer("Printer 400", 390.0, 290.0, 200.0, 45.0),
    "600": Printer("Printer 600", 595.0, 600.0, 250.0, 35.0),
}

DEFAULT_PRICES: Dict[str, MaterialPrices] = {
    "USD": MaterialPrices(powder=100.0, binder=0.09, silica=0.072, glaze=91 / 9000),
    "EUR": MaterialPrices(powder=92.857, binder=0.085, silica=0.069, glaze=88 / 9000),
    "JPY": MaterialPrices(powder=200000 / 14, binder=250000 / 20000, silica=11.0, glaze=14000 / 9000),
    "SGD": MaterialPrices(powder=135.0, binder=0.12, silica=0.10, glaze=0.01365),
}

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "JPY": "¥", "SGD": "S$"}


@dataclass(frozen=True)
class Settings:
    currency: str = DEFAULT_CURRENCY
    printer_type: str = DEFAULT_PRINTER_TYPE
    wall_margin: float = DEFAULT_WALL_MARGIN
    object_spacing: float = DEFAULT_OBJECT_SPACING
    powder_kg_per_cm3: float = POWDER_KG_PER_CM3
    binder_ml_per_cm3: float = BINDER_ML_PER_CM3
    silica_g_per_cm3: float = SILICA_G_PER_CM3
    prices: Mapping[str, MaterialPrices] = field(default_factory=lambda: dict(DEFAULT_PRICES))
    printers: Mapping[str, Printer] = field(default_factory=lambda: dict(DEFAULT_PRINTERS))
    time_reference_printer: str = "600"
    layer_height_mm: float = LAYER_HEIGHT_MM
    max_stl_triangles: int = 5_000_000

    def __post_init__(self):
        # словари — копия только для чтения: снаружи Settings не меняется
        object.__setattr__(self, "prices", MappingProxyType(dict(self.prices)))
        object.__setattr__(self, "printers", MappingProxyType(dict(self.printers)))

    @property
    def printer(self) -> Printer:
        return (self.printers.get(self.printer_type) or self.printers.get(DEFAULT_PRINTER_TYPE)
                or next(iter(self.printers.values())))

    @property
    def reference_printer(self) -> Printer:
        return self.printers.get(self.time_reference_printer) or self.printer

    @property
    def tallest_printer(self) -> Printer:
        return max(self.printers.values(), key=lambda p: p.height)

    def resolve_prices(self, currency: str | None = None) -> Tuple[str, MaterialPrices, bool]:
        """
        (валюта, прайс, fallback). Неизвестная валюта — прайс DEFAULT_CURRENCY и fallback=True.
        """
        code = currency or self.currency
        if code in self.prices:
            return code, self.prices[code], False
        return DEFAULT_CURRENCY, self.prices.get(DEFAULT_CURRENCY, DEFAULT_PRICES[DEFAULT_CURRENCY]), True


DEFAULT_SETTINGS = Settings()


# ---------- Разбор хранимого формата ----------
def _positive(value, default: float, label: str, warnings: List[str], *, allow_zero: bool = False) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        warnings.append(f"{label}: expected number, got {value!r}; using default {default}")
        return default
    f = nz(value, float("nan"))
    if math.isnan(f) or f < 0 or (f == 0 and not allow_zero):
        warnings.append(f"{label}: invalid value {value!r}; using default {default}")
        return default
    return f


def _parse_prices(raw, warnings: List[str]) -> Dict[str, MaterialPrices]:
    merged = {code: p.to_dict() for code, p in DEFAULT_PRICES.items()}
    if raw is None:
        return dict(DEFAULT_PRICES)
    if not isinstance(raw, dict):
        warnings.append("materials.prices: expected object {currency: {...}}; using defaults")
        return dict(DEFAULT_PRICES)

    out: Dict[str, MaterialPrices] = {}
    for code, row in raw.items():
        if not isinstance(row, dict):
            warnings.append(f"materials.prices.{code}: expected object; ignored")
            continue
        base = merged.get(code, {})
        vals = {}
        for key in ("powder", "binder", "silica", "glaze"):
            default = base.get(key)
            v = nz(row.get(key), float("nan")) if key in row else float("nan")
            if math.isnan(v) or v < 0:
                if default is None:
                    vals = None
                    break
                if key in row:
                    warnings.append(f"materials.prices.{code}.{key}: invalid value {row.get(key)!r}; using default")
                v = default
            vals[key] = v
        if vals is None:
            warnings.append(f"materials.prices.{code}: incomplete price table; ignored")
            continue
        out[str(code)] = MaterialPrices(**vals)

    result = dict(DEFAULT_PRICES)
    result.update(out)
    return result


def settings_from_dict(data, *, printers: Optional[Mapping[str, Printer]] = None) -> Tuple[Settings, List[str]]:
    """Хранимый формат -> (Settings, warnings). Никогда не бросает на уровне полей."""
    warnings: List[str] = []
    if not isinstance(data, dict):
        warnings.append("settings: expected object; using defaults")
        return DEFAULT_SETTINGS, warnings

    currency = data.get("currency", DEFAULT_CURRENCY)
    if not isinstance(currency, str) or not currency:
        warnings.append(f"currency: invalid value {currency!r}; using default {DEFAULT_CURRENCY}")
        currency = DEFAULT_CURRENCY

    printer_type = str(data.get("printerType", DEFAULT_PRINTER_TYPE))
    known = printers if printers else DEFAULT_PRINTERS
    if printer_type not in known:
        fallback = DEFAULT_PRINTER_TYPE if DEFAULT_PRINTER_TYPE in known else next(iter(known))
        warnings.append(f"printerType: unknown printer {printer_type!r}; using {fallback}")
        printer_type = fallback

    wall_margin = _positive(data.get("wallMargin"), DEFAULT_WALL_MARGIN, "wallMargin", warnings, allow_zero=True)
    spacing = _positive(data.get("objectSpacing"), DEFAULT_OBJECT_SPACING, "objectSpacing", warnings, allow_zero=True)

    materials = data.get("materials")
    if materials is None:
        materials = {}
    elif not isinstance(materials, dict):
        warnings.append("materials: expected object; using defaults")
        materials = {}

    prices = _parse_prices(materials.get("prices"), warnings)
    if currency not in prices:
        warnings.append(f"currency: no price table for {currency!r}; calculations fall back to {DEFAULT_CURRENCY}")

    settings = Settings(
        currency=currency,
        printer_type=printer_type,
        wall_margin=wall_margin,
        object_spacing=spacing,
        powder_kg_per_cm3=_positive(materials.get("powderDensity"), POWDER_KG_PER_CM3, "materials.powderDensity", warnings),
        binder_ml_per_cm3=_positive(materials.get("binderRatio"), BINDER_ML_PER_CM3, "materials.binderRatio", warnings),
        silica_g_per_cm3=_positive(materials.get("silicaDensity"), SILICA_G_PER_CM3, "materials.silicaDensity", warnings),
        prices=prices,
        printers=known,
    )
    return settings, warnings


def settings_to_dict(settings: Settings) -> dict:
    return {
        "currency": settings.currency,
        "printerType": settings.printer_type,
        "wallMargin": settings.wall_margin,
        "objectSpacing": settings.object_spacing,
        "materials": {
            "powderDensity": settings.powder_kg_per_cm3,
            "binderRatio": settings.binder_ml_per_cm3,
            "silicaDensity": settings.silica_g_per_cm3,
            "prices": {code: p.to_dict() for code, p in settings.prices.items()},
        },
    }


def apply_overrides(settings: Settings, override: dict) -> Tuple[Settings, List[str]]:
    """Мердж override (в хранимом формате) поверх settings; разбор — через settings_from_dict."""
    base = settings_to_dict(settings)
    deep_merge(base, copy.deepcopy(override or {}))
    new, warnings = settings_from_dict(base, printers=settings.printers)
    # поля вне хранимого формата переносим как есть
    new = replace(
        new,
        printers=settings.printers,
        time_reference_printer=settings.time_reference_printer,
        layer_height_mm=settings.layer_height_mm,
        max_stl_triangles=settings.max_stl_triangles,
    )
    return new, warnings


# ---------- Файлы ----------
def load_settings_json(path: str) -> Tuple[Settings, List[str]]:
    """settings.json -> (Settings, warnings). Нет файла / битый JSON — ConfigError."""
    if not os.path.exists(path):
        raise ConfigError(f"Settings file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(
            f"settings.json: JSON error ({e.msg}, line {e.lineno}, column {e.colno})"
        ) from None
    return settings_from_dict(data)


def save_settings_json(path: str, settings: Settings) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings_to_dict(settings), f, ensure_ascii=False, indent=2)

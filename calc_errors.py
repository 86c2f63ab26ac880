# -*- coding: utf-8 -*-
"""
calc_errors.py — таксономия ошибок калькулятора порошковой печати.

Все «доменные» ошибки наследуют ValueError: код, который ловит ValueError
(как было принято в ядре калькулятора), продолжает работать.
"""
from __future__ import annotations


class InvalidInput(ValueError):
    """Неположительный/нечисловой размер или объём, отсутствует обязательное поле."""


class MalformedMesh(ValueError):
    """Обрезанный буфер, число треугольников не сходится с длиной, не бинарный STL."""


class MeshTooLarge(ValueError):
    """Число треугольников больше настроенного потолка."""


class NoValidPlacement(ValueError):
    """Объект не помещается даже на пустой стол (фильтр на входе был обойдён)."""


class ConfigError(Exception):
    """Файл настроек целиком непригоден (нет файла, битый JSON)."""


class UnsupportedCurrency(UserWarning):
    """Валюта не найдена в прайсе — расчёт идёт по валюте по умолчанию."""

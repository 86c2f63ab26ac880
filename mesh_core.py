# -*- coding: utf-8 -*-
"""
mesh_core.py — анализ бинарного STL: объём (теорема о дивергенции) и габариты.

Цели:
- Чистая функция от буфера байтов: без файлов, без глобального состояния.
- Один и тот же код вызывается и в воркере, и в текущем потоке (mesh_worker.py),
  поэтому результат побитно совпадает при любом пути исполнения.
- Большие сетки обрабатываются кусками фиксированного размера (ограниченная память,
  точки передачи управления через on_chunk).

Допущение: сетка замкнутая и согласованно ориентированная. Проверку манифолдности
анализатор НЕ выполняет — для «дырявой» сетки объём будет неточным.
"""
from __future__ import annotations

import struct
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Tuple

import numpy as np

from calc_errors import MalformedMesh, MeshTooLarge


STL_HEADER_BYTES = 80
STL_COUNT_BYTES = 4
STL_RECORD_BYTES = 50
MAX_STL_TRIANGLES = 5_000_000
STL_CHUNK_TRIANGLES = 250_000

# 12 байт нормали, 3 вершины по 12 байт, 2 байта атрибута, без выравнивания
_STL_RECORD = np.dtype([
    ("normal", "<f4", (3,)),
    ("vertices", "<f4", (3, 3)),
    ("attr", "<u2"),
])

_ASCII_STL_MESSAGE = "ASCII STL detected; export the file as Binary STL"


# ---------- Типы ----------
@dataclass(frozen=True)
class Dimensions:
    """Габариты в мм. Проверка положительности — на входе публичных функций (calc_core)."""
    width: float
    depth: float
    height: float

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.width, self.depth, self.height)

    def to_dict(self) -> dict:
        return {"width": self.width, "depth": self.depth, "height": self.height}


@dataclass(frozen=True)
class MeshAnalysis:
    """Результат анализа сетки. calc_seconds и mode не участвуют в сравнении."""
    volume_cm3: float
    dimensions: Dimensions
    triangle_count: int
    bbox_min: Tuple[float, float, float]
    bbox_max: Tuple[float, float, float]
    calc_seconds: float = field(default=0.0, compare=False)
    mode: str = field(default="inline", compare=False)   # inline | worker | fallback

    def with_mode(self, mode: str) -> "MeshAnalysis":
        return replace(self, mode=mode)

    def to_dict(self) -> dict:
        return {
            "volume_cm3": self.volume_cm3,
            "dimensions": self.dimensions.to_dict(),
            "triangle_count": self.triangle_count,
            "min": list(self.bbox_min),
            "max": list(self.bbox_max),
            "calc_seconds": self.calc_seconds,
            "mode": self.mode,
        }


# ---------- Валидация буфера ----------
def _looks_like_ascii_stl(prefix: bytes) -> bool:
    stripped = prefix.lstrip()
    if not stripped.lower().startswith(b"solid"):
        return False
    text = prefix.decode("utf-8", errors="ignore").lower()
    return ("facet" in text) and ("vertex" in text)


def read_stl_triangle_count(buf, *, max_triangles: int = MAX_STL_TRIANGLES) -> int:
    """
    Проверяет разметку бинарного STL и возвращает число треугольников N.
    Буфер короче 84 + 50*N — MalformedMesh; N больше потолка — MeshTooLarge.
    Хвост после последней записи игнорируется.
    """
    try:
        view = memoryview(buf)
    except TypeError:
        raise MalformedMesh("Malformed binary STL: expected a bytes-like buffer") from None
    size = view.nbytes
    prefix = bytes(view[:8192])
    ascii_like = _looks_like_ascii_stl(prefix)

    head = STL_HEADER_BYTES + STL_COUNT_BYTES
    if size < head:
        if ascii_like:
            raise MalformedMesh(_ASCII_STL_MESSAGE)
        raise MalformedMesh("Malformed binary STL: file too small")

    count = struct.unpack_from("<I", prefix, STL_HEADER_BYTES)[0]
    expected_size = head + STL_RECORD_BYTES * count
    if ascii_like and expected_size != size:
        raise MalformedMesh(_ASCII_STL_MESSAGE)

    if count > max_triangles:
        raise MeshTooLarge(f"STL limit exceeded: triangles={count} > {max_triangles}")

    if size < expected_size:
        raise MalformedMesh(f"Malformed binary STL: expected {expected_size} bytes, got {size}")
    return count


def _records(buf, count: int) -> np.ndarray:
    return np.frombuffer(buf, dtype=_STL_RECORD, count=count, offset=STL_HEADER_BYTES + STL_COUNT_BYTES)


def _chunk_vertices(records: np.ndarray, start: int, stop: int) -> np.ndarray:
    part = records["vertices"][start:stop].astype(np.float64)
    if not np.isfinite(part).all():
        raise MalformedMesh("Malformed binary STL: non-finite vertex coordinate")
    return part


def stl_triangles(buf, *, max_triangles: int = MAX_STL_TRIANGLES) -> np.ndarray:
    """Все треугольники как массив (N, 3, 3) float64, мм."""
    count = read_stl_triangle_count(buf, max_triangles=max_triangles)
    if count == 0:
        return np.zeros((0, 3, 3), dtype=np.float64)
    return _chunk_vertices(_records(buf, count), 0, count)


# ---------- Геометрия ----------
def signed_volume6(tri: np.ndarray) -> float:
    """Сумма v1 · (v2 × v3) по треугольникам (6 × объём со знаком, мм³)."""
    if tri.size == 0:
        return 0.0
    v0 = tri[:, 0]; v1 = tri[:, 1]; v2 = tri[:, 2]
    vol6 = np.einsum('ij,ij->i', v0, np.cross(v1, v2))
    return float(vol6.sum())


def volume_cm3(tri: np.ndarray) -> float:
    return abs(signed_volume6(tri)) / 6.0 / 1000.0


def surface_area_mm2(tri: np.ndarray) -> float:
    if tri.size == 0:
        return 0.0
    v0 = tri[:, 0]; v1 = tri[:, 1]; v2 = tri[:, 2]
    return float(0.5 * np.linalg.norm(np.cross(v1 - v0, v2 - v0), axis=1).sum())


def bbox(tri: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    if tri.size == 0:
        zero = np.zeros(3, dtype=np.float64)
        return zero, zero.copy()
    pts = tri.reshape(-1, 3)
    return pts.min(axis=0), pts.max(axis=0)


def dimensions_of(tri: np.ndarray) -> Dimensions:
    mins, maxs = bbox(tri)
    dx, dy, dz = (maxs - mins)
    return Dimensions(float(dx), float(dy), float(dz))


# ---------- Публичный анализ ----------
def analyze_stl_bytes(
    buf,
    *,
    max_triangles: int = MAX_STL_TRIANGLES,
    chunk_triangles: int = STL_CHUNK_TRIANGLES,
    on_chunk: Optional[Callable[[int, int], None]] = None,
) -> MeshAnalysis:
    """
    Объём (см³) и габариты (мм) бинарного STL.

    Объём и bbox считаются за один проход кусками по chunk_triangles.
    on_chunk(done, total) вызывается после каждого куска — точка уступки для
    вызывающего кода в интерактивном потоке; на результат не влияет.
    """
    t0 = time.perf_counter()
    count = read_stl_triangle_count(buf, max_triangles=max_triangles)
    step = max(1, int(chunk_triangles))

    total6 = 0.0
    mins = np.full(3, np.inf)
    maxs = np.full(3, -np.inf)
    if count:
        records = _records(buf, count)
        for start in range(0, count, step):
            stop = min(count, start + step)
            part = _chunk_vertices(records, start, stop)
            total6 += signed_volume6(part)
            pts = part.reshape(-1, 3)
            mins = np.minimum(mins, pts.min(axis=0))
            maxs = np.maximum(maxs, pts.max(axis=0))
            if on_chunk is not None:
                on_chunk(stop, count)
    else:
        mins = np.zeros(3)
        maxs = np.zeros(3)

    dx, dy, dz = (maxs - mins)
    return MeshAnalysis(
        volume_cm3=abs(total6) / 6.0 / 1000.0,
        dimensions=Dimensions(float(dx), float(dy), float(dz)),
        triangle_count=int(count),
        bbox_min=(float(mins[0]), float(mins[1]), float(mins[2])),
        bbox_max=(float(maxs[0]), float(maxs[1]), float(maxs[2])),
        calc_seconds=time.perf_counter() - t0,
    )


def analyze_stl_file(path: str, **kwargs) -> MeshAnalysis:
    with open(path, "rb") as f:
        data = f.read()
    return analyze_stl_bytes(data, **kwargs)


def format_file_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"

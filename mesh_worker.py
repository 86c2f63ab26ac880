# -*- coding: utf-8 -*-
"""
mesh_worker.py — вынос анализа STL из интерактивного потока.

Ключевые гарантии:
• В воркер уходит КОПИЯ буфера, обратно приходит копия результата; общего
  изменяемого состояния нет.
• Сбой воркера (пул сломан, процесс упал, не удалось отправить задачу) — повтор
  синхронно в текущем потоке тем же mesh_core.analyze_stl_bytes. Ошибки самого
  файла (MalformedMesh / MeshTooLarge) не повторяются — это ответ для этого файла.
• Несколько файлов: ошибка одного файла попадает в errors и не мешает остальным,
  порядок результатов стабилен (сортировка по имени).
• Слот загрузки (LatestOnly): новый файл вытесняет ещё не готовый старый —
  старый Future отменяется, очереди нет.
"""
from __future__ import annotations

import threading
from concurrent.futures import Executor, Future, ProcessPoolExecutor, as_completed
from typing import Dict, Iterable, List, Optional, Tuple

import mesh_core
from calc_errors import MalformedMesh, MeshTooLarge
from mesh_core import MAX_STL_TRIANGLES, MeshAnalysis

_FILE_ERRORS = (MalformedMesh, MeshTooLarge)


def analyze_inline(buf, *, max_triangles: int = MAX_STL_TRIANGLES) -> MeshAnalysis:
    return mesh_core.analyze_stl_bytes(bytes(buf), max_triangles=max_triangles)


def analyze_offloaded(
    buf,
    *,
    executor: Optional[Executor] = None,
    max_triangles: int = MAX_STL_TRIANGLES,
) -> MeshAnalysis:
    """
    Анализ в воркере (по умолчанию — отдельный процесс) с откатом в текущий поток.
    mode результата: "worker" либо "fallback".
    """
    data = bytes(buf)
    own = executor is None
    try:
        if own:
            executor = ProcessPoolExecutor(max_workers=1)
        fut = executor.submit(mesh_core.analyze_stl_bytes, data, max_triangles=max_triangles)
        return fut.result().with_mode("worker")
    except _FILE_ERRORS:
        raise
    except Exception:
        # воркер недоступен: тот же расчёт синхронно
        return mesh_core.analyze_stl_bytes(data, max_triangles=max_triangles).with_mode("fallback")
    finally:
        if own and executor is not None:
            executor.shutdown(wait=True)


def analyze_many(
    buffers: Iterable[Tuple[str, bytes]],
    *,
    workers: int = 1,
    executor: Optional[Executor] = None,
    max_triangles: int = MAX_STL_TRIANGLES,
) -> Tuple[List[Tuple[str, MeshAnalysis]], List[dict]]:
    """
    Пакетный анализ (имя, байты). Возвращает (results, errors):
      results — [(имя, MeshAnalysis)] по имени; errors — [{"file", "error"}].
    executor задан — файлы идут в него; иначе пул процессов при workers > 1.
    """
    items = [(name, bytes(data)) for name, data in buffers]
    results: List[Tuple[str, MeshAnalysis]] = []
    errors: List[dict] = []

    def _inline(name: str, data: bytes, mode: str) -> None:
        try:
            results.append((name, mesh_core.analyze_stl_bytes(data, max_triangles=max_triangles).with_mode(mode)))
        except Exception as exc:
            errors.append({"file": name, "error": str(exc)})

    def _run(ex: Executor) -> None:
        futs: Dict[Future, Tuple[str, bytes]] = {}
        for name, data in items:
            try:
                futs[ex.submit(mesh_core.analyze_stl_bytes, data, max_triangles=max_triangles)] = (name, data)
            except Exception:
                # пул не принял задачу
                _inline(name, data, "fallback")
        for fut in as_completed(futs):
            name, data = futs[fut]
            try:
                results.append((name, fut.result().with_mode("worker")))
            except _FILE_ERRORS as exc:
                errors.append({"file": name, "error": str(exc)})
            except Exception:
                _inline(name, data, "fallback")

    # Параллель: по файлам, только если файлов>1 и workers>1
    if executor is not None:
        _run(executor)
    elif workers and workers > 1 and len(items) > 1:
        with ProcessPoolExecutor(max_workers=int(workers)) as ex:
            _run(ex)
    else:
        for name, data in items:
            _inline(name, data, "inline")

    # стабильный порядок для вывода/тестов
    results.sort(key=lambda r: r[0])
    errors.sort(key=lambda e: e["file"])
    return results, errors


class LatestOnly:
    """
    Один слот загрузки: submit() нового буфера отменяет предыдущий незавершённый запрос.
    Отменённый Future.result() бросает CancelledError.
    """

    def __init__(self, executor: Executor, *, max_triangles: int = MAX_STL_TRIANGLES):
        self._executor = executor
        self._max_triangles = max_triangles
        self._lock = threading.RLock()
        self._generation = 0
        self._inflight: Optional[Tuple[Future, Future]] = None

    @property
    def generation(self) -> int:
        return self._generation

    def submit(self, buf) -> Future:
        data = bytes(buf)
        outer: Future = Future()
        with self._lock:
            self._generation += 1
            gen = self._generation
            prev = self._inflight
            if prev is not None:
                prev_inner, prev_outer = prev
                prev_inner.cancel()
                prev_outer.cancel()
            try:
                inner = self._executor.submit(
                    mesh_core.analyze_stl_bytes, data, max_triangles=self._max_triangles
                )
            except Exception:
                # пул не принял задачу: считаем сразу, слот свободен
                self._inflight = None
                outer.set_running_or_notify_cancel()
                try:
                    outer.set_result(
                        mesh_core.analyze_stl_bytes(data, max_triangles=self._max_triangles).with_mode("fallback")
                    )
                except Exception as exc:
                    outer.set_exception(exc)
                return outer
            self._inflight = (inner, outer)
            inner.add_done_callback(lambda f: self._finish(gen, data, f, outer))
        return outer

    def _finish(self, gen: int, data: bytes, inner: Future, outer: Future) -> None:
        with self._lock:
            stale = gen != self._generation
            if not stale and self._inflight is not None and self._inflight[1] is outer:
                self._inflight = None
        if stale or inner.cancelled():
            outer.cancel()
            return
        if not outer.set_running_or_notify_cancel():
            return
        exc = inner.exception()
        if exc is None:
            outer.set_result(inner.result().with_mode("worker"))
        elif isinstance(exc, _FILE_ERRORS):
            outer.set_exception(exc)
        else:
            try:
                outer.set_result(
                    mesh_core.analyze_stl_bytes(data, max_triangles=self._max_triangles).with_mode("fallback")
                )
            except Exception as fallback_exc:
                outer.set_exception(fallback_exc)

import argparse
import os
import time

import batch_core
import calc_core
import mesh_core
from settings_core import DEFAULT_SETTINGS


def _bench_file(path: str, qty: int, orientation: str) -> batch_core.BatchItemSpec:
    started = time.perf_counter()
    analysis = mesh_core.analyze_stl_file(path)
    layout = calc_core.resolve_orientation(analysis.dimensions).get(orientation)
    cost = calc_core.calc_cost(layout.dimensions, analysis.volume_cm3)
    elapsed_s = time.perf_counter() - started
    print(
        f"stl file={path} size={mesh_core.format_file_size(os.path.getsize(path))} "
        f"triangles={analysis.triangle_count} volume_cm3={analysis.volume_cm3:.6f} "
        f"elapsed_s={elapsed_s:.6f}"
    )
    d = layout.dimensions
    return batch_core.BatchItemSpec(
        id=os.path.basename(path), width=d.width, depth=d.depth, height=d.height,
        volume=analysis.volume_cm3, unit_cost=cost.total, quantity=qty,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark STL analysis + batch packing.")
    parser.add_argument("stl", nargs="+", help="Paths to binary STL files.")
    parser.add_argument("--qty", type=int, default=10, help="Copies of every file.")
    parser.add_argument("--printer", default=DEFAULT_SETTINGS.printer_type, choices=sorted(DEFAULT_SETTINGS.printers))
    parser.add_argument("--orientation", default="flat", choices=calc_core.ORIENTATIONS)
    args = parser.parse_args()

    specs = [_bench_file(p, args.qty, args.orientation) for p in args.stl]

    printer = DEFAULT_SETTINGS.printers[args.printer]
    started = time.perf_counter()
    result = batch_core.pack_for_printer(specs, printer)
    elapsed_s = time.perf_counter() - started
    print(
        f"pack printer={args.printer} items={result.total_items} packed={result.packed_items} "
        f"batches={result.batch_count} print_time_s={result.print_time_s:.0f} elapsed_s={elapsed_s:.6f}"
    )


if __name__ == "__main__":
    main()

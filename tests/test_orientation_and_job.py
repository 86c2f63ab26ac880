import pytest

from calc_core import estimate_job, estimate_stl, resolve_orientation
from calc_errors import InvalidInput
from helpers_stl import ASCII_STL, box_stl
from mesh_core import Dimensions
from settings_core import DEFAULT_PRINTERS, Printer, Settings


def test_flat_and_vertical_layouts():
    o = resolve_orientation(Dimensions(30.0, 100.0, 10.0))
    assert o.flat.dimensions == Dimensions(100.0, 30.0, 10.0)
    assert o.vertical.dimensions == Dimensions(10.0, 30.0, 100.0)
    # опорный принтер "600": 35 с на слой
    assert o.flat.print_time_s == 100 * 35
    assert o.vertical.print_time_s == 1000 * 35
    assert not o.flat.scaled and not o.vertical.scaled


def test_resolution_is_idempotent_from_raw_dimensions():
    raw = (42.0, 7.5, 19.0)
    first = resolve_orientation(raw)
    assert resolve_orientation(raw) == first
    # повторное разрешение от уже повёрнутых размеров даёт то же самое
    assert resolve_orientation(first.vertical.dimensions).flat == first.flat
    assert resolve_orientation(first.flat.dimensions).vertical == first.vertical


def test_vertical_is_scaled_to_tallest_printer():
    o = resolve_orientation((50.0, 100.0, 400.0))
    v = o.vertical
    assert v.scaled
    assert v.scale == pytest.approx(250.0 / 400.0)
    assert v.dimensions.as_tuple() == pytest.approx((31.25, 62.5, 250.0))
    assert v.print_time_s == 2500 * 35
    assert o.flat.dimensions == Dimensions(400.0, 100.0, 50.0)
    assert not o.flat.scaled


def test_reference_printer_is_configurable():
    s = Settings(time_reference_printer="400")
    assert resolve_orientation((10, 10, 10), s).flat.print_time_s == 100 * 45


def test_tallest_printer_follows_settings():
    printers = dict(DEFAULT_PRINTERS, tall=Printer("Tall", 300.0, 300.0, 500.0, 60.0))
    o = resolve_orientation((50.0, 100.0, 400.0), Settings(printers=printers))
    assert not o.vertical.scaled


def test_unknown_orientation_name():
    with pytest.raises(InvalidInput):
        resolve_orientation((1, 2, 3)).get("diagonal")


def test_estimate_job_for_reference_cube():
    job = estimate_job((50, 50, 50), 125.0)
    assert job.ok
    p400, p600 = job.printers["400"], job.printers["600"]
    assert p400.packing.total_objects == 80
    assert p400.print_time_s == 90000
    assert (p600.packing.count_x, p600.packing.count_y, p600.packing.count_z) == (9, 9, 5)
    assert p600.print_time_s == 2500 * 35
    assert p400.batch_cost == pytest.approx(80 * job.cost.total)
    assert job.print_time_s == 90000
    d = job.to_dict()
    assert d["ok"] is True
    assert d["costs"]["total"] == job.cost.total
    assert d["printers"]["400"]["totalObjects"] == 80


def test_estimate_job_only_large_printer_fits():
    job = estimate_job((450, 100, 100), 500.0)
    assert job.ok
    assert job.printers["400"].print_time_s is None
    assert job.printers["600"].packing.fits_in_printer
    assert job.to_dict()["printers"]["400"]["printTime"] == "N/A"


def test_estimate_job_nothing_fits():
    job = estimate_job((1000, 1000, 1000), 500.0)
    assert job.ok
    assert job.print_time_s is None


def test_estimate_job_invalid_input():
    job = estimate_job((50, 0, 50), 125.0)
    assert not job.ok
    assert job.error_kind == "InvalidInput"
    assert job.printers == {}
    assert job.to_dict()["costs"] is None


def test_estimate_stl_full_flow():
    res = estimate_stl(box_stl(50.0, 50.0, 50.0, (10.0, 20.0, 30.0)))
    assert res.ok
    assert res.analysis.volume_cm3 == pytest.approx(125.0)
    assert res.job.printers["400"].packing.total_objects == 80


def test_estimate_stl_uses_selected_orientation():
    data = box_stl(20.0, 100.0, 10.0)
    flat = estimate_stl(data, orientation="flat")
    vertical = estimate_stl(data, orientation="vertical")
    assert flat.job.dimensions == Dimensions(100.0, 20.0, 10.0)
    assert vertical.job.dimensions == Dimensions(10.0, 20.0, 100.0)
    assert flat.job.cost.total == vertical.job.cost.total


@pytest.mark.parametrize(
    "data, kind",
    [(box_stl(10.0, 10.0, 10.0)[:-1], "MalformedMesh"), (ASCII_STL, "MalformedMesh"), (b"\0" * 84, "InvalidInput")],
)
def test_estimate_stl_failures_are_returned(data, kind):
    res = estimate_stl(data)
    assert not res.ok
    assert res.error_kind == kind
    assert res.error


@pytest.mark.parametrize("data", [None, "not bytes"])
def test_estimate_stl_non_buffer_is_returned(data):
    res = estimate_stl(data)
    assert not res.ok
    assert res.error_kind == "MalformedMesh"
    assert "bytes-like" in res.error


def test_estimate_stl_scaled_vertical_uses_scaled_volume():
    data = box_stl(50.0, 100.0, 400.0)
    res = estimate_stl(data, orientation="vertical")
    assert res.ok
    assert res.orientations.vertical.scaled
    assert res.analysis.volume_cm3 == pytest.approx(2000.0)
    assert res.job.dimensions.as_tuple() == pytest.approx((31.25, 62.5, 250.0))
    assert res.job.volume_cm3 == pytest.approx(2000.0 * 0.625 ** 3)
    assert res.job.cost.total == pytest.approx(
        estimate_job((31.25, 62.5, 250.0), 2000.0 * 0.625 ** 3).cost.total
    )
    assert any("62.5%" in w for w in res.job.warnings)


def test_estimate_stl_unscaled_layout_has_no_scale_warning():
    res = estimate_stl(box_stl(50.0, 100.0, 400.0), orientation="flat")
    assert res.job.volume_cm3 == pytest.approx(2000.0)
    assert res.job.warnings == ()

import pytest

from calc_core import (
    fits_in_printer,
    layer_count,
    pack_single_bed,
    print_time_seconds,
    printer_estimate,
)
from calc_errors import InvalidInput
from mesh_core import Dimensions
from settings_core import DEFAULT_PRINTERS, DEFAULT_SETTINGS, Settings

P400 = DEFAULT_PRINTERS["400"]
P600 = DEFAULT_PRINTERS["600"]


def test_reference_cube_on_printer_400():
    res = pack_single_bed(Dimensions(50.0, 50.0, 50.0), P400)
    assert res.fits_in_printer
    assert (res.count_x, res.count_y, res.count_z) == (5, 4, 4)
    assert res.total_objects == 80
    assert len(res.positions) == 80
    assert res.arrangement == "5 × 4 × 4"
    assert res.bed_height_used == 200.0


def test_positions_order_z_outer_y_middle_x_inner():
    res = pack_single_bed(Dimensions(50.0, 50.0, 50.0), P400)
    p = res.positions
    assert (p[0].x, p[0].y, p[0].z) == (0.0, 0.0, 0.0)
    assert (p[1].x, p[1].y, p[1].z) == (65.0, 0.0, 0.0)
    assert (p[5].x, p[5].y, p[5].z) == (0.0, 65.0, 0.0)
    assert (p[20].x, p[20].y, p[20].z) == (0.0, 0.0, 50.0)
    assert len(res.layer(0)) == 20
    assert {q.z for q in res.layer(3)} == {150.0}
    assert res.layer(4) == []


@pytest.mark.parametrize("dims", [(50, 50, 50), (37.5, 81.2, 12.3), (120, 60, 199), (370, 270, 200), (5, 5, 5)])
@pytest.mark.parametrize("printer", [P400, P600])
def test_packing_invariants(dims, printer):
    s = DEFAULT_SETTINGS
    res = pack_single_bed(dims, printer)
    assert res.fits_in_printer
    assert res.count_x * res.count_y * res.count_z == res.total_objects == len(res.positions)
    w, d, h = dims
    for p in res.positions:
        # координаты от внутреннего угла стола
        assert p.x >= 0 and p.y >= 0
        assert s.wall_margin + p.x + w <= printer.width - s.wall_margin + 1e-9
        assert s.wall_margin + p.y + d <= printer.depth - s.wall_margin + 1e-9
        assert p.z + h <= printer.height + 1e-9


def test_does_not_fit():
    res = pack_single_bed(Dimensions(500.0, 50.0, 50.0), P400)
    assert not res.fits_in_printer
    assert (res.count_x, res.count_y, res.count_z, res.total_objects) == (0, 0, 0, 0)
    assert res.positions == ()


def test_too_tall_does_not_fit():
    assert not pack_single_bed((50, 50, 201), P400).fits_in_printer


def test_rotation_is_opt_in():
    dims = Dimensions(100.0, 300.0, 50.0)
    assert not pack_single_bed(dims, P400).fits_in_printer
    res = pack_single_bed(dims, P400, allow_rotation=True)
    assert res.fits_in_printer and res.rotated
    assert res.footprint == (300.0, 100.0)
    assert (res.count_x, res.count_y, res.count_z) == (1, 2, 4)


def test_fits_in_printer_helper():
    dims = Dimensions(100.0, 300.0, 50.0)
    assert fits_in_printer(dims, P400, 10.0)
    assert not fits_in_printer(dims, P400, 10.0, allow_rotation=False)
    assert not fits_in_printer((100, 100, 250), P400, 10.0)
    assert fits_in_printer((100, 100, 250), P600, 10.0)


def test_settings_margin_and_spacing_are_used():
    tight = Settings(wall_margin=0.0, object_spacing=0.0)
    res = pack_single_bed((50, 50, 50), P400, tight)
    assert (res.count_x, res.count_y, res.count_z) == (7, 5, 4)


def test_invalid_dimensions_raise():
    with pytest.raises(InvalidInput):
        pack_single_bed((0, 50, 50), P400)


def test_layer_count_is_robust_to_float_noise():
    assert layer_count(50.0, 0.1) == 500
    assert layer_count(0.3, 0.1) == 3
    assert layer_count(0.31, 0.1) == 4
    assert print_time_seconds(200.0, 45.0, 0.1) == 90000.0


def test_printer_estimate_time_and_batch_cost():
    est = printer_estimate((50, 50, 50), P400, unit_cost=2.5)
    assert est.print_time_s == 2000 * 45
    assert est.batch_cost == pytest.approx(80 * 2.5)
    d = est.to_dict()
    assert d["arrangement"] == "5 × 4 × 4"
    assert d["printTime"] == 90000


def test_printer_estimate_not_fit_is_na():
    est = printer_estimate((500, 50, 50), P400, unit_cost=2.5)
    assert est.print_time_s is None
    assert est.batch_cost == 0.0
    assert est.to_dict()["printTime"] == "N/A"

import numpy as np
import pytest

from calc_errors import InvalidInput
from helpers_stl import box_stl, box_triangles
from material_core import (
    BoxApproximation,
    MeshGeometry,
    box_surface_mm2,
    estimate_materials,
    estimate_support_volume,
    material_cost,
    render_material_report,
)
from settings_core import DEFAULT_PRICES


def test_box_surface():
    assert box_surface_mm2(50.0, 50.0, 50.0) == 15000.0
    assert box_surface_mm2(10.0, 20.0, 30.0) == 2 * (10 * 30 + 10 * 20 + 20 * 30)


def test_standard_estimate_with_waste():
    est = estimate_materials(125.0, (50, 50, 50))
    assert est.powder_kg.main == pytest.approx(0.25)
    assert est.powder_kg.support == 0.0
    assert est.powder_kg.total == pytest.approx(0.25 * 1.05)
    assert est.binder_ml.total == pytest.approx(33.75 * 1.08)
    assert est.silica_g.total == pytest.approx(68.75 * 1.03)
    assert est.glaze_g.main == pytest.approx(0.1615 * 125 + 31.76)
    assert est.glaze_g.total == pytest.approx((0.1615 * 125 + 31.76) * 1.1)
    assert est.surface_cm2 == pytest.approx(150.0)
    assert est.total_weight_g == pytest.approx(
        est.powder_kg.total * 1000 + est.silica_g.total + est.glaze_g.total
    )


def test_economic_glaze_uses_surface():
    est = estimate_materials(125.0, (50, 50, 50), glaze_formula="economic")
    assert est.glaze_g.main == pytest.approx(150.0 * 0.2 * 0.9)


def test_surface_from_mesh_overrides_box():
    est = estimate_materials(125.0, (50, 50, 50), glaze_formula="economic", surface_mm2=10000.0)
    assert est.surface_cm2 == 100.0


def test_no_glaze():
    est = estimate_materials(125.0, (50, 50, 50), apply_glaze=False)
    assert est.glaze_g.total == 0.0


def test_supports_scaled_by_density():
    est = estimate_materials(125.0, (50, 50, 50), include_supports=True, support_volume_cm3=10.0)
    assert est.effective_support_cm3 == pytest.approx(3.0)
    assert est.powder_kg.support == pytest.approx(3.0 * 0.002)
    assert est.powder_kg.waste == pytest.approx((0.25 + 0.006) * 0.05)
    off = estimate_materials(125.0, (50, 50, 50), include_supports=False, support_volume_cm3=10.0)
    assert off.effective_support_cm3 == 0.0


def test_invalid_inputs():
    with pytest.raises(InvalidInput):
        estimate_materials(0.0, (50, 50, 50))
    with pytest.raises(InvalidInput):
        estimate_materials(1.0, (50, 50, 50), glaze_formula="fancy")


def test_box_support_heuristic():
    box = BoxApproximation(100.0, 100.0, 50.0)
    assert estimate_support_volume(box, "flat") == pytest.approx(25.0)
    assert estimate_support_volume(box, "vertical") == pytest.approx(75.0)


def test_mesh_support_counts_downward_facets():
    geo = MeshGeometry(np.array(box_triangles(100.0, 100.0, 50.0), dtype=np.float64))
    # плоско: ось печати z, вниз смотрит только дно 100 × 100, высота 50
    assert estimate_support_volume(geo, "flat") == pytest.approx(100 * 100 * 50 * 0.25 / 1000)


def test_mesh_geometry_from_stl():
    geo = MeshGeometry.from_stl_bytes(box_stl(10.0, 20.0, 5.0))
    assert geo.triangles.shape == (12, 3, 3)
    assert estimate_support_volume(geo, "flat") == pytest.approx(10 * 20 * 5 * 0.25 / 1000)


def test_support_edge_cases():
    assert estimate_support_volume(None) == 0.0
    assert estimate_support_volume(MeshGeometry(np.zeros((0, 3, 3)))) == 0.0
    with pytest.raises(InvalidInput):
        estimate_support_volume(BoxApproximation(1, 1, 1), "sideways")


def test_material_cost_and_report():
    est = estimate_materials(125.0, (50, 50, 50))
    costs = material_cost(est, DEFAULT_PRICES["EUR"])
    assert costs["powder"] == pytest.approx(est.powder_kg.total * 92.857)
    assert costs["total"] == costs["powder"] + costs["binder"] + costs["silica"] + costs["glaze"]
    text = render_material_report(est, costs, "EUR")
    assert "Оценка материалов" in text
    assert "ИТОГО: €" in text
    assert est.to_dict()["material"]["glaze"]["total"] == pytest.approx(est.glaze_g.total)

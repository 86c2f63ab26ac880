import pytest

from batch_core import BatchItemSpec, pack_for_printer, render_batch_report
from calc_core import estimate_job, fmt_money, format_print_time, render_report
from settings_core import DEFAULT_PRINTERS


@pytest.mark.parametrize(
    "seconds, text",
    [(None, "N/A"), (0, "0ч 00м"), (3599, "0ч 59м"), (3660, "1ч 01м"), (90000, "25ч 00м"), (87500, "24ч 18м")],
)
def test_format_print_time(seconds, text):
    assert format_print_time(seconds) == text


def test_fmt_money():
    assert fmt_money(1234.5, "USD") == "$1 234.50"
    assert fmt_money(25.0, "USD") == "$25"
    assert fmt_money(3.1, "EUR") == "€3.10"
    assert fmt_money(7.0, "GBP") == "GBP 7"


def test_job_report():
    text = render_report(estimate_job((50, 50, 50), 125.0), name="cube.stl")
    assert text.startswith("Деталь: cube.stl\n")
    assert "50.0 × 50.0 × 50.0 мм" in text
    assert "Объём: 125.00 см³" in text
    assert "ИТОГО за штуку: $" in text
    assert "Printer 400: 5 × 4 × 4 = 80 шт | печать 25ч 00м" in text
    assert "Printer 600: 9 × 9 × 5 = 405 шт" in text


def test_job_report_not_fit_and_no_glaze():
    text = render_report(estimate_job((450, 100, 100), 500.0, apply_glaze=False))
    assert "Printer 400: не помещается (макс. 390 × 290 × 200 мм)" in text
    assert "Глазурь" not in text


def test_failed_job_report():
    text = render_report(estimate_job((50, 50, 50), -1))
    assert "Ошибка расчёта" in text
    assert "volume" in text


def test_batch_report():
    specs = [
        BatchItemSpec("a", 100, 100, 50, 10.0, 2.0, quantity=3),
        BatchItemSpec("huge", 999, 10, 10, 1.0, 1.0),
    ]
    res = pack_for_printer(specs, DEFAULT_PRINTERS["400"])
    text = render_batch_report(res, currency="USD", printer_name="Printer 400")
    assert text.startswith("Раскладка по партиям — Printer 400\n")
    assert "Штук: 3 из 4" in text
    assert "Партия 1: 3 шт, высота 50.0 мм, печать 6ч 15м" in text
    assert "Не поместились: huge-0" in text

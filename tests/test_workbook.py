from __future__ import annotations

from datetime import date
from io import BytesIO
from pathlib import Path
from typing import Any

import pytest
import requests
from openpyxl import load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from rfq_ingest import workbook as workbook_mod
from rfq_ingest.aggregate import aggregate_items
from rfq_ingest.models import AggregatedGroup, ExtractedItem
from rfq_ingest.workbook import (
    COVER_SHEET,
    InvoiceDetails,
    assemble_workbook,
    assemble_workbooks,
    currency_format,
    fetch_asset,
    get_profile,
    output_file_name,
    write_workbooks,
)

ISSUED = date(2026, 1, 5)


def _item(description: str, price: float, qty: float | None = 1, tab: str = "PROVISIONS",
          currency: str = "£") -> ExtractedItem:
    total = price * (qty or 1)
    return ExtractedItem(position=1, description=description, qty=qty, raw_price=price,
                         raw_total=total, currency=currency, tab=tab)


def _group(*items: ExtractedItem, label: str = "Provisions") -> AggregatedGroup:
    (group,) = aggregate_items(items)
    return AggregatedGroup(label=label, items=group.items, record_count=group.record_count,
                           sum_of_totals=group.sum_of_totals, currency=group.currency)


def _reload(content: bytes) -> Any:
    return load_workbook(BytesIO(content))


def _row_of(ws: Worksheet, column: str, value: Any) -> int:
    for cell in ws[column]:
        if cell.value == value:
            return cell.row
    raise AssertionError(f"{value!r} not found in column {column}")


# ── Category sheets ──────────────────────────────────────────────


def test_items_sheet_writes_formulas_and_exact_sum_range() -> None:
    group = _group(_item("Rice", 2.5, 4), _item("Beans", 1.0, None))
    wb = assemble_workbook([group], company="UK", currency="£")
    ws = wb["Provisions"]

    assert [c.value for c in ws[1]] == ["Pos", "Description", "Remark", "Unit", "Qty",
                                        "Price", "Total"]
    assert ws["B2"].value == "RICE"
    assert ws["G2"].value == "=E2*F2"
    assert ws["G3"].value == "=E3*F3"
    assert ws["E3"].value == 1
    assert ws["F5"].value == "TOTAL PROVISIONS"
    assert ws["G5"].value == "=SUM(G2:G3)"
    assert ws["F2"].number_format == currency_format("£")


def test_empty_group_totals_to_literal_zero() -> None:
    wb = assemble_workbook([AggregatedGroup(label="Bond")], currency="$")
    ws = wb["Bond"]
    assert ws["G3"].value == 0
    assert ws["F3"].value == "TOTAL BOND"


def test_formula_like_text_is_escaped() -> None:
    group = _group(_item("=HYPERLINK(\"x\")", 1.0))
    ws = assemble_workbook([group])["Provisions"]
    assert ws["B2"].value.startswith("'=")


def test_currency_number_formats() -> None:
    assert currency_format("NZ$") == '"NZ$"#,##0.00'
    assert currency_format("€") == "€#,##0.00"
    assert currency_format("") == "£#,##0.00"
    assert currency_format(None) == "£#,##0.00"


# ── Cover sheet ──────────────────────────────────────────────────


def test_cover_sheet_references_category_totals() -> None:
    groups = [
        _group(_item("Rice", 2.0), _item("Beans", 3.0), label="Provisions"),
        _group(_item("Whisky", 10.0, tab="BOND"), label="Bond"),
    ]
    details = InvoiceDetails(number="7", invoice_date=ISSUED, vessel="MV Aurora")
    wb = _reload(_save(assemble_workbook(groups, company="US", details=details, currency="£")))
    cover = wb[COVER_SHEET]

    assert wb.sheetnames == [COVER_SHEET, "Provisions", "Bond"]
    first = _row_of(cover, "B", "PROVISIONS")
    assert cover[f"G{first}"].value == "='Provisions'!G5"
    assert cover[f"G{first + 1}"].value == "='Bond'!G4"
    assert cover[f"E{first}"].value == 2
    assert cover[f"C{first}"].value == "GBP"

    subtotal = first + 3
    assert cover[f"F{subtotal}"].value == "TOTAL GBP"
    assert cover[f"G{subtotal}"].value == f"=SUM(G{first}:G{first + 1})"
    assert cover[f"F{_row_of(cover, 'E', 'Invoice Date:')}"].value == "January 05, 2026"
    assert cover.print_area is not None


def test_cover_sheet_discount_fees_and_usd_line() -> None:
    details = InvoiceDetails(number="9", invoice_date=ISSUED, discount_percent=10,
                             delivery_fee=50, show_usd=True)
    wb = assemble_workbook([_group(_item("Rice", 2.0))], company="UK", details=details,
                           currency="£")
    cover = wb[COVER_SHEET]

    first = _row_of(cover, "B", "PROVISIONS")
    subtotal = first + 2
    assert cover[f"G{subtotal}"].value == f"=SUM(G{first}:G{first})"
    assert cover[f"F{subtotal + 2}"].value == "Discount:"
    assert cover[f"G{subtotal + 2}"].value == f"=-G{subtotal}*10.0/100"
    assert cover[f"F{subtotal + 3}"].value == "Delivery fee:"
    assert cover[f"G{subtotal + 3}"].value == 50.0
    grand = subtotal + 4
    assert cover[f"G{grand}"].value == f"=(SUM(G{first}:G{first})*(1-10/100))+G{subtotal + 3}"
    assert cover[f"F{grand + 1}"].value == "TOTAL USD"
    assert cover[f"G{grand + 1}"].value == f"=G{grand}*1.27"


def test_cover_sheet_without_entries_totals_zero() -> None:
    cover = assemble_workbook([], company="EOS")[COVER_SHEET]
    assert cover["A2"].value == "EOS SUPPLY LTD"
    assert 0 in [c.value for c in cover["G"]]


def test_uk_profile_lists_domestic_wires() -> None:
    cover = assemble_workbook([], company="uk")[COVER_SHEET]
    assert any(c.value == "UK DOMESTIC WIRES:" for c in cover["A"])


def test_unknown_company_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown company"):
        get_profile("FR")


def _save(wb: Any) -> bytes:
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


# ── Output files ─────────────────────────────────────────────────


def _tab_groups() -> list[AggregatedGroup]:
    return aggregate_items([
        _item("Rice", 2.0, tab="PROVISIONS"),
        _item("Whisky", 10.0, tab="BOND"),
        _item("Apples", 1.0, tab="FRESH PROVISIONS"),
    ])


def test_combined_output_uses_classified_category() -> None:
    details = InvoiceDetails(number="42", invoice_date=ISSUED)

    (output,) = assemble_workbooks(_tab_groups(), details=details, currency="£")

    assert output.file_name == "HIMarine_Invoice_42_2026-01-05.xlsx"
    assert output.category == "Bonds and Provisions"
    wb = _reload(output.content)
    assert wb.sheetnames == [COVER_SHEET, "Provisions", "Bond"]


def test_split_output_suffixes_invoice_numbers() -> None:
    details = InvoiceDetails(number="42", invoice_date=ISSUED)

    outputs = assemble_workbooks(_tab_groups(), details=details, currency="£", split=True)

    assert [o.file_name for o in outputs] == [
        "HIMarine_Invoice_42_Provisions_2026-01-05.xlsx",
        "HIMarine_Invoice_42a_Bond_2026-01-05.xlsx",
    ]
    bond = _reload(outputs[1].content)
    assert bond.sheetnames == [COVER_SHEET, "Bond"]
    cover = bond[COVER_SHEET]
    assert cover[f"F{_row_of(cover, 'E', 'No:')}"].value == "42a"


def test_split_with_single_category_yields_one_file() -> None:
    groups = aggregate_items([_item("Rice", 2.0, tab="PROVISIONS")])
    outputs = assemble_workbooks(groups, details=InvoiceDetails(number="1", invoice_date=ISSUED),
                                 split=True, company="EOS")
    assert [o.file_name for o in outputs] == ["EOS_Invoice_1_Provisions_2026-01-05.xlsx"]


def test_output_file_name_is_sanitized() -> None:
    name = output_file_name(get_profile("US"), "A/B:1", ISSUED)
    assert name == "HIMarine_Invoice_A_B_1_2026-01-05.xlsx"


def test_write_workbooks(tmp_path: Path) -> None:
    details = InvoiceDetails(number="5", invoice_date=ISSUED)
    outputs = assemble_workbooks(_tab_groups(), details=details, split=True)

    paths = write_workbooks(tmp_path / "out", outputs)

    assert [p.name for p in paths] == [o.file_name for o in outputs]
    assert all(p.exists() for p in paths)
    assert not list((tmp_path / "out").glob("*.tmp*"))


# ── Assets ───────────────────────────────────────────────────────


def test_unreachable_assets_do_not_block_export(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []

    def _boom(url: str, timeout: float) -> Any:
        calls.append(url)
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(workbook_mod.requests, "get", _boom)

    outputs = assemble_workbooks(_tab_groups(), asset_base_url="https://assets.example.com/",
                                 details=InvoiceDetails(number="3", invoice_date=ISSUED))

    assert len(outputs) == 1
    assert calls[0] == "https://assets.example.com/assets/images/HIMarineTopImage_sm.png"


def test_unreadable_image_bytes_are_skipped(monkeypatch: pytest.MonkeyPatch) -> None:
    class _Response:
        content = b"definitely not a png"

        def raise_for_status(self) -> None:
            return None

    monkeypatch.setattr(workbook_mod.requests, "get", lambda url, timeout: _Response())

    outputs = assemble_workbooks(_tab_groups(), asset_base_url="https://assets.example.com")

    assert _reload(outputs[0].content)[COVER_SHEET]._images == []


def test_fetch_asset_without_base_url_does_nothing() -> None:
    assert fetch_asset(None, "x.png", 1.0) is None
    assert fetch_asset("https://assets.example.com", None, 1.0) is None

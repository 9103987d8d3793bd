"""Excel invoice writer — cover sheet plus one formula-bearing sheet per category."""

from __future__ import annotations

import logging
import re
import string
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import date
from io import BytesIO
from pathlib import Path
from typing import Any

import requests
from openpyxl import Workbook
from openpyxl.drawing.image import Image
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.worksheet.page import PageMargins
from openpyxl.worksheet.worksheet import Worksheet
from PIL import UnidentifiedImageError

from rfq_ingest import OUTPUT_HEADERS
from rfq_ingest.aggregate import category_groups, classify_category
from rfq_ingest.io import write_bytes
from rfq_ingest.models import AggregatedGroup, ExtractedItem, OutputFile
from rfq_ingest.normalize import CURRENCY_LABELS
from rfq_ingest.utils import sanitize_file_name

logger = logging.getLogger(__name__)

# ── Style constants ──────────────────────────────────────────────

FONT_NAME = "Cambria"
HEADER_FONT = Font(name=FONT_NAME, bold=True, size=11, color="FFFFFF")
HEADER_ALIGN = Alignment(horizontal="center", vertical="center")
LABEL_FONT = Font(name=FONT_NAME, bold=True, size=11)
ITEM_FONT = Font(name=FONT_NAME, size=10)
TITLE_FONT = Font(name=FONT_NAME, bold=True, italic=True, size=16, color="0B2E66")
EOS_FONT = Font(name=FONT_NAME, bold=True, size=11, color="0B2E66")

LEFT = Alignment(horizontal="left", vertical="center")
LEFT_WRAP = Alignment(horizontal="left", vertical="center", wrap_text=True)
RIGHT = Alignment(horizontal="right", vertical="center")
CENTER = Alignment(horizontal="center", vertical="center")

_THIN = Side(style="thin")
CELL_BORDER = Border(top=_THIN, bottom=_THIN, left=_THIN, right=_THIN)

CURRENCY_FORMATS: dict[str, str] = {
    "NZ$": '"NZ$"#,##0.00',
    "A$": '"A$"#,##0.00',
    "C$": '"C$"#,##0.00',
    "€": "€#,##0.00",
    "$": "$#,##0.00",
    "£": "£#,##0.00",
}
DEFAULT_CURRENCY_FORMAT = "£#,##0.00"

# Approximate conversion used for the informational TOTAL USD line.
USD_RATES: dict[str, float] = {"£": 1.27, "€": 1.08, "A$": 0.66, "NZ$": 0.61, "C$": 0.73}

COLUMN_WIDTHS: dict[str, float] = {
    "A": 8, "B": 53.4, "C": 36.3, "D": 11.4, "E": 11.7, "F": 18.7, "G": 17.1,
}

TERMS_HEADER = (
    "By placing the order according to the above quotation "
    "you are accepting the following terms:"
)
PAYMENT_TERMS: tuple[tuple[str, str], ...] = (
    ("I.", "Credit days: 30 calendar days."),
    ("II.", "Accounts not paid in this time frame will be charged 10% interest rate "
            "per month, any discount given will be null and void."),
    ("III.", "Should collection or legal action be required to collect past dues, "
             "fees for such action will be added to your account."),
    ("IV.", "Subject to unsold. Final weights are subject to vendor packing standards."),
    ("V.", "If the transaction is canceled after the order is authorized, "
           "we have the right to collect the invoice without claim."),
)

COVER_SHEET = "Invoice"
_EXCEL_FORMULA_PREFIXES = ("=", "+", "-", "@")
_SHEET_TITLE_BAD_CHARS_RE = re.compile(r"[\[\]:*?/\\]")


def currency_format(symbol: str | None) -> str:
    return CURRENCY_FORMATS.get(symbol or "", DEFAULT_CURRENCY_FORMAT)


def currency_label(symbol: str | None) -> str:
    return CURRENCY_LABELS.get(symbol or "", "GBP")


# ── Company profiles ─────────────────────────────────────────────


@dataclass(frozen=True)
class CompanyProfile:
    code: str
    name: str
    address: tuple[str, ...]
    phone: str = ""
    email: str = ""
    bank_name: str = ""
    bank_address: str = ""
    iban: str = ""
    swift: str = ""
    account_title: str = ""
    account_number: str = ""
    sort_code: str = ""
    ach_routing: str = ""
    intermediary_bic: str = ""
    file_prefix: str = "HIMarine_Invoice"
    header_color: str = "808080"
    top_image: str | None = "assets/images/HIMarineTopImage_sm.png"
    bottom_image: str | None = "assets/images/HIMarineBottomBorder.png"


PROFILES: dict[str, CompanyProfile] = {
    "US": CompanyProfile(
        code="US",
        name="HI MARINE COMPANY INC.",
        address=("9407 N.E. Vancouver Mall Drive, Suite 104", "Vancouver, WA 98662", "USA"),
        phone="+1 857 2045786",
        email="office@himarinecompany.com",
        bank_name="Bank of America",
        bank_address="100 West 33d Street New York, New York 10001",
        account_number="466002755612",
        swift="BofAUS3N",
        ach_routing="011000138",
        account_title="Hi Marine Company Inc.",
    ),
    "UK": CompanyProfile(
        code="UK",
        name="HI MARINE COMPANY LIMITED",
        address=("167-169 Great Portland Street", "London W1W 5PF", "United Kingdom"),
        email="office@himarinecompany.com",
        bank_name="Lloyds Bank plc",
        bank_address="6 Market Place, Oldham, OL11JG",
        iban="GB84LOYD30962678553260",
        swift="LOYDGB21446",
        account_title="HI MARINE COMPANY LIMITED",
        account_number="78553260",
        sort_code="30-96-26",
    ),
    "EOS": CompanyProfile(
        code="EOS",
        name="EOS SUPPLY LTD",
        address=("85 Great Portland Street, First Floor", "London, England, W1W 7LT",
                 "United Kingdom"),
        phone="+44 730 7988228",
        email="office@eos-supply.co.uk",
        bank_name="Revolut Ltd",
        bank_address="7 Westferry Circus, London, England, E14 4HD",
        iban="GB64REVO00996912321885",
        swift="REVOGB21XXX",
        intermediary_bic="CHASGB2L",
        account_title="EOS SUPPLY LTD",
        account_number="69340501",
        sort_code="04-00-75",
        file_prefix="EOS_Invoice",
        header_color="0B2E66",
        top_image=None,
        bottom_image="assets/images/EosSupplyLtdBottomBorder.png",
    ),
}


def get_profile(code: str) -> CompanyProfile:
    try:
        return PROFILES[code.strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown company {code!r}. Use {', '.join(PROFILES)}") from None


@dataclass(frozen=True)
class InvoiceDetails:
    number: str = ""
    invoice_date: date | None = None
    vessel: str = ""
    country: str = ""
    port: str = ""
    category: str = ""
    due: str = ""
    discount_percent: float = 0.0
    delivery_fee: float = 0.0
    port_fee: float = 0.0
    agency_fee: float = 0.0
    transport_fee: float = 0.0
    launch_fee: float = 0.0
    show_usd: bool = False

    @property
    def issued(self) -> date:
        return self.invoice_date or date.today()

    def fee_lines(self) -> list[tuple[str, float]]:
        fees = [
            ("Delivery fee:", self.delivery_fee),
            ("Port fee:", self.port_fee),
            ("Agency fee:", self.agency_fee),
            ("Transport, Customs, Launch fees:", self.transport_fee),
            ("Launch:", self.launch_fee),
        ]
        return [(label, float(value)) for label, value in fees if value]


# ── Assets ───────────────────────────────────────────────────────


def fetch_asset(base_url: str | None, path: str | None, timeout: float) -> bytes | None:
    """Download a decorative image. Any failure is logged and yields ``None``."""
    if not base_url or not path:
        return None
    url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Skipping image %s: %s", url, exc)
        return None
    return response.content


def _add_image(ws: Worksheet, data: bytes | None, anchor: str, *, width: int | None = None) -> bool:
    if not data:
        return False
    try:
        img = Image(BytesIO(data))
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("Skipping unreadable image at %s: %s", anchor, exc)
        return False
    if width and img.width:
        img.height = int(img.height * width / img.width)
        img.width = width
    ws.add_image(img, anchor)
    return True


# ── Helpers ──────────────────────────────────────────────────────


def _excel_value(val: Any) -> Any:
    if isinstance(val, str):
        if val.startswith("'"):
            return val
        stripped = val.lstrip()
        if stripped and stripped[0] in _EXCEL_FORMULA_PREFIXES:
            return f"'{val}"
    return val


def _put(ws: Worksheet, ref: str, value: Any, font: Font = LABEL_FONT,
         align: Alignment = LEFT) -> None:
    cell = ws[ref]
    cell.value = value
    cell.font = font
    cell.alignment = align


def _style_header(ws: Worksheet, row: int, fill: PatternFill) -> None:
    for c_idx, title in enumerate(OUTPUT_HEADERS, 1):
        cell = ws.cell(row=row, column=c_idx, value=title)
        cell.font = HEADER_FONT
        cell.fill = fill
        cell.alignment = HEADER_ALIGN


def _set_widths(ws: Worksheet) -> None:
    for letter, width in COLUMN_WIDTHS.items():
        ws.column_dimensions[letter].width = width


def _sheet_title(label: str, taken: set[str]) -> str:
    base = _SHEET_TITLE_BAD_CHARS_RE.sub("_", label).strip().strip("'") or "Items"
    base = base[:31]
    title = base
    n = 2
    while title.lower() in taken:
        suffix = f" ({n})"
        title = f"{base[: 31 - len(suffix)]}{suffix}"
        n += 1
    taken.add(title.lower())
    return title


def _sheet_ref(title: str, cell: str) -> str:
    escaped = title.replace("'", "''")
    return f"'{escaped}'!{cell}"


def _qty_value(item: ExtractedItem) -> float:
    return item.qty if item.qty is not None else 1


# ── Category sheets ──────────────────────────────────────────────


def write_items_sheet(ws: Worksheet, group: AggregatedGroup, *, fill: PatternFill,
                      fallback_currency: str = "") -> str:
    """Write header, item rows and a totals row; return the totals cell (e.g. ``"G7"``).

    Each Total is ``=E{r}*F{r}``. The totals row sums exactly the written
    item rows, or holds a literal ``0`` when the group has no items.
    """
    _set_widths(ws)
    _style_header(ws, 1, fill)
    ws.freeze_panes = "A2"

    first = 2
    for offset, item in enumerate(group.items):
        r = first + offset
        fmt = currency_format(item.currency or group.currency or fallback_currency)
        values: list[tuple[Any, Alignment]] = [
            (offset + 1, CENTER),
            (_excel_value(item.description.upper()), LEFT_WRAP),
            (_excel_value(item.remark.upper()), LEFT_WRAP),
            (_excel_value(item.unit.upper()), CENTER),
            (_qty_value(item), CENTER),
            (round(float(item.price or 0.0), 2), RIGHT),
            (f"=E{r}*F{r}", RIGHT),
        ]
        for c_idx, (value, align) in enumerate(values, 1):
            cell = ws.cell(row=r, column=c_idx, value=value)
            cell.font = ITEM_FONT
            cell.alignment = align
            cell.border = CELL_BORDER
        ws.cell(row=r, column=6).number_format = fmt
        ws.cell(row=r, column=7).number_format = fmt

    last = first + len(group.items) - 1
    total_row = last + 2 if group.items else first + 1
    _put(ws, f"F{total_row}", f"TOTAL {group.label.upper()}", align=RIGHT)
    total = ws.cell(row=total_row, column=7,
                    value=f"=SUM(G{first}:G{last})" if group.items else 0)
    total.font = LABEL_FONT
    total.alignment = RIGHT
    total.number_format = currency_format(group.currency or fallback_currency)
    return f"G{total_row}"


# ── Cover sheet ──────────────────────────────────────────────────


def _write_letterhead(ws: Worksheet, profile: CompanyProfile, top_image: bytes | None) -> int:
    """Write the banner; return the first row of the company block."""
    if profile.code == "EOS":
        ws.merge_cells("A2:D2")
        _put(ws, "A2", profile.name, TITLE_FONT)
        for row, text in ((2, f"Phone: {profile.phone}"), (3, "Phone: +1 857 204-5786"),
                          (4, profile.email)):
            ws.merge_cells(f"E{row}:G{row}")
            _put(ws, f"E{row}", text, EOS_FONT, RIGHT)
        ws.merge_cells("A6:G6")
        ws["A6"].fill = PatternFill(start_color=profile.header_color,
                                    end_color=profile.header_color, fill_type="solid")
        ws.row_dimensions[6].height = 18
        return 8
    _add_image(ws, top_image, "A1")
    return 9


def _write_bank_line(ws: Worksheet, row: int, label: str, value: str) -> None:
    ws.merge_cells(f"A{row}:D{row}")
    _put(ws, f"A{row}", f"{label}: {value}", align=LEFT_WRAP)


def _write_bank_block(ws: Worksheet, row: int, profile: CompanyProfile) -> int:
    lines = [
        ("Bank Name", profile.bank_name),
        ("Bank Address", profile.bank_address),
        ("IBAN", profile.iban),
        ("Swift Code", profile.swift),
        ("Title on Account", profile.account_title),
    ]
    if profile.code == "US":
        lines += [("Account Number", profile.account_number), ("ACH Routing", profile.ach_routing)]
    elif profile.code == "UK":
        lines += [("Account Number", profile.account_number), ("Sort Code", profile.sort_code)]
    elif profile.code == "EOS":
        lines += [("Intermediary BIC", profile.intermediary_bic)]

    for label, value in lines:
        if value.strip():
            _write_bank_line(ws, row, label, value)
            row += 1

    if profile.code == "UK":
        row += 1
        ws.merge_cells(f"A{row}:D{row}")
        _put(ws, f"A{row}", "UK DOMESTIC WIRES:")
        row += 1
        _write_bank_line(ws, row, "Account number", profile.account_number)
        _write_bank_line(ws, row + 1, "Sort code", profile.sort_code)
        row += 2
    return row


def _write_summary_rows(ws: Worksheet, start: int, entries: Sequence[tuple[AggregatedGroup, str]],
                        fmt: str) -> None:
    for offset, (group, ref) in enumerate(entries):
        r = start + offset
        values: list[tuple[Any, Alignment]] = [
            (offset + 1, CENTER),
            (_excel_value(group.label.upper()), LEFT_WRAP),
            (currency_label(group.currency), LEFT),
            ("", CENTER),
            (group.record_count, CENTER),
            (None, RIGHT),
            (f"={ref}", RIGHT),
        ]
        for c_idx, (value, align) in enumerate(values, 1):
            cell = ws.cell(row=r, column=c_idx, value=value)
            cell.font = ITEM_FONT
            cell.alignment = align
            cell.border = CELL_BORDER
        ws.cell(row=r, column=7).number_format = fmt


def write_cover_sheet(
    ws: Worksheet,
    entries: Sequence[tuple[AggregatedGroup, str]],
    *,
    profile: CompanyProfile,
    details: InvoiceDetails,
    currency: str,
    images: tuple[bytes | None, bytes | None] = (None, None),
) -> None:
    """Fill the ``Invoice`` sheet.

    *entries* pairs each category group with the cell reference of its
    totals cell on the category sheet.
    """
    top_image, bottom_image = images
    ws.sheet_view.showGridLines = False
    _set_widths(ws)
    fmt = currency_format(currency)

    company_row = _write_letterhead(ws, profile, top_image)
    block_start = company_row
    for line in (profile.name, *profile.address, profile.phone, profile.email):
        if line.strip():
            _put(ws, f"A{company_row}", line)
            company_row += 1
    company_row += 1

    vessel_row = block_start
    for line in (details.vessel, details.port, details.country):
        if line.strip():
            _put(ws, f"E{vessel_row}", _excel_value(line))
            vessel_row += 1

    bank_row = _write_bank_block(ws, max(company_row, vessel_row), profile)

    invoice_row = vessel_row + 1
    for label, value in (
        ("No", details.number),
        ("Invoice Date", details.issued.strftime("%B %d, %Y")),
        ("Vessel", details.vessel),
        ("Country", details.country),
        ("Port", details.port),
        ("Category", details.category),
        ("Invoice Due", details.due),
    ):
        _put(ws, f"E{invoice_row}", f"{label}:")
        _put(ws, f"F{invoice_row}", _excel_value(value or ""))
        invoice_row += 1

    table_row = max(bank_row, invoice_row) + 2
    _style_header(ws, table_row, PatternFill(start_color=profile.header_color,
                                             end_color=profile.header_color, fill_type="solid"))
    first = table_row + 1
    last = table_row + len(entries)
    _write_summary_rows(ws, first, entries, fmt)
    items_sum = f"SUM(G{first}:G{last})" if entries else "0"

    fees = details.fee_lines()
    discount = float(details.discount_percent or 0.0)
    total_label = f"TOTAL {currency_label(currency)}"

    subtotal_row = last + 2
    _put(ws, f"F{subtotal_row}", total_label, align=RIGHT)
    subtotal = ws.cell(row=subtotal_row, column=7, value=f"={items_sum}" if entries else 0)
    subtotal.font = LABEL_FONT
    subtotal.alignment = RIGHT
    subtotal.number_format = fmt
    grand_row = subtotal_row
    next_row = subtotal_row + 1

    if discount > 0 or fees:
        next_row = subtotal_row + 2
        fee_refs: list[str] = []
        lines: list[tuple[str, Any, bool]] = []
        if discount > 0:
            lines.append(("Discount:", f"=-G{subtotal_row}*{discount}/100", False))
        lines.extend((label, value, True) for label, value in fees)
        for label, value, in_sum in lines:
            _put(ws, f"F{next_row}", label, align=RIGHT)
            cell = ws.cell(row=next_row, column=7, value=value)
            cell.font = LABEL_FONT
            cell.alignment = RIGHT
            cell.number_format = fmt
            if in_sum:
                fee_refs.append(f"G{next_row}")
            next_row += 1

        factor = f"(1-{discount:g}/100)" if discount > 0 else "1"
        fee_part = "".join(f"+{ref}" for ref in fee_refs)
        grand = ws.cell(row=next_row, column=7, value=f"=({items_sum}*{factor}){fee_part}")
        grand.font = LABEL_FONT
        grand.alignment = RIGHT
        grand.number_format = fmt
        grand_row = next_row
        next_row += 1

    if details.show_usd and currency and currency != "$":
        rate = USD_RATES.get(currency, 1)
        _put(ws, f"F{next_row}", "TOTAL USD", align=RIGHT)
        usd = ws.cell(row=next_row, column=7, value=f"=G{grand_row}*{rate}")
        usd.font = LABEL_FONT
        usd.alignment = RIGHT
        usd.number_format = CURRENCY_FORMATS["$"]
        next_row += 1

    terms_row = next_row + 1
    ws.merge_cells(f"A{terms_row}:G{terms_row}")
    _put(ws, f"A{terms_row}", TERMS_HEADER)
    for offset, (roman, text) in enumerate(PAYMENT_TERMS, 1):
        _put(ws, f"A{terms_row + offset}", roman, ITEM_FONT)
        _put(ws, f"B{terms_row + offset}", text, ITEM_FONT)
    last_text_row = terms_row + len(PAYMENT_TERMS)

    if profile.code == "EOS":
        footer = last_text_row + 4
        left = [profile.name, *profile.address]
        for offset, text in enumerate(left):
            _put(ws, f"A{footer + offset}", text, EOS_FONT)
        right = [
            f"Bank Name: {profile.bank_name}",
            f"Bank Address: {profile.bank_address}",
            f"IBAN: {profile.iban}",
            f"SWIFTBIC: {profile.swift}",
        ]
        for offset, text in enumerate(right):
            ws.merge_cells(f"D{footer + offset}:G{footer + offset}")
            _put(ws, f"D{footer + offset}", text, EOS_FONT)
        last_text_row = footer + max(len(left), len(right)) - 1

    image_row = last_text_row + 2
    _add_image(ws, bottom_image, f"A{image_row}", width=1000)

    ws.print_area = f"A1:G{image_row + 4}"
    ws.page_setup.orientation = "portrait"
    ws.page_setup.paperSize = ws.PAPERSIZE_A4
    ws.page_setup.fitToWidth = 1
    ws.page_setup.fitToHeight = 0
    ws.sheet_properties.pageSetUpPr.fitToPage = True
    ws.page_margins = PageMargins(left=0.393, right=0.393, top=0.59, bottom=0.59,
                                  header=0.314, footer=0.314)
    ws.print_options.horizontalCentered = True
    ws.sheet_view.view = "pageBreakPreview"


# ── Public API ───────────────────────────────────────────────────


def output_file_name(profile: CompanyProfile, number: str, issued: date,
                     category: str | None = None) -> str:
    suffix = f"_{category}" if category else ""
    return sanitize_file_name(f"{profile.file_prefix}_{number}{suffix}_{issued.isoformat()}.xlsx")


def _fetch_images(profile: CompanyProfile, asset_base_url: str | None,
                  timeout: float) -> tuple[bytes | None, bytes | None]:
    return (
        fetch_asset(asset_base_url, profile.top_image, timeout),
        fetch_asset(asset_base_url, profile.bottom_image, timeout),
    )


def assemble_workbook(
    groups: Sequence[AggregatedGroup],
    *,
    company: str = "US",
    details: InvoiceDetails | None = None,
    currency: str = "$",
    images: tuple[bytes | None, bytes | None] = (None, None),
) -> Workbook:
    """Build the invoice workbook for category *groups*."""
    profile = get_profile(company)
    details = details or InvoiceDetails()
    fill = PatternFill(start_color=profile.header_color, end_color=profile.header_color,
                       fill_type="solid")

    wb = Workbook()
    cover = wb.active
    if cover is None:
        cover = wb.create_sheet()
    cover.title = COVER_SHEET

    taken = {COVER_SHEET.lower()}
    entries: list[tuple[AggregatedGroup, str]] = []
    for group in groups:
        title = _sheet_title(group.label, taken)
        ws = wb.create_sheet(title=title)
        total_cell = write_items_sheet(ws, group, fill=fill, fallback_currency=currency)
        entries.append((group, _sheet_ref(title, total_cell)))

    write_cover_sheet(cover, entries, profile=profile, details=details, currency=currency,
                      images=images)
    return wb


def _workbook_bytes(wb: Workbook) -> bytes:
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def assemble_workbooks(
    groups: Iterable[AggregatedGroup],
    *,
    company: str = "US",
    details: InvoiceDetails | None = None,
    currency: str = "$",
    split: bool = False,
    default_category: str = "Provisions",
    asset_base_url: str | None = None,
    asset_timeout: float = 10.0,
) -> list[OutputFile]:
    """Turn per-tab *groups* into one combined invoice, or one file per category.

    In split mode every file after the first gets a letter suffix on the
    invoice number (``a``, ``b``, ...).
    """
    tab_groups = list(groups)
    details = details or InvoiceDetails()
    profile = get_profile(company)
    images = _fetch_images(profile, asset_base_url, asset_timeout)
    merged = category_groups(tab_groups)

    if not split or len(merged) <= 1:
        category = (
            details.category
            or classify_category(g.label for g in tab_groups)
            or default_category
        )
        wb = assemble_workbook(merged, company=profile.code,
                               details=replace(details, category=category),
                               currency=currency, images=images)
        name = output_file_name(profile, details.number, details.issued,
                                category if split else None)
        return [OutputFile(file_name=name, content=_workbook_bytes(wb), category=category)]

    outputs: list[OutputFile] = []
    for idx, group in enumerate(merged):
        number = details.number if idx == 0 else f"{details.number}{string.ascii_lowercase[(idx - 1) % 26]}"
        file_details = replace(details, number=number, category=group.label)
        wb = assemble_workbook([group], company=profile.code, details=file_details,
                               currency=currency, images=images)
        name = output_file_name(profile, number, details.issued, group.label)
        outputs.append(OutputFile(file_name=name, content=_workbook_bytes(wb), category=group.label))
    return outputs


def write_workbooks(out_dir: Path, outputs: Iterable[OutputFile]) -> list[Path]:
    """Write each output workbook atomically into *out_dir*."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    paths: list[Path] = []
    for output in outputs:
        paths.append(write_bytes(out_dir / output.file_name, output.content))
    return paths

"""rfq-ingest — Turn schema-free supplier spreadsheets into invoice workbooks."""

__version__ = "0.3.0"

DESCRIPTION_KEYWORDS: tuple[str, ...] = (
    "description",
    "descrption",
    "product",
    "item",
    "name",
    "product description",
    "product description (en)",
)

OUTPUT_HEADERS: list[str] = ["Pos", "Description", "Remark", "Unit", "Qty", "Price", "Total"]

"""Ingest configuration: defaults plus ``key=value`` profile files."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from rfq_ingest import DESCRIPTION_KEYWORDS
from rfq_ingest.columns import COLUMN_MODES, DEFAULT_PROFILE, KeywordProfile
from rfq_ingest.pricing import DEFAULT_DIVISOR, PricingConfig

COMPANIES: tuple[str, ...] = ("US", "UK", "EOS")
DEFAULT_ASSET_TIMEOUT = 10.0


@dataclass(frozen=True)
class IngestConfig:
    fallback_currency: str = "$"
    default_category: str = "Provisions"
    divisor: float = DEFAULT_DIVISOR
    divisors: dict[str, float] = field(default_factory=dict)
    company: str = "US"
    header_keywords: tuple[str, ...] = DESCRIPTION_KEYWORDS
    scan_rows: int | None = None
    scan_cols: int | None = None
    asset_base_url: str | None = None
    asset_timeout: float = DEFAULT_ASSET_TIMEOUT
    column_mode: str = "keywords"

    def __post_init__(self) -> None:
        company = self.company.strip().upper()
        if company not in COMPANIES:
            raise ValueError(f"Unknown company {self.company!r}. Use {', '.join(COMPANIES)}")
        object.__setattr__(self, "company", company)
        if not self.header_keywords:
            raise ValueError("header_keywords must not be empty")
        for name in ("scan_rows", "scan_cols"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.asset_timeout <= 0:
            raise ValueError("asset_timeout must be > 0")
        mode = self.column_mode.strip().lower()
        if mode not in COLUMN_MODES:
            raise ValueError(
                f"Unknown column_mode {self.column_mode!r}. Use {', '.join(COLUMN_MODES)}"
            )
        object.__setattr__(self, "column_mode", mode)

    @property
    def pricing(self) -> PricingConfig:
        return PricingConfig(divisor=self.divisor, overrides=dict(self.divisors))

    @property
    def keywords(self) -> KeywordProfile:
        if self.header_keywords == DEFAULT_PROFILE.description:
            return DEFAULT_PROFILE
        return DEFAULT_PROFILE.with_description(self.header_keywords)

    def with_overrides(self, **overrides: Any) -> IngestConfig:
        """Return a copy with every non-``None`` override applied."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown config option(s): {', '.join(unknown)}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


# ── Profile files ────────────────────────────────────────────────


def _parse_float(raw: str, lineno: int, key: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"line {lineno}: {key} expects a number, got {raw!r}") from None


def _parse_int(raw: str, lineno: int, key: str) -> int | None:
    if raw.lower() in ("", "none", "all"):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"line {lineno}: {key} expects an integer, got {raw!r}") from None


def _parse_list(raw: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


_SCALAR_KEYS = {"fallback_currency", "default_category", "company"}


def parse_config_lines(lines: list[str], base: IngestConfig | None = None) -> IngestConfig:
    values: dict[str, Any] = {}
    divisors: dict[str, float] = dict(base.divisors) if base else {}

    for lineno, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            raise ValueError(f"line {lineno}: expected key=value, got {stripped!r}")
        key, raw = (part.strip() for part in stripped.split("=", 1))
        key = key.lower()

        if key.startswith("divisor."):
            category = stripped.split("=", 1)[0].strip()[len("divisor."):].strip()
            if not category:
                raise ValueError(f"line {lineno}: divisor.<Category> needs a category name")
            divisors[category] = _parse_float(raw, lineno, key)
        elif key == "divisor":
            values["divisor"] = _parse_float(raw, lineno, key)
        elif key == "asset_timeout":
            values["asset_timeout"] = _parse_float(raw, lineno, key)
        elif key in ("scan_rows", "scan_cols"):
            values[key] = _parse_int(raw, lineno, key)
        elif key == "header_keywords":
            values[key] = _parse_list(raw)
        elif key == "column_mode":
            values[key] = raw.lower()
        elif key == "asset_base_url":
            values[key] = raw or None
        elif key in _SCALAR_KEYS:
            if not raw:
                raise ValueError(f"line {lineno}: {key} must not be empty")
            values[key] = raw
        else:
            raise ValueError(f"line {lineno}: unknown config key {key!r}")

    base = base or IngestConfig()
    values["divisors"] = divisors
    return replace(base, **values)


def load_config(path: Path | None) -> IngestConfig:
    """Load an :class:`IngestConfig` from a profile file (defaults when *path* is None)."""
    if not path:
        return IngestConfig()
    path = Path(path)
    if not path.exists():
        raise ValueError(f"Config not found: {path} (expected lines like divisor=0.9)")
    if path.is_dir():
        raise ValueError(f"Config is a directory, not a file: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read config {path}: {exc}") from exc
    try:
        return parse_config_lines(text.splitlines())
    except ValueError as exc:
        raise ValueError(f"{path}: {exc}") from exc

"""Immutable snapshots of the files currently loaded."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from rfq_ingest.aggregate import aggregate_items
from rfq_ingest.config import IngestConfig
from rfq_ingest.header import parse_anchor
from rfq_ingest.models import AggregatedGroup, CellRef, ExtractedItem, FileAnalysis
from rfq_ingest.pipeline import analyze_workbook, collect_items, reanalyze_tab

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """One snapshot. Update methods return a new snapshot and never mutate."""

    files: tuple[FileAnalysis, ...] = ()
    config: IngestConfig = field(default_factory=IngestConfig)
    # file name → tab name → manual anchor, re-applied on recompute
    anchors: Mapping[str, Mapping[str, CellRef]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def with_files(self, uploads: Iterable[tuple[str, bytes]]) -> Session:
        added = tuple(analyze_workbook(name, data, self.config) for name, data in uploads)
        return replace(self, files=self.files + added)

    def with_anchor(self, file_index: int, tab_name: str, anchor: CellRef | str) -> Session:
        anchor_ref = parse_anchor(anchor) if isinstance(anchor, str) else anchor
        target = self.files[file_index]
        updated = reanalyze_tab(target, tab_name, anchor_ref, self.config)
        files = self.files[:file_index] + (updated,) + self.files[file_index + 1:]

        per_file = dict(self.anchors.get(target.file_name, {}))
        per_file[tab_name] = anchor_ref
        anchors = dict(self.anchors)
        anchors[target.file_name] = MappingProxyType(per_file)
        return replace(self, files=files, anchors=MappingProxyType(anchors))

    def without_file(self, index: int) -> Session:
        removed = self.files[index]
        files = self.files[:index] + self.files[index + 1:]
        anchors = dict(self.anchors)
        if not any(f.file_name == removed.file_name for f in files):
            anchors.pop(removed.file_name, None)
        return replace(self, files=files, anchors=MappingProxyType(anchors))

    def cleared(self) -> Session:
        return Session(config=self.config)

    def recompute(self, config: IngestConfig | None = None) -> Session:
        """Re-run every file from its own bytes, keeping manual anchors."""
        config = config or self.config
        logger.debug("Recomputing %d file(s)", len(self.files))
        files = tuple(
            analyze_workbook(f.file_name, f.data, config, anchors=self.anchors.get(f.file_name))
            if f.data
            else f
            for f in self.files
        )
        return replace(self, files=files, config=config)

    def items(self) -> list[ExtractedItem]:
        return collect_items(self.files, self.config)

    def groups(self) -> list[AggregatedGroup]:
        return aggregate_items(self.items())


class SessionStore:
    """Holds the current :class:`Session` and swaps it on :meth:`apply`."""

    def __init__(self, session: Session | None = None) -> None:
        self._session = session or Session()

    @property
    def current(self) -> Session:
        return self._session

    def apply(self, update: Callable[[Session], Session]) -> Session:
        self._session = update(self._session)
        return self._session

"""Batch orchestration: spreadsheet -> one PDF per invoice -> one zip archive."""

from __future__ import annotations

import asyncio
import enum
import io
import logging
import os
import threading
import zipfile
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from .aggregation import aggregate_total
from .capture import CapturePipeline
from .errors import BatchStateError, SettleTimeout
from .formatting import invoice_filename
from .ingestion import parse_workbook
from .layout import fits_single_page
from .models import InvoiceRecord

logger = logging.getLogger(__name__)

ARCHIVE_FILENAME = "invoices_batch.zip"

ProgressCallback = Callable[[float], None]
ArchiveSink = Callable[[bytes], Optional[str]]


class BatchState(enum.Enum):
    IDLE = "idle"
    INGESTED = "ingested"
    RUNNING = "running"
    DONE = "done"


class OutcomeStatus(enum.Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class InvoiceOutcome:
    invoice_no: str
    status: OutcomeStatus
    filename: Optional[str] = None
    detail: str = ""


@dataclass
class BatchResult:
    archive: bytes
    outcomes: List[InvoiceOutcome] = field(default_factory=list)
    archive_path: Optional[str] = None

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)

    @property
    def filenames(self) -> List[str]:
        return [outcome.filename for outcome in self.outcomes if outcome.filename]

    def summary(self) -> str:
        return (
            f"{self.count(OutcomeStatus.OK)} of {len(self.outcomes)} invoice(s) generated, "
            f"{self.count(OutcomeStatus.SKIPPED)} skipped, {self.count(OutcomeStatus.FAILED)} failed"
        )


def unique_archive_name(name: str, used: Dict[str, int]) -> str:
    """Suffix ``name`` when an earlier entry already took it (``Invoice_A-2.pdf``)."""
    if name not in used:
        used[name] = 1
        return name
    stem, dot, extension = name.rpartition(".")
    while True:
        used[name] += 1
        candidate = f"{stem}-{used[name]}{dot}{extension}"
        if candidate not in used:
            used[candidate] = 1
            return candidate


def directory_sink(directory: str) -> ArchiveSink:
    def save(archive: bytes) -> str:
        os.makedirs(directory, exist_ok=True)
        destination = os.path.join(directory, ARCHIVE_FILENAME)
        with open(destination, "wb") as handle:
            handle.write(archive)
        logger.info("Saved batch archive %s", destination)
        return destination

    return save


class BatchOrchestrator:
    """Runs at most one batch at a time through a single capture pipeline.

    State moves ``IDLE -> INGESTED -> RUNNING -> DONE -> IDLE``; loading a new
    spreadsheet while ``INGESTED`` replaces the pending records.
    """

    def __init__(
        self,
        pipeline: Optional[CapturePipeline] = None,
        on_progress: Optional[ProgressCallback] = None,
        sink: Optional[ArchiveSink] = None,
    ) -> None:
        self.pipeline = pipeline if pipeline is not None else CapturePipeline()
        self.on_progress = on_progress
        self.sink = sink
        self.state = BatchState.IDLE
        self.records: List[InvoiceRecord] = []
        self.index = 0
        self.progress = 0.0
        self._run_lock = threading.Lock()

    @property
    def progress_percent(self) -> int:
        return int(round(self.progress * 100))

    def load(self, data: bytes) -> List[InvoiceRecord]:
        """Ingest a spreadsheet; a :class:`ParseError` leaves the current state untouched."""
        records = parse_workbook(data)
        return self.load_records(records)

    def load_records(self, records: List[InvoiceRecord]) -> List[InvoiceRecord]:
        if self.state is BatchState.RUNNING:
            raise BatchStateError("Cannot load a new batch while a run is in progress.")
        self.records = [record for record in records if record.is_valid]
        self.state = BatchState.INGESTED
        self.index = 0
        self.progress = 0.0
        return self.records

    def reset(self) -> None:
        if self.state is BatchState.RUNNING:
            raise BatchStateError("Cannot reset while a run is in progress.")
        self.records = []
        self.state = BatchState.IDLE
        self.index = 0
        self.progress = 0.0

    def _report_progress(self, completed: int, total: int) -> None:
        self.progress = completed / total
        logger.info("Batch progress %d/%d (%d%%)", completed, total, self.progress_percent)
        if self.on_progress is not None:
            self.on_progress(self.progress)

    async def _render_one(self, record: InvoiceRecord) -> Optional[bytes]:
        self.pipeline.publish(record)
        record = replace(record, total=aggregate_total(record.items))
        self.pipeline.publish(record)
        if not fits_single_page(len(record.items)):
            logger.warning(
                "Invoice %s has %d items and may not fit on one page",
                record.invoice_no,
                len(record.items),
            )
        return await self.pipeline.render_current()

    async def run(self) -> BatchResult:
        if not self._run_lock.acquire(blocking=False):
            raise BatchStateError("A batch run is already in progress.")
        try:
            if self.state is not BatchState.INGESTED or not self.records:
                raise BatchStateError("No invoices are pending; load a spreadsheet first.")
            return await self._run_records(list(self.records))
        finally:
            if self.state is BatchState.RUNNING:
                logger.error("Batch aborted at invoice %d of %d", self.index + 1, len(self.records))
                self.state = BatchState.IDLE
            self._run_lock.release()

    async def _run_records(self, records: List[InvoiceRecord]) -> BatchResult:
        total = len(records)
        outcomes: List[InvoiceOutcome] = []
        used_names: Dict[str, int] = {}
        buffer = io.BytesIO()
        archive = zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED)

        self.state = BatchState.RUNNING
        self.progress = 0.0
        try:
            for index, record in enumerate(records):
                self.index = index
                try:
                    pdf_bytes = await self._render_one(record)
                except Exception as exc:
                    # Settle timeouts are logged without a traceback.
                    logger.error(
                        "Invoice %s failed: %s",
                        record.invoice_no,
                        exc,
                        exc_info=not isinstance(exc, SettleTimeout),
                    )
                    outcomes.append(InvoiceOutcome(record.invoice_no, OutcomeStatus.FAILED, detail=str(exc)))
                else:
                    if pdf_bytes is None:
                        outcomes.append(
                            InvoiceOutcome(record.invoice_no, OutcomeStatus.SKIPPED, detail="view unavailable")
                        )
                    else:
                        name = unique_archive_name(invoice_filename(record.invoice_no), used_names)
                        archive.writestr(name, pdf_bytes)
                        outcomes.append(InvoiceOutcome(record.invoice_no, OutcomeStatus.OK, filename=name))
                self._report_progress(index + 1, total)
        except BaseException:
            archive.close()
            raise

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, archive.close)
        archive_bytes = buffer.getvalue()
        self.state = BatchState.DONE

        result = BatchResult(archive=archive_bytes, outcomes=outcomes)
        if self.sink is not None:
            result.archive_path = self.sink(archive_bytes)
        logger.info("Batch finished: %s", result.summary())

        self.records = []
        self.state = BatchState.IDLE
        return result


def run_batch(
    data: bytes,
    on_progress: Optional[ProgressCallback] = None,
    output_dir: Optional[str] = None,
    settle_delay_ms: Optional[int] = None,
) -> BatchResult:
    """Ingest ``data`` and run the whole batch on a fresh event loop."""
    pipeline = CapturePipeline() if settle_delay_ms is None else CapturePipeline(settle_delay_ms=settle_delay_ms)
    orchestrator = BatchOrchestrator(
        pipeline=pipeline,
        on_progress=on_progress,
        sink=directory_sink(output_dir) if output_dir else None,
    )
    orchestrator.load(data)
    return asyncio.run(orchestrator.run())

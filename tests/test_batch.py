import asyncio
import io
import os
import tempfile
import unittest
import zipfile
from importlib import util as importlib_util

from invoice_editor.batch import (
    ARCHIVE_FILENAME,
    BatchOrchestrator,
    BatchState,
    OutcomeStatus,
    directory_sink,
    run_batch,
    unique_archive_name,
)
from invoice_editor.errors import BatchStateError, ParseError, SettleTimeout
from invoice_editor.ingestion import build_template_workbook
from invoice_editor.models import InvoiceRecord, LineItem

RENDER_AVAILABLE = all(importlib_util.find_spec(name) is not None for name in ("fpdf", "PIL"))


class RecordingPipeline:
    """Stands in for the capture pipeline; documents echo the record they observed."""

    def __init__(self, fail_on=(), skip_on=(), crash_on=()) -> None:
        self.fail_on = set(fail_on)
        self.crash_on = set(crash_on)
        self.skip_on = set(skip_on)
        self.published = []
        self.current = None

    def publish(self, record: InvoiceRecord) -> InvoiceRecord:
        self.published.append(record)
        self.current = record
        return record

    async def render_current(self):
        record = self.current
        await asyncio.sleep(0)
        if record.invoice_no in self.fail_on:
            raise SettleTimeout("view did not settle")
        if record.invoice_no in self.crash_on:
            raise RuntimeError("renderer crashed")
        if record.invoice_no in self.skip_on:
            return None
        return f"%PDF {record.invoice_no} {record.total}".encode("utf-8")


def archive_entries(archive: bytes):
    with zipfile.ZipFile(io.BytesIO(archive)) as bundle:
        return {name: bundle.read(name).decode("utf-8") for name in bundle.namelist()}


def record(invoice_no: str, *amounts: str) -> InvoiceRecord:
    return InvoiceRecord(invoice_no=invoice_no, items=tuple(LineItem(amount=amount) for amount in amounts))


class BatchOrchestratorTests(unittest.IsolatedAsyncioTestCase):
    async def test_archive_holds_one_document_per_invoice(self) -> None:
        orchestrator = BatchOrchestrator(pipeline=RecordingPipeline())
        orchestrator.load(build_template_workbook())

        result = await orchestrator.run()

        entries = archive_entries(result.archive)
        self.assertEqual(sorted(entries), ["Invoice_20260101.pdf", "Invoice_20260102.pdf"])
        self.assertEqual(entries["Invoice_20260101.pdf"], "%PDF 20260101 1,500.00")
        self.assertEqual(entries["Invoice_20260102.pdf"], "%PDF 20260102 50,000.00")

    async def test_total_is_recomputed_before_capture(self) -> None:
        pipeline = RecordingPipeline()
        orchestrator = BatchOrchestrator(pipeline=pipeline)
        orchestrator.load_records([record("A1", "10.00", "5.50")])

        result = await orchestrator.run()

        self.assertEqual(pipeline.published[0].total, "0.00")
        self.assertEqual(pipeline.published[-1].total, "15.50")
        self.assertEqual(archive_entries(result.archive)["Invoice_A1.pdf"], "%PDF A1 15.50")

    async def test_progress_is_monotonic_and_reaches_one(self) -> None:
        seen = []
        orchestrator = BatchOrchestrator(pipeline=RecordingPipeline(), on_progress=seen.append)
        orchestrator.load_records([record("A", "1"), record("B", "2"), record("C", "3"), record("D", "4")])

        await orchestrator.run()

        self.assertEqual(seen, [0.25, 0.5, 0.75, 1.0])
        self.assertEqual(seen, sorted(seen))
        self.assertEqual(orchestrator.progress_percent, 100)

    async def test_state_returns_to_idle_after_run(self) -> None:
        orchestrator = BatchOrchestrator(pipeline=RecordingPipeline())
        self.assertIs(orchestrator.state, BatchState.IDLE)

        orchestrator.load_records([record("A", "1")])
        self.assertIs(orchestrator.state, BatchState.INGESTED)

        await orchestrator.run()
        self.assertIs(orchestrator.state, BatchState.IDLE)
        self.assertEqual(orchestrator.records, [])

    async def test_run_refuses_without_pending_invoices(self) -> None:
        orchestrator = BatchOrchestrator(pipeline=RecordingPipeline())

        with self.assertRaises(BatchStateError):
            await orchestrator.run()

        orchestrator.load_records([InvoiceRecord(invoice_no="")])
        with self.assertRaises(BatchStateError):
            await orchestrator.run()

    async def test_only_one_run_at_a_time(self) -> None:
        orchestrator = BatchOrchestrator(pipeline=RecordingPipeline())
        orchestrator.load_records([record("A", "1"), record("B", "2")])

        results = await asyncio.gather(orchestrator.run(), orchestrator.run(), return_exceptions=True)

        errors = [result for result in results if isinstance(result, BatchStateError)]
        self.assertEqual(len(errors), 1)

    async def test_failed_and_skipped_invoices_do_not_abort_batch(self) -> None:
        pipeline = RecordingPipeline(fail_on={"B"}, skip_on={"C"})
        orchestrator = BatchOrchestrator(pipeline=pipeline)
        orchestrator.load_records([record("A", "1"), record("B", "2"), record("C", "3"), record("D", "4")])

        result = await orchestrator.run()

        statuses = {outcome.invoice_no: outcome.status for outcome in result.outcomes}
        self.assertEqual(
            statuses,
            {
                "A": OutcomeStatus.OK,
                "B": OutcomeStatus.FAILED,
                "C": OutcomeStatus.SKIPPED,
                "D": OutcomeStatus.OK,
            },
        )
        self.assertEqual(sorted(archive_entries(result.archive)), ["Invoice_A.pdf", "Invoice_D.pdf"])
        self.assertEqual(result.summary(), "2 of 4 invoice(s) generated, 1 skipped, 1 failed")
        self.assertEqual(orchestrator.progress, 1.0)

    async def test_failure_details_are_recorded_per_invoice(self) -> None:
        orchestrator = BatchOrchestrator(pipeline=RecordingPipeline(fail_on={"A"}, crash_on={"B"}))
        orchestrator.load_records([record("A", "1"), record("B", "2"), record("C", "3")])

        with self.assertLogs("invoice_editor.batch", level="ERROR") as logs:
            result = await orchestrator.run()

        details = {outcome.invoice_no: outcome.detail for outcome in result.outcomes}
        self.assertEqual(details["A"], "view did not settle")
        self.assertEqual(details["B"], "renderer crashed")
        self.assertEqual(result.count(OutcomeStatus.FAILED), 2)
        self.assertIsNone(logs.records[0].exc_info)
        self.assertIsNotNone(logs.records[1].exc_info)
        self.assertEqual(result.filenames, ["Invoice_C.pdf"])

    async def test_colliding_file_names_get_suffixes(self) -> None:
        orchestrator = BatchOrchestrator(pipeline=RecordingPipeline())
        orchestrator.load_records([record("A/1", "1"), record("A_1", "2")])

        result = await orchestrator.run()

        self.assertEqual(result.filenames, ["Invoice_A_1.pdf", "Invoice_A_1-2.pdf"])
        self.assertEqual(len(archive_entries(result.archive)), 2)

    async def test_parse_error_leaves_pending_batch_untouched(self) -> None:
        orchestrator = BatchOrchestrator(pipeline=RecordingPipeline())
        orchestrator.load(build_template_workbook())

        with self.assertRaises(ParseError):
            orchestrator.load(b"garbage")

        self.assertIs(orchestrator.state, BatchState.INGESTED)
        self.assertEqual(len(orchestrator.records), 2)

    async def test_new_upload_replaces_pending_batch(self) -> None:
        orchestrator = BatchOrchestrator(pipeline=RecordingPipeline())
        orchestrator.load(build_template_workbook())

        orchestrator.load_records([record("Z", "1")])

        self.assertEqual([pending.invoice_no for pending in orchestrator.records], ["Z"])

    async def test_sink_receives_archive(self) -> None:
        with tempfile.TemporaryDirectory() as directory:
            orchestrator = BatchOrchestrator(pipeline=RecordingPipeline(), sink=directory_sink(directory))
            orchestrator.load_records([record("A", "1")])

            result = await orchestrator.run()

            self.assertEqual(result.archive_path, os.path.join(directory, ARCHIVE_FILENAME))
            with open(result.archive_path, "rb") as handle:
                self.assertEqual(handle.read(), result.archive)


class UniqueArchiveNameTests(unittest.TestCase):
    def test_suffixes_repeated_names(self) -> None:
        used = {}
        names = [unique_archive_name("Invoice_A.pdf", used) for _ in range(3)]

        self.assertEqual(names, ["Invoice_A.pdf", "Invoice_A-2.pdf", "Invoice_A-3.pdf"])

    def test_suffix_skips_names_already_taken(self) -> None:
        used = {}
        unique_archive_name("Invoice_A-2.pdf", used)
        unique_archive_name("Invoice_A.pdf", used)

        self.assertEqual(unique_archive_name("Invoice_A.pdf", used), "Invoice_A-3.pdf")


@unittest.skipUnless(RENDER_AVAILABLE, "fpdf2 and Pillow are required")
class RunBatchTests(unittest.TestCase):
    def test_template_batch_renders_real_pdfs(self) -> None:
        result = run_batch(build_template_workbook(), settle_delay_ms=0)

        with zipfile.ZipFile(io.BytesIO(result.archive)) as bundle:
            self.assertEqual(sorted(bundle.namelist()), ["Invoice_20260101.pdf", "Invoice_20260102.pdf"])
            for name in bundle.namelist():
                self.assertTrue(bundle.read(name).startswith(b"%PDF"))
        self.assertEqual(result.count(OutcomeStatus.OK), 2)


if __name__ == "__main__":
    unittest.main()

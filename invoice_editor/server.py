"""HTTP server entrypoints for single-invoice and batch rendering."""

from __future__ import annotations

import atexit
import errno
import json
import logging
import multiprocessing as mp
import threading
from concurrent.futures import Future, ProcessPoolExecutor, TimeoutError as FutureTimeoutError
from concurrent.futures.process import BrokenProcessPool
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import quote

from .config import (
    LISTEN_BACKLOG,
    MAX_BODY_BYTES as MAX_BODY_BYTES_CONFIG,
    MAX_CONCURRENT_RENDERS,
    MAX_INFLIGHT_RENDERS,
    RENDER_QUEUE_TIMEOUT_MS,
    RENDER_TIMEOUT_MS,
)
from .errors import BatchStateError, DependencyError, ParseError
from .formatting import invoice_filename
from .layout import max_items_per_page
from .models import payload_invoice_no

logger = logging.getLogger(__name__)

RENDER_INFLIGHT_SEMAPHORE = threading.BoundedSemaphore(MAX_INFLIGHT_RENDERS)
RENDER_EXECUTOR_LOCK = threading.Lock()
RENDER_EXECUTOR: Optional[ProcessPoolExecutor] = None
ValidationError = Tuple[int, Dict[str, Any]]

DISCONNECT_ERRNOS = {errno.EPIPE, errno.ECONNRESET, errno.ETIMEDOUT}
REQUIRED_MODULES = {"fpdf": "fpdf2", "PIL": "Pillow", "openpyxl": "openpyxl"}

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def is_client_disconnect(exc: BaseException) -> bool:
    if isinstance(exc, (BrokenPipeError, ConnectionResetError, TimeoutError)):
        return True
    return isinstance(exc, OSError) and exc.errno in DISCONNECT_ERRNOS


def check_dependencies() -> None:
    for module, distribution in REQUIRED_MODULES.items():
        try:
            __import__(module)
        except ModuleNotFoundError as exc:
            raise DependencyError(
                f"Missing dependency '{distribution}'. Install the project with 'pip install .'."
            ) from exc


def render_invoice_job(payload: Dict[str, Any]) -> bytes:
    from .capture import render_invoice_pdf

    return render_invoice_pdf(payload)


def render_batch_job(data: bytes) -> Tuple[bytes, str]:
    from .batch import run_batch

    result = run_batch(data)
    return result.archive, result.summary()


def create_render_executor() -> ProcessPoolExecutor:
    return ProcessPoolExecutor(
        max_workers=MAX_CONCURRENT_RENDERS,
        mp_context=mp.get_context("spawn"),
    )


def get_render_executor() -> ProcessPoolExecutor:
    global RENDER_EXECUTOR
    with RENDER_EXECUTOR_LOCK:
        if RENDER_EXECUTOR is None:
            RENDER_EXECUTOR = create_render_executor()
        return RENDER_EXECUTOR


def restart_render_executor(previous: ProcessPoolExecutor) -> ProcessPoolExecutor:
    global RENDER_EXECUTOR
    with RENDER_EXECUTOR_LOCK:
        if RENDER_EXECUTOR is previous:
            try:
                previous.shutdown(wait=False, cancel_futures=True)
            except Exception:
                logger.warning("Render pool shutdown failed", exc_info=True)
            RENDER_EXECUTOR = create_render_executor()
        if RENDER_EXECUTOR is None:
            RENDER_EXECUTOR = create_render_executor()
        return RENDER_EXECUTOR


def submit_render_job(job: Callable[[Any], Any], argument: Any) -> Future:
    executor = get_render_executor()
    try:
        return executor.submit(job, argument)
    except BrokenProcessPool:
        return restart_render_executor(executor).submit(job, argument)


def shutdown_render_executor() -> None:
    global RENDER_EXECUTOR
    with RENDER_EXECUTOR_LOCK:
        executor = RENDER_EXECUTOR
        RENDER_EXECUTOR = None
    if executor is not None:
        executor.shutdown(wait=False, cancel_futures=True)


atexit.register(shutdown_render_executor)


def validate_invoice_payload(
    body: bytes,
    max_items: int,
) -> Tuple[Optional[Dict[str, Any]], Optional[ValidationError]]:
    try:
        payload = json.loads(body.decode("utf-8"))
    except UnicodeDecodeError:
        return None, (
            400,
            {"error": "invalid_encoding", "detail": "Body must be UTF-8 encoded JSON."},
        )
    except json.JSONDecodeError as exc:
        return None, (
            400,
            {
                "error": "invalid_json",
                "detail": f"{exc.msg} (line {exc.lineno}, column {exc.colno})",
            },
        )

    if not isinstance(payload, dict):
        return None, (
            400,
            {"error": "invalid_payload", "detail": "JSON root must be an object."},
        )

    if not payload_invoice_no(payload):
        return None, (
            400,
            {"error": "invalid_payload", "detail": "'invoiceNo' is required."},
        )

    items = payload.get("items", [])
    if items is None:
        items = []
    if not isinstance(items, list):
        return None, (
            400,
            {"error": "invalid_payload", "detail": "'items' must be an array."},
        )
    if any(not isinstance(item, dict) for item in items):
        return None, (
            400,
            {"error": "invalid_payload", "detail": "Every item must be an object."},
        )

    if len(items) > max_items:
        return None, (
            413,
            {
                "error": "invoice_too_large",
                "detail": f"Invoice has {len(items)} items; one page holds at most {max_items}.",
                "max_items": max_items,
            },
        )

    return payload, None


class InvoiceHandler(BaseHTTPRequestHandler):
    MAX_BODY_BYTES = MAX_BODY_BYTES_CONFIG
    MAX_ITEMS = max_items_per_page()

    def _write_response(
        self,
        status: int,
        content_type: str,
        body: bytes,
        headers: Optional[Dict[str, str]] = None,
    ) -> bool:
        try:
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            for name, value in (headers or {}).items():
                self.send_header(name, value)
            self.end_headers()
            self.wfile.write(body)
            return True
        except Exception as exc:
            if is_client_disconnect(exc):
                return False
            raise

    def _send_json(self, status: int, payload: Dict[str, Any]) -> bool:
        body = json.dumps(payload).encode("utf-8")
        return self._write_response(status, "application/json", body)

    def _send_file(self, content_type: str, body: bytes, filename: str, **headers: str) -> bool:
        fallback = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
        extra = {
            "Content-Disposition": (
                f'attachment; filename="{fallback}"; filename*=UTF-8\'\'{quote(filename)}'
            )
        }
        extra.update(headers)
        return self._write_response(200, content_type, body, extra)

    def _read_body(self) -> Optional[bytes]:
        header = self.headers.get("Content-Length")
        if header is None:
            self._send_json(
                411,
                {
                    "error": "missing_content_length",
                    "detail": "Content-Length header is required.",
                },
            )
            return None

        try:
            content_length = int(header)
        except ValueError:
            self._send_json(
                400,
                {
                    "error": "invalid_content_length",
                    "detail": "Content-Length must be an integer.",
                },
            )
            return None

        if content_length <= 0:
            self._send_json(400, {"error": "empty_body", "detail": "Request body cannot be empty."})
            return None

        if content_length > self.MAX_BODY_BYTES:
            self._send_json(
                413,
                {
                    "error": "payload_too_large",
                    "detail": f"Body exceeds {self.MAX_BODY_BYTES} bytes.",
                },
            )
            return None

        try:
            return self.rfile.read(content_length)
        except Exception as exc:
            if is_client_disconnect(exc):
                return None
            raise

    def _run_job(self, job: Callable[[Any], Any], argument: Any) -> Tuple[bool, Any]:
        """Run ``job`` in the render pool; on failure the error response is already sent."""
        acquired = RENDER_INFLIGHT_SEMAPHORE.acquire(timeout=RENDER_QUEUE_TIMEOUT_MS / 1000.0)
        if not acquired:
            retry_after_seconds = max(1, (RENDER_QUEUE_TIMEOUT_MS + 999) // 1000)
            self._send_json(
                503,
                {
                    "error": "server_busy",
                    "detail": "Render queue is full; retry shortly.",
                    "retry_after_seconds": retry_after_seconds,
                    "max_concurrent_renders": MAX_CONCURRENT_RENDERS,
                    "max_inflight_renders": MAX_INFLIGHT_RENDERS,
                },
            )
            return False, None

        future = None
        try:
            future = submit_render_job(job, argument)
            return True, future.result(timeout=RENDER_TIMEOUT_MS / 1000.0)
        except FutureTimeoutError:
            if future is not None:
                future.cancel()
            self._send_json(
                504,
                {
                    "error": "render_timeout",
                    "detail": f"Render exceeded timeout of {RENDER_TIMEOUT_MS} ms.",
                },
            )
        except BrokenProcessPool:
            restart_render_executor(get_render_executor())
            self._send_json(
                503,
                {
                    "error": "render_pool_restarting",
                    "detail": "Render worker pool restarted; retry shortly.",
                },
            )
        except ParseError:
            self._send_json(
                400,
                {
                    "error": "invalid_spreadsheet",
                    "detail": "The uploaded file could not be read as an .xlsx spreadsheet.",
                },
            )
        except BatchStateError as exc:
            self._send_json(400, {"error": "no_invoices", "detail": str(exc)})
        except Exception as exc:
            logger.exception("Render job failed")
            self._send_json(500, {"error": "render_failed", "detail": str(exc)})
        finally:
            RENDER_INFLIGHT_SEMAPHORE.release()
        return False, None

    def _handle_invoice(self, body: bytes) -> None:
        payload, validation_error = validate_invoice_payload(body, self.MAX_ITEMS)
        if validation_error is not None:
            status, payload_body = validation_error
            self._send_json(status, payload_body)
            return

        assert payload is not None
        ok, pdf_bytes = self._run_job(render_invoice_job, payload)
        if ok:
            self._send_file("application/pdf", pdf_bytes, invoice_filename(payload_invoice_no(payload)))

    def _handle_batch(self, body: bytes) -> None:
        from .batch import ARCHIVE_FILENAME

        ok, result = self._run_job(render_batch_job, body)
        if ok:
            archive, summary = result
            self._send_file("application/zip", archive, ARCHIVE_FILENAME, **{"X-Batch-Summary": summary})

    def do_POST(self) -> None:
        handlers = {
            "/invoice": self._handle_invoice,
            "/batch": self._handle_batch,
        }
        handler = handlers.get(self.path)
        if handler is None:
            self._send_json(404, {"error": "not_found", "detail": "Unsupported endpoint."})
            return

        body = self._read_body()
        if body is None:
            return
        handler(body)

    def do_GET(self) -> None:
        if self.path in ("/", "/health", "/healthz", "/ready"):
            self._send_json(200, {"status": "ok"})
            return
        if self.path == "/template":
            from .ingestion import TEMPLATE_FILENAME, build_template_workbook

            self._send_file(XLSX_CONTENT_TYPE, build_template_workbook(), TEMPLATE_FILENAME)
            return
        self._send_json(404, {"error": "not_found", "detail": "Unsupported endpoint."})

    def handle_one_request(self) -> None:
        try:
            super().handle_one_request()
        except Exception as exc:
            if is_client_disconnect(exc):
                return
            raise

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)


class InvoiceHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_address = True
    request_queue_size = LISTEN_BACKLOG


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    check_dependencies()
    get_render_executor()
    server = InvoiceHTTPServer((host, port), InvoiceHandler)
    logger.info("Invoice editor server listening on http://%s:%d", host, port)
    server.serve_forever()

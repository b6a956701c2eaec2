"""Module entrypoint: run the API server or one of the offline commands."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from . import config
from .errors import BatchStateError, DependencyError, ParseError


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="invoice_editor", description="Invoice PDF editor")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="logging level (INVOICE_LOG_LEVEL)")
    commands = parser.add_subparsers(dest="command")
    parser.set_defaults(command="serve", host=config.HOST, port=config.PORT)

    serve = commands.add_parser("serve", help="run the HTTP API server (default)")
    serve.add_argument("--host", default=config.HOST)
    serve.add_argument("--port", type=int, default=config.PORT)

    template = commands.add_parser("template", help="write the batch spreadsheet template")
    template.add_argument("path", nargs="?", default=".", help="file or directory to write")

    render = commands.add_parser("render", help="render one invoice JSON file to PDF")
    render.add_argument("payload", help="JSON file with invoiceNo, invoiceDate, items, ...")
    render.add_argument("-o", "--output-dir", default=".")

    batch = commands.add_parser("batch", help="render every invoice in a spreadsheet into a zip")
    batch.add_argument("spreadsheet", help=".xlsx file laid out like the template")
    batch.add_argument("-o", "--output-dir", default=".")
    return parser


def _serve(args: argparse.Namespace) -> int:
    from .server import run

    try:
        run(args.host, args.port)
    except DependencyError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return 0


def _template(args: argparse.Namespace) -> int:
    from .ingestion import write_template

    print(write_template(args.path))
    return 0


def _render(args: argparse.Namespace) -> int:
    import asyncio

    from .capture import CapturePipeline
    from .models import InvoiceRecord

    with open(args.payload, "r", encoding="utf-8") as handle:
        record = InvoiceRecord.from_payload(json.load(handle))
    if not record.is_valid:
        print("Invoice number is required.", file=sys.stderr)
        return 1
    destination = asyncio.run(CapturePipeline().save(record, args.output_dir))
    if destination is None:
        print("Nothing was rendered.", file=sys.stderr)
        return 1
    print(destination)
    return 0


def _batch(args: argparse.Namespace) -> int:
    from .batch import run_batch

    def report(progress: float) -> None:
        print(f"\rGenerating invoices... {int(round(progress * 100))}%", end="", file=sys.stderr)

    with open(args.spreadsheet, "rb") as handle:
        data = handle.read()
    try:
        result = run_batch(data, on_progress=report, output_dir=args.output_dir)
    except ParseError:
        print("Could not read the spreadsheet; check that it is a valid .xlsx file.", file=sys.stderr)
        return 1
    except BatchStateError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(file=sys.stderr)
    print(result.summary(), file=sys.stderr)
    print(result.archive_path)
    return 0


COMMANDS = {
    "serve": _serve,
    "template": _template,
    "render": _render,
    "batch": _batch,
}


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(str(args.log_level).upper())
    raise SystemExit(COMMANDS[args.command](args))


if __name__ == "__main__":
    main()

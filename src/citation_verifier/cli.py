"""Command line interface for extracting, ingesting and verifying papers."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .app import CitationCheckerApp
from .config import CheckerConfig, configure_logging
from .errors import CitationVerifierError
from .grobid import GrobidClient
from .models import VerificationSession
from .oracle import GeminiOracle
from .report import extraction_payload, render_extraction, render_report
from .session import VerificationSessionManager


def _build_config(args: argparse.Namespace) -> CheckerConfig:
    config = CheckerConfig.from_env()
    overrides: Dict[str, Any] = {}
    if args.db:
        overrides["document_db_path"] = args.db
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if getattr(args, "grobid_url", None):
        overrides["grobid_url"] = args.grobid_url.rstrip("/")
    return dataclasses.replace(config, **overrides) if overrides else config


async def _extract(checker: CitationCheckerApp, path: Path):
    try:
        tei = await checker.to_tei(path.read_bytes(), path.name)
    finally:
        if checker.grobid is not None:
            await checker.grobid.aclose()
    return checker.process_tei(tei)


async def _verify(config: CheckerConfig, path: Path, verify: bool) -> VerificationSession:
    grobid = GrobidClient.from_config(config)
    oracle = GeminiOracle.from_config(config) if config.oracle_enabled else None
    checker = CitationCheckerApp(config=config, grobid=grobid)
    manager = VerificationSessionManager(checker, oracle=oracle, config=config)
    try:
        session_id = manager.start_session(path.read_bytes(), path.name, verify=verify)
        return await manager.wait(session_id)
    finally:
        await grobid.aclose()
        if oracle is not None:
            await oracle.aclose()


async def _ingest(checker: CitationCheckerApp, directory: Path, tei: bool, force: bool):
    try:
        if tei:
            return checker.ingest_tei_directory(directory, skip_existing=not force, replace=force)
        return await checker.ingest_directory(directory, skip_existing=not force, replace=force)
    finally:
        if checker.grobid is not None:
            await checker.grobid.aclose()


def cmd_extract(args: argparse.Namespace, config: CheckerConfig) -> int:
    checker = CitationCheckerApp(config=config, grobid=GrobidClient.from_config(config))
    extraction = asyncio.run(_extract(checker, Path(args.input)))
    print(render_extraction(extraction))
    print()
    print(render_report(extraction.issues))
    if args.json_output:
        args.json_output.write_text(json.dumps(extraction_payload(extraction), indent=2))
    return 0


def cmd_ingest(args: argparse.Namespace, config: CheckerConfig) -> int:
    checker = CitationCheckerApp(config=config, grobid=GrobidClient.from_config(config))
    result = asyncio.run(_ingest(checker, Path(args.directory), args.tei, args.force))
    print(result.message)
    return 0 if result.error_count == 0 else 1


def cmd_rebuild_index(args: argparse.Namespace, config: CheckerConfig) -> int:
    checker = CitationCheckerApp(config=config)
    count = checker.store.rebuild_index()
    print(f"Index rebuilt with {count} documents ({checker.store.last_skipped} skipped)")
    return 0


def cmd_lookup(args: argparse.Namespace, config: CheckerConfig) -> int:
    checker = CitationCheckerApp(config=config)
    record = checker.lookup(args.key)
    if record is None:
        print(f"No document found for {args.key!r}", file=sys.stderr)
        return 1
    data = record.to_json_dict()
    if not args.full:
        data["content"] = data["content"][:300]
    print(json.dumps(data, indent=2, ensure_ascii=False))
    return 0


def cmd_verify(args: argparse.Namespace, config: CheckerConfig) -> int:
    session = asyncio.run(_verify(config, Path(args.input), verify=not args.no_verify))
    if session.error:
        print(f"Verification failed: {session.error}", file=sys.stderr)
    if session.report is not None:
        print(render_report([], verification=session.report))
        if args.json_output:
            args.json_output.write_text(json.dumps(session.report.to_wire(), indent=2))
    return 0 if session.report is not None else 1


def cmd_serve(args: argparse.Namespace, config: CheckerConfig) -> int:
    from .web import main as serve

    serve()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract and verify scholarly citations")
    parser.add_argument("--db", type=Path, help="Document database directory (DOCUMENT_DB_PATH)")
    parser.add_argument("--log-level", help="Logging level (LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract = subparsers.add_parser("extract", help="Print the citation map of a PDF or TEI file")
    extract.add_argument("input", help="Path to a PDF or GROBID TEI XML file")
    extract.add_argument("--grobid-url", help="GROBID server URL (GROBID_URL)")
    extract.add_argument("--json-output", type=Path, help="Write the citation map as JSON")
    extract.set_defaults(handler=cmd_extract)

    ingest = subparsers.add_parser("ingest", help="Add a folder of papers to the document database")
    ingest.add_argument("directory", help="Folder of PDFs (or TEI files with --tei)")
    ingest.add_argument("--tei", action="store_true", help="Folder contains TEI XML instead of PDFs")
    ingest.add_argument("--force", action="store_true", help="Re-extract files already in the database")
    ingest.add_argument("--grobid-url", help="GROBID server URL (GROBID_URL)")
    ingest.set_defaults(handler=cmd_ingest)

    rebuild = subparsers.add_parser("rebuild-index", help="Regenerate index.json from stored documents")
    rebuild.set_defaults(handler=cmd_rebuild_index)

    lookup = subparsers.add_parser("lookup", help="Find a stored document by id, DOI or title")
    lookup.add_argument("key")
    lookup.add_argument("--full", action="store_true", help="Print the full document text")
    lookup.set_defaults(handler=cmd_lookup)

    verify = subparsers.add_parser("verify", help="Verify every citation of a paper")
    verify.add_argument("input", help="Path to a PDF or GROBID TEI XML file")
    verify.add_argument("--no-verify", action="store_true", help="Extract only; mark references skipped")
    verify.add_argument("--grobid-url", help="GROBID server URL (GROBID_URL)")
    verify.add_argument("--json-output", type=Path, help="Write the verification report as JSON")
    verify.set_defaults(handler=cmd_verify)

    serve = subparsers.add_parser("serve", help="Run the web interface")
    serve.set_defaults(handler=cmd_serve)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = _build_config(args)
        configure_logging(config.log_level)
        return args.handler(args, config)
    except CitationVerifierError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover - manual invocation helper
    raise SystemExit(main())

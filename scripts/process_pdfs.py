from __future__ import annotations

import argparse
import asyncio
import dataclasses
import os
import sys
from pathlib import Path
from typing import List

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from citation_verifier.app import CitationCheckerApp  # noqa: E402
from citation_verifier.config import CheckerConfig, configure_logging  # noqa: E402
from citation_verifier.grobid import GrobidClient  # noqa: E402
from citation_verifier.schemas import BatchResult  # noqa: E402

load_dotenv()

PDF_DIRECTORY = os.getenv("PDF_DIRECTORY", "data/pdf-documents")


async def run_once(config: CheckerConfig, directory: Path, force: bool) -> BatchResult | None:
    grobid = GrobidClient.from_config(config)
    try:
        if not await grobid.is_alive():
            print(f"GROBID service is not running at {config.grobid_url}.")
            return None
        print("GROBID service is running.")
        checker = CitationCheckerApp(config=config, grobid=grobid)
        return await checker.ingest_directory(directory, skip_existing=not force, replace=force)
    finally:
        await grobid.aclose()


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Add a folder of PDFs to the document database via GROBID.")
    parser.add_argument("directory", nargs="?", default=PDF_DIRECTORY, help="Folder containing PDF files")
    parser.add_argument("--db", type=Path, help="Document database directory (DOCUMENT_DB_PATH)")
    parser.add_argument("--force", action="store_true", help="Re-extract PDFs that are already stored")
    args = parser.parse_args(argv)

    config = CheckerConfig.from_env(dotenv=False)
    if args.db:
        config = dataclasses.replace(config, document_db_path=args.db)
    configure_logging(config.log_level)

    directory = Path(args.directory)
    if not directory.is_dir():
        print(f"PDF documents directory not found: {directory}")
        return 1

    result = asyncio.run(run_once(config, directory, args.force))
    if result is None:
        return 1
    print(result.message)
    return 0 if result.error_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())

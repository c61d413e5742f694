"""Law importer entry point.

Reads ELI-style JSON law files from a directory tree and upserts them into
the document store in batches. Imported and changed laws are left pending
for the next incremental index run.

Usage:
    python -m services.ingestion.law_importer /path/to/eli [--batch-size 50]
"""

import argparse
import asyncio
import json
import uuid
from pathlib import Path
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.document import DocumentCreate
from shared.store.DocumentStoreInterface import DocumentStoreInterface
from shared.store.sql.DocumentStoreSQL import DocumentStoreSQL

DEFAULT_BATCH_SIZE = 50


def find_json_files(root: Path) -> list[Path]:
    """All *.json files below ``root``, in a stable order."""
    return sorted(p for p in root.rglob("*.json") if p.is_file())


def make_document_id(relative_path: str) -> str:
    """Deterministic id per law file, so re-imports update instead of duplicating."""
    return uuid.uuid5(uuid.NAMESPACE_URL, f"law:{relative_path}").hex


def parse_law(file_path: Path, root: Path) -> DocumentCreate:
    """Build the document for one law file.

    The title comes from the first expression's ``xsd:string`` title (falling
    back to the file name) and the language from its language reference.

    Raises:
        ValueError: If the file is not valid JSON or not a JSON object.
    """
    content: Any = json.loads(file_path.read_text(encoding="utf-8"))
    if not isinstance(content, dict):
        raise ValueError("law file must contain a JSON object")

    relative_path = file_path.relative_to(root).as_posix()
    expressions = content.get("included") or []
    first = expressions[0] if expressions and isinstance(expressions[0], dict) else {}

    title = ((first.get("attributes") or {}).get("title") or {}).get("xsd:string") or file_path.name
    language_ref = (first.get("references") or {}).get("language")
    language = language_ref.rsplit("/", 1)[-1] if language_ref else None

    metadata: dict[str, Any] = {
        "path": relative_path,
        "fileName": file_path.name,
        "originalPath": str(file_path),
    }
    if language:
        metadata["language"] = language

    return DocumentCreate(
        id=make_document_id(relative_path),
        title=title,
        content=content,
        metadata=metadata,
    )


async def import_laws(
    helper_config: HelperConfig,
    store: DocumentStoreInterface,
    root: Path,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """Import every law file below ``root``.

    Unreadable files are logged and skipped; each batch is upserted in one transaction.

    Returns:
        int: Number of documents written.
    """
    logger = helper_config.get_logger()
    files = find_json_files(root)
    logger.info("Found %d JSON file(s) below %s.", len(files), root)

    imported = 0
    total_batches = max(1, -(-len(files) // batch_size))
    for batch_no, start in enumerate(range(0, len(files), batch_size), start=1):
        documents: list[DocumentCreate] = []
        for file_path in files[start:start + batch_size]:
            try:
                documents.append(parse_law(file_path, root))
            except (OSError, ValueError) as e:
                logger.error("Error processing file %s: %s", file_path, e)

        if not documents:
            logger.warning("No valid documents in batch %d/%d, skipping.", batch_no, total_batches)
            continue

        await store.upsert_documents(documents)
        imported += len(documents)
        logger.info("Batch %d/%d: processed %d/%d file(s).", batch_no, total_batches, min(start + batch_size, len(files)), len(files))

    logger.info("Import completed: %d document(s).", imported)
    return imported


async def main(argv: list[str] | None = None) -> None:
    arg_parser = argparse.ArgumentParser(description="Import ELI law files into the document store")
    arg_parser.add_argument("directory", type=Path, help="Root directory of the JSON law files")
    arg_parser.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Documents per transaction (default {DEFAULT_BATCH_SIZE})",
    )
    args = arg_parser.parse_args(argv)

    logger = setup_logging()
    config = HelperConfig(logger=logger)
    if not args.directory.is_dir():
        logger.error("Directory %s does not exist. Aborting.", args.directory)
        return

    store = DocumentStoreSQL(helper_config=config)
    await store.boot()
    try:
        await import_laws(config, store, args.directory, batch_size=max(1, args.batch_size))
    finally:
        await store.close()


if __name__ == "__main__":
    asyncio.run(main())

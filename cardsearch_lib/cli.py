"""
Command line interface for the card search tool.

Commands:
- init: create or upgrade the database schema
- extract: print the text extracted from a document
- index-file: extract a document into the page index
- scan: walk directories into the file index
- search / count / suggest: query the card index
- reindex: rebuild derived text and card_fts for every card

Every command prints a JSON result.

Usage:
    cardsearch --db notes.db init
    cardsearch --db notes.db search 计算机 --limit 10
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from cardsearch_lib.config import (
    ConfigError,
    build_extractor,
    build_policy,
    build_profile,
    load_config,
    write_default_searchignore,
)
from cardsearch_lib.derived_text import DerivedTextWriter
from cardsearch_lib.documents import DocumentIndexer
from cardsearch_lib.file_extract import ExtractionError, extract_document
from cardsearch_lib.fs_index import SCAN_FULL, SCAN_INCREMENTAL, FileSystemIndexer
from cardsearch_lib.schema import check_db_initialized, init_db, rebuild_fts
from cardsearch_lib.search import SearchError, count, search, search_content, suggest

logger = logging.getLogger(__name__)


def _document_indexer(db_path: Path, config: dict, extractor=None) -> DocumentIndexer:
    return DocumentIndexer(
        db_path,
        extractor or build_extractor(config),
        profile=build_profile(config),
        policy=build_policy(config),
    )


def _writer(db_path: Path, config: dict) -> DerivedTextWriter:
    extractor = build_extractor(config)
    return DerivedTextWriter(
        db_path,
        extractor,
        build_policy(config),
        document_indexer=_document_indexer(db_path, config, extractor),
    )


def cmd_init(db_path: Path, config: dict, args) -> dict:
    result = init_db(db_path)
    if result["card_reindex_needed"]:
        logger.info("card_fts was rebuilt; reindexing cards")
        result["reindex"] = _writer(db_path, config).reindex_all()
    result["status"] = check_db_initialized(db_path)
    return result


def cmd_extract(db_path: Path, config: dict, args) -> dict:
    document = extract_document(
        Path(args.path),
        args.kind,
        profile=build_profile(config),
        policy=build_policy(config),
    )
    return document.to_dict()


def cmd_index_file(db_path: Path, config: dict, args) -> dict:
    init_db(db_path)
    pages = _document_indexer(db_path, config).index_file(
        Path(args.path), card_id=args.card_id, space_id=args.space_id
    )
    return {"path": args.path, "total_pages": len(pages)}


def cmd_scan(db_path: Path, config: dict, args) -> dict:
    init_db(db_path)
    roots = [Path(root) for root in args.roots] or None
    if args.init_ignore and roots:
        for root in roots:
            write_default_searchignore(root)

    indexer = FileSystemIndexer(
        db_path,
        build_extractor(config),
        document_indexer=_document_indexer(db_path, config) if config["extract_documents"] else None,
        profile=build_profile(config),
        extra_excludes=config["exclude_patterns"],
        file_timeout=config["file_timeout"],
        max_file_size=config["max_file_size"],
        max_workers=config["scan_workers"],
    )
    return indexer.scan(roots, mode=SCAN_FULL if args.full else SCAN_INCREMENTAL)


def cmd_search(db_path: Path, config: dict, args) -> dict:
    extractor = build_extractor(config)
    if args.content:
        results = search_content(
            db_path, args.query, space_id=args.space_id, card_types=args.card_type,
            limit=args.limit or config["search_limit"], extractor=extractor,
        )
    else:
        results = search(
            db_path, args.query, limit=args.limit or config["search_limit"], offset=args.offset,
            highlight=not args.no_highlight, snippet_length=config["snippet_length"],
            extractor=extractor,
        )
    return {"query": args.query, "results": [r.to_dict() for r in results]}


def cmd_count(db_path: Path, config: dict, args) -> dict:
    return {"query": args.query, "count": count(db_path, args.query, build_extractor(config))}


def cmd_suggest(db_path: Path, config: dict, args) -> dict:
    names = suggest(db_path, args.query, limit=args.limit, extractor=build_extractor(config))
    return {"query": args.query, "suggestions": names}


def cmd_reindex(db_path: Path, config: dict, args) -> dict:
    init_db(db_path)
    return {"cards": _writer(db_path, config).reindex_all(), "rebuilt_fts": rebuild_fts(db_path)}


COMMANDS = {
    "init": cmd_init,
    "extract": cmd_extract,
    "index-file": cmd_index_file,
    "scan": cmd_scan,
    "search": cmd_search,
    "count": cmd_count,
    "suggest": cmd_suggest,
    "reindex": cmd_reindex,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cardsearch", description="Card content indexing and search")
    parser.add_argument("--db", help="SQLite database path (overrides config)")
    parser.add_argument("--config", help="JSON config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create or upgrade the database schema")

    p = subparsers.add_parser("extract", help="Print extracted document text")
    p.add_argument("path", help="Document to extract")
    p.add_argument("--kind", help="Override the detected document kind")

    p = subparsers.add_parser("index-file", help="Extract a document into the page index")
    p.add_argument("path", help="Document to index")
    p.add_argument("--card-id", help="Owning attachment card")
    p.add_argument("--space-id", default="default", help="Space id")

    p = subparsers.add_parser("scan", help="Walk directories into the file index")
    p.add_argument("roots", nargs="*", help="Directories to scan (default: system directories)")
    p.add_argument("--full", action="store_true", help="Revisit every file and drop vanished ones")
    p.add_argument("--init-ignore", action="store_true", help="Write a default .searchignore into each root")

    p = subparsers.add_parser("search", help="Search cards")
    p.add_argument("query", help="Search query")
    p.add_argument("--limit", type=int, help="Maximum results")
    p.add_argument("--offset", type=int, default=0, help="Results to skip")
    p.add_argument("--no-highlight", action="store_true", help="Omit snippets")
    p.add_argument("--content", action="store_true", help="Search derived text with fallbacks")
    p.add_argument("--space-id", help="Restrict --content search to a space")
    p.add_argument("--card-type", action="append", help="Restrict --content search to card types")

    p = subparsers.add_parser("count", help="Count matching cards")
    p.add_argument("query", help="Search query")

    p = subparsers.add_parser("suggest", help="Suggest card names")
    p.add_argument("query", help="Partial query")
    p.add_argument("--limit", type=int, default=10, help="Maximum suggestions")

    subparsers.add_parser("reindex", help="Rebuild the card index")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s: %(message)s'
    )

    try:
        config = load_config(Path(args.config) if args.config else None)
        db_path = Path(args.db or config["db_path"])
        result = COMMANDS[args.command](db_path, config, args)
    except (ConfigError, SearchError, ExtractionError, OSError, RuntimeError, ValueError) as e:
        logger.error(str(e))
        return 1

    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    return 0


if __name__ == '__main__':
    sys.exit(main())

"""Command-line entry point: ``docharvest crawl | reindex | search``."""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from docharvest import config
from docharvest.services.crawler import run_crawl
from docharvest.services.indexer import reindex
from docharvest.services.library import DocsLibrary
from docharvest.services.storage import CorpusMissingError, CorpusStore

logger = logging.getLogger(__name__)


def _languages(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docharvest",
        description="Harvest a documentation site into a local, searchable corpus.",
    )
    parser.add_argument("--data-dir", default=None, help=f"Corpus directory (default: {config.DATA_DIR})")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level")
    parser.add_argument("--log-file", default=config.LOG_FILE, help="Also write JSON log lines here")

    commands = parser.add_subparsers(dest="command", required=True)

    crawl = commands.add_parser("crawl", help="Crawl the site and rebuild the index")
    crawl.add_argument("--force", action="store_true", help="Refetch every page unconditionally")
    crawl.add_argument(
        "--only-new",
        action="store_true",
        help="Reuse cached pages that carry links without contacting the site",
    )
    crawl.add_argument("--root-url", default=None, help=f"Crawl root (default: {config.BASE_URL})")
    crawl.add_argument("--max-pages", type=int, default=None, help="Total pages handled this run")
    crawl.add_argument(
        "--max-new-pages",
        type=int,
        default=None,
        help="Newly fetched resources this run (0 = unlimited)",
    )
    crawl.add_argument(
        "--languages",
        type=_languages,
        default=None,
        help="Comma-separated code languages to keep, e.g. cs,vb",
    )

    commands.add_parser("reindex", help="Rebuild summaries and index from the stored pages")

    search = commands.add_parser("search", help="Search the corpus")
    search.add_argument("query", help="Free-text query")
    search.add_argument("--limit", type=int, default=5, help="Maximum number of results")
    return parser


def _crawl(store: CorpusStore, args: argparse.Namespace) -> int:
    result = asyncio.run(
        run_crawl(
            force=args.force,
            only_new=args.only_new,
            root_url=args.root_url,
            max_pages=args.max_pages,
            max_new_pages=args.max_new_pages,
            allowed_languages=args.languages,
            store=store,
        )
    )
    print(
        f"Crawled {len(result.pages)} pages "
        f"({result.fetched_count} fetched, {result.reused_count} reused, "
        f"{result.asset_count} assets); corpus holds {result.index.page_count} pages."
    )
    return 0


def _reindex(store: CorpusStore) -> int:
    pages, index = reindex(store)
    print(f"Indexed {len(pages)} pages, {len(index.terms)} terms.")
    return 0


def _search(store: CorpusStore, args: argparse.Namespace) -> int:
    response = DocsLibrary(store).search_docs(args.query, args.limit)
    print(json.dumps(response.model_dump(mode="json"), ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config.configure_logging(args.log_level.upper(), args.log_file)
    store = CorpusStore(args.data_dir)

    try:
        if args.command == "crawl":
            return _crawl(store, args)
        if args.command == "reindex":
            return _reindex(store)
        return _search(store, args)
    except CorpusMissingError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())

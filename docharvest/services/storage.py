"""On-disk page corpus.

Layout under the data directory::

    pages/<breadcrumb>/<breadcrumb>/<name>.md   one record per page
    pages.jsonl                                 page summaries, one per line
    index.json                                  inverted index
    assets/<host>/<url path>                    binary assets, verbatim

Every write goes to a temporary sibling first and is moved into place with
``os.replace`` so a record is either the old one or the new one, never a mix.
"""

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union
from urllib.parse import unquote, urlparse

from pydantic import ValidationError

from docharvest import config
from docharvest.models.index import SearchIndex
from docharvest.models.page import Page, PageSummary
from docharvest.services.normalizer import (
    derive_code_blocks,
    derive_headings,
    derive_title,
    normalize_label,
    parse_front_matter,
    render_front_matter,
    safe_segment,
    slug_filename,
    truncate_utf8,
)

logger = logging.getLogger(__name__)

PAGES_DIRNAME = "pages"
ASSETS_DIRNAME = "assets"
SUMMARIES_FILENAME = "pages.jsonl"
INDEX_FILENAME = "index.json"
LANDING_STEM = "index"

MAX_PATH_LENGTH = 255
MAX_PREFIX_BYTES = 240
# Below this many bytes of readable prefix the hashed file moves to pages/
MIN_PREFIX_BYTES = 16
MAX_FILENAME_BYTES = 250
HASH_LENGTH = 10

_PAGE_SUFFIX = ".md"

# Front-matter fields; code blocks and body text are not part of the header
_METADATA_FIELDS = (
    "slug",
    "url",
    "title",
    "breadcrumbs",
    "headings",
    "links",
    "etag",
    "last_modified",
    "updated_at",
    "last_checked_at",
)


class CorpusMissingError(RuntimeError):
    """The summary collection or the index is missing or cannot be read."""

    def __init__(self, summaries_path: Path, index_path: Path, cause: Optional[BaseException] = None):
        lines = [
            "Corpus data not found (or failed to load).",
            f"Expected files: {summaries_path} and {index_path}",
        ]
        if cause is not None:
            lines.append(f"Underlying error: {cause}")
        lines.append("Run: docharvest crawl")
        super().__init__("\n".join(lines))


def slug_digest(slug: str) -> str:
    return hashlib.sha1(slug.encode("utf-8")).hexdigest()[:HASH_LENGTH]


class CorpusStore:
    def __init__(self, data_dir: Union[str, Path, None] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else config.DATA_DIR
        self.pages_dir = self.data_dir / PAGES_DIRNAME
        self.assets_dir = self.data_dir / ASSETS_DIRNAME
        self.summaries_path = self.data_dir / SUMMARIES_FILENAME
        self.index_path = self.data_dir / INDEX_FILENAME
        # slug -> current file, built lazily from a scan of pages/
        self._locations: Optional[Dict[str, Path]] = None

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def page_path(self, page: Page) -> Path:
        """Where *page* lives: its breadcrumb directories plus a name from its slug."""
        name = slug_filename(page.slug)
        keys = {normalize_label(name), normalize_label(page.title)} - {""}

        landing = None
        for position, crumb in enumerate(page.breadcrumbs):
            if normalize_label(crumb) in keys:
                landing = position

        if landing is not None:
            crumbs, stem = page.breadcrumbs[: landing + 1], LANDING_STEM
        else:
            crumbs, stem = page.breadcrumbs, name

        directory = self.pages_dir.joinpath(*[safe_segment(crumb) for crumb in crumbs])
        path = directory / f"{stem}{_PAGE_SUFFIX}"
        if len(str(path)) <= MAX_PATH_LENGTH and len(path.name.encode("utf-8")) <= MAX_FILENAME_BYTES:
            return path
        return self._hashed_path(directory, stem, page.slug)

    def _hashed_path(self, directory: Path, stem: str, slug: str) -> Path:
        suffix = f"-{slug_digest(slug)}{_PAGE_SUFFIX}"

        def budget_for(folder: Path) -> int:
            return MAX_PATH_LENGTH - len(str(folder)) - 1 - len(suffix)

        budget = budget_for(directory)
        if budget < MIN_PREFIX_BYTES:
            directory = self.pages_dir
            budget = budget_for(directory)
        budget = max(MIN_PREFIX_BYTES, min(MAX_PREFIX_BYTES, budget))

        prefix = truncate_utf8(stem, budget).rstrip("-. ") or "page"
        return directory / f"{prefix}{suffix}"

    def relative_path(self, path: Path) -> str:
        return path.relative_to(self.pages_dir).as_posix()

    # ------------------------------------------------------------------
    # Page records
    # ------------------------------------------------------------------

    def save_page(self, page: Page) -> Path:
        """Write *page* to its derived location, replacing any earlier copy."""
        path = self.page_path(page)
        locations = self._slug_locations()
        self._ensure_directory(path.parent)
        metadata = page.model_dump(mode="json", include=set(_METADATA_FIELDS))
        metadata = {field: metadata[field] for field in _METADATA_FIELDS}
        _write_atomic(path, render_front_matter(metadata, page.text))

        previous = locations.get(page.slug)
        if previous is not None and previous != path and previous.exists():
            previous.unlink()
            logger.debug("Storage: moved %s from %s to %s", page.slug, previous, path)
        locations[page.slug] = path
        return path

    def load_page(self, slug: str) -> Optional[Page]:
        path = self._slug_locations().get(slug)
        if path is None or not path.exists():
            # Another process may have written the corpus since the last scan
            self._locations = None
            path = self._slug_locations().get(slug)
        if path is None:
            return None
        return self._read_page(path)

    def load_pages(self) -> List[Page]:
        """Every stored page, ordered by relative file path."""
        pages: List[Page] = []
        locations: Dict[str, Path] = {}
        for path in self._page_files():
            page = self._read_page(path)
            if page is None:
                continue
            pages.append(page)
            locations[page.slug] = path
        self._locations = locations
        return pages

    def _page_files(self) -> List[Path]:
        if not self.pages_dir.is_dir():
            return []
        return sorted(
            (path for path in self.pages_dir.rglob(f"*{_PAGE_SUFFIX}") if path.is_file()),
            key=self.relative_path,
        )

    def _slug_locations(self) -> Dict[str, Path]:
        if self._locations is None:
            locations: Dict[str, Path] = {}
            for path in self._page_files():
                metadata, _ = _read_record(path)
                slug = metadata.get("slug") if metadata else None
                if isinstance(slug, str) and slug:
                    locations[slug] = path
            self._locations = locations
        return self._locations

    def _read_page(self, path: Path) -> Optional[Page]:
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Storage: cannot read %s – %s", path, exc)
            return None

        metadata, body = parse_front_matter(raw)
        if metadata is not None:
            try:
                fields = {key: metadata[key] for key in _METADATA_FIELDS if key in metadata}
                if "headings" not in fields:
                    fields["headings"] = derive_headings(body)
                return Page(**fields, text=body, code_blocks=derive_code_blocks(body))
            except (TypeError, ValidationError) as exc:
                logger.warning("Storage: invalid metadata in %s – %s", path, exc)
        else:
            logger.warning("Storage: malformed metadata in %s – re-deriving from body", path)
        return self._derive_page(path, metadata or {}, body)

    def _derive_page(self, path: Path, metadata: dict, body: str) -> Page:
        """Best-effort page from the body text and the file location."""
        relative = path.relative_to(self.pages_dir)

        def text_field(key: str, fallback: str) -> str:
            value = metadata.get(key)
            return value if isinstance(value, str) and value else fallback

        slug = text_field("slug", relative.with_suffix("").as_posix())
        title = text_field("title", derive_title(body) or path.stem)
        return Page(
            slug=slug,
            url=text_field("url", ""),
            title=title,
            breadcrumbs=list(relative.parent.parts),
            headings=derive_headings(body),
            text=body,
            code_blocks=derive_code_blocks(body),
        )

    # ------------------------------------------------------------------
    # Directory reconciliation
    # ------------------------------------------------------------------

    def _ensure_directory(self, directory: Path) -> None:
        """Create *directory* level by level, reconciling each new level."""
        current = self.pages_dir
        current.mkdir(parents=True, exist_ok=True)
        for part in directory.relative_to(self.pages_dir).parts:
            parent, current = current, current / part
            if not current.exists():
                current.mkdir()
                self.reconcile_directory(parent, part)

    def reconcile_directory(self, parent: Path, name: str) -> bool:
        """Move a loose page describing category *name* into ``parent/name/index.md``.

        A file at the parent level matches when its file name, or the title
        or slug in its header, normalises to the directory name.  When the
        directory already holds an ``index.md`` for the same slug the older of
        the two copies (by ``updated_at``) is dropped.  Returns True when a
        file was moved or dropped; repeated calls are no-ops.
        """
        directory = parent / name
        target = directory / f"{LANDING_STEM}{_PAGE_SUFFIX}"
        key = normalize_label(name)
        if not key or not parent.is_dir():
            return False

        changed = False
        for candidate in sorted(parent.glob(f"*{_PAGE_SUFFIX}")):
            if not candidate.is_file():
                continue
            metadata, body = _read_record(candidate)
            identity = {normalize_label(candidate.stem)}
            if metadata:
                identity.add(normalize_label(str(metadata.get("title") or "")))
                identity.add(normalize_label(slug_filename(str(metadata.get("slug") or ""))))
            if key not in identity:
                continue

            directory.mkdir(parents=True, exist_ok=True)
            if target.exists():
                existing, _ = _read_record(target)
                if not (existing and metadata and existing.get("slug") == metadata.get("slug")):
                    continue
                if str(metadata.get("updated_at") or "") > str(existing.get("updated_at") or ""):
                    os.replace(candidate, target)
                else:
                    candidate.unlink()
                logger.info("Storage: merged duplicate %s into %s", candidate, target)
            else:
                if metadata is not None:
                    crumbs = list(metadata.get("breadcrumbs") or [])
                    crumbs.append(name)
                    metadata["breadcrumbs"] = crumbs
                    _write_atomic(target, render_front_matter(metadata, body))
                    candidate.unlink()
                else:
                    os.replace(candidate, target)
                logger.info("Storage: moved %s into %s", candidate, target)

            if self._locations is not None and metadata and metadata.get("slug"):
                self._locations[metadata["slug"]] = target
            changed = True
        return changed

    # ------------------------------------------------------------------
    # Summaries and index
    # ------------------------------------------------------------------

    def save_summaries(self, pages: Iterable[Page]) -> None:
        """Write one JSON summary per line."""
        locations = self._slug_locations()
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp = _tmp_path(self.summaries_path)
        with open(tmp, "w", encoding="utf-8") as fh:
            for page in pages:
                path = locations.get(page.slug) or self.page_path(page)
                summary = PageSummary.from_page(page, path=self.relative_path(path))
                fh.write(summary.model_dump_json())
                fh.write("\n")
        os.replace(tmp, self.summaries_path)

    def load_summaries(self) -> List[PageSummary]:
        """Read the summaries, accepting the legacy single-array JSON form too."""
        try:
            with open(self.summaries_path, encoding="utf-8") as fh:
                first = ""
                while True:
                    chunk = fh.read(1)
                    if not chunk or not chunk.isspace():
                        first = chunk
                        break
                fh.seek(0)
                if first == "[":
                    return [PageSummary.model_validate(item) for item in json.load(fh)]
                return [
                    PageSummary.model_validate_json(line)
                    for line in fh
                    if line.strip()
                ]
        except (OSError, ValueError) as exc:
            raise CorpusMissingError(self.summaries_path, self.index_path, exc) from exc

    def save_index(self, index: SearchIndex) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        _write_atomic(self.index_path, index.model_dump_json())

    def load_index(self) -> SearchIndex:
        try:
            raw = self.index_path.read_text(encoding="utf-8")
            return SearchIndex.model_validate_json(raw)
        except (OSError, ValueError) as exc:
            raise CorpusMissingError(self.summaries_path, self.index_path, exc) from exc

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    def asset_path(self, url: str, content_type: str = "") -> Path:
        parsed = urlparse(url)
        parts = [safe_segment(parsed.hostname or "unknown-host")]
        for segment in unquote(parsed.path).split("/"):
            if segment in ("", ".", ".."):
                continue
            parts.append(safe_segment(segment))
        if len(parts) == 1:
            parts.append("index")
        if "pdf" in content_type.lower() and not parts[-1].lower().endswith(".pdf"):
            parts[-1] += ".pdf"
        return self.assets_dir.joinpath(*parts)

    def save_asset(self, url: str, data: bytes, content_type: str = "") -> Path:
        """Store a binary resource verbatim under ``assets/<host>/<url path>``."""
        path = self.asset_path(url, content_type)
        path.parent.mkdir(parents=True, exist_ok=True)
        _write_atomic(path, data)
        return path


def _tmp_path(path: Path) -> Path:
    # Short fixed-length name so long page names still fit the filesystem limit
    digest = hashlib.sha1(path.name.encode("utf-8")).hexdigest()[:16]
    return path.with_name(f".{digest}.tmp")


def _write_atomic(path: Path, data: Union[str, bytes]) -> None:
    tmp = _tmp_path(path)
    if isinstance(data, bytes):
        tmp.write_bytes(data)
    else:
        tmp.write_text(data, encoding="utf-8")
    os.replace(tmp, path)


def _read_record(path: Path):
    try:
        return parse_front_matter(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Storage: cannot read %s – %s", path, exc)
        return None, ""

"""
File System Index - Best-effort discovery of local files for search.

Walks root directories, skipping hidden entries, platform exclude patterns
and .searchignore patterns, and records every surviving file in file_index
with a segmented file name. Extractable documents are also handed to the
document page index.

Key features:
- Incremental scans (files with unchanged size and mtime are skipped)
- Cooperative cancellation through a threading.Event, checked per
  directory and per file
- Document extraction in worker processes with a per-file wall-clock
  timeout; a worker stuck past it is terminated and replaced
- Rows written in chunks of 100
- A finished full scan removes rows of files that no longer exist

Usage:
    indexer = FileSystemIndexer(db_path, extractor, document_indexer)
    stats = indexer.scan([Path.home() / 'Documents'], mode='full')
"""

import logging
import multiprocessing
import os
import re
import sqlite3
import sys
import threading
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Optional

from cardsearch_lib.config import read_searchignore
from cardsearch_lib.documents import extract_pages
from cardsearch_lib.file_extract import Page, is_text_file
from cardsearch_lib.platform_info import LINUX, MACOS, WINDOWS, PlatformProfile, current_profile
from cardsearch_lib.schema import get_connection
from cardsearch_lib.segment import KeywordExtractor

logger = logging.getLogger(__name__)

CHUNK_SIZE = 100
DEFAULT_FILE_TIMEOUT = 30.0
DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024
DEFAULT_SEARCH_LIMIT = 20
FILE_NAME_SEPARATORS_RE = re.compile(r'[._\-\s]+')

SCAN_FULL = 'full'
SCAN_INCREMENTAL = 'incremental'

HOME_SUBDIRS = {
    WINDOWS: ('Desktop', 'Documents', 'Downloads', 'Pictures', 'Videos', 'Music', 'Favorites'),
    MACOS: ('Desktop', 'Documents', 'Downloads', 'Pictures', 'Movies', 'Music', 'Public'),
    LINUX: (),
}

COMMON_EXCLUDES = [
    # Version control
    '**/.git/**', '**/.svn/**', '**/.hg/**',
    # Dependencies
    '**/node_modules/**', '**/__pycache__/**', '**/.pytest_cache/**', '**/venv/**', '**/env/**',
    '**/.npm/**', '**/.yarn/**', '**/pnpm-store/**',
    '**/yarn.lock', '**/package-lock.json', '**/pnpm-lock.yaml',
    # Java
    '**/target/**', '**/.m2/**', '**/.gradle/**', '**/build/**', '**/out/**',
    '**/.classpath', '**/.project', '**/.settings/**', '**/bin/**',
    # Python
    '**/*.pyc', '**/*.pyo', '**/*.pyd', '**/.coverage',
    # Editors
    '**/.vscode/**', '**/.idea/**', '**/*.swp', '**/*.swo', '**/*~',
    # Build output
    '**/dist/**', '**/.next/**', '**/.nuxt/**', '**/.output/**',
    # Caches
    '**/.cache/**', '**/cache/**', '**/.eslintcache', '**/.stylelintcache',
    # Temporary files
    '**/temp/**', '**/.temp/**', '**/*.tmp', '**/*.temp',
    # Logs
    '**/*.log', '**/logs/**',
    # Backups
    '**/*.bak', '**/*.backup', '**/*.old',
    # Archives
    '**/*.zip', '**/*.rar', '**/*.7z', '**/*.tar', '**/*.gz', '**/*.bz2',
]

PLATFORM_EXCLUDES = {
    WINDOWS: [
        'C:/Program Files/**', 'C:/Program Files (x86)/**', 'C:/ProgramData/**',
        'C:/Recovery/**', 'C:/Windows/**',
        'C:/Users/*/AppData/Local/Microsoft/**', 'C:/Users/*/AppData/Local/Packages/**',
        'C:/Users/*/AppData/Local/Temp/**', 'C:/Users/*/AppData/Local/cache/**',
        'C:/Users/*/AppData/Roaming/Microsoft/**',
        '**/System Volume Information/**', '**/$RECYCLE.BIN/**', '**/.vs/**',
        '**/.DS_Store', '**/Thumbs.db', '**/desktop.ini', '**/ehthumbs.db', '**/ehthumbs_vista.db',
    ],
    MACOS: [
        '/System/**', '/Library/**', '/Applications/**', '/private/**', '/var/**', '/tmp/**',
        '/Users/*/Library/Caches/**', '/Users/*/Library/Logs/**',
        '/Users/*/Library/Application Support/**', '/Users/*/Library/Preferences/**',
        '/Users/*/Library/Saved Application State/**', '/Users/*/Library/WebKit/**',
        '/Users/*/Library/Developer/**', '/Users/*/Library/Containers/**',
        '/Users/*/Library/Group Containers/**', '/Users/*/Library/Mobile Documents/**',
        '/Users/*/Library/CloudStorage/**',
        '**/.DS_Store', '**/.Spotlight-V100/**', '**/.Trashes/**', '**/.fseventsd/**',
        '**/.TemporaryItems/**',
    ],
    LINUX: [
        '/proc/**', '/sys/**', '/dev/**', '/boot/**', '/run/**', '/tmp/**',
        '/var/cache/**', '/var/log/**', '/var/tmp/**',
        '**/.DS_Store', '**/.Trash/**',
    ],
}

FILE_TYPES = [
    ('text', {'.txt', '.log', '.md', '.rtf'}),
    ('code', {
        '.java', '.js', '.ts', '.jsx', '.tsx', '.html', '.htm', '.css', '.scss', '.less',
        '.py', '.cpp', '.c', '.h', '.hpp', '.cs', '.php', '.rb', '.go', '.rs', '.swift',
        '.kt', '.scala', '.clj', '.hs', '.ml', '.fs', '.vb', '.sql', '.sh', '.bat', '.ps1',
        '.yaml', '.yml', '.json', '.xml', '.toml', '.ini', '.cfg', '.conf', '.config',
        '.properties', '.env', '.gitignore', '.gitattributes', '.dockerfile', '.makefile',
        '.cmake', '.gradle', '.maven', '.pom', '.sbt', '.cabal', '.cargo',
        '.vue', '.svelte', '.astro', '.sqlite', '.db',
        '.bash', '.zsh', '.fish', '.cmd', '.psm1',
        '.markdown', '.rst', '.adoc', '.tex', '.ltx',
    }),
    ('word', {'.doc', '.docx'}),
    ('excel', {'.xls', '.xlsx'}),
    ('powerpoint', {'.ppt', '.pptx'}),
    ('onenote', {'.one'}),
    ('pdf', {'.pdf'}),
    ('email', {'.eml'}),
    ('ebook', {'.mobi', '.epub', '.azw', '.azw3', '.djvu'}),
    ('chm', {'.chm'}),
    ('wps', {'.wps', '.et', '.dps'}),
    ('mindmap', {'.lighten', '.mmap', '.emmx', '.mm', '.xmind'}),
    ('document', {'.ofd', '.ziw', '.eddx'}),
    ('latex', {'.sty', '.cls', '.bbl', '.aux', '.toc', '.lof', '.lot'}),
    ('image', {'.png', '.jpg', '.jpeg', '.bmp', '.tiff', '.tif', '.gif', '.webp'}),
    ('executable', {'.exe', '.dll', '.so', '.dylib', '.app', '.msi', '.deb', '.rpm', '.pkg'}),
]

# File types whose content is extracted into the document page index
EXTRACTABLE_TYPES = {'text', 'word', 'excel', 'powerpoint', 'pdf'}


def classify_file(file_path: Path) -> str:
    """
    Determine the file type tag from the extension.

    Returns:
        One of text, code, word, excel, powerpoint, onenote, pdf, email,
        ebook, chm, wps, mindmap, document, latex, image, executable or
        'unknown'
    """
    ext = Path(file_path).suffix.lower()
    if not ext:
        return 'unknown'
    for file_type, extensions in FILE_TYPES:
        if ext in extensions:
            return file_type
    return 'unknown'


def _existing(paths) -> list[Path]:
    return [path for path in paths if path.exists()]


def get_system_directories(profile: Optional[PlatformProfile] = None) -> list[Path]:
    """
    Default scan roots for a platform.

    Windows: home folders plus every drive except C:. macOS: home folders,
    / and mounted /Volumes. Linux: /, /home, /mnt, /media, home and the
    mount points inside /mnt and /media. Only existing paths are returned.
    """
    profile = profile or current_profile()
    home = profile.home
    roots = _existing(home / name for name in HOME_SUBDIRS[profile.name])

    if profile.is_windows:
        roots.extend(_existing(Path(f"{letter}:\\") for letter in 'ABDEFGHIJKLMNOPQRSTUVWXYZ'))
    elif profile.is_macos:
        roots.extend(_existing([Path('/')]))
        volumes = Path('/Volumes')
        if volumes.is_dir():
            try:
                roots.extend(sorted(volumes.iterdir()))
            except OSError as e:
                logger.warning(f"Cannot list {volumes}: {e}")
    else:
        roots.extend(_existing([Path('/'), Path('/home'), Path('/mnt'), Path('/media'), home]))
        for mount_dir in (Path('/mnt'), Path('/media')):
            if mount_dir.is_dir():
                try:
                    roots.extend(sorted(mount_dir.iterdir()))
                except OSError as e:
                    logger.warning(f"Cannot list {mount_dir}: {e}")

    return list(dict.fromkeys(roots))


def get_exclude_patterns(profile: Optional[PlatformProfile] = None) -> list[str]:
    """Glob exclude patterns for a platform (platform paths first, then common ones)."""
    profile = profile or current_profile()
    return PLATFORM_EXCLUDES[profile.name] + COMMON_EXCLUDES


def is_excluded(
    path: Path,
    patterns: list[str],
    is_dir: bool = False,
    root: Optional[Path] = None,
) -> bool:
    """
    Check an absolute path against exclude globs.

    Pattern forms:
    - '**/name/**': any directory called name (and everything below it)
    - '**/glob': any entry whose name matches glob
    - '/abs/path/**' or 'C:/path/**': that directory and everything below it

    Args:
        path: Absolute path of a file or directory
        patterns: Exclude globs
        is_dir: The path is a directory (its own name is checked against
                directory patterns)
        root: Scan root; directory names above it are not checked
    """
    posix = Path(path).as_posix()
    parts = Path(path).parts
    if root is not None:
        try:
            parts = Path(path).relative_to(root).parts
        except ValueError:
            pass
    dir_parts = parts if is_dir else parts[:-1]
    name = parts[-1] if parts else ''

    for pattern in patterns:
        if pattern.startswith('**/'):
            inner = pattern[3:]
            if inner.endswith('/**'):
                dir_glob = inner[:-3]
                if any(fnmatch(part, dir_glob) for part in dir_parts):
                    return True
            elif fnmatch(name, inner):
                return True
        elif pattern.endswith('/**'):
            base = pattern[:-3]
            if fnmatch(posix, base) or fnmatch(posix, base + '/*'):
                return True
        elif fnmatch(posix, pattern):
            return True
    return False


def matches_searchignore(path: Path, root: Path, patterns: list[str], is_dir: bool = False) -> bool:
    """
    Check a path against .searchignore patterns relative to its root.

    Supports:
    - Glob patterns (*.log, *.pyc)
    - Directory patterns (secrets/, __pycache__/)
    - Path patterns (./drafts/*, subdir/*)
    """
    try:
        rel_path = Path(path).relative_to(root)
    except ValueError:
        return False

    rel_str = rel_path.as_posix()
    rel_parts = rel_path.parts
    dir_parts = rel_parts if is_dir else rel_parts[:-1]

    for pattern in patterns:
        pattern_clean = pattern.lstrip("./").rstrip("/")

        if pattern.endswith("/"):
            # Directory patterns match any directory on the path
            for i, part in enumerate(dir_parts):
                if fnmatch(part, pattern_clean):
                    return True
                if fnmatch("/".join(dir_parts[:i + 1]), pattern_clean):
                    return True
        else:
            if fnmatch(rel_str, pattern_clean) or fnmatch(rel_path.name, pattern_clean):
                return True
            for parent in rel_path.parents:
                parent_str = parent.as_posix()
                if parent_str != "." and fnmatch(parent_str, pattern_clean):
                    return True

    return False


def patterns_for_root(root: Path, patterns: list[str]) -> list[str]:
    """Drop absolute patterns that cover the root itself; an explicit root is always walked."""
    return [
        pattern for pattern in patterns
        if pattern.startswith("**/") or not is_excluded(root, [pattern], is_dir=True)
    ]


def _is_hidden(name: str) -> bool:
    return name.startswith('.')


def _collapse_roots(roots: list[Path]) -> list[Path]:
    """Drop roots nested inside another root so no directory is walked twice."""
    resolved = []
    for root in roots:
        try:
            resolved.append(Path(root).resolve())
        except OSError:
            resolved.append(Path(root))
    unique = sorted(set(resolved), key=lambda p: len(p.parts))
    kept: list[Path] = []
    for root in unique:
        if not any(root == k or k in root.parents for k in kept):
            kept.append(root)
    return kept


class ExtractionTimeoutError(Exception):
    """Document extraction did not finish within the per-file timeout."""
    pass


class ExtractionPool:
    """
    Worker processes that run document extraction with a per-file timeout.

    A parser stuck on a malformed file cannot be interrupted inside a thread,
    so extraction runs in a process pool. When a file times out the whole
    pool is terminated (killing the stuck worker) and the next file starts a
    fresh one.
    """

    def __init__(self, workers: int, timeout: float, extract_function: Callable[..., list[Page]] = extract_pages):
        self.workers = max(1, workers)
        self.timeout = timeout
        self.extract_function = extract_function
        self._context = multiprocessing.get_context('spawn')
        self._pool = None

    def extract(self, file_path: Path, kind: str, **kwargs) -> list[Page]:
        """
        Run the extract function on a file in a worker process.

        Raises:
            ExtractionTimeoutError: If the worker did not finish in time
            Exception: Whatever the extract function raised in the worker
        """
        if self._pool is None:
            self._pool = self._context.Pool(processes=self.workers)
        result = self._pool.apply_async(self.extract_function, (file_path, kind), kwargs)
        try:
            return result.get(timeout=self.timeout)
        except multiprocessing.TimeoutError:
            self.terminate()
            raise ExtractionTimeoutError(f"Extraction timed out after {self.timeout}s: {file_path}") from None

    def terminate(self) -> None:
        """Stop every worker, finished or not."""
        if self._pool is not None:
            self._pool.terminate()
            self._pool.join()
            self._pool = None


class FileSystemIndexer:
    """Walks directories into the file index."""

    def __init__(
        self,
        db_path: Path,
        extractor: KeywordExtractor,
        document_indexer=None,
        profile: Optional[PlatformProfile] = None,
        extra_excludes: Optional[list[str]] = None,
        file_timeout: float = DEFAULT_FILE_TIMEOUT,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_workers: int = 2,
        chunk_size: int = CHUNK_SIZE,
        extract_function: Callable[..., list[Page]] = extract_pages,
    ):
        self.db_path = Path(db_path)
        self.extractor = extractor
        self.document_indexer = document_indexer
        self.profile = profile or current_profile()
        self.exclude_patterns = get_exclude_patterns(self.profile) + list(extra_excludes or [])
        self.file_timeout = file_timeout
        self.max_file_size = max_file_size
        self.max_workers = max_workers
        self.chunk_size = chunk_size
        self.extract_function = extract_function

    def segment_file_name(self, file_name: str) -> str:
        """Search keywords of a file name, splitting on dots, dashes and underscores."""
        spaced = FILE_NAME_SEPARATORS_RE.sub(' ', file_name)
        return self.extractor.to_search_keywords(spaced)

    def _indexed_state(self) -> dict[str, tuple]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute("SELECT file_path, file_size, modified_at FROM file_index").fetchall()
        return {row["file_path"]: (row["file_size"], row["modified_at"]) for row in rows}

    def _write_chunk(self, entries: list[tuple]) -> None:
        if not entries:
            return
        with get_connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                conn.executemany(
                    """
                    INSERT INTO file_index
                        (file_path, file_name, file_name_segmented, file_type, file_size,
                         created_at, modified_at, indexed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(file_path) DO UPDATE SET
                        file_name = excluded.file_name,
                        file_name_segmented = excluded.file_name_segmented,
                        file_type = excluded.file_type,
                        file_size = excluded.file_size,
                        created_at = excluded.created_at,
                        modified_at = excluded.modified_at,
                        indexed_at = excluded.indexed_at
                    """,
                    entries,
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise RuntimeError(f"Writing file index failed, rolled back: {e}") from e

    def _remove_vanished(self, roots: list[Path], seen: set[str]) -> int:
        prefixes = [str(root) if str(root).endswith(os.sep) else str(root) + os.sep for root in roots]
        vanished = [
            path for path in self._indexed_state()
            if path not in seen and any(path.startswith(prefix) for prefix in prefixes)
        ]
        if not vanished:
            return 0
        with get_connection(self.db_path) as conn:
            conn.executemany("DELETE FROM file_index WHERE file_path = ?", [(path,) for path in vanished])
            conn.commit()
        return len(vanished)

    def _extract(self, pool: ExtractionPool, file_path: Path, stats: dict) -> None:
        try:
            self.document_indexer.index_file(file_path, extract=pool.extract)
            stats["extracted"] += 1
        except ExtractionTimeoutError as e:
            logger.warning(str(e))
            stats["timeouts"] += 1
        except Exception as e:
            logger.warning(f"Could not extract {file_path}: {e}")
            stats["errors"].append({"file": str(file_path), "error": str(e)})

    def scan(
        self,
        roots: Optional[list[Path]] = None,
        mode: str = SCAN_INCREMENTAL,
        stop_event: Optional[threading.Event] = None,
    ) -> dict:
        """
        Walk roots and update the file index.

        Args:
            roots: Directories to walk (default: platform system directories)
            mode: 'incremental' skips unchanged files; 'full' revisits every
                  file and removes rows of vanished files when it finishes
            stop_event: Set to cancel; checked per directory and per file

        Returns:
            Dictionary with scan statistics:
            - added, updated, unchanged: file counts
            - deleted: rows removed for vanished files (full scans only)
            - extracted: documents written to the page index
            - timeouts: extractions abandoned after the per-file timeout
            - errors: list of {"file", "error"} entries
            - cancelled: True if stop_event ended the scan early

        Raises:
            ValueError: If mode is unknown
        """
        if mode not in (SCAN_FULL, SCAN_INCREMENTAL):
            raise ValueError(f"Unknown scan mode: {mode}")

        roots = _collapse_roots(roots if roots is not None else get_system_directories(self.profile))
        stop_event = stop_event or threading.Event()
        indexed = self._indexed_state()

        stats = {
            "added": 0,
            "updated": 0,
            "unchanged": 0,
            "deleted": 0,
            "extracted": 0,
            "timeouts": 0,
            "errors": [],
            "cancelled": False,
        }
        seen: set[str] = set()
        pending: list[tuple] = []

        def _walk_error(error: OSError) -> None:
            logger.debug(f"Skipping unreadable directory: {error}")

        pool = ExtractionPool(self.max_workers, self.file_timeout, self.extract_function)
        try:
            for root in roots:
                if stop_event.is_set():
                    break
                if not root.is_dir():
                    logger.warning(f"Scan root is not a directory: {root}")
                    continue

                exclude_patterns = patterns_for_root(root, self.exclude_patterns)
                ignore_patterns = read_searchignore(root)
                logger.info(f"Scanning {root}")

                for dirpath, dirnames, filenames in os.walk(root, topdown=True, onerror=_walk_error):
                    if stop_event.is_set():
                        break
                    current = Path(dirpath)

                    dirnames[:] = [
                        name for name in dirnames
                        if not _is_hidden(name)
                        and not is_excluded(current / name, exclude_patterns, is_dir=True, root=root)
                        and not matches_searchignore(current / name, root, ignore_patterns, is_dir=True)
                    ]

                    for name in filenames:
                        if stop_event.is_set():
                            break
                        if _is_hidden(name):
                            continue
                        file_path = current / name
                        if is_excluded(file_path, exclude_patterns, root=root):
                            continue
                        if matches_searchignore(file_path, root, ignore_patterns):
                            continue

                        try:
                            st = file_path.stat()
                        except OSError as e:
                            stats["errors"].append({"file": str(file_path), "error": str(e)})
                            continue

                        key = str(file_path)
                        seen.add(key)
                        previous = indexed.get(key)
                        if mode == SCAN_INCREMENTAL and previous == (st.st_size, st.st_mtime):
                            stats["unchanged"] += 1
                            continue
                        stats["updated" if previous else "added"] += 1

                        file_type = classify_file(file_path)
                        if file_type == 'unknown' and 0 < st.st_size <= self.max_file_size and is_text_file(file_path):
                            file_type = 'text'
                        pending.append((
                            key, name, self.segment_file_name(name), file_type, st.st_size,
                            st.st_ctime, st.st_mtime, datetime.now().isoformat(),
                        ))

                        if (
                            self.document_indexer is not None
                            and file_type in EXTRACTABLE_TYPES
                            and 0 < st.st_size <= self.max_file_size
                        ):
                            self._extract(pool, file_path, stats)

                        if len(pending) >= self.chunk_size:
                            self._write_chunk(pending)
                            pending = []
        finally:
            self._write_chunk(pending)
            pool.terminate()

        stats["cancelled"] = stop_event.is_set()
        if mode == SCAN_FULL and not stats["cancelled"]:
            stats["deleted"] = self._remove_vanished(roots, seen)

        logger.info(
            f"Scan {'cancelled' if stats['cancelled'] else 'complete'}: "
            f"+{stats['added']} added, ~{stats['updated']} updated, "
            f"-{stats['deleted']} deleted, ={stats['unchanged']} unchanged"
        )
        return stats

    def search_files(
        self,
        keyword: str,
        file_type: Optional[str] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[dict]:
        """
        Find indexed files by name.

        Args:
            keyword: Search keyword (segmented before matching)
            file_type: Restrict to one type tag
            limit: Maximum results to return

        Returns:
            List of file rows (file_path, file_name, file_type, file_size,
            modified_at) ordered by rank; a substring match on the file
            name is used when the index has no match
        """
        if not keyword or not keyword.strip():
            return []
        keyword = keyword.strip()

        type_filter = ' AND f.file_type = ?' if file_type else ''
        type_params = [file_type] if file_type else []

        keywords = self.extractor.extract_keywords(keyword) or keyword.split()
        expression = ' '.join('"' + word.replace('"', '""') + '"*' for word in keywords)

        with get_connection(self.db_path) as conn:
            try:
                rows = conn.execute(
                    f"""
                    SELECT f.file_path, f.file_name, f.file_type, f.file_size, f.modified_at
                    FROM file_index_fts
                    JOIN file_index f ON file_index_fts.rowid = f.id
                    WHERE file_index_fts MATCH ?{type_filter}
                    ORDER BY rank
                    LIMIT ?
                    """,
                    (expression, *type_params, limit),
                ).fetchall()
            except sqlite3.OperationalError as e:
                if "no such table" in str(e):
                    raise
                logger.debug(f"File name query {expression!r} failed: {e}")
                rows = []

            if not rows:
                rows = conn.execute(
                    f"""
                    SELECT f.file_path, f.file_name, f.file_type, f.file_size, f.modified_at
                    FROM file_index f
                    WHERE f.file_name LIKE ?{type_filter}
                    ORDER BY f.modified_at DESC
                    LIMIT ?
                    """,
                    (f"%{keyword}%", *type_params, limit),
                ).fetchall()

        return [dict(row) for row in rows]


if __name__ == '__main__':
    # Simple test/demo
    import argparse

    parser = argparse.ArgumentParser(description='Scan directories into the file index')
    parser.add_argument('db', help='SQLite database path')
    parser.add_argument('roots', nargs='*', help='Directories to scan (default: system directories)')
    parser.add_argument('--full', action='store_true', help='Full scan')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    from cardsearch_lib.schema import init_db
    from cardsearch_lib.segment import get_segmenter

    init_db(Path(args.db))
    indexer = FileSystemIndexer(Path(args.db), KeywordExtractor(get_segmenter('jieba')))
    result = indexer.scan(
        [Path(root) for root in args.roots] or None,
        mode=SCAN_FULL if args.full else SCAN_INCREMENTAL,
    )
    print(f"Added: {result['added']}, updated: {result['updated']}, unchanged: {result['unchanged']}")
    sys.exit(1 if result['errors'] else 0)

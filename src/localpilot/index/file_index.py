"""
LocalPilot Local File Index

Maintains a searchable catalogue of local filesystem entries so the
assistant can ground answers in files that actually exist.

Refresh:
- Walks every configured root (files and directories, symlinks are not
  followed, unreadable entries are skipped)
- Builds a brand-new snapshot, then swaps the reference in one
  assignment. Readers keep using the old snapshot until the swap, so a
  half-built index is never visible
- If no root is readable, raises IndexRefreshError and leaves the
  current snapshot untouched

Search is case-insensitive over the entry name and its path relative to
the indexed root. Ranking tiers, best first:

  0  name equals query
  1  name starts with query
  2  name contains query
  3  relative path contains query
  4  query letters appear in order in the name (fuzzy)

Ties break on shorter name, then path, so results are deterministic for
a given snapshot and query.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any

from localpilot.core.models import FileIndexEntry, entry_id
from localpilot.exceptions import IndexRefreshError
from localpilot.tools.local import LocalToolServer, RegisteredTool

logger = logging.getLogger(__name__)

EXCLUDED_DIRS = frozenset({".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv"})

SEARCH_TOOL_NAME = "search_local_files"


@dataclass(frozen=True)
class _Snapshot:
    entries: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    # path -> (lowercased name, lowercased path relative to its root)
    keys: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    refreshed_at: datetime | None = None


class FileIndex:
    """In-memory file catalogue with atomic snapshot replacement."""

    def __init__(self, excluded_dirs: Iterable[str] = EXCLUDED_DIRS):
        self._excluded = frozenset(excluded_dirs)
        self._snapshot = _Snapshot()
        self._refresh_lock = threading.Lock()

    # ─── Refresh ───────────────────────────────────────────

    def refresh(self, root_paths: Iterable[str | Path]) -> int:
        """Rebuild the index from ``root_paths``; returns the number of entries."""
        roots = [Path(p).expanduser() for p in root_paths]
        with self._refresh_lock:
            entries: dict[str, FileIndexEntry] = {}
            keys: dict[str, tuple[str, str]] = {}
            readable: list[str] = []
            now = datetime.now(timezone.utc)

            for root in roots:
                try:
                    root = root.resolve()
                    os.listdir(root)
                except OSError as e:
                    logger.warning("Index root not readable: %s (%s)", root, e)
                    continue
                readable.append(str(root))
                self._walk(root, now, entries, keys)

            if not readable:
                raise IndexRefreshError(
                    "None of the index roots is readable; index unchanged",
                    roots=[str(r) for r in roots],
                )

            self._snapshot = _Snapshot(
                entries=MappingProxyType(entries),
                keys=MappingProxyType(keys),
                refreshed_at=now,
            )

        logger.info(
            "File index refreshed: %d entries from %d roots",
            len(entries),
            len(readable),
            extra={"count": len(entries)},
        )
        return len(entries)

    async def refresh_async(self, root_paths: Iterable[str | Path]) -> int:
        """refresh() on a worker thread; searches keep serving the old snapshot meanwhile."""
        return await asyncio.to_thread(self.refresh, list(root_paths))

    def _walk(
        self,
        root: Path,
        now: datetime,
        entries: dict[str, FileIndexEntry],
        keys: dict[str, tuple[str, str]],
    ) -> None:
        for dirpath, dirnames, filenames in os.walk(root, onerror=lambda e: None, followlinks=False):
            dirnames[:] = sorted(d for d in dirnames if d not in self._excluded)
            base = Path(dirpath)
            for name in [*dirnames, *sorted(filenames)]:
                path = base / name
                entry = _make_entry(path, now)
                if entry is None:
                    continue
                entries[entry.path] = entry
                keys[entry.path] = (entry.name.lower(), str(path.relative_to(root)).lower())

    # ─── Queries ───────────────────────────────────────────

    def search(self, query: str, limit: int | None = 50) -> list[FileIndexEntry]:
        """Relevance-ranked entries matching ``query``. Never fails on no match."""
        needle = query.strip().lower()
        if not needle:
            return []

        snapshot = self._snapshot
        ranked: list[tuple[int, int, str]] = []
        for path, (name, rel) in snapshot.keys.items():
            tier = _match_tier(needle, name, rel)
            if tier is not None:
                ranked.append((tier, len(name), path))

        ranked.sort()
        if limit is not None:
            ranked = ranked[:limit]
        return [snapshot.entries[path] for _, _, path in ranked]

    def search_by_extension(self, extension: str) -> list[FileIndexEntry]:
        """Entries whose extension equals ``extension`` (leading dot optional), ordered by path."""
        wanted = extension.lower().lstrip(".")
        snapshot = self._snapshot
        return [
            snapshot.entries[path]
            for path in sorted(snapshot.entries)
            if (snapshot.entries[path].extension or "").lower() == wanted
        ]

    def get(self, path: str | Path) -> FileIndexEntry | None:
        return self._snapshot.entries.get(str(path))

    @property
    def last_refreshed(self) -> datetime | None:
        return self._snapshot.refreshed_at

    def __len__(self) -> int:
        return len(self._snapshot.entries)


def _make_entry(path: Path, now: datetime) -> FileIndexEntry | None:
    try:
        stat = path.lstat()
    except OSError:
        return None
    is_directory = path.is_dir() and not path.is_symlink()
    absolute = str(path)
    return FileIndexEntry(
        id=entry_id(absolute),
        name=path.name,
        path=absolute,
        size=0 if is_directory else stat.st_size,
        indexed_at=now,
        extension=path.suffix[1:] if path.suffix and not is_directory else None,
        modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
        is_directory=is_directory,
    )


def _match_tier(needle: str, name: str, rel: str) -> int | None:
    if name == needle:
        return 0
    if name.startswith(needle):
        return 1
    if needle in name:
        return 2
    if needle in rel:
        return 3
    if len(needle) >= 3 and _is_subsequence(needle, name):
        return 4
    return None


def _is_subsequence(needle: str, haystack: str) -> bool:
    it = iter(haystack)
    return all(ch in it for ch in needle)


def default_roots(home: Path | None = None) -> list[Path]:
    """The user's Downloads, Desktop and Documents folders that exist."""
    base = home or Path.home()
    return [p for p in (base / "Downloads", base / "Desktop", base / "Documents") if p.is_dir()]


class FileIndexToolServer(LocalToolServer):
    """Exposes the file index to the model as the ``search_local_files`` tool."""

    def __init__(self, index: FileIndex, name: str = "file-index", max_results: int = 20):
        super().__init__(name)
        self._index = index
        self._max_results = max_results
        self.register(
            RegisteredTool(
                name=SEARCH_TOOL_NAME,
                description=(
                    "Search the local file index by file name or partial path. "
                    "Returns matching files with their absolute path and size."
                ),
                input_schema={
                    "type": "object",
                    "properties": {
                        "query": {
                            "type": "string",
                            "description": "File name or part of a name/path to look for",
                        },
                    },
                    "required": ["query"],
                },
                handler=self._search,
            )
        )

    def _search(self, query: str) -> list[dict[str, Any]]:
        return [
            {**entry.summary(), "extension": entry.extension, "is_directory": entry.is_directory}
            for entry in self._index.search(query, limit=self._max_results)
        ]

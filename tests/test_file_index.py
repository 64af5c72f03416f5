"""Tests for the local file index."""

import os

import pytest

from localpilot.exceptions import IndexRefreshError
from localpilot.index.file_index import (
    SEARCH_TOOL_NAME,
    FileIndex,
    FileIndexToolServer,
    default_roots,
)


def touch(path, content: str = "x"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def documents(tmp_path):
    root = tmp_path / "docs"
    touch(root / "invoice_2024.pdf", "pdf-bytes")
    touch(root / "notes.txt", "hello")
    return root


@pytest.fixture
def index(documents):
    idx = FileIndex()
    idx.refresh([documents])
    return idx


class TestRefresh:
    def test_returns_entry_count(self, documents):
        assert FileIndex().refresh([documents]) == 2

    def test_root_itself_not_indexed(self, index, documents):
        assert index.get(documents.resolve()) is None

    def test_entry_fields(self, index, documents):
        entry = index.get(documents.resolve() / "invoice_2024.pdf")
        assert entry.name == "invoice_2024.pdf"
        assert entry.size == len("pdf-bytes")
        assert entry.extension == "pdf"
        assert not entry.is_directory
        assert os.path.isabs(entry.path)
        assert entry.modified

    def test_directories_indexed(self, tmp_path):
        touch(tmp_path / "root" / "projects" / "plan.md")
        idx = FileIndex()
        idx.refresh([tmp_path / "root"])
        entry = idx.search("projects")[0]
        assert entry.is_directory
        assert entry.size == 0
        assert entry.extension is None

    def test_excluded_dirs_skipped(self, tmp_path):
        touch(tmp_path / "root" / ".git" / "config")
        touch(tmp_path / "root" / "node_modules" / "pkg" / "index.js")
        touch(tmp_path / "root" / "main.py")
        idx = FileIndex()
        idx.refresh([tmp_path / "root"])
        assert [e.name for e in idx.search("main")] == ["main.py"]
        assert idx.search("index.js") == []
        assert idx.search("config") == []

    def test_symlinked_dirs_not_followed(self, tmp_path):
        touch(tmp_path / "outside" / "secret.txt")
        root = tmp_path / "root"
        touch(root / "a.txt")
        try:
            (root / "link").symlink_to(tmp_path / "outside", target_is_directory=True)
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")
        idx = FileIndex()
        idx.refresh([root])
        assert idx.search("secret") == []

    def test_refresh_replaces_snapshot(self, documents):
        idx = FileIndex()
        idx.refresh([documents])
        (documents / "notes.txt").unlink()
        idx.refresh([documents])
        assert idx.search("notes") == []
        assert len(idx) == 1

    def test_unreadable_root_skipped_when_another_is_readable(self, documents, tmp_path):
        idx = FileIndex()
        assert idx.refresh([tmp_path / "missing", documents]) == 2

    def test_no_readable_root_leaves_index_unchanged(self, index, tmp_path):
        before = index.last_refreshed
        with pytest.raises(IndexRefreshError) as exc_info:
            index.refresh([tmp_path / "missing", tmp_path / "also-missing"])
        assert isinstance(exc_info.value, OSError)
        assert len(index) == 2
        assert index.last_refreshed == before
        assert [e.name for e in index.search("invoice")] == ["invoice_2024.pdf"]

    def test_no_roots(self):
        with pytest.raises(IndexRefreshError):
            FileIndex().refresh([])

    def test_last_refreshed(self, documents):
        idx = FileIndex()
        assert idx.last_refreshed is None
        idx.refresh([documents])
        assert idx.last_refreshed is not None

    @pytest.mark.asyncio
    async def test_refresh_async(self, documents):
        idx = FileIndex()
        assert await idx.refresh_async([documents]) == 2
        assert len(idx) == 2


class TestSearch:
    def test_invoice_example(self, index):
        results = index.search("invoice")
        assert [e.name for e in results] == ["invoice_2024.pdf"]

    def test_case_insensitive(self, index):
        assert [e.name for e in index.search("INVOICE")] == ["invoice_2024.pdf"]

    def test_empty_index(self):
        assert FileIndex().search("invoice") == []

    def test_empty_query(self, index):
        assert index.search("") == []
        assert index.search("   ") == []

    def test_no_match(self, index):
        assert index.search("spreadsheet") == []

    def test_ranking(self, tmp_path):
        root = tmp_path / "root"
        touch(root / "annual_report.txt")
        touch(root / "report_2024.txt")
        touch(root / "report")
        touch(root / "old_report" / "summary.txt")
        idx = FileIndex()
        idx.refresh([root])
        names = [e.name for e in idx.search("report")]
        assert names == [
            "report",
            "report_2024.txt",
            "old_report",
            "annual_report.txt",
            "summary.txt",
        ]

    def test_fuzzy_subsequence(self, tmp_path):
        root = tmp_path / "root"
        touch(root / "quarterly_budget.xlsx")
        idx = FileIndex()
        idx.refresh([root])
        assert [e.name for e in idx.search("qbud")] == ["quarterly_budget.xlsx"]

    def test_short_queries_are_not_fuzzy(self, tmp_path):
        root = tmp_path / "root"
        touch(root / "quarterly_budget.xlsx")
        idx = FileIndex()
        idx.refresh([root])
        assert idx.search("qb") == []

    def test_limit(self, tmp_path):
        root = tmp_path / "root"
        for i in range(5):
            touch(root / f"log_{i}.txt")
        idx = FileIndex()
        idx.refresh([root])
        assert len(idx.search("log", limit=3)) == 3
        assert len(idx.search("log", limit=None)) == 5

    def test_deterministic(self, index):
        assert index.search("t") == index.search("t")

    def test_search_by_extension(self, index):
        assert [e.name for e in index.search_by_extension(".PDF")] == ["invoice_2024.pdf"]
        assert [e.name for e in index.search_by_extension("txt")] == ["notes.txt"]
        assert index.search_by_extension("docx") == []


class TestDefaultRoots:
    def test_existing_folders_only(self, tmp_path):
        (tmp_path / "Downloads").mkdir()
        (tmp_path / "Documents").mkdir()
        assert default_roots(home=tmp_path) == [tmp_path / "Downloads", tmp_path / "Documents"]

    def test_none_exist(self, tmp_path):
        assert default_roots(home=tmp_path) == []


class TestFileIndexToolServer:
    @pytest.mark.asyncio
    async def test_advertises_search_tool(self, index):
        server = FileIndexToolServer(index)
        [tool] = await server.list_tools()
        assert tool.name == SEARCH_TOOL_NAME
        assert tool.input_schema["required"] == ["query"]
        assert tool.server == "file-index"

    @pytest.mark.asyncio
    async def test_call_searches_index(self, index):
        server = FileIndexToolServer(index)
        response = await server.call_tool(SEARCH_TOOL_NAME, {"query": "invoice"})
        assert response.success
        [hit] = response.output
        assert hit["name"] == "invoice_2024.pdf"
        assert hit["extension"] == "pdf"
        assert set(hit) >= {"id", "name", "path", "size"}

    @pytest.mark.asyncio
    async def test_max_results(self, tmp_path):
        root = tmp_path / "root"
        for i in range(5):
            touch(root / f"log_{i}.txt")
        idx = FileIndex()
        idx.refresh([root])
        server = FileIndexToolServer(idx, max_results=2)
        response = await server.call_tool(SEARCH_TOOL_NAME, {"query": "log"})
        assert len(response.output) == 2

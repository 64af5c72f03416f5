"""LocalPilot local file index and its search tool."""

from localpilot.index.file_index import FileIndex, FileIndexToolServer, default_roots

__all__ = ["FileIndex", "FileIndexToolServer", "default_roots"]

"""
LocalPilot Risk Classifier

Maps a tool call to a risk tier. Policy is deny-by-default:

  name in allow-list, no mutating keyword -> SAFE
  anything else                           -> DANGEROUS

The allow-list names read-only operations. A second fence screens tool
names for mutating keywords (write, delete, move, ...) so that a
mis-configured allow-list entry cannot make e.g. ``delete_file`` safe.

classify() is a pure function of (tool name, arguments): no I/O, no
state, same answer every time.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from localpilot.core.models import RiskTier, ToolCall

DEFAULT_SAFE_TOOLS: frozenset[str] = frozenset({
    "search_local_files",
    "file_reader",
    "read_file",
    "list_directory",
    "get_file_info",
    "web_search",
})

MUTATING_KEYWORDS: tuple[str, ...] = (
    "write",
    "delete",
    "move",
    "rm",
    "remove",
    "mv",
    "rename",
    "modify",
)

_WORD_SPLIT = re.compile(r"[^a-z0-9]+")


class RiskClassifier:
    """Classifies tool calls as SAFE or DANGEROUS."""

    def __init__(
        self,
        safe_tools: Iterable[str] | None = None,
        mutating_keywords: Iterable[str] = MUTATING_KEYWORDS,
    ):
        self._safe_tools = frozenset(DEFAULT_SAFE_TOOLS if safe_tools is None else safe_tools)
        self._keywords = tuple(k.lower() for k in mutating_keywords)

    @property
    def safe_tools(self) -> frozenset[str]:
        return self._safe_tools

    def classify(self, tool_name: str, arguments: Mapping[str, Any] | None = None) -> RiskTier:
        """Risk tier for a call. Arguments are accepted for future argument-aware rules."""
        if tool_name not in self._safe_tools:
            return RiskTier.DANGEROUS
        if self._mutating_keyword(tool_name) is not None:
            return RiskTier.DANGEROUS
        return RiskTier.SAFE

    def classify_call(self, call: ToolCall) -> RiskTier:
        return self.classify(call.tool_name, call.arguments)

    def explain(self, tool_name: str) -> str:
        """Human-readable justification for the tier of ``tool_name``."""
        keyword = self._mutating_keyword(tool_name)
        if tool_name not in self._safe_tools:
            if keyword is not None:
                return f"Tool '{tool_name}' looks mutating ('{keyword}') and is not allow-listed as safe"
            return f"Tool '{tool_name}' is not allow-listed as safe; operator approval required"
        if keyword is not None:
            return f"Tool '{tool_name}' is allow-listed but its name contains '{keyword}'"
        return f"Tool '{tool_name}' is allow-listed as read-only"

    def _mutating_keyword(self, tool_name: str) -> str | None:
        lowered = tool_name.lower()
        words = [w for w in _WORD_SPLIT.split(lowered) if w]
        for keyword in self._keywords:
            # Short keywords (rm, mv) only match whole words so "format" is not "rm".
            if len(keyword) <= 2:
                if keyword in words:
                    return keyword
            elif keyword in lowered:
                return keyword
        return None

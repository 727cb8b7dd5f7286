"""
Keyword routing from transcripts to canned scripts.

Each entry maps a spoken keyword to a script and the name it is cached under.
Matching is a case-insensitive substring test in table order; the first
matching entry wins, so table order is priority order.

Routes:
- Charging station: information about charging stations
- Tracking Software: information about tracking software
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


def script_name_for(keyword: str) -> str:
    """
    Storage-safe script name for a keyword.

    "Charging station" -> "script-charging-station.mp3"
    """
    return f"script-{keyword.lower().replace(' ', '-')}.mp3"


@dataclass(frozen=True)
class ScriptEntry:
    """Static mapping from a spoken keyword to a canned response."""
    keyword: str
    script_text: str

    @property
    def script_name(self) -> str:
        return script_name_for(self.keyword)


@dataclass(frozen=True)
class ScriptMatch:
    """A resolved script for one transcript."""
    keyword: str
    script_name: str
    script_text: str


DEFAULT_SCRIPTS: Tuple[ScriptEntry, ...] = (
    ScriptEntry(
        keyword="Charging station",
        script_text="Here's information about charging stations...",
    ),
    ScriptEntry(
        keyword="Tracking Software",
        script_text="Let me tell you about tracking software...",
    ),
)


class ScriptResolver:
    """Matches transcripts against a read-only keyword table."""

    def __init__(self, entries: Optional[Iterable[ScriptEntry]] = None):
        self._entries: Tuple[ScriptEntry, ...] = tuple(entries) if entries is not None else DEFAULT_SCRIPTS

    @property
    def entries(self) -> Tuple[ScriptEntry, ...]:
        return self._entries

    def resolve(self, transcript: str) -> Optional[ScriptMatch]:
        """
        Find the script for a transcript.

        Args:
            transcript: Text returned by STT

        Returns:
            The first matching entry in table order, or None
        """
        if not transcript or not transcript.strip():
            return None

        text = transcript.lower()
        for entry in self._entries:
            if entry.keyword.lower() in text:
                logger.info(
                    "Script matched",
                    text=transcript[:50],
                    keyword=entry.keyword,
                    script_name=entry.script_name,
                )
                return ScriptMatch(
                    keyword=entry.keyword,
                    script_name=entry.script_name,
                    script_text=entry.script_text,
                )

        logger.info("No script matched", text=transcript[:50])
        return None


# Singleton instance
_script_resolver: Optional[ScriptResolver] = None


def get_script_resolver() -> ScriptResolver:
    """Get or create the script resolver singleton."""
    global _script_resolver

    if _script_resolver is None:
        _script_resolver = ScriptResolver()

    return _script_resolver

"""Best-result records, kept per board size in a JSON file."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path

SOLO = "solo"
VERSUS = "versus"


@dataclass
class HighScoreEntry:
    moves: int
    time: float
    date: str
    mode: str = SOLO
    opponent: str | None = None


class HighScoreManager:
    """Loads, saves, and queries best results from a JSON file.

    Only finished-game summaries are stored here; boards in play are never
    written to disk.
    """

    def __init__(self, filepath: Path) -> None:
        self.filepath = filepath
        self._scores: dict[str, list[HighScoreEntry]] = {}
        self._load()

    # -- persistence ----------------------------------------------------------

    def _load(self) -> None:
        if not self.filepath.exists():
            return
        data = json.loads(self.filepath.read_text())
        for size_key, entries in data.items():
            # files written before modes existed carry solo results only
            self._scores[size_key] = [HighScoreEntry(**e) for e in entries]

    def save(self) -> None:
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        data = {
            size_key: [asdict(e) for e in entries]
            for size_key, entries in self._scores.items()
        }
        self.filepath.write_text(json.dumps(data, indent=2) + "\n")

    # -- queries --------------------------------------------------------------

    def add_score(self, size: int, entry: HighScoreEntry) -> int:
        """Record *entry* and return its 1-based rank among same-mode results."""
        entries = self._scores.setdefault(str(size), [])
        entries.append(entry)
        entries.sort(key=lambda e: (e.moves, e.time))
        self.save()
        same_mode = [e for e in entries if e.mode == entry.mode]
        return same_mode.index(entry) + 1

    def get_scores(self, size: int, mode: str | None = None) -> list[HighScoreEntry]:
        entries = self._scores.get(str(size), [])
        if mode is None:
            return list(entries)
        return [e for e in entries if e.mode == mode]

    def best(self, size: int, mode: str = SOLO) -> HighScoreEntry | None:
        scores = self.get_scores(size, mode)
        return scores[0] if scores else None

    def get_all_sizes(self) -> list[int]:
        return sorted(int(k) for k, v in self._scores.items() if v)

"""Shared fixtures for dispatch-and-merge integration tests."""

from __future__ import annotations

from pathlib import Path

import pytest


class RecordedReviews:
    """Directory of recorded review outputs for ReplayInvoker."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def add(self, agent_id: str, content: str, pass_index: int | None = None) -> Path:
        if pass_index is None:
            path = self.root / f"{agent_id}.md"
        else:
            path = self.root / agent_id / f"pass-{pass_index}.md"
            path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path


@pytest.fixture
def recorded(tmp_path: Path) -> RecordedReviews:
    """Empty recorded-output directory."""
    root = tmp_path / "recorded"
    root.mkdir()
    return RecordedReviews(root)

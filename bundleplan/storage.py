"""Filesystem output for the generated bundling plan.

The plan is written once, atomically, and only after a fully successful run.
A `.js` target gets a CommonJS wrapper so the downstream bundler can
`require()` it; any other suffix gets plain JSON.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Sequence

from .constants import JSON_INDENT
from .types import BundleConfig


class PlanWriter:
    """Persist the final plan under a fixed path."""

    def __init__(self, output_path: str | Path) -> None:
        self.output_path = Path(output_path).resolve()

    def render(self, bundles: Sequence[BundleConfig]) -> str:
        payload = json.dumps(
            [bundle.to_json() for bundle in bundles],
            ensure_ascii=False,
            indent=JSON_INDENT,
        )
        if self.output_path.suffix.lower() in {".js", ".cjs"}:
            return f"module.exports = {payload};\n"
        return payload + "\n"

    def write(self, bundles: Sequence[BundleConfig]) -> Path:
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self._atomic_write_text(self.output_path, self.render(bundles))
        return self.output_path

    def read(self) -> list[BundleConfig]:
        """Load a plan previously written by `write`."""

        text = self.output_path.read_text(encoding="utf-8").strip()
        if text.startswith("module.exports"):
            text = text.split("=", maxsplit=1)[1].strip().rstrip(";")
        payload: Any = json.loads(text)
        if not isinstance(payload, list):
            raise ValueError(f"Plan at {self.output_path} must be a list of bundles")
        return [BundleConfig.from_json(item) for item in payload]

    @staticmethod
    def _atomic_write_text(path: Path, content: str) -> None:
        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent),
            prefix=path.name + ".",
            suffix=".tmp",
        )
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise


__all__ = ["PlanWriter"]

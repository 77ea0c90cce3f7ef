"""Best-effort removal of an instance's on-disk state."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """What cleanup removed and which problems it ignored."""

    removed: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.warnings


def cleanup(paths: Iterable[str | Path | None]) -> CleanupReport:
    """Recursively delete every path, never raising.

    Missing paths are skipped silently. Any other failure is logged and
    recorded in the returned report instead of being raised, so a leftover
    directory cannot fail a test run.
    """
    report = CleanupReport()
    for entry in paths:
        if entry is None:
            continue
        path = Path(entry)
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()
            else:
                continue
            report.removed.append(path)
            logger.debug(f"Removed {path}")
        except Exception as e:
            message = f"Could not remove {path}: {e}"
            logger.warning(message)
            report.warnings.append(message)
    return report

"""
Cleanup ledger for queue backing files.

Two lists are kept per process:
- continuous: backing files of the most recent barrier step. They are
  removed when the next barrier completes (one step later) or at close().
- final: every queue backing file created during the run, removed at
  close() only when final cleanup is enabled.
"""

import os
import logging
from typing import Iterable, List

logger = logging.getLogger(__name__)

__all__ = [
    'clean_files',
    'CleanupLedger',
]


def clean_files(paths: List[str]) -> int:
    """
    Unlink every path in the list and empty it.

    Missing files are skipped silently; other errors are logged and the
    remaining files are still processed.

    Returns:
        Number of files actually removed
    """
    removed = 0
    for path in paths:
        try:
            os.unlink(path)
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")
    paths.clear()
    return removed


class CleanupLedger:
    """Tracks files for deferred (continuous) and end-of-life (final) deletion."""

    def __init__(self):
        self.continuous: List[str] = []
        self.final: List[str] = []

    def track_final(self, path: str) -> None:
        if path not in self.final:
            self.final.append(path)

    def defer(self, paths: Iterable[str]) -> None:
        """Schedule `paths` for removal with the next step, without cleaning now."""
        self.continuous.extend(paths)

    def schedule_step(self, paths: Iterable[str]) -> int:
        """
        Remove the previously scheduled step files, then schedule `paths`.

        Returns:
            Number of files removed from the previous step
        """
        removed = clean_files(self.continuous)
        self.continuous.extend(paths)
        if removed:
            logger.debug(f"Removed {removed} files of the previous barrier step")
        return removed

    def clean_continuous(self) -> int:
        return clean_files(self.continuous)

    def clean_final(self) -> int:
        removed = clean_files(self.final)
        logger.info(f"Final cleanup removed {removed} queue files")
        return removed

"""
Queue Registry for workstack.

Maps a logical tag to the FileStack backing it. A tag is registered at most
once per process; asking again for an existing tag returns None instead of
opening a second handle.
"""

import os
import logging
from typing import Dict, List, Optional

from .cleanup import CleanupLedger
from .filestack import FileStack, PollPolicy

logger = logging.getLogger(__name__)

# Well-known queue tags
LOG = "log"
COMMAND = "command"
WORKERS = "workers"
REGISTER = "register"

# Prefix of the per-step barrier queue files
BARRIER = "barrier"

__all__ = [
    'LOG',
    'COMMAND',
    'WORKERS',
    'REGISTER',
    'BARRIER',
    'QueueRegistry',
]


class QueueRegistry:
    """
    Tag -> FileStack mapping rooted in the shared work directory.

    Args:
        work_directory: Directory holding all backing files
        ledger: Receives the backing path of every queue created
        policy: Poll policy handed to each new FileStack
    """

    def __init__(self, work_directory: str, ledger: CleanupLedger,
                 policy: Optional[PollPolicy] = None):
        self.work_directory = work_directory
        self.ledger = ledger
        self.policy = policy
        self._stacks: Dict[str, FileStack] = {}

    def __contains__(self, tag: str) -> bool:
        return tag in self._stacks

    def __len__(self) -> int:
        return len(self._stacks)

    def path_for(self, tag: str, suffix: str = "") -> str:
        if suffix:
            suffix = "_" + suffix
        return os.path.join(self.work_directory, tag + suffix)

    def ensure(self, tag: str, suffix: str = "") -> Optional[FileStack]:
        """
        Create the queue for `tag`, backed by <work_directory>/<tag>[_<suffix>].

        Returns:
            The new FileStack, or None if `tag` is already registered
        """
        if tag in self._stacks:
            return None
        return self.ensure_from_file(tag, self.path_for(tag, suffix))

    def ensure_from_file(self, tag: str, file_name: str,
                         track_final: bool = True) -> Optional[FileStack]:
        """
        Like ensure(), with an explicit backing path.

        Short-lived queues pass track_final=False; their files are removed
        through the continuous ledger instead.
        """
        if tag in self._stacks:
            return None
        stack = FileStack(file_name, policy=self.policy)
        self._stacks[tag] = stack
        if track_final:
            self.ledger.track_final(file_name)
        logger.debug(f"Registered queue {tag} -> {file_name}")
        return stack

    def get(self, tag: str) -> FileStack:
        """
        Raises:
            KeyError: If no queue is registered under `tag`
        """
        try:
            return self._stacks[tag]
        except KeyError:
            raise KeyError(f"No queue registered for tag {tag!r}") from None

    def delete(self, tag: str) -> bool:
        """Forget the handle for `tag`. The backing file is left alone."""
        return self._stacks.pop(tag, None) is not None

    def tags(self) -> List[str]:
        return list(self._stacks)

    def describe(self) -> List[str]:
        """One line per registered queue: '<tag> : <path> (<n> values)'."""
        return [
            f"{tag} : {stack.path} ({stack.size()} values)"
            for tag, stack in self._stacks.items()
        ]

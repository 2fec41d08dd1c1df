"""
Identity resolution for workstack processes.

Each process launched by the job scheduler learns its rank from the
environment. Rank 0 is the coordinator.
"""

import os
import re
import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from . import config

logger = logging.getLogger(__name__)

__all__ = [
    'ConfigurationError',
    'ProcessIdentity',
    'resolve_identity',
    'make_id',
]


class ConfigurationError(Exception):
    """Raised when the parallel rank cannot be determined."""


@dataclass(frozen=True)
class ProcessIdentity:
    """Rank and derived id of this process within the group."""
    rank: int
    id: str
    is_coordinator: bool


def make_id(rank: int) -> str:
    # TODO: fold hostname and pid in so a relaunched rank gets a fresh id
    return f"rank_{rank}"


def resolve_identity(
    env_vars: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProcessIdentity:
    """
    Determine this process's rank from the first candidate variable that is set.

    Args:
        env_vars: Candidate variable names in priority order
                  (default: SLURM_PROCID, PARALLEL_RANK)
        environ: Mapping to read from (default: os.environ)

    Returns:
        ProcessIdentity for this process

    Raises:
        ConfigurationError: If no candidate is set, or the value is not a
                            non-negative integer
    """
    if env_vars is None:
        env_vars = config.RANK_ENV_VARS
    if environ is None:
        environ = os.environ

    for name in env_vars:
        raw = environ.get(name)
        if raw is None:
            continue
        digits = raw.strip()
        if not re.fullmatch(r"[0-9]+", digits):
            raise ConfigurationError(
                f"parallel: {name}={raw!r} is not a non-negative decimal rank."
            )
        rank = int(digits)

        identity = ProcessIdentity(rank=rank, id=make_id(rank), is_coordinator=(rank == 0))
        logger.debug(f"Resolved rank {rank} from {name}, id = {identity.id}")
        return identity

    raise ConfigurationError(
        "parallel: Could not determine the parallel rank. Please set it via one of the "
        f"environment variables {', '.join(env_vars)}."
    )

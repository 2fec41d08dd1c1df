"""
Configuration Module for workstack

Every tunable is read once from the environment at import time. The
Parallelizer constructor accepts explicit overrides for all of them, so
tests and embedding applications never need to touch os.environ.
"""

import os
from typing import List, Optional

# ============================================================================
# CONFIGURATION CONSTANTS
# ============================================================================


def _get_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _get_optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    return float(raw)


def _get_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, 'true' if default else 'false').lower() in ('1', 'true', 'yes')


def _get_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name, "")
    values = [item.strip() for item in raw.split(',') if item.strip()]
    return values or list(default)


# Name of the shared directory, relative to the optional tempdir override
BASE_NAME = os.getenv('WORKSTACK_BASE_NAME', 'libworkstack')

# Job id variable appended to the directory name so unrelated runs don't collide
JOB_ID_ENV_VAR = os.getenv('WORKSTACK_JOB_ID_VAR', 'SLURM_JOBID')

# Candidate rank variables, first one set wins
RANK_ENV_VARS: List[str] = _get_list('WORKSTACK_RANK_VARS', ['SLURM_PROCID', 'PARALLEL_RANK'])

# Seconds every process waits after pushing its id before the coordinator drains
REGISTRATION_DELAY = _get_float('WORKSTACK_REGISTRATION_DELAY', 1.0)

# Seconds every process waits after the coordinator reset the shared queues
SETTLE_DELAY = _get_float('WORKSTACK_SETTLE_DELAY', 1.0)

# Polling behaviour of FileStack.poll_query / poll_size
POLL_INTERVAL = _get_float('WORKSTACK_POLL_INTERVAL', 0.01)
POLL_MAX_INTERVAL = _get_float('WORKSTACK_POLL_MAX_INTERVAL', 0.5)
POLL_BACKOFF = _get_float('WORKSTACK_POLL_BACKOFF', 1.5)
POLL_TIMEOUT: Optional[float] = _get_optional_float('WORKSTACK_POLL_TIMEOUT')  # None = wait forever

# Whether close() also removes every queue file created during the run
FINAL_CLEANUP = _get_bool('WORKSTACK_FINAL_CLEANUP', False)

LOG_LEVEL = os.getenv('WORKSTACK_LOG_LEVEL', 'INFO')

# Permissions of the shared work directory
WORK_DIRECTORY_MODE = 0o770

__all__ = [
    'BASE_NAME',
    'JOB_ID_ENV_VAR',
    'RANK_ENV_VARS',
    'REGISTRATION_DELAY',
    'SETTLE_DELAY',
    'POLL_INTERVAL',
    'POLL_MAX_INTERVAL',
    'POLL_BACKOFF',
    'POLL_TIMEOUT',
    'FINAL_CLEANUP',
    'LOG_LEVEL',
    'WORK_DIRECTORY_MODE',
]

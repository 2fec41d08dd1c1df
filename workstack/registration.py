"""
Worker registration.

Every process announces its id on the REGISTER queue. After a fixed delay
the coordinator moves everything it finds there onto the WORKERS queue;
the WORKERS size is the quorum the barrier waits for.

Registration is best effort: a process that pushes after the coordinator
finished draining is not counted.
"""

import time
import logging
from enum import Enum

from .filestack import FileStack
from .identity import ProcessIdentity

logger = logging.getLogger(__name__)

__all__ = [
    'RegistrationState',
    'register_workers',
]


class RegistrationState(str, Enum):
    """
    UNINITIALIZED -> REGISTERING -> READY

    READY is reached once the coordinator's drain loop completes (and, on
    workers, once their own announcement and delay are done).
    """
    UNINITIALIZED = "uninitialized"
    REGISTERING = "registering"
    READY = "ready"


def register_workers(
    identity: ProcessIdentity,
    register_stack: FileStack,
    workers_stack: FileStack,
    delay: float = 1.0,
) -> int:
    """
    Run the registration protocol for this process.

    Args:
        identity: This process's identity
        register_stack: Shared REGISTER queue
        workers_stack: Shared WORKERS queue
        delay: Seconds to wait for other announcements to become visible

    Returns:
        Number of workers registered by the coordinator (0 on other ranks)
    """
    logger.debug(f"Registering {identity.id}")
    register_stack.push(identity.id)
    time.sleep(delay)

    if not identity.is_coordinator:
        return 0

    n_registered = 0
    seen = set()
    while True:
        worker_id = register_stack.pop()
        if worker_id is None:
            break
        if worker_id in seen:
            logger.warning(f"Duplicate registration from {worker_id} ignored")
            continue
        seen.add(worker_id)
        workers_stack.push(worker_id)
        n_registered += 1

    logger.info(f"n_registered = {n_registered}")
    return n_registered

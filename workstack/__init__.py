"""
workstack

Filesystem-mediated coordination for processes launched by a cluster job
scheduler: rank assignment, a shared work directory, worker registration
and a repeatable two-phase barrier, all built on append-only queue files.

Modules:
- filestack: File-backed persistent queue with fcntl locking and polling
- identity: Rank and id resolution from the environment
- workspace: Shared work directory creation
- registry: Tag -> queue mapping
- registration: Worker announcement protocol
- barrier: Two-phase rendezvous over per-step queues
- cleanup: Deferred and end-of-life removal of queue files
- parallelizer: The per-process handle tying it all together
"""

from .filestack import (
    PollTimeoutError,
    PollPolicy,
    FileStack,
)

from .identity import (
    ConfigurationError,
    ProcessIdentity,
    resolve_identity,
)

from .workspace import (
    WorkDirectoryError,
    ensure_work_directory,
)

from .cleanup import CleanupLedger

from .registry import (
    LOG,
    COMMAND,
    WORKERS,
    REGISTER,
    QueueRegistry,
)

from .registration import (
    RegistrationState,
    register_workers,
)

from .barrier import (
    WAIT,
    GOON,
    BarrierStep,
    barrier_file_name,
)

from .logging_setup import (
    setup_logging,
    FileStackLogHandler,
)

from .parallelizer import Parallelizer

__version__ = "0.1.0"

__all__ = [
    'PollTimeoutError',
    'PollPolicy',
    'FileStack',
    'ConfigurationError',
    'ProcessIdentity',
    'resolve_identity',
    'WorkDirectoryError',
    'ensure_work_directory',
    'CleanupLedger',
    'LOG',
    'COMMAND',
    'WORKERS',
    'REGISTER',
    'QueueRegistry',
    'RegistrationState',
    'register_workers',
    'WAIT',
    'GOON',
    'BarrierStep',
    'barrier_file_name',
    'setup_logging',
    'FileStackLogHandler',
    'Parallelizer',
]

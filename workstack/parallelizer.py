"""
Parallelizer: per-process coordination handle

One Parallelizer is constructed in every process of a job. After setup()
the processes share a work directory, know their rank, and can meet at
named barriers:

    with Parallelizer(tempdir="/scratch") as par:
        do_first_part()
        par.barrier("phase1")
        if par.is_master():
            merge_results()
        par.barrier("phase2")

Nothing here is global, so several instances (e.g. one per thread in a
test) can coexist in one interpreter.
"""

import os
import time
import logging
from typing import List, Mapping, Optional, Sequence

from . import config
from .barrier import close_barrier_step, open_barrier_step, rendezvous
from .cleanup import CleanupLedger, clean_files
from .filestack import PollPolicy
from .identity import ProcessIdentity, resolve_identity
from .logging_setup import FileStackLogHandler, log_owner
from .registration import RegistrationState, register_workers
from .registry import COMMAND, LOG, REGISTER, WORKERS, QueueRegistry
from .workspace import ensure_work_directory

logger = logging.getLogger(__name__)

__all__ = ['Parallelizer']


class Parallelizer:
    """
    Filesystem-mediated coordination for a group of scheduler-launched processes.

    Args:
        tempdir: Parent of the work directory (default: current directory)
        base_name: Work directory name
        rank_env_vars: Candidate rank variables, first set wins
        job_id_env_var: Variable appended to the work directory name
        registration_delay: Seconds to wait for worker announcements
        settle_delay: Seconds to wait after the coordinator reset the shared queues
        poll_policy: Backoff/deadline for every blocking poll
        final_cleanup: Remove every queue file of the run on close()
        log_to_queue: Mirror this instance's 'workstack' records into its LOG queue
        environ: Environment mapping (default: os.environ)
    """

    def __init__(
        self,
        tempdir: Optional[str] = None,
        base_name: str = config.BASE_NAME,
        rank_env_vars: Optional[Sequence[str]] = None,
        job_id_env_var: Optional[str] = config.JOB_ID_ENV_VAR,
        registration_delay: float = config.REGISTRATION_DELAY,
        settle_delay: float = config.SETTLE_DELAY,
        poll_policy: Optional[PollPolicy] = None,
        final_cleanup: bool = config.FINAL_CLEANUP,
        log_to_queue: bool = False,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.tempdir = tempdir
        self.base_name = base_name
        self.rank_env_vars = list(rank_env_vars) if rank_env_vars is not None else list(config.RANK_ENV_VARS)
        self.job_id_env_var = job_id_env_var
        self.registration_delay = registration_delay
        self.settle_delay = settle_delay
        self.poll_policy = poll_policy or PollPolicy()
        self.final_cleanup = final_cleanup
        self.log_to_queue = log_to_queue
        self.environ = environ if environ is not None else os.environ

        self.state = RegistrationState.UNINITIALIZED
        self.identity: Optional[ProcessIdentity] = None
        self.work_directory: Optional[str] = None
        self.registry: Optional[QueueRegistry] = None
        self.ledger = CleanupLedger()
        self.n_registered = 0
        self.i_barrier = 0
        self._log_handler: Optional[FileStackLogHandler] = None
        self._closed = False

    # ========================================================================
    # SETUP / TEARDOWN
    # ========================================================================

    def setup(self) -> ProcessIdentity:
        """
        Create the work directory, resolve the rank, open the shared queues
        and register with the coordinator. Safe to call more than once.

        Raises:
            WorkDirectoryError: If the work directory cannot be created
            ConfigurationError: If no rank variable is set
        """
        if self.initialized:
            return self.identity

        with log_owner(self):
            self.work_directory = ensure_work_directory(
                base_name=self.base_name,
                tempdir=self.tempdir,
                job_id_env_var=self.job_id_env_var,
                environ=self.environ,
            )
            self.identity = resolve_identity(self.rank_env_vars, self.environ)

            self.registry = QueueRegistry(self.work_directory, self.ledger, self.poll_policy)
            self.registry.ensure(LOG, self.identity.id)
            self.registry.ensure(COMMAND)
            self.registry.ensure(WORKERS)
            self.registry.ensure(REGISTER)

            self.registry.get(LOG).clear()
            if self.identity.is_coordinator:
                self.registry.get(COMMAND).clear()
                self.registry.get(WORKERS).clear()
                self.registry.get(REGISTER).clear()
            time.sleep(self.settle_delay)

            self.state = RegistrationState.REGISTERING
            self.n_registered = register_workers(
                self.identity,
                self.registry.get(REGISTER),
                self.registry.get(WORKERS),
                delay=self.registration_delay,
            )
            self.state = RegistrationState.READY

            if self.log_to_queue:
                self._log_handler = FileStackLogHandler(self.registry.get(LOG), owner=self)
                logging.getLogger('workstack').addHandler(self._log_handler)

            logger.info(
                f"Parallelizer ready: id={self.identity.id}, "
                f"work_directory={self.work_directory}, n_registered={self.n_registered}"
            )
        return self.identity

    def close(self) -> None:
        """
        Remove the last barrier step's files and, if final cleanup is
        enabled, the queue files of the whole run.

        With final cleanup, the coordinator removes every tracked file;
        other ranks remove only their own LOG queue, since the shared
        queues may still be read by slower peers.
        """
        if self._closed:
            return
        self._closed = True

        with log_owner(self):
            if self._log_handler is not None:
                logging.getLogger('workstack').removeHandler(self._log_handler)
                self._log_handler = None

            self.ledger.clean_continuous()

            if self.final_cleanup and self.registry is not None:
                if self.is_master():
                    self.ledger.clean_final()
                else:
                    clean_files([self.registry.get(LOG).path])
                    self.ledger.final.clear()

    def __enter__(self) -> "Parallelizer":
        self.setup()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ========================================================================
    # ACCESSORS
    # ========================================================================

    @property
    def initialized(self) -> bool:
        return self.state is RegistrationState.READY

    @property
    def is_coordinator(self) -> bool:
        return self.identity is not None and self.identity.is_coordinator

    @property
    def barrier_index(self) -> int:
        return self.i_barrier

    def get_id(self) -> str:
        return self.identity.id if self.identity else ""

    def get_rank(self) -> int:
        return self.identity.rank if self.identity else -1

    def get_work_directory(self) -> Optional[str]:
        return self.work_directory

    def get_n_registered(self) -> int:
        return self.n_registered

    def is_master(self) -> bool:
        return self.is_coordinator

    # ========================================================================
    # BARRIER
    # ========================================================================

    def barrier(self, tag: str) -> bool:
        """
        Block until every registered process has reached barrier `tag`.

        Args:
            tag: Name of the synchronization point, used in file names

        Returns:
            True once released, False if setup() has not completed

        Raises:
            PollTimeoutError: If the poll policy has a deadline that expires
        """
        if not self.initialized:
            logger.debug(f"barrier({tag}) called before setup, skipping")
            return False
        if not tag or os.sep in tag or '\n' in tag:
            raise ValueError(f"Invalid barrier tag: {tag!r}")

        with log_owner(self):
            step = open_barrier_step(self.registry, tag, self.i_barrier)
            try:
                n_workers = self.registry.get(WORKERS).size() if self.is_coordinator else 0
                rendezvous(step, self.identity, n_workers)
            except BaseException:
                # An abandoned step is removed with the next one, or at close()
                if self.is_coordinator:
                    self.ledger.defer(step.paths)
                raise
            else:
                # Peers may still be polling this step's files; they go one call later
                if self.is_coordinator:
                    self.ledger.schedule_step(step.paths)
            finally:
                close_barrier_step(self.registry, step)
                self.i_barrier += 1
        return True

    # ========================================================================
    # DIAGNOSTICS
    # ========================================================================

    def list_filestacks(self) -> List[str]:
        """Log and return one line per queue currently tracked."""
        if self.registry is None:
            return []
        with log_owner(self):
            lines = self.registry.describe()
            for line in lines:
                logger.info(line)
        return lines

"""
Two-phase rendezvous barrier over FileStacks.

Each barrier call uses a fresh pair of queues named after the caller's tag
and a per-process step index:

    <work_directory>/barrier_cmd_<tag>_<index>   coordinator -> everyone
    <work_directory>/barrier_ack_<tag>_<index>   everyone -> coordinator

Arrival phase:
    coordinator clears ack, pushes WAIT to cmd
    everyone waits for WAIT on cmd, then pushes its id to ack

Release phase:
    coordinator waits until ack holds one entry per registered worker,
    then pushes GOON to cmd
    everyone waits for GOON on cmd

Nobody sees GOON for step k before every registered worker acknowledged
step k.
"""

import os
import logging
from dataclasses import dataclass
from typing import Tuple

from .filestack import FileStack
from .identity import ProcessIdentity
from .registry import BARRIER, QueueRegistry

logger = logging.getLogger(__name__)

WAIT = "WAIT"
GOON = "GOON"

CMD_CHANNEL = "cmd"
ACK_CHANNEL = "ack"

__all__ = [
    'WAIT',
    'GOON',
    'BarrierStep',
    'barrier_file_name',
    'open_barrier_step',
    'close_barrier_step',
    'rendezvous',
]


@dataclass
class BarrierStep:
    tag: str
    index: int
    cmd: FileStack
    ack: FileStack

    @property
    def paths(self) -> Tuple[str, str]:
        return self.cmd.path, self.ack.path


def barrier_file_name(work_directory: str, channel: str, tag: str, index: int) -> str:
    return f"{os.path.join(work_directory, BARRIER)}_{channel}_{tag}_{index}"


def _step_queue(registry: QueueRegistry, channel: str, tag: str, index: int) -> FileStack:
    file_name = barrier_file_name(registry.work_directory, channel, tag, index)
    logger.debug(file_name)
    key = os.path.basename(file_name)
    stack = registry.ensure_from_file(key, file_name, track_final=False)
    if stack is None:
        raise ValueError(f"Barrier step queue {key} is already open")
    return stack


def open_barrier_step(registry: QueueRegistry, tag: str, index: int) -> BarrierStep:
    """Register the cmd/ack queues of one step."""
    return BarrierStep(
        tag=tag,
        index=index,
        cmd=_step_queue(registry, CMD_CHANNEL, tag, index),
        ack=_step_queue(registry, ACK_CHANNEL, tag, index),
    )


def close_barrier_step(registry: QueueRegistry, step: BarrierStep) -> None:
    """Drop the step's handles from the registry. Files are left to the ledger."""
    for path in step.paths:
        registry.delete(os.path.basename(path))


def rendezvous(step: BarrierStep, identity: ProcessIdentity, n_workers: int) -> None:
    """
    Run both phases of one barrier step.

    Args:
        step: Queues of this step
        identity: This process's identity
        n_workers: Number of acknowledgements the coordinator waits for
                   (ignored on other ranks)

    Raises:
        PollTimeoutError: If the queues' poll policy has a deadline that expires
    """
    if identity.is_coordinator:
        step.ack.clear()
        step.cmd.push(WAIT)
    step.cmd.poll_query(WAIT)
    step.ack.push(identity.id)
    logger.debug(f"{identity.id} {WAIT} {step.tag}#{step.index}")

    if identity.is_coordinator:
        step.ack.poll_size(n_workers)
        step.cmd.push(GOON)
    step.cmd.poll_query(GOON)
    logger.debug(f"{identity.id} {GOON} {step.tag}#{step.index}")

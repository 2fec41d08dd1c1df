"""
Work Directory Management for workstack

Composes and creates the shared directory that holds every queue's backing
file. All processes of one job must end up with the same path, so the path
depends only on the tempdir argument and the job id variable.
"""

import os
import errno
import logging
from typing import Mapping, Optional

from . import config

logger = logging.getLogger(__name__)

__all__ = [
    'WorkDirectoryError',
    'work_directory_path',
    'ensure_work_directory',
]


class WorkDirectoryError(IOError):
    """Raised when the shared work directory cannot be created."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        message = f"could not create working directory {path} for parallelizer"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


def work_directory_path(
    base_name: str = config.BASE_NAME,
    tempdir: Optional[str] = None,
    job_id_env_var: Optional[str] = config.JOB_ID_ENV_VAR,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Compose the work directory path without touching the filesystem.

    Returns:
        join(tempdir, base_name) or base_name, with "_<jobid>" appended when
        the job id variable is set
    """
    if environ is None:
        environ = os.environ

    path = os.path.join(tempdir, base_name) if tempdir else base_name
    if job_id_env_var:
        job_id = environ.get(job_id_env_var)
        if job_id:
            path = f"{path}_{job_id}"
    return path


def ensure_work_directory(
    base_name: str = config.BASE_NAME,
    tempdir: Optional[str] = None,
    job_id_env_var: Optional[str] = config.JOB_ID_ENV_VAR,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Create the shared work directory if needed.

    Several processes may race here; "already exists" counts as success so
    they all converge on the same directory.

    Args:
        base_name: Fixed directory name
        tempdir: Optional parent directory (default: current directory)
        job_id_env_var: Variable whose value is appended as a suffix
        environ: Mapping to read from (default: os.environ)

    Returns:
        Path of the work directory

    Raises:
        WorkDirectoryError: If mkdir fails for a reason other than EEXIST
    """
    path = work_directory_path(base_name, tempdir, job_id_env_var, environ)
    logger.debug(f"work_directory = {path}")

    try:
        os.mkdir(path, config.WORK_DIRECTORY_MODE)
    except OSError as e:
        if e.errno != errno.EEXIST:
            raise WorkDirectoryError(path, e.strerror or str(e)) from e
        if not os.path.isdir(path):
            raise WorkDirectoryError(path, "exists and is not a directory") from e
    else:
        logger.info(f"Work directory created at {path}")

    return path

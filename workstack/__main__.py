#!/usr/bin/env python3
"""
Command line smoke test for workstack.

Launch one copy per task under the job scheduler, e.g.:

    srun -n 4 python -m workstack --tempdir /scratch --barriers 3

Every rank sets up, passes the requested number of barriers and tears
down. Exit codes: 0 ok, 2 configuration/work directory error, 3 poll or
lock timeout.
"""

import sys
import argparse
import logging
from typing import List, Optional

from . import config
from .filestack import PollPolicy
from .identity import ConfigurationError
from .logging_setup import setup_logging
from .parallelizer import Parallelizer
from .workspace import WorkDirectoryError

logger = logging.getLogger("workstack.cli")

EXIT_OK = 0
EXIT_SETUP_ERROR = 2
EXIT_TIMEOUT = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workstack",
        description="Set up a workstack group and pass N barriers.",
    )
    parser.add_argument("--tempdir", default=None, help="Parent directory of the shared work directory")
    parser.add_argument("--tag", default="step", help="Barrier tag (default: step)")
    parser.add_argument("--barriers", type=int, default=1, help="Number of barriers to pass (default: 1)")
    parser.add_argument("--timeout", type=float, default=config.POLL_TIMEOUT,
                        help="Poll deadline in seconds (default: wait forever)")
    parser.add_argument("--final-cleanup", action="store_true", default=config.FINAL_CLEANUP,
                        help="Remove all queue files on exit")
    parser.add_argument("--list", action="store_true", help="Print tracked queues before exiting")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="DEBUG, INFO, WARNING, ERROR")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    par = Parallelizer(
        tempdir=args.tempdir,
        poll_policy=PollPolicy(timeout=args.timeout),
        final_cleanup=args.final_cleanup,
    )
    try:
        try:
            par.setup()
        except (ConfigurationError, WorkDirectoryError) as e:
            logger.error(f"Setup failed: {e}")
            return EXIT_SETUP_ERROR

        setup_logging(args.log_level, par.get_rank())
        for _ in range(args.barriers):
            par.barrier(args.tag)
            logger.info(f"{par.get_id()} passed barrier {args.tag}#{par.barrier_index - 1}")

        if args.list:
            for line in par.list_filestacks():
                print(line)
    except TimeoutError as e:
        # Poll deadlines and queue lock timeouts alike
        logger.error(str(e))
        return EXIT_TIMEOUT
    finally:
        par.close()

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
from fabric_infra.eventually import (
    AssertionTimeout,
    DEFAULT_POLL_INTERVAL_S,
    be_true,
    eventually,
)

from loguru import logger as LOG

# Maximum time for a one-shot command to be spawned
DEFAULT_READY_TIMEOUT_S = 5

# Maximum time for a one-shot command to complete once spawned
DEFAULT_COMMAND_TIMEOUT_S = 10


class NotReady(TimeoutError):
    pass


class CommandTimeout(TimeoutError):
    pass


class CommandFailed(Exception):
    def __init__(self, name, error, stdout=b"", stderr=b""):
        super().__init__(
            f"{name} failed: {error}\n"
            f"stdout:\n{stdout.decode(errors='replace')}\n"
            f"stderr:\n{stderr.decode(errors='replace')}"
        )
        self.name = name
        self.error = error
        self.stdout = stdout
        self.stderr = stderr


def _captured(runnable, stream):
    get = getattr(runnable, stream, None)
    return get().contents() if get is not None else b""


def execute(
    runnable,
    supervisor=None,
    ready_timeout=DEFAULT_READY_TIMEOUT_S,
    timeout=DEFAULT_COMMAND_TIMEOUT_S,
    poll_interval=DEFAULT_POLL_INTERVAL_S,
    check=False,
):
    """
    Run `runnable` to completion and return the error carried by its
    termination (None on success).

    The command is started through `supervisor` when one is given, so that a
    command that overruns its timeout is still reclaimed on teardown. Neither
    timeout kills the command.
    """
    handle = supervisor.start(runnable) if supervisor else runnable.start()

    try:
        eventually(
            handle.ready_or_exited,
            be_true(),
            timeout=ready_timeout,
            poll_interval=poll_interval,
            description=f"{handle.name} to be ready",
        )
    except AssertionTimeout as e:
        raise NotReady(f"{handle.name} was not ready after {ready_timeout}s") from e

    if handle.is_exited() and not handle.is_ready():
        # Never got going (e.g. binary not found)
        error = handle.error
    else:
        try:
            eventually(
                handle.is_exited,
                be_true(),
                timeout=timeout,
                poll_interval=poll_interval,
                description=f"{handle.name} to exit",
            )
        except AssertionTimeout as e:
            raise CommandTimeout(
                f"{handle.name} did not complete within {timeout}s"
            ) from e
        error = handle.error

    if error is not None:
        LOG.warning(f"[{handle.name}] {error}")
        if check:
            raise CommandFailed(
                handle.name,
                error,
                stdout=_captured(runnable, "buffer"),
                stderr=_captured(runnable, "err"),
            )
    return error

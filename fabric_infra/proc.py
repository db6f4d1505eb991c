# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
from subprocess import run

from loguru import logger as LOG


def ccall(*args, path=None, log_output=True, env=None):
    """
    Run a helper tool to completion. Never raises on a non-zero exit status:
    the caller inspects `returncode` and the artifacts it expected.
    """
    suffix = f" [cwd: {path}]" if path else ""
    cmd = " ".join(args)
    LOG.info(f"{cmd}{suffix}")
    if env is not None:
        env = dict(os.environ, **env)
    result = run(args, capture_output=True, cwd=path, check=False, env=env)
    if result.stdout and log_output:
        LOG.debug("stdout: {}".format(result.stdout.decode().strip()))
    if result.stderr and log_output:
        LOG.error("stderr: {}".format(result.stderr.decode().strip()))
    return result

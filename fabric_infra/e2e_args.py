# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import argparse
import os
import sys

import fabric_infra.path
from fabric_infra.command import DEFAULT_COMMAND_TIMEOUT_S, DEFAULT_READY_TIMEOUT_S
from fabric_infra.components import DEFAULT_START_TIMEOUT_S
from fabric_infra.eventually import DEFAULT_POLL_INTERVAL_S

from loguru import logger as LOG

LOG_FORMAT = "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"


def setup_logging(level="INFO"):
    LOG.remove()
    LOG.add(sys.stdout, format=LOG_FORMAT, level=level)


def cli_args(add=lambda x: None, parser=None, argv=None):
    setup_logging(os.getenv("E2E_LOG_LEVEL", "DEBUG"))

    if parser is None:
        parser = argparse.ArgumentParser(
            formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
    parser.add_argument(
        "-b",
        "--binary-dir",
        help="Path to network binaries (orderer, peer, cryptogen, configtxgen)",
        default=os.getenv("FABRIC_BINARY_DIR", "."),
    )
    parser.add_argument(
        "--sample-config-dir",
        help="Directory holding the sample core.yaml and orderer.yaml",
        default=os.getenv("FABRIC_SAMPLE_CONFIG"),
    )
    parser.add_argument(
        "--fixtures-dir",
        help="Directory holding per-peer core.yaml fixtures and plugin sources",
        default=os.getenv("FABRIC_E2E_FIXTURES", "testdata"),
    )
    parser.add_argument(
        "--workspace",
        help="Temporary directory where generated configuration is stored",
        default=fabric_infra.path.default_workspace(),
    )
    parser.add_argument(
        "--label",
        help="Unique identifier for the test, used to name its working directory",
        default="pluggable",
    )
    parser.add_argument(
        "--consensus",
        help="Ordering service type",
        default="solo",
        choices=("solo", "kafka"),
    )
    parser.add_argument(
        "--orderer-count",
        help="Number of orderers",
        type=int,
        default=1,
    )
    parser.add_argument(
        "--peer-org-count",
        help="Number of peer organisations",
        type=int,
        default=2,
    )
    parser.add_argument(
        "--log-level",
        help="Log level of orderers and peers",
        default="info",
        choices=("debug", "info", "warning", "error", "critical"),
    )
    parser.add_argument(
        "--compile-plugins",
        help="Build the endorsement and validation plugins before starting peers",
        action="store_true",
        default=False,
    )
    parser.add_argument(
        "--go",
        help="Go toolchain used to build plugins",
        default=os.getenv("GO", "go"),
    )
    parser.add_argument(
        "--chaincode-path",
        help="Import path of the chaincode to deploy",
        default=os.path.join(
            "github.com", "hyperledger", "fabric", "integration", "chaincode", "simple", "cmd"
        ),
    )
    parser.add_argument(
        "--start-timeout",
        help="Maximum time (s) for an orderer, peer or container to start",
        type=float,
        default=DEFAULT_START_TIMEOUT_S,
    )
    parser.add_argument(
        "--command-ready-timeout",
        help="Maximum time (s) for an administrative command to be spawned",
        type=float,
        default=DEFAULT_READY_TIMEOUT_S,
    )
    parser.add_argument(
        "--command-timeout",
        help="Maximum time (s) for an administrative command to complete",
        type=float,
        default=DEFAULT_COMMAND_TIMEOUT_S,
    )
    parser.add_argument(
        "--eventually-timeout",
        help="Maximum time (s) for an asynchronous assertion to hold",
        type=float,
        default=5,
    )
    parser.add_argument(
        "--poll-interval",
        help="Polling interval (s) of asynchronous assertions",
        type=float,
        default=DEFAULT_POLL_INTERVAL_S,
    )
    add(parser)

    args = parser.parse_args(argv)

    args.binary_dir = os.path.abspath(args.binary_dir)
    if args.sample_config_dir is None:
        args.sample_config_dir = os.path.join(args.binary_dir, os.pardir, "config")
    args.fixtures_dir = os.path.abspath(args.fixtures_dir)

    return args

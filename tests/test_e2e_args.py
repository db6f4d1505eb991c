# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os

import pytest

from fabric_infra.e2e_args import cli_args


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("FABRIC_BINARY_DIR", str(tmp_path / "bin"))
    monkeypatch.delenv("FABRIC_SAMPLE_CONFIG", raising=False)
    args = cli_args(argv=[])
    assert args.binary_dir == str(tmp_path / "bin")
    assert args.sample_config_dir == os.path.join(str(tmp_path / "bin"), os.pardir, "config")
    assert args.consensus == "solo"
    assert args.peer_org_count == 2
    assert args.command_ready_timeout == 5
    assert args.command_timeout == 10
    assert not args.compile_plugins


def test_extra_arguments():
    def add(parser):
        parser.add_argument("--channel", default="testchannel")

    args = cli_args(add=add, argv=["--channel", "other", "--consensus", "kafka"])
    assert args.channel == "other"
    assert args.consensus == "kafka"


def test_unknown_consensus_is_rejected():
    with pytest.raises(SystemExit):
        cli_args(argv=["--consensus", "raft"])

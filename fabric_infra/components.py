# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os

import fabric_infra.path
from fabric_infra.runnable import Command, LocalProcess

# Log lines printed by the network-role binaries once they serve requests
ORDERER_READY_PATTERN = r"Beginning to serve requests"
PEER_READY_PATTERN = r"Started peer with ID=.*, address="

# Startup of long-lived binaries can be slow on loaded CI agents
DEFAULT_START_TIMEOUT_S = 30


class Peer:
    """
    Builder for `peer` invocations. Every command runs against the node
    configuration in `config_dir` with the identity in `msp_config_path`.
    """

    BIN = "peer"

    def __init__(
        self,
        path,
        config_dir=None,
        msp_config_path=None,
        log_level="info",
        address=None,
        local_msp_id=None,
        exec_path=None,
        env=None,
    ):
        self.path = path
        self.config_dir = config_dir
        self.msp_config_path = msp_config_path
        self.log_level = log_level
        self.address = address
        self.local_msp_id = local_msp_id
        self.exec_path = exec_path
        self.env = dict(env or {})

    def environment(self):
        env = dict(self.env)
        if self.config_dir:
            env["FABRIC_CFG_PATH"] = self.config_dir
        if self.msp_config_path:
            env["CORE_PEER_MSPCONFIGPATH"] = self.msp_config_path
        if self.address:
            env["CORE_PEER_ADDRESS"] = self.address
        if self.local_msp_id:
            env["CORE_PEER_LOCALMSPID"] = self.local_msp_id
        if self.exec_path:
            env["PATH"] = self.exec_path
        env["CORE_LOGGING_LEVEL"] = self.log_level
        return env

    def _command(self, name, *args):
        return Command(name, self.path, list(args), env=self.environment())

    def node_start(self, name, root=None):
        return LocalProcess(
            name,
            self.path,
            ["node", "start"],
            env=self.environment(),
            ready_pattern=PEER_READY_PATTERN,
            root=root,
        )

    def create_channel(self, channel, tx_file, orderer, output_block):
        return self._command(
            "channel-create",
            "channel",
            "create",
            "-c",
            channel,
            "-o",
            orderer,
            "-f",
            tx_file,
            "--outputBlock",
            output_block,
        )

    def join_channel(self, block):
        return self._command("channel-join", "channel", "join", "-b", block)

    def update_channel(self, tx_file, channel, orderer):
        return self._command(
            "channel-update",
            "channel",
            "update",
            "-c",
            channel,
            "-o",
            orderer,
            "-f",
            tx_file,
        )

    def install_chaincode(self, name, version, path):
        return self._command(
            "chaincode-install",
            "chaincode",
            "install",
            "-n",
            name,
            "-v",
            version,
            "-p",
            path,
        )

    def instantiate_chaincode(self, name, version, orderer, channel, args, policy):
        return self._command(
            "chaincode-instantiate",
            "chaincode",
            "instantiate",
            "-n",
            name,
            "-v",
            version,
            "-o",
            orderer,
            "-C",
            channel,
            "-c",
            args,
            "-P",
            policy,
        )

    def list_instantiated(self, channel):
        return self._command(
            "chaincode-list", "chaincode", "list", "--instantiated", "-C", channel
        )

    def query_chaincode(self, name, channel, args):
        return self._command(
            "chaincode-query", "chaincode", "query", "-n", name, "-C", channel, "-c", args
        )

    def invoke_chaincode(self, name, channel, args, orderer):
        return self._command(
            "chaincode-invoke",
            "chaincode",
            "invoke",
            "-n",
            name,
            "-C",
            channel,
            "-c",
            args,
            "-o",
            orderer,
        )


class Orderer:
    BIN = "orderer"

    def __init__(self, path, config_dir=None, log_level="info", env=None):
        self.path = path
        self.config_dir = config_dir
        self.log_level = log_level
        self.env = dict(env or {})

    def environment(self):
        env = dict(self.env)
        if self.config_dir:
            env["FABRIC_CFG_PATH"] = self.config_dir
        env["ORDERER_GENERAL_LOGLEVEL"] = self.log_level
        return env

    def start(self, name, root=None):
        return LocalProcess(
            name,
            self.path,
            env=self.environment(),
            ready_pattern=ORDERER_READY_PATTERN,
            root=root,
        )


class Components:
    """
    Locates the network binaries and builds runnables for them.
    """

    def __init__(self, binary_dir=".", sample_config_dir=None, exec_path=None):
        self.binary_dir = binary_dir
        self.sample_config_dir = sample_config_dir or os.path.join(
            binary_dir, os.pardir, "config"
        )
        self.exec_path = exec_path or os.environ.get("PATH")

    def bin_path(self, name):
        return fabric_infra.path.build_bin_path(name, binary_dir=self.binary_dir)

    def peer(self, **kwargs):
        kwargs.setdefault("exec_path", self.exec_path)
        return Peer(self.bin_path(Peer.BIN), **kwargs)

    def orderer(self, **kwargs):
        return Orderer(self.bin_path(Orderer.BIN), **kwargs)

    def cryptogen(self, config, output):
        return Command(
            "cryptogen",
            self.bin_path("cryptogen"),
            ["generate", f"--config={config}", f"--output={output}"],
        )

    def configtxgen_genesis_block(self, config_dir, profile, channel, output):
        return Command(
            "configtxgen-genesis",
            self.bin_path("configtxgen"),
            ["-profile", profile, "-channelID", channel, "-outputBlock", output],
            env={"FABRIC_CFG_PATH": config_dir},
        )

    def configtxgen_channel_tx(self, config_dir, profile, channel, output):
        return Command(
            "configtxgen-channel",
            self.bin_path("configtxgen"),
            ["-profile", profile, "-channelID", channel, "-outputCreateChannelTx", output],
            env={"FABRIC_CFG_PATH": config_dir},
        )

    def configtxgen_anchor_peers(self, config_dir, profile, channel, org, output):
        return Command(
            f"configtxgen-anchors-{org}",
            self.bin_path("configtxgen"),
            [
                "-profile",
                profile,
                "-channelID",
                channel,
                "-asOrg",
                org,
                "-outputAnchorPeersUpdate",
                output,
            ],
            env={"FABRIC_CFG_PATH": config_dir},
        )

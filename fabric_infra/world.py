# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

import fabric_infra.path
from fabric_infra.command import CommandTimeout, NotReady, execute
from fabric_infra.components import DEFAULT_START_TIMEOUT_S
from fabric_infra.docker_remote import ContainerService
from fabric_infra.eventually import be_true, eventually, say
from fabric_infra.runnable import Buffer

from loguru import logger as LOG

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")

ORDERER_BASE_PORT = 7050
PEER_BASE_PORT = 7051

ZOOKEEPER_IMAGE = "hyperledger/fabric-zookeeper"
KAFKA_IMAGE = "hyperledger/fabric-kafka"
KAFKA_PORT = 9092
DOCKER_NETWORK_PREFIX = "fabric_e2e"

# Chaincode instantiation builds and launches a container
INSTANTIATE_TIMEOUT_S = 120


@dataclass(frozen=True)
class Chaincode:
    name: str
    version: str
    path: str
    exec_path: Optional[str] = None


@dataclass(frozen=True)
class Deployment:
    channel: str
    chaincode: Chaincode
    init_args: str
    policy: str
    orderer: str


@dataclass
class OrdererOrgConfig:
    name: str
    msp_id: str
    domain: str
    orderer_count: int = 1

    def orderer_names(self):
        return [f"orderer{i}.{self.domain}" for i in range(self.orderer_count)]


@dataclass
class PeerOrgConfig:
    name: str
    msp_id: str
    domain: str
    peer_count: int = 1
    user_count: int = 1

    def peer_names(self):
        return [f"peer{i}.{self.domain}" for i in range(self.peer_count)]

    def admin_msp_dir(self, crypto_dir):
        return os.path.join(
            crypto_dir,
            "peerOrganizations",
            self.domain,
            "users",
            f"Admin@{self.domain}",
            "msp",
        )


@dataclass
class World:
    """
    Live topology of one test network: what was generated, and every local
    process and auxiliary service started for it.
    """

    rootpath: str
    components: object
    consensus: str = "solo"
    orderer_orgs: List[OrdererOrgConfig] = field(default_factory=list)
    peer_orgs: List[PeerOrgConfig] = field(default_factory=list)
    system_channel: str = "systestchainid"
    orderer_profile: str = "TwoOrgsOrdererGenesis"
    channel_profile: str = "TwoOrgsChannel"
    peer_env: Dict[str, str] = field(default_factory=dict)
    log_level: str = "info"
    start_timeout: float = DEFAULT_START_TIMEOUT_S
    command_timeout: float = 10
    local_stoppers: list = field(default_factory=list)
    local_processes: list = field(default_factory=list)
    network: Optional[str] = None

    @property
    def crypto_dir(self):
        return os.path.join(self.rootpath, "crypto")

    def peer_count(self):
        return sum(org.peer_count for org in self.peer_orgs)

    def orderer_addresses(self):
        addresses = []
        for org in self.orderer_orgs:
            for i, _ in enumerate(org.orderer_names()):
                addresses.append(f"127.0.0.1:{ORDERER_BASE_PORT + 10 * i}")
        return addresses

    def peer_port(self, org_index, peer_index):
        return PEER_BASE_PORT + 100 * org_index + 10 * peer_index

    def peers(self):
        """Yield (org, peer name, listen port) for every peer in the world"""
        for org_index, org in enumerate(self.peer_orgs):
            for peer_index, peer_name in enumerate(org.peer_names()):
                yield org, peer_name, self.peer_port(org_index, peer_index)

    def kafka_brokers(self):
        if self.consensus != "kafka":
            return []
        return [f"127.0.0.1:{KAFKA_PORT}"]

    def render_configs(self):
        env = Environment(
            loader=FileSystemLoader(TEMPLATES_DIR),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        anchor_ports = {
            org.name: self.peer_port(i, 0) for i, org in enumerate(self.peer_orgs)
        }
        values = dict(
            orderer_orgs=self.orderer_orgs,
            peer_orgs=self.peer_orgs,
            crypto_dir=self.crypto_dir,
            consensus=self.consensus,
            orderer_addresses=self.orderer_addresses(),
            kafka_brokers=self.kafka_brokers(),
            anchor_ports=anchor_ports,
            orderer_profile=self.orderer_profile,
            channel_profile=self.channel_profile,
        )
        for name in ("crypto-config.yaml", "configtx.yaml"):
            template = env.get_template(f"{name}.jinja")
            fabric_infra.path.mk(
                os.path.join(self.rootpath, name), template.render(**values)
            )

    def admin_peer(self, org_index=0, peer_index=0, log_level=None):
        org = self.peer_orgs[org_index]
        peer_name = org.peer_names()[peer_index]
        return self.components.peer(
            config_dir=os.path.join(self.rootpath, peer_name),
            msp_config_path=org.admin_msp_dir(self.crypto_dir),
            address=f"127.0.0.1:{self.peer_port(org_index, peer_index)}",
            local_msp_id=org.msp_id,
            log_level=log_level or self.log_level,
        )

    def _run(self, runnable, processes=None):
        execute(runnable, supervisor=processes, timeout=self.command_timeout, check=True)
        return runnable

    def bootstrap(self, processes=None):
        """
        Generate crypto material and the system channel genesis block.
        """
        self._run(
            self.components.cryptogen(
                os.path.join(self.rootpath, "crypto-config.yaml"), self.crypto_dir
            ),
            processes,
        )
        self._run(
            self.components.configtxgen_genesis_block(
                self.rootpath,
                self.orderer_profile,
                self.system_channel,
                os.path.join(self.rootpath, f"{self.system_channel}.block"),
            ),
            processes,
        )

    def create_channel_artifacts(self, channel, processes=None):
        self._run(
            self.components.configtxgen_channel_tx(
                self.rootpath,
                self.channel_profile,
                channel,
                os.path.join(self.rootpath, f"{channel}_tx.pb"),
            ),
            processes,
        )
        for org in self.peer_orgs:
            self._run(
                self.components.configtxgen_anchor_peers(
                    self.rootpath,
                    self.channel_profile,
                    channel,
                    org.name,
                    os.path.join(self.rootpath, f"{org.name}_anchors_update_tx.pb"),
                ),
                processes,
            )

    def copy_sample_configs(self):
        sample = self.components.sample_config_dir
        for org in self.orderer_orgs:
            for orderer_name in org.orderer_names():
                node_dir = os.path.join(self.rootpath, orderer_name)
                os.makedirs(node_dir, exist_ok=True)
                fabric_infra.path.copy_if_missing(
                    os.path.join(sample, "orderer.yaml"),
                    os.path.join(node_dir, "orderer.yaml"),
                )
        for _, peer_name, _ in self.peers():
            node_dir = os.path.join(self.rootpath, peer_name)
            os.makedirs(node_dir, exist_ok=True)
            fabric_infra.path.copy_if_missing(
                os.path.join(sample, "core.yaml"), os.path.join(node_dir, "core.yaml")
            )

    def start_kafka(self, containers):
        self.network = f"{DOCKER_NETWORK_PREFIX}_{os.path.basename(self.rootpath)}"
        containers.create_network(self.network)
        zookeeper = ContainerService(
            "zookeeper0",
            ZOOKEEPER_IMAGE,
            environment={"ZOO_MY_ID": "1"},
            network=self.network,
            ready_pattern=r"binding to port",
        )
        kafka = ContainerService(
            "kafka0",
            KAFKA_IMAGE,
            environment={
                "KAFKA_BROKER_ID": "0",
                "KAFKA_ZOOKEEPER_CONNECT": "zookeeper0:2181",
                "KAFKA_ADVERTISED_HOST_NAME": "127.0.0.1",
                "KAFKA_ADVERTISED_PORT": str(KAFKA_PORT),
                "KAFKA_MESSAGE_MAX_BYTES": "103809024",
                "KAFKA_REPLICA_FETCH_MAX_BYTES": "103809024",
                "KAFKA_UNCLEAN_LEADER_ELECTION_ENABLE": "false",
            },
            network=self.network,
            ready_pattern=r"started \(kafka.server.KafkaServer\)",
            ports={f"{KAFKA_PORT}/tcp": KAFKA_PORT},
        )
        for service in (zookeeper, kafka):
            handle = containers.start(service)
            self.local_stoppers.append(handle)
            self._wait_started(handle)

    def _wait_started(self, handle):
        eventually(
            handle.ready_or_exited,
            be_true(),
            timeout=self.start_timeout,
            poll_interval=0.1,
            description=f"{handle.name} to start",
        )
        if not handle.is_ready():
            raise RuntimeError(f"{handle.name} exited during startup: {handle.error}")

    def start_orderers(self, processes):
        for org in self.orderer_orgs:
            for i, orderer_name in enumerate(org.orderer_names()):
                node_dir = os.path.join(self.rootpath, orderer_name)
                orderer = self.components.orderer(
                    config_dir=node_dir,
                    log_level=self.log_level,
                    env={
                        "ORDERER_GENERAL_LISTENADDRESS": "127.0.0.1",
                        "ORDERER_GENERAL_LISTENPORT": str(ORDERER_BASE_PORT + 10 * i),
                        "ORDERER_GENERAL_GENESISMETHOD": "file",
                        "ORDERER_GENERAL_GENESISFILE": os.path.join(
                            self.rootpath, f"{self.system_channel}.block"
                        ),
                        "ORDERER_GENERAL_LOCALMSPID": org.msp_id,
                        "ORDERER_GENERAL_LOCALMSPDIR": os.path.join(
                            self.crypto_dir,
                            "ordererOrganizations",
                            org.domain,
                            "orderers",
                            orderer_name,
                            "msp",
                        ),
                        "ORDERER_FILELEDGER_LOCATION": os.path.join(node_dir, "ledger"),
                    },
                )
                handle = processes.start(orderer.start(orderer_name, root=node_dir))
                self.local_processes.append(handle)
                self._wait_started(handle)

    def start_peers(self, processes):
        for org, peer_name, port in self.peers():
            node_dir = os.path.join(self.rootpath, peer_name)
            env = dict(self.peer_env)
            env.update(
                {
                    "CORE_PEER_ID": peer_name,
                    "CORE_PEER_LISTENADDRESS": f"127.0.0.1:{port}",
                    "CORE_PEER_CHAINCODELISTENADDRESS": f"127.0.0.1:{port + 1}",
                    "CORE_PEER_GOSSIP_EXTERNALENDPOINT": f"127.0.0.1:{port}",
                    "CORE_PEER_FILESYSTEMPATH": os.path.join(node_dir, "data"),
                    "CORE_PEER_MSPCONFIGPATH": os.path.join(
                        self.crypto_dir,
                        "peerOrganizations",
                        org.domain,
                        "peers",
                        peer_name,
                        "msp",
                    ),
                }
            )
            peer = self.components.peer(
                config_dir=node_dir,
                address=f"127.0.0.1:{port}",
                local_msp_id=org.msp_id,
                log_level=self.log_level,
                env=env,
            )
            handle = processes.start(peer.node_start(peer_name, root=node_dir))
            self.local_processes.append(handle)
            self._wait_started(handle)

    def deploy(self, deployment, processes):
        """
        Create the channel, join every peer, install the chaincode everywhere
        and instantiate it from the first peer.
        """
        cc = deployment.chaincode
        block = os.path.join(self.rootpath, f"{deployment.channel}.block")
        self.create_channel_artifacts(deployment.channel, processes)

        self._run(
            self.admin_peer().create_channel(
                deployment.channel,
                os.path.join(self.rootpath, f"{deployment.channel}_tx.pb"),
                deployment.orderer,
                block,
            ),
            processes,
        )
        for org_index, org in enumerate(self.peer_orgs):
            for peer_index, _ in enumerate(org.peer_names()):
                admin = self.admin_peer(org_index, peer_index)
                if cc.exec_path:
                    admin.exec_path = cc.exec_path
                self._run(admin.join_channel(block), processes)
                self._run(admin.install_chaincode(cc.name, cc.version, cc.path), processes)

        admin = self.admin_peer()
        execute(
            admin.instantiate_chaincode(
                cc.name,
                cc.version,
                deployment.orderer,
                deployment.channel,
                deployment.init_args,
                deployment.policy,
            ),
            supervisor=processes,
            timeout=INSTANTIATE_TIMEOUT_S,
            check=True,
        )

        def instantiated():
            runner = admin.list_instantiated(deployment.channel)
            try:
                execute(runner, supervisor=processes, timeout=self.command_timeout)
            except (NotReady, CommandTimeout) as e:
                LOG.debug(f"Listing instantiated chaincodes: {e}")
                return Buffer()
            return runner.buffer()

        eventually(
            instantiated,
            say(f"Name: {cc.name}, Version: {cc.version}"),
            timeout=INSTANTIATE_TIMEOUT_S,
            poll_interval=1,
        )
        LOG.success(f"Chaincode {cc.name}:{cc.version} instantiated on {deployment.channel}")

    def setup(self, deployment, processes, containers):
        self.bootstrap(processes)
        self.copy_sample_configs()
        if self.consensus == "kafka":
            self.start_kafka(containers)
        self.start_orderers(processes)
        self.start_peers(processes)
        LOG.success("All orderers and peers started")
        self.deploy(deployment, processes)


def generate_basic_config(consensus, orderer_count, peer_org_count, root, components):
    """
    Describe a network with a single orderer organisation and
    `peer_org_count` peer organisations of one peer each, and render the
    inputs of the crypto and channel artifact generators into `root`.
    """
    fabric_infra.path.create_dir(root)
    world = World(
        rootpath=root,
        components=components,
        consensus=consensus,
        orderer_orgs=[
            OrdererOrgConfig(
                name="OrdererOrg",
                msp_id="OrdererMSP",
                domain="example.com",
                orderer_count=orderer_count,
            )
        ],
        peer_orgs=[
            PeerOrgConfig(
                name=f"Org{i}",
                msp_id=f"Org{i}MSP",
                domain=f"org{i}.example.com",
            )
            for i in range(1, peer_org_count + 1)
        ],
    )
    world.render_configs()
    return world


def copy_peer_configs(peer_orgs, root, fixtures_dir):
    """
    Install the `<peer>-core.yaml` fixture of each peer as its core.yaml.
    """
    for org in peer_orgs:
        for peer_name in org.peer_names():
            peer_dir = os.path.join(root, peer_name)
            os.makedirs(peer_dir, exist_ok=True)
            fabric_infra.path.copy_file(
                os.path.join(fixtures_dir, f"{peer_name}-core.yaml"),
                os.path.join(peer_dir, "core.yaml"),
            )

# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
import stat
import sys
import threading
from types import SimpleNamespace

import docker
import pytest
import requests


class FakeContainer:
    def __init__(self, client, name, labels=None, logs=(), vanishing=False):
        self.client = client
        self.id = f"id-{name}"
        self.name = name
        self.labels = labels or {}
        self.log_lines = list(logs)
        self.vanishing = vanishing
        self.stopped = False
        self.status_code = None
        self._exited = threading.Event()

    def _exit(self, status_code):
        if not self._exited.is_set():
            self.status_code = status_code
            self._exited.set()

    def logs(self, stream=False, follow=False):
        for line in self.log_lines:
            yield line
        if follow:
            self._exited.wait()

    def wait(self):
        self._exited.wait()
        return {"StatusCode": self.status_code}

    def kill(self, signal=None):
        if self.id not in self.client.containers_by_id:
            raise docker.errors.NotFound("No such container")
        self.client.calls.append(("kill", self.name, signal))
        self._exit(128 + (signal or 9))

    def stop(self):
        if self.id not in self.client.containers_by_id:
            raise docker.errors.NotFound("No such container")
        self.client.calls.append(("stop", self.name))
        self.stopped = True
        self._exit(0)

    def remove(self, force=False):
        if self.client.containers_by_id.pop(self.id, None) is None:
            raise docker.errors.NotFound("No such container")
        self.client.calls.append(("remove", self.name))
        self._exit(0)


class FakeImage:
    def __init__(self, image_id, labels):
        self.id = image_id
        self.labels = labels


def _matches(name, labels, filters):
    for value in filters.get("name", []):
        if value not in name:
            return False
    for value in filters.get("label", []):
        key, _, expected = value.partition("=")
        if key not in labels or (expected and labels[key] != expected):
            return False
    return True


class FakeDockerClient:
    """
    In-memory stand-in for docker.DockerClient covering the calls made by
    the container supervisor and container services.

    `logs_by_image` holds the log lines a container started from an image
    prints. Setting `run_error` makes `containers.run` raise it.
    """

    def __init__(self, unreachable=False):
        self.unreachable = unreachable
        self.containers_by_id = {}
        self.images_by_id = {}
        self.local_images = set()
        self.logs_by_image = {}
        self.run_error = None
        self.network_names = set()
        self.calls = []
        self.containers = SimpleNamespace(
            list=self._list_containers, run=self._run_container
        )
        self.images = SimpleNamespace(
            list=self._list_images,
            remove=self._remove_image,
            get=self._get_image,
            pull=self._pull_image,
        )
        self.api = SimpleNamespace(remove_container=self._remove_container)
        self.networks = SimpleNamespace(
            get=self._get_network, create=self._create_network
        )

    def _check(self):
        if self.unreachable:
            raise requests.exceptions.ConnectionError("daemon unreachable")

    def add_container(self, name, labels=None, vanishing=False):
        c = FakeContainer(self, name, labels, vanishing=vanishing)
        self.containers_by_id[c.id] = c
        return c

    def add_image(self, image_id, labels):
        self.images_by_id[image_id] = FakeImage(image_id, labels)

    def _list_containers(self, all=False, filters=None, ignore_removed=False):
        self._check()
        self.calls.append(("list_containers", filters))
        found = []
        for c in list(self.containers_by_id.values()):
            if not _matches(c.name, c.labels, filters or {}):
                continue
            if c.vanishing:
                # Removed between listing and inspection
                self.containers_by_id.pop(c.id, None)
                if ignore_removed:
                    continue
                raise docker.errors.NotFound("No such container")
            found.append(c)
        return found

    def _run_container(self, image, command=None, name=None, detach=False, **kwargs):
        self._check()
        self.calls.append(("run", image, name))
        if self.run_error is not None:
            raise self.run_error
        c = FakeContainer(self, name, logs=self.logs_by_image.get(image, ()))
        self.containers_by_id[c.id] = c
        return c

    def _remove_container(self, container_id, force=False):
        self._check()
        self.calls.append(("remove_container", container_id, force))
        c = self.containers_by_id.pop(container_id, None)
        if c is None:
            raise docker.errors.NotFound("No such container")
        c._exit(0)

    def _list_images(self, filters=None):
        self._check()
        self.calls.append(("list_images", filters))
        return [
            i
            for i in self.images_by_id.values()
            if _matches("", i.labels, filters or {})
        ]

    def _remove_image(self, image_id):
        self._check()
        self.calls.append(("remove_image", image_id))
        if self.images_by_id.pop(image_id, None) is None:
            raise docker.errors.ImageNotFound("No such image")

    def _get_image(self, image):
        self._check()
        if image not in self.local_images:
            raise docker.errors.ImageNotFound(f"No such image: {image}")
        return SimpleNamespace(id=image)

    def _pull_image(self, image):
        self._check()
        self.calls.append(("pull", image))
        self.local_images.add(image)
        return SimpleNamespace(id=image)

    def _get_network(self, name):
        self._check()
        if name not in self.network_names:
            raise docker.errors.NotFound("No such network")
        return SimpleNamespace(name=name, remove=lambda: self._remove_network(name))

    def _create_network(self, name):
        self._check()
        self.calls.append(("create_network", name))
        self.network_names.add(name)
        return self._get_network(name)

    def _remove_network(self, name):
        self.calls.append(("remove_network", name))
        if name not in self.network_names:
            raise docker.errors.NotFound("No such network")
        self.network_names.remove(name)


@pytest.fixture
def fake_docker():
    return FakeDockerClient()


@pytest.fixture
def unreachable_docker():
    return FakeDockerClient(unreachable=True)


FAKE_PEER = r"""
import json, os, signal, sys, time

args = sys.argv[1:]
flags = {args[i]: args[i + 1] for i in range(len(args) - 1) if args[i].startswith("-")}
ledger = os.environ["FAKE_FABRIC_LEDGER"]

def load():
    with open(ledger) as f:
        return json.load(f)

def save(state):
    with open(ledger, "w") as f:
        json.dump(state, f)

if args[:2] == ["node", "start"]:
    signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))
    peer_id = os.environ["CORE_PEER_ID"]
    for var in ("ENDORSEMENT_PLUGIN_ENV_VAR", "VALIDATION_PLUGIN_ENV_VAR"):
        folder = os.environ.get(var)
        if folder:
            open(os.path.join(folder, peer_id), "w").close()
    print(f"Started peer with ID=[name:\"{peer_id}\" ], address={os.environ['CORE_PEER_LISTENADDRESS']}", file=sys.stderr, flush=True)
    while True:
        time.sleep(0.1)
elif args[:2] == ["channel", "create"]:
    open(flags["--outputBlock"], "w").close()
elif args[:2] == ["channel", "update"]:
    if not os.path.exists(flags["-f"]):
        sys.exit(1)
    print("Successfully submitted channel update", file=sys.stderr)
elif args[:2] == ["chaincode", "instantiate"]:
    init = json.loads(flags["-c"])["Args"]
    save({init[1]: int(init[2]), init[3]: int(init[4])})
elif args[:2] == ["chaincode", "list"]:
    slow = os.environ.get("FAKE_FABRIC_SLOW_LIST")
    if slow and not os.path.exists(slow):
        open(slow, "w").close()
        time.sleep(30)
    if os.path.exists(ledger):
        print("Name: mycc, Version: 0.0, Path: cmd, Escc: escc, Vscc: vscc")
elif args[:2] == ["chaincode", "query"]:
    key = json.loads(flags["-c"])["Args"][1]
    print(load()[key])
elif args[:2] == ["chaincode", "invoke"]:
    _, src, dst, amount = json.loads(flags["-c"])["Args"]
    state = load()
    state[src] -= int(amount)
    state[dst] += int(amount)
    save(state)
    print("Chaincode invoke successful. result: status:200", file=sys.stderr)
"""

FAKE_ORDERER = r"""
import signal, sys, time
signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))
print("Beginning to serve requests", file=sys.stderr, flush=True)
while True:
    time.sleep(0.1)
"""

FAKE_CRYPTOGEN = r"""
import os, sys
output = [a for a in sys.argv if a.startswith("--output=")][0].split("=", 1)[1]
os.makedirs(output, exist_ok=True)
"""

FAKE_CONFIGTXGEN = r"""
import sys
import threading
args = sys.argv[1:]
for flag in ("-outputBlock", "-outputCreateChannelTx", "-outputAnchorPeersUpdate"):
    if flag in args:
        open(args[args.index(flag) + 1], "w").close()
"""


def _write_executable(path, body):
    with open(path, "w", encoding="utf-8") as f:
        f.write(f"#!{sys.executable}\n{body}")
    os.chmod(path, os.stat(path).st_mode | stat.S_IEXEC)


@pytest.fixture
def fake_fabric(tmp_path, monkeypatch):
    """
    Directory layout of a Fabric installation whose binaries are small
    Python scripts sharing one JSON file as their ledger.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name, body in (
        ("peer", FAKE_PEER),
        ("orderer", FAKE_ORDERER),
        ("cryptogen", FAKE_CRYPTOGEN),
        ("configtxgen", FAKE_CONFIGTXGEN),
    ):
        _write_executable(str(bin_dir / name), body)

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "core.yaml").write_text("peer: {}\n")
    (config_dir / "orderer.yaml").write_text("General: {}\n")

    fixtures_dir = tmp_path / "testdata"
    fixtures_dir.mkdir()
    for peer in ("peer0.org1.example.com", "peer0.org2.example.com"):
        (fixtures_dir / f"{peer}-core.yaml").write_text(f"# plugins for {peer}\n")

    monkeypatch.setenv("FAKE_FABRIC_LEDGER", str(tmp_path / "ledger.json"))
    return SimpleNamespace(
        bin_dir=str(bin_dir),
        config_dir=str(config_dir),
        fixtures_dir=str(fixtures_dir),
        workspace=str(tmp_path / "workspace"),
    )

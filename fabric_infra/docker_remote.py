# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import re
import signal
import threading

import docker
import requests

from fabric_infra.runnable import Buffer, ExitError, Handle

from loguru import logger as LOG

# Errors raised when the container runtime is unreachable or misbehaves
RUNTIME_ERRORS = (docker.errors.DockerException, requests.exceptions.RequestException)

CHAINCODE_IMAGE_LABEL = "org.hyperledger.fabric.chaincode.id.name"


def container_name_filter(chaincode):
    return {"name": [f"{chaincode.name}-{chaincode.version}"]}


def image_label_filter(chaincode):
    return {"label": [f"{CHAINCODE_IMAGE_LABEL}={chaincode.name}"]}


class ContainerHandle(Handle):
    def __init__(self, name, container, ready_pattern=None):
        super().__init__(name)
        self.container = container
        self.ready_regex = re.compile(ready_pattern) if ready_pattern else None

    def _stream_logs(self, buffer):
        try:
            for line in self.container.logs(stream=True, follow=True):
                buffer.write(line)
                if self.ready_regex is not None and not self.is_ready():
                    if self.ready_regex.search(line.decode(errors="replace")):
                        self._mark_ready()
        except RUNTIME_ERRORS as e:
            LOG.debug(f"[{self.name}] log stream ended: {e}")
        finally:
            buffer.close()

    def _wait_for_exit(self):
        try:
            status = self.container.wait()
            code = status.get("StatusCode", 0)
            self._finish(ExitError(self.name, code) if code else None)
        except docker.errors.NotFound:
            self._finish(None)
        except RUNTIME_ERRORS as e:
            self._finish(e)

    def signal(self, sig=signal.SIGTERM):
        if self.is_exited():
            return
        try:
            self.container.kill(signal=int(sig))
        except docker.errors.NotFound:
            pass

    def stop(self):
        if self.container is None:
            return
        try:
            self.container.stop()
            LOG.info(f"Stopped container {self.name}")
        except docker.errors.NotFound:
            pass
        try:
            self.container.remove(force=True)
        except docker.errors.NotFound:
            pass
        except docker.errors.APIError as e:
            # Removal may already be in progress (auto_remove)
            LOG.debug(f"[{self.name}] remove: {e}")


class ContainerService:
    """
    Auxiliary service run in a container (e.g. ZooKeeper, Kafka). Ready once
    the container is started, or once `ready_pattern` appears in its logs.
    """

    def __init__(
        self,
        name,
        image,
        client=None,
        command=None,
        environment=None,
        network=None,
        ready_pattern=None,
        ports=None,
    ):
        self.name = name
        self.image = image
        self.client = client
        self.command = command
        self.environment = environment or {}
        self.network = network
        self.ready_pattern = ready_pattern
        self.ports = ports
        self._out = Buffer(f"{name}:logs")
        self.handle = None

    def buffer(self):
        return self._out

    def _pull_if_missing(self):
        try:
            self.client.images.get(self.image)
        except docker.errors.ImageNotFound:
            LOG.info(f"Pulling image {self.image}")
            self.client.images.pull(self.image)

    def _cleanup_existing(self):
        # Container may be left over from a previous interrupted run
        for c in self.client.containers.list(
            all=True, filters={"name": [self.name]}, ignore_removed=True
        ):
            try:
                c.remove(force=True)
                LOG.debug(f"Cleaned up container {c.name}")
            except docker.errors.NotFound:
                pass

    def start(self):
        if self.client is None:
            self.client = docker.from_env()
        try:
            self._pull_if_missing()
            self._cleanup_existing()
            container = self.client.containers.run(
                self.image,
                command=self.command,
                name=self.name,
                environment=self.environment,
                network=self.network,
                ports=self.ports,
                detach=True,
            )
        except RUNTIME_ERRORS as e:
            LOG.error(f"[{self.name}] failed to start container: {e}")
            handle = ContainerHandle(self.name, None)
            handle._finish(e)
            self._out.close()
            self.handle = handle
            return handle

        handle = ContainerHandle(self.name, container, self.ready_pattern)
        self.handle = handle
        LOG.debug(f"Started container {self.name} [{self.image}]")
        threading.Thread(
            target=handle._stream_logs, args=(self._out,), daemon=True
        ).start()
        threading.Thread(target=handle._wait_for_exit, daemon=True).start()
        if handle.ready_regex is None:
            handle._mark_ready()
        return handle


class ContainerSupervisor:
    """
    Thin wrapper around the container runtime. Listing never fails: if the
    runtime cannot be reached, an empty list is returned so that cleanup can
    carry on with the remaining resources.
    """

    def __init__(self, client=None):
        self._client = client
        self.created_networks = set()
        self.handles = []

    @property
    def client(self):
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def start(self, runnable):
        if getattr(runnable, "client", None) is None:
            runnable.client = self.client
        handle = runnable.start()
        self.handles.append(handle)
        return handle

    def list_containers(self, filters):
        try:
            return self.client.containers.list(
                all=True, filters=filters, ignore_removed=True
            )
        except RUNTIME_ERRORS as e:
            LOG.warning(f"Could not list containers matching {filters}: {e}")
            return []

    def remove_container(self, container_id, force=True):
        try:
            self.client.api.remove_container(container_id, force=force)
            LOG.info(f"Removed container {container_id}")
        except docker.errors.NotFound:
            LOG.debug(f"Container {container_id} already removed")

    def list_images(self, filters):
        try:
            return self.client.images.list(filters=filters)
        except RUNTIME_ERRORS as e:
            LOG.warning(f"Could not list images matching {filters}: {e}")
            return []

    def remove_image(self, image_id):
        try:
            self.client.images.remove(image_id)
            LOG.info(f"Removed image {image_id}")
        except docker.errors.ImageNotFound:
            LOG.debug(f"Image {image_id} already removed")

    def create_network(self, name):
        try:
            network = self.client.networks.get(name)
            LOG.debug(f"Using existing network {name}")
        except docker.errors.NotFound:
            LOG.debug(f"Creating network {name}")
            network = self.client.networks.create(name)
            self.created_networks.add(name)
        return network

    def remove_network(self, name):
        if name not in self.created_networks:
            LOG.debug(f"Network {name} was not created by this run, leaving it")
            return
        try:
            self.client.networks.get(name).remove()
            LOG.info(f"Removed network {name}")
        except docker.errors.NotFound:
            LOG.debug(f"Network {name} already removed")
        self.created_networks.discard(name)

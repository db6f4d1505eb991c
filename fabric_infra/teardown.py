# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
from fabric_infra.docker_remote import container_name_filter, image_label_filter

from loguru import logger as LOG


def _stop_stoppers(ctx):
    for stopper in ctx.world.local_stoppers:
        try:
            stopper.stop()
        except Exception:
            LOG.exception(f"Could not stop {stopper.name}")


def _remove_chaincode_containers(ctx):
    filters = container_name_filter(ctx.deployment.chaincode)
    for container in ctx.containers.list_containers(filters):
        try:
            ctx.containers.remove_container(container.id, force=True)
        except Exception:
            LOG.exception(f"Could not remove container {container.id}")


def _remove_chaincode_images(ctx):
    filters = image_label_filter(ctx.deployment.chaincode)
    for image in ctx.containers.list_images(filters):
        try:
            ctx.containers.remove_image(image.id)
        except Exception:
            LOG.exception(f"Could not remove image {image.id}")


def _stop_processes(ctx):
    ctx.processes.stop_all(ctx.world.local_processes)
    # One-shot commands that overran their timeout
    leftovers = [
        h for h in ctx.processes.running() if h not in ctx.world.local_processes
    ]
    ctx.processes.stop_all(leftovers)


def _remove_network(ctx):
    if ctx.world.network is not None:
        ctx.containers.remove_network(ctx.world.network)


TEARDOWN_STEPS = [
    ("stopping auxiliary services", _stop_stoppers),
    ("removing chaincode containers", _remove_chaincode_containers),
    ("removing chaincode images", _remove_chaincode_images),
    ("stopping orderers and peers", _stop_processes),
    ("removing network", _remove_network),
]


def teardown(ctx):
    """
    Release everything the scenario may have provisioned. Each step is
    attempted whatever happened before it, and failures are only logged.
    Safe to call more than once.
    """
    LOG.info("Tearing down network")
    failures = 0
    for description, step in TEARDOWN_STEPS:
        LOG.debug(description)
        try:
            step(ctx)
        except Exception:
            failures += 1
            LOG.exception(f"Teardown step failed: {description}")
    if failures:
        LOG.warning(f"Teardown completed with {failures} failed step(s)")
    else:
        LOG.success("Teardown complete")
    return failures

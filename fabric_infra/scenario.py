# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
from contextlib import contextmanager
from dataclasses import dataclass

from fabric_infra.docker_remote import ContainerSupervisor
from fabric_infra.remote import ProcessSupervisor
from fabric_infra.teardown import teardown
from fabric_infra.world import Deployment, World

from loguru import logger as LOG


class StepFailed(Exception):
    def __init__(self, step, cause):
        super().__init__(f'Step "{step}" failed: {cause}')
        self.step = step
        self.cause = cause


@dataclass
class Context:
    deployment: Deployment
    world: World
    processes: ProcessSupervisor
    containers: ContainerSupervisor


class Scenario:
    """
    Ordered list of named steps, run one after the other against the same
    Context. The first failing step stops the scenario.
    """

    def __init__(self, name):
        self.name = name
        self.steps = []

    def step(self, description):
        def decorator(func):
            self.steps.append((description, func))
            return func

        return decorator

    def run(self, ctx):
        LOG.opt(colors=True).info(f"<magenta>Scenario: {self.name}</>")
        for index, (description, func) in enumerate(self.steps, 1):
            LOG.opt(colors=True).info(
                f"<magenta>Step {index}/{len(self.steps)}: {description}</>"
            )
            try:
                func(ctx)
            except Exception as e:
                LOG.error(f'Step "{description}" failed: {e}')
                skipped = [d for d, _ in self.steps[index:]]
                if skipped:
                    LOG.warning(f"Skipping remaining steps: {skipped}")
                raise StepFailed(description, e) from e
        LOG.success(f"Scenario {self.name} passed")


@contextmanager
def provisioned(world, deployment, processes=None, containers=None):
    """
    Provision `world` for `deployment` and yield the Context to work with.
    Teardown always runs on exit. A setup failure is raised as StepFailed.
    """
    ctx = Context(
        deployment=deployment,
        world=world,
        processes=processes or ProcessSupervisor(),
        containers=containers or ContainerSupervisor(),
    )
    try:
        LOG.info("Setting up the network")
        try:
            world.setup(deployment, ctx.processes, ctx.containers)
        except Exception as e:
            LOG.error(f"Network setup failed: {e}")
            raise StepFailed("setting up the network", e) from e
        yield ctx
    finally:
        teardown(ctx)

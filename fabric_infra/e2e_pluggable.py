# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
import sys

import fabric_infra.e2e_args
import fabric_infra.plugins
from fabric_infra.command import execute
from fabric_infra.components import Components
from fabric_infra.eventually import equal, eventually, say
from fabric_infra.scenario import Scenario, StepFailed, provisioned
from fabric_infra.world import (
    Chaincode,
    Deployment,
    copy_peer_configs,
    generate_basic_config,
)

from loguru import logger as LOG

QUERY_A = '{"Args":["query","a"]}'
INVOKE_A_TO_B = '{"Args":["invoke","a","b","10"]}'


def make_deployment(chaincode_path):
    return Deployment(
        channel="testchannel",
        chaincode=Chaincode(
            name="mycc",
            version="0.0",
            path=chaincode_path,
            exec_path=os.environ.get("PATH"),
        ),
        init_args='{"Args":["init","a","100","b","200"]}',
        policy="OR ('Org1MSP.member','Org2MSP.member')",
        orderer="127.0.0.1:7050",
    )


def pluggable_scenario(args, endorsement, validation):
    s = Scenario("basic solo network with specified plugins")

    def run_admin(ctx, runner):
        execute(
            runner,
            supervisor=ctx.processes,
            ready_timeout=args.command_ready_timeout,
            timeout=args.command_timeout,
            poll_interval=args.poll_interval,
            check=True,
        )
        return runner

    def expect_output(stream, pattern):
        eventually(
            stream,
            say(pattern),
            timeout=args.eventually_timeout,
            poll_interval=args.poll_interval,
        )

    @s.step("checking plugin activations")
    def plugins_activated(ctx):
        peer_count = ctx.world.peer_count()
        for counter in (endorsement, validation):
            eventually(
                counter.count,
                equal(peer_count),
                timeout=args.eventually_timeout,
                poll_interval=args.poll_interval,
                description=f"{counter.env_var} activations to equal {peer_count}",
            )

    @s.step("querying the chaincode")
    def query(ctx):
        d = ctx.deployment
        runner = run_admin(
            ctx,
            ctx.world.admin_peer(log_level="debug").query_chaincode(
                d.chaincode.name, d.channel, QUERY_A
            ),
        )
        expect_output(runner.buffer(), r"\b100\b")

    @s.step("invoking the chaincode")
    def invoke(ctx):
        d = ctx.deployment
        runner = run_admin(
            ctx,
            ctx.world.admin_peer(log_level="debug").invoke_chaincode(
                d.chaincode.name, d.channel, INVOKE_A_TO_B, d.orderer
            ),
        )
        expect_output(runner.err(), "Chaincode invoke successful. result: status:200")

    @s.step("querying the chaincode again")
    def query_again(ctx):
        d = ctx.deployment
        runner = run_admin(
            ctx,
            ctx.world.admin_peer(log_level="debug").query_chaincode(
                d.chaincode.name, d.channel, QUERY_A
            ),
        )
        expect_output(runner.buffer(), r"\b90\b")

    @s.step("updating the channel")
    def update_channel(ctx):
        d = ctx.deployment
        org = ctx.world.peer_orgs[0]
        runner = run_admin(
            ctx,
            ctx.world.admin_peer().update_channel(
                os.path.join(ctx.world.rootpath, f"{org.name}_anchors_update_tx.pb"),
                d.channel,
                d.orderer,
            ),
        )
        expect_output(runner.err(), "Successfully submitted channel update")

    return s


def prepare(args, root, components):
    """
    Generate the network configuration with the plugin activation folders
    exported to every peer and the per-peer core.yaml fixtures in place.
    """
    LOG.info("Generating a basic config")
    world = generate_basic_config(
        args.consensus, args.orderer_count, args.peer_org_count, root, components
    )
    world.log_level = args.log_level
    world.start_timeout = args.start_timeout
    world.command_timeout = args.command_timeout

    endorsement = fabric_infra.plugins.endorsement_activations(root)
    validation = fabric_infra.plugins.validation_activations(root)
    for counter in (endorsement, validation):
        counter.reset()
        world.peer_env.update(counter.env())

    if args.compile_plugins:
        for plugin_type in ("endorsement", "validation"):
            fabric_infra.plugins.compile_plugin(plugin_type, args.fixtures_dir, go=args.go)
    copy_peer_configs(world.peer_orgs, root, args.fixtures_dir)
    return world


def run(args, processes=None, containers=None):
    root = os.path.join(args.workspace, args.label)
    components = Components(args.binary_dir, args.sample_config_dir)

    try:
        world = prepare(args, root, components)
    except Exception as e:
        LOG.error(f"Preparing the network configuration failed: {e}")
        raise StepFailed("preparing the network configuration", e) from e
    endorsement = fabric_infra.plugins.endorsement_activations(root)
    validation = fabric_infra.plugins.validation_activations(root)

    deployment = make_deployment(args.chaincode_path)
    scenario = pluggable_scenario(args, endorsement, validation)
    with provisioned(world, deployment, processes, containers) as ctx:
        scenario.run(ctx)


def main(argv=None):
    args = fabric_infra.e2e_args.cli_args(argv=argv)
    try:
        run(args)
    except StepFailed as e:
        LOG.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()

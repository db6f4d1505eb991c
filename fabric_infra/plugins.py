# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
import shutil

import fabric_infra.proc

from loguru import logger as LOG

ENDORSEMENT_PLUGIN_ENV_VAR = "ENDORSEMENT_PLUGIN_ENV_VAR"
VALIDATION_PLUGIN_ENV_VAR = "VALIDATION_PLUGIN_ENV_VAR"

PLUGIN_PACKAGE_PREFIX = "github.com/hyperledger/fabric/integration/pluggable/testdata/plugins"


class ActivationCounter:
    """
    Test plugins drop one file in the folder named by `env_var` each time a
    peer activates them, so counting files counts activations.
    """

    def __init__(self, folder, env_var):
        self.folder = folder
        self.env_var = env_var

    def reset(self):
        if os.path.isdir(self.folder):
            shutil.rmtree(self.folder)
        os.makedirs(self.folder)

    def env(self):
        return {self.env_var: self.folder}

    def count(self):
        try:
            return len(os.listdir(self.folder))
        except FileNotFoundError:
            return 0


def endorsement_activations(root):
    return ActivationCounter(
        os.path.join(root, "endorsement-activations"), ENDORSEMENT_PLUGIN_ENV_VAR
    )


def validation_activations(root):
    return ActivationCounter(
        os.path.join(root, "validation-activations"), VALIDATION_PLUGIN_ENV_VAR
    )


def compile_plugin(plugin_type, fixtures_dir, go="go"):
    """
    Build the plugin of the given type and return the path of the shared
    object.
    """
    plugin_file = os.path.join(fixtures_dir, "plugins", plugin_type, "plugin.so")
    result = fabric_infra.proc.ccall(
        go,
        "build",
        "-buildmode=plugin",
        "-o",
        plugin_file,
        f"{PLUGIN_PACKAGE_PREFIX}/{plugin_type}",
    )
    if not os.path.isfile(plugin_file):
        raise FileNotFoundError(
            f"Plugin {plugin_type} was not built at {plugin_file} (go exited with {result.returncode})"
        )
    LOG.info(f"Built {plugin_type} plugin: {plugin_file}")
    return plugin_file

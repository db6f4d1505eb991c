# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
import shutil

from loguru import logger as LOG


def mk(name, contents):
    LOG.info('echo "<{} bytes>" > {}'.format(len(contents), name))
    with open(name, "w", encoding="utf-8") as dst:
        dst.write(contents)


def default_workspace():
    return os.path.join(os.getcwd(), "workspace")


def build_bin_path(bin_name, binary_dir="."):
    return os.path.join(binary_dir, os.path.normpath(bin_name))


def create_dir(dir_path):
    # Remove directory if it already exists
    if os.path.isdir(dir_path):
        shutil.rmtree(dir_path)
    os.makedirs(dir_path)


def copy_file(src, dest, mode=0o775):
    with open(src, "rb") as f:
        data = f.read()
    with open(dest, "wb") as f:
        f.write(data)
    os.chmod(dest, mode)


def copy_if_missing(src, dest):
    if os.path.exists(dest):
        LOG.debug(f"Keeping existing {dest}")
        return False
    copy_file(src, dest, mode=0o644)
    return True

# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

from os import path
from setuptools import setup

PACKAGE_NAME = "fabric_infra"

path_here = path.abspath(path.dirname(__file__))

with open(path.join(path_here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

with open(path.join(path_here, "requirements.txt"), encoding="utf-8") as f:
    requirements = f.read().splitlines()

setup(
    name="fabric-e2e",
    version="0.1.0",
    description="End-to-end orchestration and verification harness for Fabric test networks",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="Apache License 2.0",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
    ],
    packages=[PACKAGE_NAME],
    package_data={PACKAGE_NAME: ["templates/*.jinja"]},
    python_requires=">=3.8",
    install_requires=requirements,
    extras_require={"test": ["pytest"]},
    entry_points={
        "console_scripts": [
            "fabric-e2e-pluggable = fabric_infra.e2e_pluggable:main",
        ]
    },
    include_package_data=True,
)

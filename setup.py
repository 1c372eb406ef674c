#!/usr/bin/env python

from setuptools import setup, find_namespace_packages

setup(
    name="p2plocate",
    version="1.0.0",
    description="Peer to peer service location on the local network over UDP broadcast",
    packages=find_namespace_packages("src", include=["p2plocate", "p2plocate.*"]),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=(
        "psutil>=5.9",
        "rich",
    ),
    extras_require={
        "test": ["pytest", "hypothesis", "mock"],
    },
    entry_points={
        "console_scripts": ["p2plocate-listen=p2plocate.cli:main"],
    },
)

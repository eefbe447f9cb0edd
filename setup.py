#!/usr/bin/env python3
"""
mcserver Setup Script
=====================
Allows installation of the mcserver package.

Usage:
    pip install -e .           # Development install
    pip install -e .[test]     # Development install with test tools
    pip install .              # Regular install
"""

from setuptools import setup, find_packages

setup(
    name="mcserver",
    version="1.0.0",
    description="Asyncio server for the memcached text protocol",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "mcserver=mcserver.server:main",
        ],
    },
)

#!/usr/bin/env python3
"""
CachedStore Setup Script
========================
Allows installation of the cachedstore package.

Usage:
    pip install -e .           # Development install
    pip install -e ".[test]"   # With test dependencies
    pip install .              # Regular install
"""

from setuptools import setup, find_packages

setup(
    name="cachedstore",
    version="1.0.0",
    description="Write-through key-value cache over a single-file SQLite store",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "cachedstore=cachedstore.cli:main",
        ],
    },
)

#!/usr/bin/env python
"""
Setup script for BatchQSim

Kept for build tools that expect a setup.py next to pyproject.toml.

All actual configuration is in pyproject.toml.
"""

from setuptools import setup

if __name__ == "__main__":
    setup()

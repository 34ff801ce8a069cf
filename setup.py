#!/usr/bin/env python3
"""
Setup script for the OBS WebSocket v5 client
"""

from setuptools import setup, find_packages

setup(
    name="obsws-client",
    version="0.1.0",
    description="asyncio client for the OBS WebSocket v5 protocol",
    packages=find_packages(include=["client", "client.*", "shared", "shared.*"]),
    install_requires=[
        "websockets>=15.0",
        "cryptography>=43.0.1",
        "typer>=0.12.3",
        "rich>=13.9.2",
        "PyYAML>=6.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.4.2",
            "pytest-asyncio>=1.2.0",
        ],
    },
    python_requires=">=3.9",
    entry_points={
        'console_scripts': [
            'obsws=client.obsws_cli:main',
        ],
    },
)

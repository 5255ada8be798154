#!/usr/bin/env python3
"""
Cassandra Console

Live console backend for Apache Cassandra: per-node JMX connection management,
metric sampling, caching, aggregation and a decoupled broadcast loop.
"""

from pathlib import Path
from setuptools import setup, find_packages

# Project metadata
PROJECT_NAME = "cassconsole"
VERSION = "0.1.0"
DESCRIPTION = "Node connection and metrics aggregation backend for a live Cassandra console"
LONG_DESCRIPTION = (Path(__file__).parent / "README.md").read_text(encoding="utf-8")
LONG_DESCRIPTION_CONTENT_TYPE = "text/markdown"
LICENSE = "MIT"
PYTHON_REQUIRES = ">=3.11"

# Core dependencies
INSTALL_REQUIRES = [
    "pyyaml>=6.0",
    "pydantic>=2.0",
    "requests>=2.31.0",
    "python-dotenv>=1.2.1,<2",
    "typer>=0.12.0",
    "rich>=13.0.0",
    "fastapi>=0.110.0",
    "uvicorn>=0.29.0",
    "prometheus-client>=0.20.0",
    "cassandra-driver>=3.29.0",
    "jmxquery==0.6.0",
]

# Development dependencies
EXTRAS_REQUIRE = {
    "dev": [
        "pytest>=7.0.0",
        "pytest-cov>=4.0.0",
        "pytest-asyncio>=0.21.0",
        "black>=23.0.0",
        "ruff>=0.1.0",
        "mypy>=1.0.0",
        "pre-commit>=3.0.0",
    ],
    "test": [
        "pytest>=7.0.0",
        "pytest-cov>=4.0.0",
        "pytest-asyncio>=0.21.0",
        "pytest-mock>=3.10.0",
        "coverage>=7.0.0",
        "httpx>=0.27.0",
    ],
}

# Include all extras in "all"
EXTRAS_REQUIRE["all"] = [
    dep for deps in EXTRAS_REQUIRE.values() for dep in deps
]

# Package classification
CLASSIFIERS = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "License :: OSI Approved :: MIT License",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: System :: Monitoring",
]

# Entry points (CLI commands)
ENTRY_POINTS = {
    "console_scripts": [
        "cassconsole=cassconsole.cli:main",
    ],
}

# Package discovery
PACKAGES = find_packages(where="src")
PACKAGE_DIR = {"": "src"}

# Include data files
PACKAGE_DATA = {
    "": ["*.yaml", "*.yml"],
}

# Setup configuration
setup(
    name=PROJECT_NAME,
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type=LONG_DESCRIPTION_CONTENT_TYPE,
    license=LICENSE,

    # Package configuration
    packages=PACKAGES,
    package_dir=PACKAGE_DIR,
    package_data=PACKAGE_DATA,
    include_package_data=True,

    # Dependencies
    python_requires=PYTHON_REQUIRES,
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,

    # Entry points
    entry_points=ENTRY_POINTS,

    # Classification
    classifiers=CLASSIFIERS,

    # Additional metadata
    keywords="cassandra jmx monitoring metrics console",

    # Build configuration
    zip_safe=False,
    platforms=["any"],
)

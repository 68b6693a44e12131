#!/usr/bin/env python3
"""Setup script for the topicfeed ingestion core."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="topicfeed",
    version="0.1.0",
    author="Topicfeed Team",
    author_email="team@example.com",
    description="Multi-tenant article admission, scoring and source-health core",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/topicfeed",
    packages=find_packages(include=["topicfeed", "topicfeed.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Information Technology",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
        "Topic :: Text Processing :: Linguistic",
    ],
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "aiohttp>=3.9",
        "structlog>=24.1",
        "aiosqlite>=0.20",
        "click>=8.1",
        "pyyaml>=6.0",
        "rich>=13.7.1",
    ],
    extras_require={
        "dev": [
            "pytest>=8.2",
            "pytest-asyncio>=0.23",
            "ruff>=0.4",
            "mypy>=1.10",
            "coverage>=7.5",
            "pytest-cov>=4.1",
        ]
    },
    entry_points={
        "console_scripts": [
            "topicfeed=topicfeed.orchestrator:cli",
            "check-sources=topicfeed.check_sources:main",
        ],
    },
    include_package_data=True,
)

"""
Setup script for activity-engine.

The activity engine builds and evolves the state of randomized, auto-graded
activities: documents, random selections among them and (optionally
shuffled) sequences. It serves two roles:

1. Library - Seeded attempt generation, credit propagation and state
   persistence for an embedding page (src.activity)
2. Command line - Inspect sources and drive attempts against a saved
   state file from the terminal

The 'activity' command is the entry point.
"""

from setuptools import find_namespace_packages, setup

setup(
    name="activity-engine",
    version="1.0.0",
    description="Deterministic attempt generation and credit tracking for randomized activities",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Activity Engine Developers",
    packages=find_namespace_packages(include=["src", "src.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "activity=src.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="activity assessment randomization variants credit cli education",
)

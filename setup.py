"""
Setup script for studyblocks.

StudyBlocks turns a learner's self-rated confidence per subject into a
multi-week plan of daily study blocks, and tracks XP, levels and streaks
as the blocks get done.

The 'studyblocks' command is the terminal entry point; the scheduling
core is importable on its own through ScheduleOrchestrator.
"""

from setuptools import find_packages, setup

setup(
    name="studyblocks",
    version="0.1.0",
    description="Confidence-weighted study block scheduling with XP progression",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["studyblocks", "studyblocks.*"]),
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
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
            "studyblocks=studyblocks.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
    ],
    keywords="study scheduling spaced-repetition cli education",
)

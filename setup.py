"""
forgedb - SQLite schema migrations and snapshot backups
Setup configuration for pip installation
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read long description from README
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_file.exists():
    requirements = [
        line.strip() for line in requirements_file.read_text().splitlines()
        if line.strip() and not line.startswith("#")
    ]

setup(
    name="forgedb",
    version="1.0.0",
    description="Versioned schema migrations, a migration ledger and snapshot backups for embedded SQLite",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["forgedb", "forgedb.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Database",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
        "Environment :: Console",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "ruff>=0.1.0",
            "mypy>=1.5.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "forgedb=forgedb.cli:main",
        ],
    },
    include_package_data=True,
    package_data={
        "forgedb": [
            "schema/*.sql",
            "schema/*.yaml",
            "schema/migrations/*.sql",
        ],
    },
    keywords="sqlite migrations schema backup wal",
    zip_safe=False,
)

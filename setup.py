"""
mssql-datasource - Resilient streaming SQL Server connector
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="mssql-datasource",
    version="0.1.0",
    author="mssql-datasource Contributors",
    description="SQL Server connector with retries, batched streaming and portable column types",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.10",
    install_requires=[
        # Core - Validation
        "pydantic>=2.12.0",

        # Core - Logging
        "loguru",

        # Core - Configuration
        "python-dotenv>=1.2.0",
        "pyyaml",

        # Core - Resilience
        "tenacity>=8.2.0",

        # Core - Utilities
        "tabulate>=0.9.0",

        # Database driver
        "aioodbc>=0.5.0",
        "pyodbc>=5.0.0",
    ],
    extras_require={
        # Development
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mssql-datasource=mssql_datasource.cli:main",
        ],
    },
)

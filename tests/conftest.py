"""
Pytest configuration and shared fixtures.

Fixtures provided:
- sql_login_options: Host option values for a SQL login datasource
- shared_options: Same, with the shared connection pool
- sample_columns: Native column metadata covering every evidence type
- sample_rows: Ten rows matching sample_columns
- fake_sleep: Records retry delays instead of sleeping
- driver_factory: Builds FakeDriver instances with the sample result set
"""

import sys
from pathlib import Path

import pytest

# Add src (package) and tests (fakes) to Python path for imports
tests_path = Path(__file__).parent
src_path = tests_path.parent / "src"
sys.path.insert(0, str(src_path))
sys.path.insert(0, str(tests_path))

from mssql_datasource.domain.types import NativeColumn
from fakes import FakeDriver, RecordingSleep


# ============================================================================
# Option Fixtures
# ============================================================================

@pytest.fixture
def sql_login_options():
    """Provides SQL login option values with fast retries."""
    return {
        "server": "sql.example.com",
        "database": "warehouse",
        "authenticationType": "default",
        "user": "reporter",
        "password": "s3cret",
        "retryOptions": {"maxRetries": 3, "baseDelay": 10, "maxDelay": 100},
    }


@pytest.fixture
def shared_options(sql_login_options):
    """Provides option values using one shared pool."""
    return {**sql_login_options, "connectionMode": "shared"}


# ============================================================================
# Result Set Fixtures
# ============================================================================

@pytest.fixture
def sample_columns():
    """Provides columns for each evidence type, plus one unmapped type."""
    return [
        NativeColumn(name="id", type_name="int"),
        NativeColumn(name="created_at", type_name="datetime2"),
        NativeColumn(name="customer", type_name="nvarchar"),
        NativeColumn(name="active", type_name="bit"),
        NativeColumn(name="row_guid", type_name="uniqueidentifier"),
    ]


@pytest.fixture
def sample_rows():
    """Provides ten rows matching sample_columns."""
    return [
        (i, f"2024-01-{i + 1:02d}", f"customer-{i}", i % 2 == 0, f"guid-{i}")
        for i in range(10)
    ]


# ============================================================================
# Driver Fixtures
# ============================================================================

@pytest.fixture
def fake_sleep():
    """Provides a sleep that records delays (seconds) without waiting."""
    return RecordingSleep()


@pytest.fixture
def driver_factory(sample_rows, sample_columns):
    """
    Provides a factory for FakeDriver with the sample result set.

    Keyword arguments override the FakeDriver defaults.
    """
    def _create(**kwargs):
        kwargs.setdefault("rows", sample_rows)
        kwargs.setdefault("columns", sample_columns)
        return FakeDriver(**kwargs)

    return _create

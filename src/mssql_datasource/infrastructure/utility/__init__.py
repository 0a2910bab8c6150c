from mssql_datasource.infrastructure.utility.pydantic_validation import (
    format_validation_error,
    get_validation_action,
)

__all__ = ["format_validation_error", "get_validation_action"]

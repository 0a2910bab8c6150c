# src/mssql_datasource/infrastructure/utility/pydantic_validation.py
"""
Pydantic validation helpers.

Turns a ValidationError raised while building a connection descriptor into
a short message that names the host-side option the user has to fix.
"""

from pydantic import ValidationError


def _resolve_field_name(loc: tuple) -> str:
    """Resolve a human-readable field name from a Pydantic error location.

    Discriminated unions put the tag in the location, e.g.
    ('authentication', 'default', 'password'); the last string wins.
    """
    for item in reversed(loc):
        if isinstance(item, str):
            return item
    return "unknown"


def get_validation_action(err: dict, field_name: str) -> str:
    """
    Get actionable message for a Pydantic validation error.

    Args:
        err: Single error dict from ValidationError.errors()
        field_name: Name of the field that failed validation

    Returns:
        Human-readable action to fix the error
    """
    err_type = err["type"]

    if err_type == "missing":
        return f"'{field_name}' is required"
    elif err_type in ("string_too_short", "too_short"):
        return f"'{field_name}' must not be empty"
    elif err_type.endswith("_type") or err_type.endswith("_parsing"):
        expected = err_type.replace("_type", "").replace("_parsing", "")
        return f"'{field_name}' must be a valid {expected}"
    elif err_type in (
        "greater_than",
        "less_than",
        "greater_than_equal",
        "less_than_equal",
    ):
        return f"'{field_name}' is out of range ({err['msg']})"
    elif err_type in ("union_tag_invalid", "literal_error", "enum"):
        return f"'{field_name}' has an unsupported value ({err['msg']})"
    else:
        return f"'{field_name}': {err['msg']}"


def format_validation_error(e: ValidationError, context: str, aliases: dict | None = None) -> str:
    """
    Format a Pydantic ValidationError into a one-line, actionable message.

    Args:
        e: The ValidationError exception
        context: Description of what was being validated (e.g. "connection configuration")
        aliases: Optional mapping from model field names to the option names
                 the host shows to its users

    Returns:
        Message like "Invalid connection configuration: 'password' is required; ..."
    """
    aliases = aliases or {}
    actions = []

    for err in e.errors():
        field_name = _resolve_field_name(err["loc"])
        field_name = aliases.get(field_name, field_name)
        actions.append(get_validation_action(err, field_name))

    return f"Invalid {context}: " + "; ".join(actions)

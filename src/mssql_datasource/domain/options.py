"""
Declarative option schema for the host's credential form.

Each option is {title, type, secret, required, default?, description?,
options?, children?, properties?}. `authenticationType.children` is keyed by
authentication variant and lists the fields that variant needs; the keys are
the ones build_connection_config() reads.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from mssql_datasource.domain.credentials import (
    AuthenticationType,
    ConnectionMode,
    DEFAULT_CONNECTION_TIMEOUT_MS,
    DEFAULT_ODBC_DRIVER,
    DEFAULT_PORT,
    DEFAULT_REQUEST_TIMEOUT_MS,
)


class SelectChoice(BaseModel):
    value: str
    label: str


class OptionField(BaseModel):
    """One field of the credential form"""
    title: str
    type: str = Field(..., description="string | number | boolean | select | object")
    secret: bool = False
    required: bool = False
    default: Optional[Any] = None
    description: Optional[str] = None
    options: Optional[List[SelectChoice]] = None
    children: Optional[Dict[str, Dict[str, "OptionField"]]] = None
    properties: Optional[Dict[str, "OptionField"]] = None


OptionField.model_rebuild()


def _string(title: str, secret: bool = False, required: bool = True) -> OptionField:
    return OptionField(title=title, type="string", secret=secret, required=required)


_AUTHENTICATION_CHILDREN: Dict[str, Dict[str, OptionField]] = {
    AuthenticationType.SQL_LOGIN.value: {
        "user": _string("Username"),
        "password": _string("Password", secret=True),
    },
    AuthenticationType.AAD_DEFAULT.value: {},
    AuthenticationType.AAD_ACCESS_TOKEN.value: {
        "attoken": _string("Access Token", secret=True),
    },
    AuthenticationType.AAD_PASSWORD.value: {
        "pwuname": _string("User"),
        "pwpword": _string("Password", secret=True),
        "pwclientid": _string("Client ID", secret=True),
        "pwtenantid": _string("Tenant ID", secret=True),
    },
    AuthenticationType.AAD_SERVICE_PRINCIPAL_SECRET.value: {
        "spclientid": _string("Client ID", secret=True),
        "spclientsecret": _string("Client Secret", secret=True),
        "sptenantid": _string("Tenant ID", secret=True),
    },
}


def _retry_properties(description: str) -> OptionField:
    return OptionField(
        title=description,
        type="object",
        required=False,
        description=f"Options for {description.lower()}",
        properties={
            "maxRetries": OptionField(
                title="Maximum Retries", type="number", default=3,
                description="Maximum number of attempts",
            ),
            "baseDelay": OptionField(
                title="Base Delay", type="number", default=1000,
                description="Base delay between retries in ms",
            ),
            "maxDelay": OptionField(
                title="Maximum Delay", type="number", default=10000,
                description="Maximum delay between retries in ms",
            ),
        },
    )


OPTIONS: Dict[str, OptionField] = {
    "authenticationType": OptionField(
        title="Authentication type",
        type="select",
        required=True,
        default=AuthenticationType.SQL_LOGIN.value,
        options=[
            SelectChoice(value=AuthenticationType.SQL_LOGIN.value, label="SQL Login"),
            SelectChoice(value=AuthenticationType.AAD_DEFAULT.value, label="DefaultAzureCredential"),
            SelectChoice(value=AuthenticationType.AAD_ACCESS_TOKEN.value, label="Access token"),
            SelectChoice(value=AuthenticationType.AAD_PASSWORD.value, label="Entra ID User/Password"),
            SelectChoice(value=AuthenticationType.AAD_SERVICE_PRINCIPAL_SECRET.value, label="Service Principal Secret"),
        ],
        children=_AUTHENTICATION_CHILDREN,
    ),
    "server": _string("Host"),
    "database": _string("Database"),
    "connection_port": OptionField(
        title="Port", type="number", default=DEFAULT_PORT,
    ),
    "trust_server_certificate": OptionField(
        title="Trust Server Certificate", type="boolean", default=False,
        description="Should be true for local dev / self-signed certificates",
    ),
    "encrypt": OptionField(
        title="Encrypt", type="boolean", default=True,
        description="Should be true when using azure",
    ),
    "connection_timeout": OptionField(
        title="Connection Timeout", type="number", default=DEFAULT_CONNECTION_TIMEOUT_MS,
        description="Connection timeout in ms",
    ),
    "request_timeout": OptionField(
        title="Request Timeout", type="number", default=DEFAULT_REQUEST_TIMEOUT_MS,
        description="Request timeout in ms",
    ),
    "connectionMode": OptionField(
        title="Connection Mode",
        type="select",
        default=ConnectionMode.PER_QUERY.value,
        description="Open a connection per query, or share one pool across queries",
        options=[
            SelectChoice(value=ConnectionMode.PER_QUERY.value, label="Per query"),
            SelectChoice(value=ConnectionMode.SHARED.value, label="Shared pool"),
        ],
    ),
    "odbcDriver": OptionField(
        title="ODBC Driver", type="string", default=DEFAULT_ODBC_DRIVER,
        description="Name of the installed SQL Server ODBC driver",
    ),
    "retryOptions": _retry_properties("Retry Options"),
    "connectionRetryOptions": _retry_properties("Connection Retry Options"),
}


def get_options_schema() -> Dict[str, Any]:
    """Return the option schema as plain dicts, without unset keys."""
    return {name: field.model_dump(exclude_none=True) for name, field in OPTIONS.items()}


def secret_option_keys() -> List[str]:
    """Keys whose values must never be logged or echoed back."""
    keys = [name for name, field in OPTIONS.items() if field.secret]
    for fields in _AUTHENTICATION_CHILDREN.values():
        keys.extend(name for name, field in fields.items() if field.secret)
    return sorted(set(keys))

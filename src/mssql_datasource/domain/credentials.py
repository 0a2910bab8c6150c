"""
Connection descriptor and credential builder.

The host hands over a flat, untyped mapping of option values (the same keys
its credential form uses, see domain/options.py). build_connection_config()
validates it into an immutable ConnectionConfig whose `authentication`
field is exactly one variant of a closed, discriminated union.
"""

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from mssql_datasource.domain.errors import ConfigurationError
from mssql_datasource.infrastructure.utility.pydantic_validation import format_validation_error


DEFAULT_PORT = 1433
DEFAULT_CONNECTION_TIMEOUT_MS = 30000
DEFAULT_REQUEST_TIMEOUT_MS = 30000
DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


def _coerce_bool(value: Any) -> Any:
    """Accept real booleans and the literal strings 'true'/'false'."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return value


BoolLike = Annotated[bool, BeforeValidator(_coerce_bool)]
NonEmptyStr = Annotated[str, Field(min_length=1)]
SecretText = Annotated[str, Field(min_length=1, repr=False)]


class AuthenticationType(str, Enum):
    """Supported authentication modes (values are the host option values)"""
    SQL_LOGIN = "default"
    AAD_DEFAULT = "azure-active-directory-default"
    AAD_ACCESS_TOKEN = "azure-active-directory-access-token"
    AAD_PASSWORD = "azure-active-directory-password"
    AAD_SERVICE_PRINCIPAL_SECRET = "azure-active-directory-service-principal-secret"


class ConnectionMode(str, Enum):
    """How connections are obtained for each query"""
    PER_QUERY = "per_query"  # Fresh connection per query, closed afterwards
    SHARED = "shared"        # One lazily created pool per datasource instance


class RetryOptions(BaseModel):
    """Retry policy limits. Delays are milliseconds."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_retries: int = Field(default=3, ge=0, alias="maxRetries", description="Maximum number of attempts")
    base_delay: float = Field(default=1000, ge=0, alias="baseDelay", description="Base delay between retries in ms")
    max_delay: float = Field(default=10000, ge=0, alias="maxDelay", description="Maximum delay between retries in ms")


class TlsOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    trust_server_certificate: BoolLike = False
    encrypt: BoolLike = True


class SqlLoginAuthentication(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["default"] = "default"
    user: NonEmptyStr
    password: SecretText


class AadDefaultAuthentication(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["azure-active-directory-default"] = "azure-active-directory-default"


class AadAccessTokenAuthentication(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["azure-active-directory-access-token"] = "azure-active-directory-access-token"
    token: SecretText


class AadPasswordAuthentication(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["azure-active-directory-password"] = "azure-active-directory-password"
    user_name: NonEmptyStr
    password: SecretText
    client_id: SecretText
    tenant_id: SecretText


class AadServicePrincipalSecretAuthentication(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["azure-active-directory-service-principal-secret"] = "azure-active-directory-service-principal-secret"
    client_id: SecretText
    client_secret: SecretText
    tenant_id: SecretText


AuthenticationVariant = Annotated[
    Union[
        SqlLoginAuthentication,
        AadDefaultAuthentication,
        AadAccessTokenAuthentication,
        AadPasswordAuthentication,
        AadServicePrincipalSecretAuthentication,
    ],
    Field(discriminator="type"),
]


class ConnectionConfig(BaseModel):
    """
    Immutable, validated connection descriptor.

    Timeouts are milliseconds, as in the host options.
    """
    model_config = ConfigDict(frozen=True)

    server: NonEmptyStr
    database: NonEmptyStr
    port: int = Field(default=DEFAULT_PORT, gt=0, le=65535)
    connection_timeout: int = Field(default=DEFAULT_CONNECTION_TIMEOUT_MS, ge=0)
    request_timeout: int = Field(default=DEFAULT_REQUEST_TIMEOUT_MS, ge=0)
    options: TlsOptions = Field(default_factory=TlsOptions)
    authentication: AuthenticationVariant

    retry_options: RetryOptions = Field(default_factory=RetryOptions)
    connection_retry_options: Optional[RetryOptions] = None
    connection_mode: ConnectionMode = ConnectionMode.PER_QUERY
    odbc_driver: NonEmptyStr = DEFAULT_ODBC_DRIVER

    @property
    def authentication_type(self) -> AuthenticationType:
        return AuthenticationType(self.authentication.type)

    @property
    def effective_connection_retry_options(self) -> RetryOptions:
        """Connection retries fall back to the query retry options."""
        return self.connection_retry_options or self.retry_options


# Host option key for every authentication field, per variant
AUTHENTICATION_FIELDS: Dict[AuthenticationType, Dict[str, str]] = {
    AuthenticationType.SQL_LOGIN: {
        "user": "user",
        "password": "password",
    },
    AuthenticationType.AAD_DEFAULT: {},
    AuthenticationType.AAD_ACCESS_TOKEN: {
        "token": "attoken",
    },
    AuthenticationType.AAD_PASSWORD: {
        "user_name": "pwuname",
        "password": "pwpword",
        "client_id": "pwclientid",
        "tenant_id": "pwtenantid",
    },
    AuthenticationType.AAD_SERVICE_PRINCIPAL_SECRET: {
        "client_id": "spclientid",
        "client_secret": "spclientsecret",
        "tenant_id": "sptenantid",
    },
}

# Host option key for every top-level field
CONNECTION_FIELDS = {
    "server": "server",
    "database": "database",
    "port": "connection_port",
    "connection_timeout": "connection_timeout",
    "request_timeout": "request_timeout",
    "trust_server_certificate": "trust_server_certificate",
    "encrypt": "encrypt",
    "retry_options": "retryOptions",
    "connection_retry_options": "connectionRetryOptions",
    "connection_mode": "connectionMode",
    "odbc_driver": "odbcDriver",
}


def _resolve_authentication_type(database: Mapping[str, Any]) -> AuthenticationType:
    raw = database.get("authenticationType")
    supported = ", ".join(t.value for t in AuthenticationType)
    if raw is None or raw == "":
        raise ConfigurationError(
            f"authenticationType is required. Supported values: {supported}"
        )
    try:
        return AuthenticationType(raw)
    except ValueError:
        raise ConfigurationError(
            f"Unsupported authenticationType '{raw}'. Supported values: {supported}"
        )


def _present(database: Mapping[str, Any], key: str) -> bool:
    return database.get(key) is not None


def build_connection_config(database: Any) -> ConnectionConfig:
    """
    Build a ConnectionConfig from the host's option values.

    Args:
        database: Flat option mapping (server, database, connection_port,
                  authenticationType, user/password or the variant fields...),
                  or an already built ConnectionConfig.

    Returns:
        ConnectionConfig with exactly one authentication variant.

    Raises:
        ConfigurationError: If the input is not a mapping, the authentication
            type is missing or unknown, or a required field is missing/invalid.
    """
    if isinstance(database, ConnectionConfig):
        return database

    if database is None or not isinstance(database, Mapping):
        raise ConfigurationError("Database configuration is required and must be an object")

    auth_type = _resolve_authentication_type(database)
    auth_fields = AUTHENTICATION_FIELDS[auth_type]

    authentication: Dict[str, Any] = {"type": auth_type.value}
    for field_name, option_key in auth_fields.items():
        if _present(database, option_key):
            authentication[field_name] = database[option_key]

    payload: Dict[str, Any] = {
        "authentication": authentication,
        "options": {},
    }

    server = database.get("server") or database.get("host")
    if server is not None:
        payload["server"] = server
    if _present(database, "database"):
        payload["database"] = database["database"]

    for field_name in ("trust_server_certificate", "encrypt"):
        if _present(database, field_name):
            payload["options"][field_name] = database[field_name]

    for field_name, option_key in CONNECTION_FIELDS.items():
        if field_name in ("server", "database", "trust_server_certificate", "encrypt"):
            continue
        if _present(database, option_key):
            payload[field_name] = database[option_key]

    aliases = {**CONNECTION_FIELDS, **auth_fields}

    try:
        return ConnectionConfig.model_validate(payload)
    except ValidationError as e:
        raise ConfigurationError(format_validation_error(e, "connection configuration", aliases)) from e

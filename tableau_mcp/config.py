import json
import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional, Tuple
from urllib.parse import urlparse

from dotenv import load_dotenv

from .errors import ConfigurationError
from .tools.credentials import (
    DEFAULT_JWT_SCOPES,
    ConnectedApp,
    Credential,
    DelegatedOAuth,
    PersonalAccessToken,
)

load_dotenv()

AUTH_TYPES = ("pat", "direct-trust", "oauth")
TRANSPORTS = ("stdio", "http")
DEFAULT_PORT = 3927


@dataclass
class Config:
    """Configuration for the Tableau MCP server."""
    server: str = ""
    site_name: str = ""
    api_version: str = "3.24"
    auth: str = "pat"

    # Personal access token
    pat_name: str = ""
    pat_value: str = ""

    # Connected app (direct trust)
    jwt_sub_claim: str = ""
    connected_app_client_id: str = ""
    connected_app_secret_id: str = ""
    connected_app_secret_value: str = ""
    jwt_additional_payload: Dict[str, object] = field(default_factory=dict)
    jwt_scopes: FrozenSet[str] = DEFAULT_JWT_SCOPES

    # Delegated OAuth
    oauth_access_token: str = ""

    transport: str = "stdio"
    http_port: int = DEFAULT_PORT
    log_level: str = "INFO"
    disable_log_masking: bool = False
    request_timeout_seconds: float = 30.0

    include_tools: Tuple[str, ...] = ()
    exclude_tools: Tuple[str, ...] = ()
    max_result_limit: Optional[int] = None
    disable_metadata_api_requests: bool = False

    # Bounded context: None means "no restriction"
    include_project_ids: Optional[FrozenSet[str]] = None
    include_datasource_ids: Optional[FrozenSet[str]] = None
    include_workbook_ids: Optional[FrozenSet[str]] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Build and validate a ``Config`` from environment variables.

        Parameters
        ----------
        environ:
            Mapping to read instead of ``os.environ`` (used by tests).

        Raises
        ------
        ConfigurationError
            If a required variable is missing or a value is malformed.
        """
        env = _cleanse(os.environ if environ is None else environ)

        server = env.get("SERVER", "").strip()
        if not server:
            raise ConfigurationError("The environment variable SERVER is not set")
        _validate_server(server)

        auth = env.get("AUTH", "").strip() or "pat"
        if auth not in AUTH_TYPES:
            raise ConfigurationError(
                f"The environment variable AUTH must be one of {', '.join(AUTH_TYPES)}: {auth}"
            )

        if auth == "pat":
            _require(env, "PAT_NAME", "PAT_VALUE")
        elif auth == "direct-trust":
            _require(
                env,
                "JWT_SUB_CLAIM",
                "CONNECTED_APP_CLIENT_ID",
                "CONNECTED_APP_SECRET_ID",
                "CONNECTED_APP_SECRET_VALUE",
            )
        else:
            _require(env, "OAUTH_ACCESS_TOKEN")

        include_tools = _split(env.get("INCLUDE_TOOLS", ""))
        exclude_tools = _split(env.get("EXCLUDE_TOOLS", ""))
        if include_tools and exclude_tools:
            raise ConfigurationError("Cannot include and exclude tools simultaneously")

        transport = env.get("TRANSPORT", "").strip() or "stdio"
        if transport not in TRANSPORTS:
            transport = "stdio"

        jwt_scopes = _split(env.get("JWT_SCOPES", ""))

        return cls(
            server=server.rstrip("/"),
            site_name=env.get("SITE_NAME", "").strip(),
            api_version=env.get("API_VERSION", "").strip() or "3.24",
            auth=auth,
            pat_name=env.get("PAT_NAME", ""),
            pat_value=env.get("PAT_VALUE", ""),
            jwt_sub_claim=env.get("JWT_SUB_CLAIM", ""),
            connected_app_client_id=env.get("CONNECTED_APP_CLIENT_ID", ""),
            connected_app_secret_id=env.get("CONNECTED_APP_SECRET_ID", ""),
            connected_app_secret_value=env.get("CONNECTED_APP_SECRET_VALUE", ""),
            jwt_additional_payload=_parse_payload(env.get("JWT_ADDITIONAL_PAYLOAD", "")),
            jwt_scopes=frozenset(jwt_scopes) if jwt_scopes else DEFAULT_JWT_SCOPES,
            oauth_access_token=env.get("OAUTH_ACCESS_TOKEN", ""),
            transport=transport,
            http_port=_parse_int(env.get("PORT", ""), DEFAULT_PORT),
            log_level=(env.get("LOG_LEVEL", "").strip() or "INFO").upper(),
            disable_log_masking=_parse_bool(env.get("DISABLE_LOG_MASKING", "")),
            request_timeout_seconds=float(_parse_int(env.get("REQUEST_TIMEOUT_SECONDS", ""), 30)),
            include_tools=include_tools,
            exclude_tools=exclude_tools,
            max_result_limit=_parse_limit(env.get("MAX_RESULT_LIMIT", "")),
            disable_metadata_api_requests=_parse_bool(env.get("DISABLE_METADATA_API_REQUESTS", "")),
            include_project_ids=_parse_id_set(env, "INCLUDE_PROJECT_IDS"),
            include_datasource_ids=_parse_id_set(env, "INCLUDE_DATASOURCE_IDS"),
            include_workbook_ids=_parse_id_set(env, "INCLUDE_WORKBOOK_IDS"),
        )

    def credential(self) -> Credential:
        """Resolve the single active credential variant for this process."""
        if self.auth == "pat":
            return PersonalAccessToken(name=self.pat_name, value=self.pat_value)
        if self.auth == "direct-trust":
            return ConnectedApp(
                client_id=self.connected_app_client_id,
                secret_id=self.connected_app_secret_id,
                secret_value=self.connected_app_secret_value,
                subject_claim=self.jwt_sub_claim,
                scopes=self.jwt_scopes,
                additional_claims=dict(self.jwt_additional_payload),
            )
        if self.auth == "oauth":
            return DelegatedOAuth(token=self.oauth_access_token)
        raise ConfigurationError(f"Unsupported auth type: {self.auth}")


def _cleanse(environ: Mapping[str, str]) -> Dict[str, str]:
    # Unfilled MCP bundle user_config templates arrive verbatim.
    return {
        key: ("" if value.startswith("${user_config.") else value)
        for key, value in environ.items()
        if value is not None
    }


def _require(env: Mapping[str, str], *names: str) -> None:
    for name in names:
        if not env.get(name):
            raise ConfigurationError(f"The environment variable {name} is not set")


def _validate_server(server: str) -> None:
    if not server.startswith("https://"):
        raise ConfigurationError(f'The environment variable SERVER must start with "https://": {server}')
    parsed = urlparse(server)
    if not parsed.netloc:
        raise ConfigurationError(f"The environment variable SERVER is not a valid URL: {server}")


def _split(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_id_set(env: Mapping[str, str], name: str) -> Optional[FrozenSet[str]]:
    if name not in env:
        return None
    ids = frozenset(_split(env[name]))
    if not ids:
        raise ConfigurationError(
            f"When set, the environment variable {name} must have at least one value"
        )
    return ids


def _parse_payload(value: str) -> Dict[str, object]:
    if not value.strip():
        return {}
    try:
        payload = json.loads(value)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"JWT_ADDITIONAL_PAYLOAD is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ConfigurationError("JWT_ADDITIONAL_PAYLOAD must be a JSON object")
    return payload


def _parse_bool(value: str) -> bool:
    return value.strip().lower() == "true"


def _parse_int(value: str, default: int) -> int:
    try:
        return int(value)
    except ValueError:
        return default


def _parse_limit(value: str) -> Optional[int]:
    limit = _parse_int(value, 0)
    return limit if limit > 0 else None

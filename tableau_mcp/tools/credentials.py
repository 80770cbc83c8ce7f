"""
tableau_mcp/tools/credentials.py
================================

The three ways this server can authenticate, as a closed union of frozen
dataclasses.

Exactly one variant is active per process.  ``Config.credential()`` picks it
once at startup; ``SessionManager`` dispatches on the concrete type.

- ``PersonalAccessToken``: a static PAT name/secret pair.
- ``ConnectedApp``: a registered connected app; every sign-in signs a
  fresh short-lived JWT (see ``token_signer.py``).
- ``DelegatedOAuth``: an access token issued to the user by an OAuth
  flow, used as-is.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Union

# Scopes requested by connected-app assertions: the union of what the tools need.
DEFAULT_JWT_SCOPES: FrozenSet[str] = frozenset({
    "tableau:content:read",
    "tableau:viz_data_service:read",
    "tableau:views:download",
    "tableau:insight_definitions_metrics:read",
    "tableau:insight_metrics:read",
    "tableau:metric_subscriptions:read",
    "tableau:insights:read",
    "tableau:users:read",
    "tableau:groups:read",
})


@dataclass(frozen=True)
class PersonalAccessToken:
    name: str
    value: str = field(repr=False)


@dataclass(frozen=True)
class ConnectedApp:
    client_id: str
    secret_id: str
    secret_value: str = field(repr=False)
    subject_claim: str = ""
    scopes: FrozenSet[str] = DEFAULT_JWT_SCOPES
    additional_claims: Dict[str, object] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class DelegatedOAuth:
    token: str = field(repr=False)


Credential = Union[PersonalAccessToken, ConnectedApp, DelegatedOAuth]

"""
tableau_mcp/tools/token_signer.py
=================================

Builds and signs the short-lived JWT a connected app presents instead of a
password.

Token Shape
-----------
Header::

    {"alg": "HS256", "typ": "JWT", "kid": <secret id>}

Payload::

    {"jti": <uuid4>, "iss": <client id>, "aud": "tableau", "sub": <username>,
     "scp": [<scopes>], "iat": now - 5s, "exp": now + 5min, ...additional}

``iat`` is backdated five seconds to tolerate clock skew between this host and
the server.  The ``kid`` lets the server pick the matching secret when a
connected app has more than one.

Signing is pure CPU work, so ``sign`` is a plain function; the session layer
calls it on the event loop.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

import jwt

from ..errors import SigningError
from .credentials import ConnectedApp

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
AUDIENCE = "tableau"
CLOCK_SKEW_SECONDS = 5
LIFETIME_SECONDS = 5 * 60


@dataclass(frozen=True)
class SignedAssertion:
    """A signed connected-app assertion plus its decoded parts."""
    header: Dict[str, Any]
    payload: Dict[str, Any]
    token: str

    def __str__(self) -> str:
        return self.token


def sign(
    username: str,
    connected_app: ConnectedApp,
    scopes: Iterable[str],
    additional_payload: Optional[Mapping[str, Any]] = None,
    *,
    clock: Callable[[], float] = time.time,
    id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
) -> SignedAssertion:
    """Sign a fresh assertion for ``username``.

    Parameters
    ----------
    username:
        The ``sub`` claim: the user the session will act as.
    connected_app:
        Client id, secret id and secret value of the connected app.
    scopes:
        Scopes for the ``scp`` claim.  An empty collection is accepted but
        grants nothing.
    additional_payload:
        Extra claims merged last, so they can override the standard ones.

    Raises
    ------
    SigningError
        If the secret is empty or PyJWT refuses to sign with it.
    """
    if not connected_app.secret_value:
        raise SigningError("The connected app secret value is empty")

    now = int(clock())
    header = {"alg": ALGORITHM, "typ": "JWT", "kid": connected_app.secret_id}
    payload: Dict[str, Any] = {
        "jti": str(id_factory()),
        "iss": connected_app.client_id,
        "aud": AUDIENCE,
        "sub": username,
        "scp": sorted(scopes),
        "iat": now - CLOCK_SKEW_SECONDS,
        "exp": now + LIFETIME_SECONDS,
    }
    payload.update(additional_payload or {})

    try:
        token = jwt.encode(
            payload,
            connected_app.secret_value,
            algorithm=ALGORITHM,
            headers={"kid": connected_app.secret_id, "typ": "JWT"},
        )
    except (jwt.PyJWTError, TypeError, ValueError) as e:
        raise SigningError(f"Could not sign the connected app assertion: {e}") from e

    logger.debug("Signed assertion jti=%s for sub=%s", payload["jti"], username)
    return SignedAssertion(header=header, payload=payload, token=token)

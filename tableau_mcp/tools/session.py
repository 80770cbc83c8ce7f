"""
tableau_mcp/tools/session.py
============================

Owns the one authenticated session this process holds against the server.

State Machine
-------------
::

    NO_SESSION ──ensure_session()──► SIGNING_IN ──ok──► ACTIVE
        ▲                                │                 │
        └──────────── failure ◄──────────┘                 │
        └───────── sign_out() / 401 (expired) ◄────────────┘

Single-flight Sign-in
---------------------
The in-flight sign-in is an ``asyncio.Task`` stored on the manager.  Every
caller that arrives while it runs awaits that same task through
``asyncio.shield``, so N concurrent callers cause one sign-in request, and a
caller that gives up (is cancelled) does not cancel the sign-in for the rest.

Retry Policy
------------
``execute`` retries exactly once after a 401: it drops the session, signs in
again and replays the request.  A second 401 is surfaced as
``AuthenticationError``.  There is no backoff: persistent rejection is fatal.

Timeouts belong to the ``httpx.AsyncClient`` this manager wraps; nothing here
adds its own.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

import httpx

from ..errors import ApiError, AuthenticationError
from . import token_signer
from .credentials import ConnectedApp, Credential, DelegatedOAuth, PersonalAccessToken

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-Tableau-Auth"
USER_AGENT = "tableau-mcp-python"
MASK = "<masked>"

_SECRET_FIELDS = re.compile(r'("(?:personalAccessTokenSecret|jwt|token)"\s*:\s*")[^"]*(")')


class SessionState(Enum):
    NO_SESSION = "no_session"
    SIGNING_IN = "signing_in"
    ACTIVE = "active"


@dataclass(frozen=True)
class Session:
    """One authenticated connection to a site."""
    site_id: str
    site_name: str
    user_id: str
    user_name: Optional[str]
    server_version: Optional[str]
    created_at: datetime
    token: str = field(repr=False)


PathSpec = Union[str, Callable[[Session], str]]


def mask_secrets(text: str) -> str:
    """Blank out token and secret values in a JSON request/response body."""
    return _SECRET_FIELDS.sub(rf"\1{MASK}\2", text)


class SessionManager:
    """Signs in lazily, keeps the session alive across 401s and signs out.

    Parameters
    ----------
    server:
        Base URL of Tableau Server / Cloud, e.g. ``https://10ax.online.tableau.com``.
    credential:
        The active credential variant.
    site_name:
        Content URL of the site to sign in to (empty for the default site).
    api_version:
        REST API version used in ``/api/{version}/...`` paths.
    timeout:
        Transport timeout in seconds for every request.
    mask_secrets:
        Mask auth headers and secrets in request/response logs.
    transport:
        Optional ``httpx`` transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        server: str,
        credential: Credential,
        *,
        site_name: str = "",
        api_version: str = "3.24",
        timeout: float = 30.0,
        mask_secrets: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._credential = credential
        self._site_name = site_name
        self._api_version = api_version
        self._mask = mask_secrets
        self._client = httpx.AsyncClient(
            base_url=server,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            event_hooks={"request": [self._log_request], "response": [self._log_response]},
        )
        self._state = SessionState.NO_SESSION
        self._session: Optional[Session] = None
        self._sign_in_task: Optional["asyncio.Task[Session]"] = None
        self._server_version: Optional[str] = None
        # Why the last session ended: "signed_out", "expired" or "sign_in_failed".
        self.last_reset_reason: Optional[str] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def rest_path(self, path: str) -> str:
        """Prefix ``path`` with the versioned REST API root."""
        return f"/api/{self._api_version}/{path.lstrip('/')}"

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def ensure_session(self) -> Session:
        """Return the active session, signing in (once) if there is none.

        Raises
        ------
        AuthenticationError
            If the server refuses the credentials.
        SigningError
            If the connected-app assertion cannot be signed.
        """
        if self._state is SessionState.ACTIVE and self._session is not None:
            return self._session

        if self._sign_in_task is None:
            logger.info("Signing in to site '%s'", self._site_name or "(default)")
            self._state = SessionState.SIGNING_IN
            self._sign_in_task = asyncio.create_task(self._sign_in())
            self._sign_in_task.add_done_callback(_retrieve_exception)

        return await asyncio.shield(self._sign_in_task)

    async def sign_out(self) -> None:
        """End the active session.  A no-op when there is none.

        The state always moves to ``NO_SESSION``; a failing sign-out request is
        only logged.
        """
        session = self._session
        if self._state is not SessionState.ACTIVE or session is None:
            return

        self._session = None
        self._state = SessionState.NO_SESSION
        self.last_reset_reason = "signed_out"

        if isinstance(self._credential, DelegatedOAuth):
            # The delegated token belongs to the user; signing out would revoke it.
            logger.info("Dropped delegated session for site %s", session.site_id)
            return

        try:
            response = await self._client.post(
                self.rest_path("auth/signout"), headers={AUTH_HEADER: session.token}
            )
            if response.is_error:
                logger.warning("Sign-out returned HTTP %d", response.status_code)
            else:
                logger.info("Signed out of site %s", session.site_id)
        except httpx.HTTPError as e:
            logger.warning("Sign-out request failed: %s", e)

    async def close(self) -> None:
        """Sign out and release the HTTP connection pool."""
        await self.sign_out()
        await self._client.aclose()

    # ── Requests ──────────────────────────────────────────────────────────────

    async def execute(
        self,
        method: str,
        path: PathSpec,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """Send an authenticated request, re-authenticating once on 401.

        Parameters
        ----------
        method:
            HTTP method.
        path:
            Path relative to the server, or a callable building it from the
            session (for paths that embed the site id).
        params:
            Query parameters; ``None`` values are dropped.

        Raises
        ------
        AuthenticationError
            If sign-in fails or the retried request is also unauthorized.
        ApiError
            For any other non-2xx response.
        """
        session = await self.ensure_session()
        response = await self._send(session, method, path, params, json, headers)
        if response.status_code != 401:
            return _check(response)

        logger.info("Session rejected with 401; re-authenticating once")
        self._invalidate(session)
        session = await self.ensure_session()
        response = await self._send(session, method, path, params, json, headers)
        if response.status_code == 401:
            self._invalidate(session)
            raise AuthenticationError(
                "The server rejected the request after re-authenticating", status_code=401
            )
        return _check(response)

    async def _send(
        self,
        session: Session,
        method: str,
        path: PathSpec,
        params: Optional[Mapping[str, Any]],
        body: Any,
        headers: Optional[Mapping[str, str]],
    ) -> httpx.Response:
        url = path(session) if callable(path) else path
        request_headers = dict(headers or {})
        request_headers[AUTH_HEADER] = session.token
        query = {k: v for k, v in (params or {}).items() if v is not None}
        return await self._client.request(
            method, url, params=query or None, json=body, headers=request_headers
        )

    def _invalidate(self, session: Session) -> None:
        # Another caller may already have replaced the session.
        if self._state is SessionState.ACTIVE and self._session is session:
            logger.info("Session for site %s expired", session.site_id)
            self._session = None
            self._state = SessionState.NO_SESSION
            self.last_reset_reason = "expired"

    # ── Sign-in ───────────────────────────────────────────────────────────────

    async def _sign_in(self) -> Session:
        try:
            session = await self._authenticate(self._credential)
        except BaseException:
            self._session = None
            self._state = SessionState.NO_SESSION
            self.last_reset_reason = "sign_in_failed"
            raise
        else:
            self._session = session
            self._state = SessionState.ACTIVE
            logger.info("Signed in to site %s as user %s", session.site_id, session.user_id)
            return session
        finally:
            self._sign_in_task = None

    async def _authenticate(self, credential: Credential) -> Session:
        site = {"contentUrl": self._site_name}
        if isinstance(credential, PersonalAccessToken):
            return await self._sign_in_with({
                "personalAccessTokenName": credential.name,
                "personalAccessTokenSecret": credential.value,
                "site": site,
            })
        if isinstance(credential, ConnectedApp):
            assertion = token_signer.sign(
                credential.subject_claim,
                credential,
                credential.scopes,
                credential.additional_claims,
            )
            return await self._sign_in_with(
                {"jwt": assertion.token, "site": site},
                user_name=credential.subject_claim,
            )
        if isinstance(credential, DelegatedOAuth):
            return await self._adopt_token(credential.token)
        raise TypeError(f"Unsupported credential type: {type(credential).__name__}")

    async def _sign_in_with(self, credentials: Dict[str, Any], user_name: Optional[str] = None) -> Session:
        response = await self._auth_request("POST", self.rest_path("auth/signin"),
                                            json={"credentials": credentials})
        try:
            data = response.json()["credentials"]
            token = data["token"]
        except (KeyError, TypeError, ValueError) as e:
            raise AuthenticationError(
                f"Unexpected sign-in response: {e!r}", status_code=response.status_code
            ) from e
        return await self._session_from(data, response, token, user_name)

    async def _adopt_token(self, token: str) -> Session:
        response = await self._auth_request("GET", self.rest_path("sessions/current"),
                                            headers={AUTH_HEADER: token})
        try:
            data = response.json()["session"]
        except (KeyError, TypeError, ValueError) as e:
            raise AuthenticationError(
                f"Unexpected sessions/current response: {e!r}", status_code=response.status_code
            ) from e
        return await self._session_from(data, response, token)

    async def _session_from(self, data: Any, response: httpx.Response, token: str,
                            user_name: Optional[str] = None) -> Session:
        """Build a ``Session`` from the ``site`` and ``user`` of a sign-in body."""
        try:
            site, user = data["site"], data["user"]
            site_id, user_id = site["id"], user["id"]
            site_name = site.get("contentUrl", self._site_name)
            user_name = user_name or user.get("name")
        except (KeyError, TypeError, AttributeError) as e:
            raise AuthenticationError(
                f"Unexpected sign-in response: missing site or user ({e!r})",
                status_code=response.status_code,
            ) from e
        return Session(
            site_id=site_id,
            site_name=site_name,
            user_id=user_id,
            user_name=user_name,
            server_version=await self._get_server_version(),
            created_at=datetime.now(timezone.utc),
            token=token,
        )

    async def _auth_request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Sign-in request failed: {e}") from e
        if response.is_error:
            raise AuthenticationError(
                f"Sign-in failed: {_api_error(response)}", status_code=response.status_code
            )
        return response

    async def _get_server_version(self) -> Optional[str]:
        if self._server_version is None:
            try:
                response = await self._client.get(self.rest_path("serverinfo"))
                response.raise_for_status()
                info = response.json()["serverInfo"]
                self._server_version = info["productVersion"]["value"]
            except (httpx.HTTPError, KeyError, ValueError) as e:
                logger.warning("Could not read the server version: %s", e)
        return self._server_version

    # ── Logging hooks ─────────────────────────────────────────────────────────

    async def _log_request(self, request: httpx.Request) -> None:
        logger.info("→ %s %s", request.method, request.url)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("  headers=%s body=%s", self._headers(request.headers), self._body(request.content))

    async def _log_response(self, response: httpx.Response) -> None:
        request = response.request
        logger.info("← %s %s %d", request.method, request.url, response.status_code)
        if logger.isEnabledFor(logging.DEBUG) and "json" in response.headers.get("content-type", ""):
            await response.aread()
            logger.debug("  headers=%s body=%s", self._headers(response.headers), self._body(response.content))

    def _headers(self, headers: httpx.Headers) -> Dict[str, str]:
        shown = dict(headers)
        if self._mask:
            for name in list(shown):
                if name.lower() == AUTH_HEADER.lower():
                    shown[name] = MASK
        return shown

    def _body(self, content: bytes) -> str:
        text = content.decode("utf-8", errors="replace")[:2000]
        return mask_secrets(text) if self._mask else text


def _retrieve_exception(task: "asyncio.Task[Session]") -> None:
    # Mark the failure as observed when every waiter has gone away.
    if not task.cancelled():
        task.exception()


def _api_error(response: httpx.Response) -> ApiError:
    try:
        body = response.json()
    except json.JSONDecodeError:
        return ApiError(response.status_code, detail=response.text[:500] or None)

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return ApiError(
            response.status_code,
            code=error.get("code"),
            summary=error.get("summary"),
            detail=error.get("detail"),
            body=body,
        )
    return ApiError(response.status_code, body=body)


def _check(response: httpx.Response) -> httpx.Response:
    if response.is_error:
        raise _api_error(response)
    return response

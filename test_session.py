import asyncio
import json
import unittest

import httpx

from tableau_mcp.errors import ApiError, AuthenticationError, SigningError
from tableau_mcp.tools.credentials import ConnectedApp, DelegatedOAuth, PersonalAccessToken
from tableau_mcp.tools.session import SessionManager, SessionState, mask_secrets

SERVER = "https://tableau.example.com"
PAT = PersonalAccessToken(name="mcp", value="pat-secret")
DATASOURCES = "/api/3.24/sites/site-1/datasources"


class FakeTableau:
    """An ``httpx.MockTransport`` handler that counts calls per path."""

    def __init__(self, signin_delay=0.0):
        self.signin_delay = signin_delay
        self.calls = []
        self.signin_bodies = []
        self.tokens_issued = 0
        self.signin_failures = 0
        self.unauthorized = 0
        self.signout_error = None
        self.signin_response = None
        self.current_response = None
        self.valid_tokens = set()

    def count(self, path):
        return sum(1 for method, p in self.calls if p == path)

    async def __call__(self, request):
        path = request.url.path
        self.calls.append((request.method, path))

        if path == "/api/3.24/auth/signin":
            self.signin_bodies.append(json.loads(request.content))
            await asyncio.sleep(self.signin_delay)
            if self.signin_response is not None:
                return self.signin_response
            if self.signin_failures:
                self.signin_failures -= 1
                return httpx.Response(401, json={"error": {"code": "401001", "summary": "Signin Error"}})
            self.tokens_issued += 1
            token = f"token-{self.tokens_issued}"
            self.valid_tokens.add(token)
            return httpx.Response(200, json={"credentials": {
                "token": token,
                "site": {"id": "site-1", "contentUrl": "finance"},
                "user": {"id": "user-1"},
            }})
        if path == "/api/3.24/serverinfo":
            return httpx.Response(200, json={"serverInfo": {"productVersion": {"value": "2025.1.0"}}})
        if path == "/api/3.24/auth/signout":
            if self.signout_error:
                raise self.signout_error
            self.valid_tokens.discard(request.headers["X-Tableau-Auth"])
            return httpx.Response(204)
        if path == "/api/3.24/sessions/current":
            if self.current_response is not None:
                return self.current_response
            return httpx.Response(200, json={"session": {
                "site": {"id": "site-1", "contentUrl": "finance"},
                "user": {"id": "user-9", "name": "dana"},
            }})
        if path == DATASOURCES:
            if self.unauthorized:
                self.unauthorized -= 1
                return httpx.Response(401)
            if request.headers.get("X-Tableau-Auth") not in self.valid_tokens:
                return httpx.Response(401)
            return httpx.Response(200, json={"datasources": {"datasource": []}})
        return httpx.Response(404, json={"error": {"code": "404000", "summary": "Not Found", "detail": path}})


def manager(fake, credential=PAT):
    return SessionManager(SERVER, credential, site_name="finance", transport=httpx.MockTransport(fake))


class TestSignIn(unittest.TestCase):

    def test_pat_sign_in(self):
        fake = FakeTableau()

        async def scenario():
            sm = manager(fake)
            session = await sm.ensure_session()
            await sm.close()
            return session, sm

        session, sm = asyncio.run(scenario())
        self.assertEqual(session.site_id, "site-1")
        self.assertEqual(session.user_id, "user-1")
        self.assertEqual(session.server_version, "2025.1.0")
        self.assertEqual(fake.signin_bodies[0], {"credentials": {
            "personalAccessTokenName": "mcp",
            "personalAccessTokenSecret": "pat-secret",
            "site": {"contentUrl": "finance"},
        }})
        self.assertIs(sm.state, SessionState.NO_SESSION)

    def test_active_session_is_reused(self):
        fake = FakeTableau()

        async def scenario():
            sm = manager(fake)
            first = await sm.ensure_session()
            second = await sm.ensure_session()
            await sm.close()
            return first, second

        first, second = asyncio.run(scenario())
        self.assertIs(first, second)
        self.assertEqual(fake.count("/api/3.24/auth/signin"), 1)

    def test_concurrent_callers_share_one_sign_in(self):
        fake = FakeTableau(signin_delay=0.01)

        async def scenario():
            sm = manager(fake)
            sessions = await asyncio.gather(*(sm.ensure_session() for _ in range(10)))
            await sm.close()
            return sessions

        sessions = asyncio.run(scenario())
        self.assertEqual(fake.count("/api/3.24/auth/signin"), 1)
        self.assertEqual(len({s.token for s in sessions}), 1)

    def test_cancelled_waiter_does_not_cancel_sign_in(self):
        fake = FakeTableau(signin_delay=0.02)

        async def scenario():
            sm = manager(fake)
            first = asyncio.create_task(sm.ensure_session())
            second = asyncio.create_task(sm.ensure_session())
            await asyncio.sleep(0)
            first.cancel()
            session = await second
            with self.assertRaises(asyncio.CancelledError):
                await first
            state = sm.state
            await sm.close()
            return session, state

        session, state = asyncio.run(scenario())
        self.assertEqual(session.token, "token-1")
        self.assertIs(state, SessionState.ACTIVE)
        self.assertEqual(fake.count("/api/3.24/auth/signin"), 1)

    def test_failed_sign_in_resets_and_next_call_retries(self):
        fake = FakeTableau()
        fake.signin_failures = 1

        async def scenario():
            sm = manager(fake)
            with self.assertRaises(AuthenticationError) as ctx:
                await sm.ensure_session()
            after_failure = (sm.state, sm.last_reset_reason)
            session = await sm.ensure_session()
            await sm.close()
            return ctx.exception, after_failure, session

        error, after_failure, session = asyncio.run(scenario())
        self.assertEqual(error.status_code, 401)
        self.assertEqual(after_failure, (SessionState.NO_SESSION, "sign_in_failed"))
        self.assertEqual(session.token, "token-1")
        self.assertEqual(fake.count("/api/3.24/auth/signin"), 2)

    def test_unexpected_sign_in_body_is_an_authentication_error(self):
        bodies = {
            "no credentials": {"content": json.dumps({"tsResponse": {}})},
            "no site id": {"content": json.dumps({"credentials": {"token": "t", "site": {}, "user": {"id": "u"}}})},
            "user not an object": {"content": json.dumps({"credentials": {"token": "t", "site": {"id": "s"}, "user": "u"}})},
            "not json": {"content": "<html>maintenance</html>"},
        }
        for label, body in bodies.items():
            with self.subTest(label):
                fake = FakeTableau()
                fake.signin_response = httpx.Response(200, **body)

                async def scenario():
                    sm = manager(fake)
                    with self.assertRaises(AuthenticationError) as ctx:
                        await sm.ensure_session()
                    state = (sm.state, sm.last_reset_reason)
                    await sm.close()
                    return ctx.exception, state

                error, state = asyncio.run(scenario())
                self.assertEqual(error.status_code, 200)
                self.assertEqual(state, (SessionState.NO_SESSION, "sign_in_failed"))

    def test_unexpected_current_session_body_is_an_authentication_error(self):
        fake = FakeTableau()
        fake.current_response = httpx.Response(200, json={"session": {"user": {"id": "u"}}})

        async def scenario():
            sm = manager(fake, DelegatedOAuth(token="user-token"))
            with self.assertRaises(AuthenticationError):
                await sm.ensure_session()
            state = sm.state
            await sm.close()
            return state

        self.assertIs(asyncio.run(scenario()), SessionState.NO_SESSION)

    def test_connected_app_signs_a_jwt(self):
        fake = FakeTableau()
        app = ConnectedApp(
            client_id="client-1",
            secret_id="secret-1",
            secret_value="s3cr3t-value-that-is-long-enough-for-hs256!!",
            subject_claim="alice@example.com",
        )

        async def scenario():
            sm = manager(fake, app)
            session = await sm.ensure_session()
            await sm.close()
            return session

        session = asyncio.run(scenario())
        body = fake.signin_bodies[0]["credentials"]
        self.assertEqual(body["site"], {"contentUrl": "finance"})
        self.assertEqual(body["jwt"].count("."), 2)
        self.assertEqual(session.user_name, "alice@example.com")

    def test_signing_error_makes_no_request(self):
        fake = FakeTableau()
        app = ConnectedApp(client_id="c", secret_id="s", secret_value="", subject_claim="alice")

        async def scenario():
            sm = manager(fake, app)
            with self.assertRaises(SigningError):
                await sm.ensure_session()
            state = sm.state
            await sm.close()
            return state

        self.assertIs(asyncio.run(scenario()), SessionState.NO_SESSION)
        self.assertEqual(fake.calls, [])

    def test_delegated_token_is_adopted_and_not_signed_out(self):
        fake = FakeTableau()

        async def scenario():
            sm = manager(fake, DelegatedOAuth(token="user-token"))
            session = await sm.ensure_session()
            await sm.close()
            return session

        session = asyncio.run(scenario())
        self.assertEqual(session.token, "user-token")
        self.assertEqual(session.user_name, "dana")
        self.assertEqual(fake.count("/api/3.24/auth/signin"), 0)
        self.assertEqual(fake.count("/api/3.24/auth/signout"), 0)


class TestExecute(unittest.TestCase):

    def test_one_401_is_retried_after_signing_in_again(self):
        fake = FakeTableau()

        async def scenario():
            sm = manager(fake)
            await sm.ensure_session()
            fake.valid_tokens.clear()  # server-side expiry
            response = await sm.execute("GET", DATASOURCES)
            token = sm.session.token
            await sm.close()
            return response, token

        response, token = asyncio.run(scenario())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(token, "token-2")
        self.assertEqual(fake.count("/api/3.24/auth/signin"), 2)
        self.assertEqual(fake.count(DATASOURCES), 2)

    def test_second_401_raises(self):
        fake = FakeTableau()
        fake.unauthorized = 2

        async def scenario():
            sm = manager(fake)
            with self.assertRaises(AuthenticationError) as ctx:
                await sm.execute("GET", DATASOURCES)
            state = (sm.state, sm.last_reset_reason)
            await sm.close()
            return ctx.exception, state

        error, state = asyncio.run(scenario())
        self.assertEqual(error.status_code, 401)
        self.assertEqual(state, (SessionState.NO_SESSION, "expired"))
        self.assertEqual(fake.count(DATASOURCES), 2)
        self.assertEqual(fake.count("/api/3.24/auth/signin"), 2)

    def test_path_may_depend_on_the_session(self):
        fake = FakeTableau()

        async def scenario():
            sm = manager(fake)
            response = await sm.execute("GET", lambda s: sm.rest_path(f"sites/{s.site_id}/datasources"))
            await sm.close()
            return response

        self.assertEqual(asyncio.run(scenario()).status_code, 200)

    def test_other_errors_raise_api_error(self):
        fake = FakeTableau()

        async def scenario():
            sm = manager(fake)
            with self.assertRaises(ApiError) as ctx:
                await sm.execute("GET", "/api/3.24/sites/site-1/nothing")
            await sm.close()
            return ctx.exception

        error = asyncio.run(scenario())
        self.assertEqual(error.status_code, 404)
        self.assertEqual(error.code, "404000")
        self.assertIn("Not Found", str(error))


class TestSignOut(unittest.TestCase):

    def test_sign_out_is_idempotent(self):
        fake = FakeTableau()

        async def scenario():
            sm = manager(fake)
            await sm.sign_out()
            await sm.ensure_session()
            await sm.sign_out()
            await sm.sign_out()
            state = (sm.state, sm.last_reset_reason)
            await sm.close()
            return state

        self.assertEqual(asyncio.run(scenario()), (SessionState.NO_SESSION, "signed_out"))
        self.assertEqual(fake.count("/api/3.24/auth/signout"), 1)

    def test_sign_out_tolerates_network_failure(self):
        fake = FakeTableau()
        fake.signout_error = httpx.ConnectError("connection reset")

        async def scenario():
            sm = manager(fake)
            await sm.ensure_session()
            await sm.sign_out()
            state = sm.state
            await sm.close()
            return state

        self.assertIs(asyncio.run(scenario()), SessionState.NO_SESSION)


class TestMasking(unittest.TestCase):

    def test_secrets_are_masked(self):
        body = '{"credentials": {"personalAccessTokenName": "mcp", "personalAccessTokenSecret": "abc", "jwt": "x.y.z"}}'
        masked = mask_secrets(body)
        self.assertNotIn("abc", masked)
        self.assertNotIn("x.y.z", masked)
        self.assertIn('"personalAccessTokenName": "mcp"', masked)


if __name__ == "__main__":
    unittest.main()

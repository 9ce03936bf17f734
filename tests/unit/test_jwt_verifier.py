"""Unit tests for JwtVerifier."""

import base64
import json
import time

import pytest

from sso_client.auth import ConsoleAuthError, ConsoleServerError, JwksKeyStore, JwtVerifier
from sso_client.auth import jwt_verifier
from sso_client.common.cache import CacheStore


@pytest.fixture
def verifier(fake_console) -> JwtVerifier:
    return JwtVerifier(JwksKeyStore(fake_console, CacheStore()))


def _segment(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


class TestVerify:
    """Successful verification and claim normalization."""

    async def test_valid_token(self, verifier: JwtVerifier, sign_token):
        result = await verifier.verify_result(sign_token(sub="7", email="a@b.test", name="A"))

        assert result.ok
        assert result.claims.subject == 7
        assert result.claims.email == "a@b.test"
        assert result.claims.name == "A"
        assert result.claims.audience == "test-service"

    async def test_name_defaults_to_email(self, verifier: JwtVerifier, sign_token):
        claims = await verifier.verify(sign_token(name=None))
        assert claims.name == "jane@example.com"

    async def test_verify_returns_none_on_failure(self, verifier: JwtVerifier, sign_token):
        assert await verifier.verify(sign_token(exp_in=-5)) is None

    async def test_audience_list_prefers_service_slug(self, fake_console, sign_token):
        verifier = JwtVerifier(JwksKeyStore(fake_console, CacheStore()), service_slug="billing")
        claims = await verifier.verify(sign_token(aud=["console", "billing"]))
        assert claims.audience == "billing"

    async def test_audience_list_falls_back_to_first(self, verifier: JwtVerifier, sign_token):
        claims = await verifier.verify(sign_token(aud=["console", "other"]))
        assert claims.audience == "console"


class TestRejections:
    """Every failure is a value, except missing or unknown keys."""

    async def test_expired_without_leeway(self, verifier: JwtVerifier, sign_token):
        result = await verifier.verify_result(sign_token(exp_in=-1))
        assert result.error == jwt_verifier.EXPIRED

    async def test_not_yet_valid(self, verifier: JwtVerifier, sign_token):
        token = sign_token(nbf=int(time.time()) + 120)
        assert await verifier.verify(token) is None

    async def test_issued_in_the_future(self, verifier: JwtVerifier, sign_token):
        token = sign_token(iat=int(time.time()) + 120)
        assert await verifier.verify(token) is None

    async def test_missing_exp(self, verifier: JwtVerifier, sign_token):
        result = await verifier.verify_result(sign_token(exp_in=None))
        assert result.error == jwt_verifier.INVALID_CLAIMS

    async def test_signed_by_other_key(self, verifier: JwtVerifier, sign_token, other_rsa_key):
        result = await verifier.verify_result(sign_token(key=other_rsa_key))
        assert result.error == jwt_verifier.INVALID_SIGNATURE

    async def test_tampered_payload(self, verifier: JwtVerifier, sign_token):
        header, _, signature = sign_token().split(".")
        forged = _segment({"sub": "1", "email": "admin@example.com", "exp": 9999999999})
        result = await verifier.verify_result(f"{header}.{forged}.{signature}")
        assert result.error == jwt_verifier.INVALID_SIGNATURE

    async def test_algorithm_none_rejected(self, verifier: JwtVerifier):
        token = f"{_segment({'alg': 'none', 'kid': 'key-1'})}.{_segment({'sub': '1'})}."
        result = await verifier.verify_result(token)
        assert result.error == jwt_verifier.UNSUPPORTED_ALGORITHM

    async def test_hs256_rejected(self, verifier: JwtVerifier):
        token = f"{_segment({'alg': 'HS256', 'kid': 'key-1'})}.{_segment({'sub': '1'})}.c2ln"
        result = await verifier.verify_result(token)
        assert result.error == jwt_verifier.UNSUPPORTED_ALGORITHM

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "!!.??.xx", "a.b.c.d"])
    async def test_malformed(self, verifier: JwtVerifier, token: str):
        result = await verifier.verify_result(token)
        assert result.error == jwt_verifier.MALFORMED

    async def test_non_numeric_subject(self, verifier: JwtVerifier, sign_token):
        result = await verifier.verify_result(sign_token(sub="user-7"))
        assert result.error == jwt_verifier.INVALID_CLAIMS

    async def test_missing_email(self, verifier: JwtVerifier, sign_token):
        result = await verifier.verify_result(sign_token(email=None))
        assert result.error == jwt_verifier.INVALID_CLAIMS

    async def test_missing_kid_raises(self, verifier: JwtVerifier, sign_token):
        with pytest.raises(ConsoleAuthError) as exc_info:
            await verifier.verify_result(sign_token(kid=None))
        assert exc_info.value.error_code == "missing_kid"

    async def test_unknown_kid_raises_after_one_refetch(self, verifier: JwtVerifier, sign_token, fake_console):
        with pytest.raises(ConsoleAuthError) as exc_info:
            await verifier.verify_result(sign_token(kid="rotated-away"))
        assert exc_info.value.error_code == "key_not_found"
        assert fake_console.calls["get_jwks"] == 2

    async def test_jwks_outage_propagates(self, verifier: JwtVerifier, sign_token, fake_console):
        fake_console.jwks = ConsoleServerError("down", 503)
        with pytest.raises(ConsoleServerError):
            await verifier.verify_result(sign_token())


class TestGetClaims:
    def test_decodes_without_verification(self, verifier: JwtVerifier, sign_token, other_rsa_key):
        claims = verifier.get_claims(sign_token(key=other_rsa_key, sub="9"))
        assert claims["sub"] == "9"

    def test_malformed_returns_none(self, verifier: JwtVerifier):
        assert verifier.get_claims("not-a-token") is None

"""Tests for token signing and issuing."""

import base64
import json
from datetime import timedelta

import pytest

from tokenward.service.tokens import HmacJwtSigner, SignatureError, TokenIssuer
from tokenward.storage.models import UserIdentity


@pytest.fixture
def signer(settings, clock):
    return HmacJwtSigner.from_settings(settings, clock=clock)


@pytest.fixture
def issuer(settings, signer):
    return TokenIssuer.from_settings(settings, signer)


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


NON_ASCII_SIGNATURE = f"{_b64({'alg': 'HS256', 'typ': 'JWT'})}.{_b64({'sub': 'x'})}.\u00e9"


class TestHmacJwtSigner:
    """Tests for the HS256 signer."""

    def test_round_trip_adds_registered_claims(self, signer, settings, clock):
        token = signer.sign({"sub": "u1"}, timedelta(minutes=5))

        claims = signer.verify(token)

        assert claims["sub"] == "u1"
        assert claims["iss"] == settings.jwt_issuer
        assert claims["aud"] == settings.jwt_audience
        assert claims["exp"] == int((clock.now + timedelta(minutes=5)).timestamp())

    def test_expired_token_rejected(self, signer, clock):
        token = signer.sign({"sub": "u1"}, timedelta(minutes=5))
        clock.advance(minutes=5)

        with pytest.raises(SignatureError):
            signer.verify(token)

    def test_leeway_tolerates_small_skew(self, settings, clock):
        signer = HmacJwtSigner(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            leeway=timedelta(seconds=120),
            clock=clock,
        )
        token = signer.sign({"sub": "u1"}, timedelta(minutes=5))
        clock.advance(minutes=6)

        assert signer.verify(token)["sub"] == "u1"

    def test_tampered_payload_rejected(self, signer):
        token = signer.sign({"sub": "u1"}, timedelta(minutes=5))
        header, _, sig = token.split(".")
        forged = f"{header}.{_b64({'sub': 'admin'})}.{sig}"

        with pytest.raises(SignatureError):
            signer.verify(forged)

    def test_none_algorithm_rejected(self, signer):
        token = signer.sign({"sub": "u1"}, timedelta(minutes=5))
        _, payload, sig = token.split(".")
        forged = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{payload}.{sig}"

        with pytest.raises(SignatureError):
            signer.verify(forged)

    @pytest.mark.parametrize(
        "token", ["", "abc", "a.b", "a.b.c.d", "!!.??.**", NON_ASCII_SIGNATURE]
    )
    def test_malformed_tokens_rejected(self, signer, token):
        with pytest.raises(SignatureError):
            signer.verify(token)

    def test_wrong_audience_rejected(self, settings, signer, clock):
        other = HmacJwtSigner(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            audience="someone-else",
            clock=clock,
        )
        token = other.sign({"sub": "u1"}, timedelta(minutes=5))

        with pytest.raises(SignatureError):
            signer.verify(token)


class TestTokenIssuer:
    """Tests for access and refresh token contents."""

    def test_access_token_claims(self, issuer):
        token = issuer.issue_access(UserIdentity(id="u1", username="alice", email="a@x.com"))

        claims = issuer.verify_access(token)

        assert claims["sub"] == "u1"
        assert claims["username"] == "alice"
        assert claims["email"] == "a@x.com"
        assert claims["token_type"] == "access"

    def test_refresh_token_carries_subject_only(self, issuer):
        token = issuer.issue_refresh("u1")

        claims = issuer.verify_refresh_signature(token)

        assert claims["sub"] == "u1"
        assert "username" not in claims
        assert "email" not in claims

    def test_refresh_tokens_are_unique(self, issuer):
        assert issuer.issue_refresh("u1") != issuer.issue_refresh("u1")

    def test_token_types_not_interchangeable(self, issuer):
        access = issuer.issue_access(UserIdentity(id="u1", username="a", email="a@x.com"))
        refresh = issuer.issue_refresh("u1")

        with pytest.raises(SignatureError):
            issuer.verify_refresh_signature(access)
        with pytest.raises(SignatureError):
            issuer.verify_access(refresh)

    def test_ttls_follow_settings(self, issuer, clock):
        claims = issuer.verify_refresh_signature(issuer.issue_refresh("u1"))

        assert claims["exp"] - int(clock.now.timestamp()) == 7 * 24 * 3600
        assert issuer.access_ttl == timedelta(minutes=15)

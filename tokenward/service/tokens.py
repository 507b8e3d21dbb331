from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from tokenward.config import Settings
from tokenward.logging import get_logger
from tokenward.storage.models import UserIdentity

logger = get_logger(__name__)


class SignatureError(Exception):
    """Token is malformed, tampered with, expired, or of the wrong type."""


class TokenSigner(Protocol):
    def sign(self, claims: dict[str, Any], ttl: timedelta) -> str: ...

    def verify(self, token: str) -> dict[str, Any]: ...


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class HmacJwtSigner:
    """HS256 compact JWTs with issuer, audience and expiry claims."""

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        audience: str,
        leeway: timedelta = timedelta(0),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._secret = secret.encode()
        self.issuer = issuer
        self.audience = audience
        self.leeway = leeway
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Optional[Callable[[], datetime]] = None
    ) -> "HmacJwtSigner":
        return cls(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            leeway=timedelta(seconds=settings.jwt_leeway_seconds),
            clock=clock,
        )

    def _signature(self, signing_input: str) -> str:
        return _encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def sign(self, claims: dict[str, Any], ttl: timedelta) -> str:
        now = self._clock()
        payload = {
            **claims,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._signature(signing_input)}"

    def verify(self, token: str) -> dict[str, Any]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            raise SignatureError("malformed token") from None

        # Pin the algorithm to prevent algorithm confusion
        try:
            header = json.loads(_decode_segment(header_b64))
        except ValueError:
            raise SignatureError("malformed header") from None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise SignatureError("unexpected algorithm")

        signing_input = f"{header_b64}.{payload_b64}"
        expected = self._signature(signing_input).encode()
        if not hmac.compare_digest(expected, sig_b64.encode("utf-8", "surrogatepass")):
            raise SignatureError("bad signature")
        try:
            payload = json.loads(_decode_segment(payload_b64))
        except ValueError:
            raise SignatureError("malformed payload") from None
        if not isinstance(payload, dict):
            raise SignatureError("malformed payload")
        if payload.get("iss") != self.issuer:
            raise SignatureError("unexpected issuer")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise SignatureError("unexpected audience")
        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise SignatureError("missing expiry") from None
        if exp_ts <= self._clock().timestamp() - self.leeway.total_seconds():
            raise SignatureError("token expired")
        return payload


class TokenIssuer:
    """Mints access and refresh tokens through a pluggable signer."""

    def __init__(
        self,
        signer: TokenSigner,
        *,
        access_ttl: timedelta = timedelta(minutes=30),
        refresh_ttl: timedelta = timedelta(days=7),
    ) -> None:
        self.signer = signer
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls, settings: Settings, signer: TokenSigner) -> "TokenIssuer":
        return cls(
            signer,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(minutes=settings.refresh_token_ttl_minutes),
        )

    def issue_access(self, identity: UserIdentity) -> str:
        return self.signer.sign(
            {
                "sub": identity.id,
                "username": identity.username,
                "email": identity.email,
                "token_type": "access",
            },
            self.access_ttl,
        )

    def issue_refresh(self, user_id: str) -> str:
        # jti keeps same-second logins from minting identical tokens
        return self.signer.sign(
            {"sub": user_id, "token_type": "refresh", "jti": str(uuid.uuid4())},
            self.refresh_ttl,
        )

    def _verify(self, token: str, token_type: str) -> dict[str, Any]:
        claims = self.signer.verify(token)
        if claims.get("token_type") != token_type:
            raise SignatureError("unexpected token type")
        if not claims.get("sub"):
            raise SignatureError("missing subject")
        return claims

    def verify_refresh_signature(self, token: str) -> dict[str, Any]:
        """Check signature and expiry only; revocation lives in the store."""
        return self._verify(token, "refresh")

    def verify_access(self, token: str) -> dict[str, Any]:
        return self._verify(token, "access")

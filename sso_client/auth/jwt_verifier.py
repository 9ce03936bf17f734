"""RS256 verification of Console access tokens against the published JWKS."""

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from authlib.jose import JsonWebToken
from authlib.jose.errors import BadSignatureError, ExpiredTokenError, JoseError

from ..core.models import Claims
from .exceptions import ConsoleAuthError
from .jwks import JwksKeyStore

ALGORITHM = "RS256"

# Failure codes carried by VerificationResult.error
MALFORMED = "malformed_token"
UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
UNSUPPORTED_KEY = "unsupported_key"
INVALID_SIGNATURE = "invalid_signature"
EXPIRED = "token_expired"
INVALID_CLAIMS = "invalid_claims"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying one token: either ``claims`` or an ``error`` code."""

    claims: Optional[Claims] = None
    error: Optional[str] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.claims is not None

    @classmethod
    def failure(cls, error: str, detail: Optional[str] = None) -> "VerificationResult":
        return cls(claims=None, error=error, detail=detail)


def _b64_json(segment: str) -> Dict[str, Any]:
    padding = -len(segment) % 4
    raw = base64.urlsafe_b64decode(segment + "=" * padding)
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("JWT segment is not a JSON object")
    return data


def _split(token: str) -> Optional[Dict[str, Dict[str, Any]]]:
    parts = token.split(".") if isinstance(token, str) else []
    if len(parts) != 3 or not all(parts[:2]):
        return None
    try:
        return {"header": _b64_json(parts[0]), "payload": _b64_json(parts[1])}
    except (ValueError, UnicodeDecodeError):
        return None


class JwtVerifier:
    """
    Verifies Console-issued JWTs.

    Verification failures (bad signature, expired, malformed) are returned as
    values; only a missing ``kid`` or an unknown key raise
    ``ConsoleAuthError``, and a JWKS outage raises ``ConsoleServerError``.
    Time claims are checked without leeway.
    """

    def __init__(self, keys: JwksKeyStore, service_slug: Optional[str] = None):
        self.keys = keys
        self.service_slug = service_slug
        self._jwt = JsonWebToken([ALGORITHM])
        self._claims_options = {
            "sub": {"essential": True},
            "exp": {"essential": True},
        }

    async def verify(self, token: str) -> Optional[Claims]:
        """Verified claims, or None when the token does not verify."""
        result = await self.verify_result(token)
        return result.claims

    async def verify_result(self, token: str) -> VerificationResult:
        """
        Verify ``token`` and report why it failed when it does.

        Raises:
            ConsoleAuthError: If the header has no ``kid`` or no key matches it
            ConsoleServerError: If the JWKS cannot be fetched
        """
        segments = _split(token)
        if segments is None:
            return VerificationResult.failure(MALFORMED)

        header = segments["header"]
        if header.get("alg") != ALGORITHM:
            return VerificationResult.failure(UNSUPPORTED_ALGORITHM, str(header.get("alg")))

        kid = header.get("kid")
        if not kid or not isinstance(kid, str):
            raise ConsoleAuthError("Token missing key id", 401, "missing_kid")

        try:
            public_key = await self.keys.get_public_key(kid)
        except ValueError as e:
            return VerificationResult.failure(UNSUPPORTED_KEY, str(e))
        if public_key is None:
            raise ConsoleAuthError(f"Public key not found for kid: {kid}", 401, "key_not_found")

        try:
            decoded = self._jwt.decode(token, public_key, claims_options=self._claims_options)
            decoded.validate(leeway=0)
        except ExpiredTokenError as e:
            return VerificationResult.failure(EXPIRED, str(e))
        except BadSignatureError as e:
            return VerificationResult.failure(INVALID_SIGNATURE, str(e))
        except JoseError as e:
            return VerificationResult.failure(INVALID_CLAIMS, str(e))
        except ValueError as e:
            return VerificationResult.failure(MALFORMED, str(e))

        return self._to_claims(dict(decoded))

    def get_claims(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Decode the payload WITHOUT checking the signature.

        Unsafe for authorization decisions. Use only on tokens that were
        already verified, or for debugging.
        """
        segments = _split(token)
        return segments["payload"] if segments else None

    def _audience(self, aud: Any) -> Optional[str]:
        """``aud`` as one string; from a list, this service's slug wins over the first entry."""
        if isinstance(aud, str):
            return aud
        if isinstance(aud, list):
            values = [a for a in aud if isinstance(a, str)]
            if self.service_slug in values:
                return self.service_slug
            return values[0] if values else None
        return None

    def _to_claims(self, payload: Dict[str, Any]) -> VerificationResult:
        try:
            subject = int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            return VerificationResult.failure(INVALID_CLAIMS, "sub is not a numeric user id")

        email = payload.get("email")
        name = payload.get("name")
        if not isinstance(email, str) or not email:
            return VerificationResult.failure(INVALID_CLAIMS, "email claim missing")
        if not isinstance(name, str):
            name = email

        return VerificationResult(
            claims=Claims(
                subject=subject,
                email=email,
                name=name,
                audience=self._audience(payload.get("aud")),
            )
        )

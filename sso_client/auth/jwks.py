"""Console JWKS retrieval, caching and RSA key conversion."""

import base64
from typing import Any, Dict, List, Optional

import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicNumbers

from ..common.cache import CacheKey, CacheStore
from .console_client import ConsoleClient
from .exceptions import ConsoleError, ConsoleServerError

logger = structlog.get_logger(__name__)

JWKS_CACHE_KEY = CacheKey("jwks")


def base64url_decode(data: str) -> bytes:
    """Decode unpadded base64url as used by JWK ``n`` and ``e``."""
    padding = -len(data) % 4
    return base64.urlsafe_b64decode(data + "=" * padding)


def jwk_to_pem(jwk: Dict[str, Any]) -> str:
    """
    Convert an RSA JWK into a SubjectPublicKeyInfo PEM.

    Raises:
        ValueError: If the key is not RSA or ``n``/``e`` are missing or malformed
    """
    if jwk.get("kty") != "RSA":
        raise ValueError("Only RSA keys are supported")

    try:
        n = int.from_bytes(base64url_decode(jwk["n"]), "big")
        e = int.from_bytes(base64url_decode(jwk["e"]), "big")
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid RSA JWK: {exc}") from exc

    public_key = RSAPublicNumbers(e, n).public_key()
    pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return pem.decode("ascii")


class JwksKeyStore:
    """
    Cache-aside access to Console's signing keys.

    The key set is cached for ``ttl_minutes``. A lookup for an unknown ``kid``
    drops the cached set and fetches it again exactly once, which picks up
    rotated keys without manual intervention.
    """

    def __init__(self, client: ConsoleClient, cache: CacheStore, ttl_minutes: int = 60):
        self.client = client
        self.cache = cache
        self.ttl_seconds = ttl_minutes * 60

    async def get_jwks(self) -> Dict[str, Any]:
        """
        The key set, from cache or Console.

        Raises:
            ConsoleServerError: If Console cannot provide the key set
        """
        return await self.cache.remember(JWKS_CACHE_KEY, self.ttl_seconds, self._fetch_jwks)

    async def get_public_key(self, kid: str) -> Optional[str]:
        """
        PEM public key for ``kid``, or None when Console does not publish it.

        Raises:
            ConsoleServerError: If the key set cannot be fetched
            ValueError: If the matching key is not a usable RSA key
        """
        jwk = self._find(await self.get_jwks(), kid)
        if jwk is None:
            logger.info("jwks_key_not_found_refetching", kid=kid)
            await self.clear_cache()
            jwk = self._find(await self.get_jwks(), kid)

        if jwk is None:
            logger.warning("jwks_key_not_found", kid=kid)
            return None
        return jwk_to_pem(jwk)

    async def clear_cache(self) -> None:
        await self.cache.forget(JWKS_CACHE_KEY)

    async def _fetch_jwks(self) -> Dict[str, Any]:
        try:
            jwks = await self.client.get_jwks()
        except ConsoleServerError:
            raise
        except ConsoleError as e:
            raise ConsoleServerError(
                "Failed to fetch JWKS from Console",
                e.status_code,
                e.error_code,
            ) from e

        logger.debug("jwks_fetched", keys=len(jwks.get("keys", [])))
        return jwks

    @staticmethod
    def _find(jwks: Dict[str, Any], kid: str) -> Optional[Dict[str, Any]]:
        keys: List[Dict[str, Any]] = jwks.get("keys") or []
        for key in keys:
            if isinstance(key, dict) and key.get("kid") == kid:
                return key
        return None

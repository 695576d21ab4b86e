"""
Credential minting for the push gateway.

Builds an RS256-signed assertion from the Firebase service account key,
exchanges it at Google's OAuth2 token endpoint (JWT bearer grant) and
caches the resulting access token until shortly before it expires.
"""

import asyncio
import time

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from push_engine.config import settings
from push_engine.features.push_notifications.domain import BearerToken, ServiceAccountKey
from push_engine.features.push_notifications.domain.errors import CredentialError
from push_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

ASSERTION_LIFETIME_SECONDS = 3600
MAX_RETRIES = 2
BACKOFF_FACTOR = 2  # 2, 4 seconds
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


def _load_rsa_key(private_key_pem: str) -> rsa.RSAPrivateKey:
    # Keys pasted into env vars often carry literal "\n" sequences
    pem = private_key_pem.replace("\\n", "\n").encode("utf-8")
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CredentialError(
            f"Service account private key is unreadable: {e}", error_code="invalid_key"
        ) from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise CredentialError(
            "Service account private key is not an RSA key", error_code="invalid_key"
        )
    return key


def sign(payload: dict, private_key_pem: str) -> str:
    """Compact RS256 JWS (RSASSA-PKCS1-v1_5 with SHA-256) over the payload."""
    key = _load_rsa_key(private_key_pem)
    return jwt.encode(payload, key, algorithm="RS256", headers={"typ": "JWT"})


def build_assertion(key: ServiceAccountKey, issued_at: int) -> str:
    """Signed JWT asserting the service account for the messaging scope."""
    payload = {
        "iss": key.client_email,
        "scope": FCM_SCOPE,
        "aud": GOOGLE_TOKEN_URL,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
    }
    return sign(payload, key.private_key_pem)


def _expires_in(data: dict) -> int:
    """Token lifetime in seconds, falling back to the assertion lifetime."""
    raw = data.get("expires_in")
    if not raw:
        return ASSERTION_LIFETIME_SECONDS
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Token endpoint returned unreadable expires_in", expires_in=str(raw))
        return ASSERTION_LIFETIME_SECONDS


class CredentialMinter:
    """
    Mints and caches gateway bearer tokens.

    One instance per process; the cache lets a short burst of runs reuse
    an unexpired token instead of re-signing each time.
    """

    def __init__(
        self,
        timeout: float | None = None,
        skew_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout if timeout is not None else settings.TOKEN_REQUEST_TIMEOUT
        self.skew_seconds = (
            skew_seconds if skew_seconds is not None else settings.TOKEN_EXPIRY_SKEW_SECONDS
        )
        self._transport = transport
        self._cache: dict[str, BearerToken] = {}
        self._lock = asyncio.Lock()

    async def get_token(self, key: ServiceAccountKey) -> BearerToken:
        """Cached bearer token for the key, minting a new one when needed."""
        async with self._lock:
            cached = self._cache.get(key.client_email)
            if cached and cached.is_usable(time.time(), self.skew_seconds):
                logger.debug("Reusing cached bearer token", expires_at=cached.expires_at)
                return cached

            token = await self.mint(key)
            self._cache[key.client_email] = token
            return token

    def invalidate(self, key: ServiceAccountKey) -> None:
        self._cache.pop(key.client_email, None)

    async def mint(self, key: ServiceAccountKey) -> BearerToken:
        """
        Exchange a freshly signed assertion for an access token.

        Raises:
            CredentialError: If the key cannot sign, the endpoint cannot be
                reached, or the response carries no access token
        """
        issued_at = int(time.time())
        assertion = build_assertion(key, issued_at)

        response = await self._post_with_retry(
            {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}
        )

        try:
            data = response.json()
        except ValueError:
            data = {}

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            error_code = data.get("error") if isinstance(data, dict) else None
            logger.error(
                "Bearer token exchange rejected",
                status_code=response.status_code,
                error_code=error_code,
                error_description=data.get("error_description") if isinstance(data, dict) else None,
                client_email=key.client_email,
            )
            raise CredentialError(
                f"OAuth token error: {error_code or response.status_code}",
                error_code=error_code,
                response_data=data if isinstance(data, dict) else {},
            )

        expires_in = _expires_in(data)
        logger.info("Bearer token minted", client_email=key.client_email, expires_in=expires_in)
        return BearerToken(value=access_token, expires_at=issued_at + expires_in)

    async def _post_with_retry(self, data: dict) -> httpx.Response:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.post(GOOGLE_TOKEN_URL, data=data, headers=headers)
                except httpx.HTTPError as exc:
                    if attempt == MAX_RETRIES:
                        raise CredentialError(
                            f"Token endpoint unreachable: {type(exc).__name__}: {exc}",
                            error_code="network_error",
                        ) from exc

                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Token endpoint request error, retrying",
                        attempt=attempt,
                        wait_time=wait_time,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Token endpoint transient status",
                        status_code=response.status_code,
                        attempt=attempt,
                        wait_time=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                return response

        raise CredentialError("Token exchange failed: Unknown error")


credential_minter = CredentialMinter()

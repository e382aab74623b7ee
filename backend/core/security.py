"""
RebalanceOps Security Utilities

Bearer token handling. Tokens carry the tenant (customer_id) that every
request is scoped to. Auth0 access tokens are verified against the issuer's
JWKS; local HS256 tokens are accepted in local environments or when Auth0
is not configured.
"""

import time
from datetime import datetime, timedelta

import httpx
import structlog
from jose import JWTError, jwt

from core.config import Settings, get_settings

logger = structlog.get_logger()

TENANT_CLAIM = "customer_id"
LOCAL_ENVS = {"", "local", "dev", "development", "test"}


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a locally signed access token (dev/test issuer)."""
    runtime_settings = get_settings()
    claims = {**data, "exp": datetime.utcnow() + (expires_delta or timedelta(hours=24))}
    return jwt.encode(claims, runtime_settings.jwt_secret, algorithm=runtime_settings.jwt_algorithm)


class JwksCache:
    """Per-issuer JWKS documents, refreshed after the configured TTL."""

    def __init__(self):
        self._entries: dict[str, tuple[float, dict]] = {}

    def clear(self) -> None:
        self._entries.clear()

    def get(self, issuer: str) -> dict | None:
        now = time.time()
        entry = self._entries.get(issuer)
        if entry and entry[0] > now:
            return entry[1]

        document = self._fetch(issuer)
        if document is None:
            return None
        ttl = max(60, int(get_settings().auth0_jwks_cache_ttl_seconds))
        self._entries[issuer] = (now + ttl, document)
        return document

    def _fetch(self, issuer: str) -> dict | None:
        try:
            with httpx.Client(timeout=5.0) as client:
                resp = client.get(f"{issuer}/.well-known/jwks.json")
                resp.raise_for_status()
            document = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("auth.jwks_unavailable", issuer=issuer, error=str(exc))
            return None
        if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
            logger.warning("auth.jwks_malformed", issuer=issuer)
            return None
        return document


jwks_cache = JwksCache()


def auth0_issuer(runtime_settings: Settings) -> str:
    if runtime_settings.auth0_issuer:
        return runtime_settings.auth0_issuer.rstrip("/")
    domain = runtime_settings.auth0_domain.strip()
    if not domain:
        return ""
    if not domain.startswith(("http://", "https://")):
        domain = f"https://{domain}"
    return domain.rstrip("/")


def with_tenant_claim(payload: dict) -> dict:
    """
    Lift a namespaced tenant claim to ``customer_id``.

    Auth0 only allows custom claims under a URL namespace, so the tenant
    arrives as e.g. ``https://rebalanceops.app/customer_id``.
    """
    if payload.get(TENANT_CLAIM):
        return payload
    for claim, value in payload.items():
        if claim.startswith(("http://", "https://")) and claim.rstrip("/").endswith(f"/{TENANT_CLAIM}"):
            return {**payload, TENANT_CLAIM: value}
    return payload


def _decode_auth0(token: str, runtime_settings: Settings) -> dict | None:
    issuer = auth0_issuer(runtime_settings)
    if not issuer or not runtime_settings.auth0_audience:
        return None

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except JWTError:
        return None
    if not kid:
        return None

    document = jwks_cache.get(issuer)
    key = next((k for k in (document or {}).get("keys", []) if k.get("kid") == kid), None)
    if key is None:
        return None

    try:
        return jwt.decode(
            token,
            key,
            algorithms=["RS256"],
            audience=runtime_settings.auth0_audience,
            issuer=issuer,
        )
    except JWTError:
        return None


def decode_access_token(token: str) -> dict | None:
    """Verify a bearer token and return its claims, or None when it is not acceptable."""
    runtime_settings = get_settings()

    payload = _decode_auth0(token, runtime_settings)
    if payload is not None:
        return with_tenant_claim(payload)

    auth0_configured = bool(runtime_settings.auth0_domain and runtime_settings.auth0_audience)
    if auth0_configured and runtime_settings.app_env.strip().lower() not in LOCAL_ENVS:
        return None

    try:
        payload = jwt.decode(token, runtime_settings.jwt_secret, algorithms=[runtime_settings.jwt_algorithm])
    except JWTError:
        return None
    return with_tenant_claim(payload)

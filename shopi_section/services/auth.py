"""Shopify OAuth and request verification helpers.

Three ways a request can prove which shop it belongs to:

- an App Bridge session token (``Authorization: Bearer <jwt>``) signed with
  the app secret, whose ``dest`` claim is the shop's admin URL;
- a query string signed by Shopify (``hmac`` over the other parameters),
  which is how the admin first opens the embedded app;
- the Flask cookie session written at the end of the OAuth callback.

The OAuth exchange itself only produces an offline access token; it is stored
through ``storage.sessions``.
"""
import hashlib
import hmac
import logging
import re
import time
from urllib.parse import urlencode, urlparse

import httpx
import jwt

log = logging.getLogger(__name__)

SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9\-]*\.myshopify\.com$")
QUERY_MAX_AGE = 24 * 60 * 60


class AuthError(Exception):
    pass


def is_valid_shop_domain(shop: str | None) -> bool:
    return bool(shop) and bool(SHOP_DOMAIN_RE.match(shop))


def sanitize_shop(value: str | None) -> str | None:
    """Normalise user input to `name.myshopify.com`, or None if it can't be."""
    raw = str(value or "").strip().lower()
    if not raw:
        return None
    if "://" in raw:
        raw = urlparse(raw).netloc or ""
    raw = raw.split("/")[0]
    if "." not in raw:
        raw = f"{raw}.myshopify.com"
    return raw if is_valid_shop_domain(raw) else None


def login_error_message(shop_input: str | None) -> dict:
    if not str(shop_input or "").strip():
        return {"shop": "Please enter your shop domain to log in"}
    if sanitize_shop(shop_input) is None:
        return {"shop": "Please enter a valid shop domain to log in"}
    return {}


def compute_hmac(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_query_hmac(params: dict, secret: str | None) -> bool:
    received = params.get("hmac")
    if not secret or not received:
        return False
    pairs = {k: v for k, v in params.items() if k not in ("hmac", "signature")}
    message = "&".join(f"{k}={v}" for k, v in sorted(pairs.items()))
    return hmac.compare_digest(compute_hmac(secret, message), received)


def is_fresh_timestamp(value, max_age: int = QUERY_MAX_AGE, now: float | None = None) -> bool:
    """True when a signed query's `timestamp` is within max_age seconds of now."""
    try:
        issued = int(str(value))
    except (TypeError, ValueError):
        return False
    now = time.time() if now is None else now
    # allow a minute of clock skew into the future
    return now - max_age <= issued <= now + 60


def decode_session_token(token: str, api_key: str, secret: str, leeway: int = 5) -> str:
    """Validate an App Bridge session token and return the shop it was issued for."""
    if not api_key or not secret:
        raise AuthError("App credentials are not configured")
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=api_key,
            leeway=leeway,
            options={"require": ["exp", "nbf", "dest"]},
        )
    except jwt.PyJWTError as e:
        raise AuthError(f"Invalid session token: {e}") from e
    shop = urlparse(str(claims.get("dest") or "")).netloc
    if not is_valid_shop_domain(shop):
        raise AuthError("Session token does not name a shop")
    iss = urlparse(str(claims.get("iss") or "")).netloc
    if iss and iss != shop:
        raise AuthError("Session token issuer does not match its destination")
    return shop


def build_authorize_url(shop: str, api_key: str, scopes: list[str], redirect_uri: str, state: str) -> str:
    query = urlencode({
        "client_id": api_key,
        "scope": ",".join(scopes),
        "redirect_uri": redirect_uri,
        "state": state,
    })
    return f"https://{shop}/admin/oauth/authorize?{query}"


def exchange_code(shop: str, code: str, api_key: str, secret: str, timeout: float = 20) -> dict:
    """Trade the callback's authorization code for an offline access token."""
    url = f"https://{shop}/admin/oauth/access_token"
    payload = {"client_id": api_key, "client_secret": secret, "code": code}
    with httpx.Client(timeout=timeout) as client:
        try:
            r = client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise AuthError(f"Token exchange failed: {e}") from e
    if r.status_code != 200:
        raise AuthError(f"Token exchange failed ({r.status_code}): {r.text[:200]}")
    data = r.json()
    if not data.get("access_token"):
        raise AuthError("Token exchange returned no access token")
    log.info("Granted scopes for %s: %s", shop, data.get("scope", ""))
    return data

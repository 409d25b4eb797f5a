from functools import wraps

from flask import current_app, g, jsonify, redirect, request, session, url_for

from ..extensions import sessions
from ..services.auth import AuthError, decode_session_token, is_fresh_timestamp, sanitize_shop, verify_query_hmac
from ..services.shopify_client import ShopifyAdminClient

REAUTH_HEADER = "X-Shopify-API-Request-Failure-Reauthorize"
REAUTH_URL_HEADER = "X-Shopify-API-Request-Failure-Reauthorize-Url"


def _wants_json() -> bool:
    if request.path.startswith("/api/"):
        return True
    if request.headers.get("Authorization", "").startswith("Bearer "):
        return True
    best = request.accept_mimetypes.best_match(["application/json", "text/html"])
    return best == "application/json" and request.accept_mimetypes[best] > request.accept_mimetypes["text/html"]


def reauth_url(shop: str | None) -> str:
    if shop:
        return url_for("auth.auth_start", shop=shop)
    return url_for("auth.login")


def reauth_response(shop: str | None, message: str = "Authentication required"):
    """Tell App Bridge (or the browser) to go through OAuth again."""
    target = reauth_url(shop)
    if _wants_json():
        resp = jsonify({"error": message, "reauth": True, "reauthUrl": target})
        resp.status_code = 401
        resp.headers[REAUTH_HEADER] = "1"
        resp.headers[REAUTH_URL_HEADER] = target
        return resp
    return redirect(target)


def resolve_shop() -> str | None:
    """Work out which shop the request is for, or None if it can't be proven."""
    cfg = current_app.config
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        try:
            return decode_session_token(auth[len("Bearer "):].strip(), cfg["SHOPIFY_API_KEY"], cfg["SHOPIFY_API_SECRET"])
        except AuthError as e:
            current_app.logger.warning("Rejected session token: %s", e)
            return None
    if request.args.get("hmac"):
        params = request.args.to_dict()
        if verify_query_hmac(params, cfg["SHOPIFY_API_SECRET"]):
            if not is_fresh_timestamp(params.get("timestamp")):
                current_app.logger.warning("Rejected stale signed query for shop %s", params.get("shop"))
                return None
            shop = sanitize_shop(params.get("shop"))
            if shop:
                session["shop"] = shop
            return shop
        current_app.logger.warning("Rejected query HMAC for shop %s", request.args.get("shop"))
        return None
    return sanitize_shop(session.get("shop"))


def admin_required(view):
    """Load the shop's offline session and expose an Admin API client as g.admin."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        cfg = current_app.config
        shop = resolve_shop()
        if not shop:
            return reauth_response(sanitize_shop(request.args.get("shop")))
        shop_session = sessions.load_session(shop)
        if shop_session is None:
            return reauth_response(shop, "App is not installed for this shop")
        if not shop_session.covers(cfg["SHOPIFY_SCOPES"]):
            current_app.logger.info(
                "Stored token for %s lacks scopes %s; requesting reauthorization",
                shop, ",".join(cfg["SHOPIFY_SCOPES"]),
            )
            return reauth_response(shop, "App needs additional permissions")
        g.shop = shop
        g.shopify_session = shop_session
        g.admin = ShopifyAdminClient(shop, shop_session.access_token, api_version=cfg["SHOPIFY_API_VERSION"])
        return view(*args, **kwargs)

    return wrapper


import secrets

from flask import Blueprint, current_app, jsonify, redirect, render_template, request, session, url_for

from ..extensions import sessions
from ..services.auth import (
    AuthError,
    build_authorize_url,
    exchange_code,
    login_error_message,
    sanitize_shop,
    verify_query_hmac,
)
from ..storage.sessions import ShopSession

bp = Blueprint("auth", __name__)


@bp.route("/auth/login", methods=["GET", "POST"])
def login():
    shop_input = request.values.get("shop")
    if request.method == "GET" and shop_input is None:
        return render_template("login.html", errors={}, shop="")
    errors = login_error_message(shop_input)
    if errors:
        return render_template("login.html", errors=errors, shop=shop_input or ""), 400
    return redirect(url_for("auth.auth_start", shop=sanitize_shop(shop_input)))


@bp.get("/auth")
def auth_start():
    cfg = current_app.config
    shop = sanitize_shop(request.args.get("shop"))
    if not shop:
        return redirect(url_for("auth.login"))
    if not cfg.get("SHOPIFY_API_KEY") or not cfg.get("SHOPIFY_API_SECRET"):
        current_app.logger.error("SHOPIFY_API_KEY / SHOPIFY_API_SECRET are not configured")
        return jsonify({"error": "App credentials are not configured"}), 500

    state = secrets.token_urlsafe(16)
    session["oauth_state"] = state
    session["oauth_shop"] = shop
    url = build_authorize_url(
        shop,
        api_key=cfg["SHOPIFY_API_KEY"],
        scopes=cfg["SHOPIFY_SCOPES"],
        redirect_uri=f"{cfg['SHOPIFY_APP_URL']}{url_for('auth.auth_callback')}",
        state=state,
    )
    current_app.logger.info("Starting OAuth for %s with scopes %s", shop, ",".join(cfg["SHOPIFY_SCOPES"]))
    return redirect(url)


@bp.get("/auth/callback")
def auth_callback():
    cfg = current_app.config
    params = request.args.to_dict()
    if not verify_query_hmac(params, cfg.get("SHOPIFY_API_SECRET")):
        return jsonify({"error": "HMAC verification failed"}), 400

    shop = sanitize_shop(params.get("shop"))
    code = params.get("code")
    state = params.get("state")
    if not (shop and code and state):
        return jsonify({"error": "Missing shop/code/state"}), 400
    expected = session.pop("oauth_state", None)
    if not expected or expected != state or session.pop("oauth_shop", None) != shop:
        return jsonify({"error": "State mismatch"}), 400

    try:
        token = exchange_code(shop, code, cfg["SHOPIFY_API_KEY"], cfg["SHOPIFY_API_SECRET"])
    except AuthError as e:
        current_app.logger.exception("OAuth token exchange failed for %s", shop)
        return jsonify({"error": str(e)}), 400

    previous = sessions.find_sessions_by_shop(shop)
    if previous:
        current_app.logger.info("Replacing %d stored session(s) for %s", len(previous), shop)
        sessions.delete_session(shop)
    stored = sessions.store_session(
        ShopSession(shop=shop, access_token=token["access_token"], scope=token.get("scope", ""))
    )
    session["shop"] = shop
    current_app.logger.info("Stored offline session for %s (token %s)", shop, stored.token_hint())

    return redirect(url_for("pages.dashboard", shop=shop, host=params.get("host")))


@bp.get("/auth/logout")
def logout():
    session.clear()
    return redirect(url_for("auth.login"))

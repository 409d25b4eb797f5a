from flask import Blueprint, current_app, g, redirect, render_template, request, url_for

from ..services.installer import describe_error
from ..services.metafields import installed_sections
from ..services.sections import list_sections
from ..services.shopify_client import ShopifyAuthError, ShopifyError
from ..utils.admin import admin_required

bp = Blueprint("pages", __name__)


@bp.get("/")
def index():
    if request.args.get("shop"):
        return redirect(url_for("pages.dashboard", **request.args.to_dict()))
    return redirect(url_for("auth.login"))


@bp.get("/app")
@admin_required
def dashboard():
    cfg = current_app.config
    themes, installed, error = [], [], None
    try:
        themes = sorted(g.admin.list_themes(), key=lambda t: t.get("role") != "main")
        installed = installed_sections(g.admin, namespace=cfg["METAFIELD_NAMESPACE"])
    except ShopifyAuthError:
        raise
    except ShopifyError as e:
        current_app.logger.exception("Failed to load dashboard data for %s", g.shop)
        error = describe_error(e)

    sections = [{**s, "installed": s["id"] in installed} for s in list_sections()]
    return render_template(
        "dashboard.html",
        shop=g.shop,
        sections=sections,
        themes=themes,
        error=error,
        install_mode=cfg["SECTION_INSTALL_MODE"],
        api_key=cfg.get("SHOPIFY_API_KEY") or "",
    )

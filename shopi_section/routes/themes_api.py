from flask import Blueprint, current_app, g, jsonify

from ..services.installer import SectionInstaller, describe_error
from ..services.metafields import installed_sections
from ..services.shopify_client import ShopifyAuthError, ShopifyError
from ..utils.admin import admin_required

bp = Blueprint("themes_api", __name__)


def _theme_summary(theme: dict) -> dict:
    return {
        "id": theme.get("id"),
        "name": theme.get("name"),
        "role": theme.get("role"),
        "processing": bool(theme.get("processing")),
    }


@bp.get("/themes")
@admin_required
def api_themes():
    cfg = current_app.config
    installer = SectionInstaller.from_config(g.admin, cfg)
    try:
        themes = g.admin.list_themes()
        flagged = installed_sections(g.admin, namespace=cfg["METAFIELD_NAMESPACE"])
    except ShopifyAuthError:
        raise
    except ShopifyError as e:
        current_app.logger.exception("Listing themes failed for %s", g.shop)
        return jsonify({"themes": [], "error": describe_error(e)}), 502

    out = []
    for theme in themes:
        summary = _theme_summary(theme)
        try:
            summary["installedSections"] = installer.installed_in_theme(theme.get("id"), flagged=flagged)
        except ShopifyAuthError:
            raise
        except ShopifyError as e:
            # A protected or half-processed theme shouldn't hide the others
            current_app.logger.warning("Could not check theme %s: %s", theme.get("id"), e)
            summary["installedSections"] = []
            summary["error"] = describe_error(e)
        out.append(summary)
    return jsonify({"themes": out, "installedSections": flagged})

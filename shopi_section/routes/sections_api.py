from flask import Blueprint, current_app, g, jsonify, request

from ..services.installer import MODE_ASSET, SectionInstaller, SectionInstallError, describe_error
from ..services.metafields import MetafieldConflictError, installed_sections
from ..services.sections import SECTIONS, list_sections
from ..services.shopify_client import ShopifyAuthError, ShopifyError, theme_gid, theme_numeric_id
from ..utils.admin import admin_required

bp = Blueprint("sections_api", __name__)

ACTION_ALIASES = {
    "activate": "activate",
    "enable": "activate",
    "deactivate": "deactivate",
    "disable": "deactivate",
}

TEST_SECTION_KEY = "sections/shopi-test.liquid"
TEST_SECTION_CODE = """{% schema %}
{
  "name": "Test Section",
  "settings": []
}
{% endschema %}
<div>Test from Shopi Section - uploaded via GraphQL</div>
"""


def _field(name: str, *aliases: str) -> str:
    body = request.get_json(silent=True) if request.is_json else None
    source = body if isinstance(body, dict) else request.form
    for key in (name, *aliases):
        value = source.get(key)
        if value not in (None, ""):
            return str(value).strip()
    return ""


def _error(message: str, status: int, **extra):
    return jsonify({"success": False, "error": message, **extra}), status


@bp.get("/sections")
@admin_required
def api_sections_list():
    installed = installed_sections(g.admin, namespace=current_app.config["METAFIELD_NAMESPACE"])
    return jsonify({
        "sections": [
            {"id": s["id"], "name": s["name"], "description": s["description"], "installed": s["id"] in installed}
            for s in list_sections()
        ]
    })


@bp.post("/section")
@admin_required
def api_section():
    cfg = current_app.config
    action = ACTION_ALIASES.get(_field("action", "actionType").lower())
    section_id = _field("sectionId")
    theme_id = _field("themeId")

    # Everything below is validated before the first Shopify call
    if action is None:
        return _error("Invalid action; expected activate or deactivate", 400)
    if not section_id:
        return _error("Missing sectionId", 400)
    if section_id not in SECTIONS:
        return _error(f"Unknown section: {section_id}", 400)
    writes_assets = cfg["SECTION_INSTALL_MODE"] == MODE_ASSET
    if writes_assets and not theme_id:
        return _error("Missing themeId", 400)
    if theme_id:
        try:
            theme_id = theme_numeric_id(theme_id)
        except ValueError:
            return _error(f"Invalid themeId: {theme_id}", 400)

    installer = SectionInstaller.from_config(g.admin, cfg)
    try:
        if action == "activate":
            result = installer.activate(theme_id, section_id)
        else:
            result = installer.deactivate(theme_id, section_id)
    except SectionInstallError as e:
        current_app.logger.error("All upload methods failed for %s on theme %s: %s", section_id, theme_id, e)
        return _error(e.message, 502, attempts=e.attempts)
    except MetafieldConflictError as e:
        return _error(str(e), 409)
    except ShopifyAuthError:
        raise
    except ShopifyError as e:
        current_app.logger.exception("Section %s failed for %s on theme %s", action, section_id, theme_id)
        return _error(describe_error(e), e.status_code if e.status_code and e.status_code < 500 else 502)

    current_app.logger.info("%s %s on theme %s for %s", action, section_id, theme_id or "-", g.shop)
    return jsonify({"success": True, **result})


@bp.post("/test-upload")
@admin_required
def api_test_upload():
    """Step-by-step check of what this shop lets the app do with a theme."""
    theme_id = _field("themeId")
    try:
        theme_id = theme_numeric_id(theme_id)
    except ValueError:
        return jsonify({"success": False, "message": "Missing or invalid themeId", "results": {}}), 400

    admin = g.admin
    log = current_app.logger
    log.info("Test upload for %s theme %s (token %s)", g.shop, theme_id, g.shopify_session.token_hint())

    def read_layout():
        asset = admin.get_asset(theme_id, "layout/theme.liquid")
        if asset is None:
            raise ShopifyError("layout/theme.liquid not found", status_code=404)
        return {"asset": asset.get("key")}

    def graphql_upload():
        return {
            "themeGid": theme_gid(theme_id),
            "filename": TEST_SECTION_KEY,
            "upserted": admin.upsert_theme_files(theme_id, {TEST_SECTION_KEY: TEST_SECTION_CODE}),
        }

    def check_scopes():
        # REST and GraphQL report the grant separately; both should agree
        return {"granted": admin.get_access_scopes(), "graphqlGranted": admin.app_access_scopes()}

    steps = [
        ("scopes", "Access scopes", check_scopes),
        ("theme", "Fetch theme", lambda: {"theme": admin.get_theme(theme_id)}),
        ("asset", "Read asset", read_layout),
        ("graphql", "GraphQL upload", graphql_upload),
    ]

    results: dict = {}
    for name, label, run in steps:
        try:
            outcome = run()
        except ShopifyAuthError:
            raise
        except ShopifyError as e:
            log.warning("Test upload step %s failed: %s", name, e)
            results[name] = {"success": False, "status": e.status_code, "error": describe_error(e)}
            results["summary"] = f"{label} failed: {describe_error(e)}"
            return jsonify({"success": False, "message": f"{label} failed", "results": results}), 500
        if name == "scopes":
            required = set(current_app.config["SHOPIFY_SCOPES"])
            outcome["missing"] = sorted(required - set(outcome["granted"]))
            outcome["graphqlMissing"] = sorted(required - set(outcome["graphqlGranted"]))
        results[name] = {"success": True, **outcome}

    results["summary"] = "All tests passed: theme accessible and GraphQL upload works"
    return jsonify({"success": True, "message": "All tests passed", "results": results})

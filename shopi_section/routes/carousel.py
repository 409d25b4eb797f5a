from flask import Blueprint, current_app, g, jsonify, render_template, request

from ..services.carousel import CarouselDataError, load_carousel, save_carousel
from ..services.metafields import MetafieldConflictError
from ..services.shopify_client import ShopifyAuthError, ShopifyError, ShopifyUserError
from ..utils.admin import admin_required

bp = Blueprint("carousel", __name__)


def _namespace() -> str:
    return current_app.config["METAFIELD_NAMESPACE"]


@bp.get("/app/carousel")
@admin_required
def carousel_page():
    return render_template(
        "carousel.html",
        shop=g.shop,
        carousel_data=load_carousel(g.admin, namespace=_namespace()),
        api_key=current_app.config.get("SHOPIFY_API_KEY") or "",
    )


@bp.get("/api/carousel")
@admin_required
def api_carousel_get():
    return jsonify({"carouselData": load_carousel(g.admin, namespace=_namespace())})


@bp.post("/app/carousel")
@admin_required
def carousel_save():
    if request.is_json:
        payload = request.get_json(silent=True)
        if payload is None:
            return jsonify({"status": "error", "errors": ["Request body is not valid JSON"]}), 400
        if isinstance(payload, dict) and "carouselData" in payload:
            payload = payload["carouselData"]
    else:
        payload = request.form.get("carouselJson")
    if payload is None:
        return jsonify({"status": "error", "errors": ["carouselJson is required"]}), 400

    try:
        saved = save_carousel(
            g.admin,
            payload,
            namespace=_namespace(),
            retries=current_app.config["METAFIELD_WRITE_RETRIES"],
        )
    except CarouselDataError as e:
        return jsonify({"status": "error", "errors": e.errors}), 400
    except ShopifyUserError as e:
        current_app.logger.warning("metafieldsSet rejected carousel data for %s: %s", g.shop, e)
        return jsonify({"status": "error", "errors": [err.get("message") for err in e.errors] or [str(e)]}), 422
    except MetafieldConflictError as e:
        return jsonify({"status": "error", "errors": [str(e)]}), 409
    except ShopifyAuthError:
        raise
    except ShopifyError as e:
        current_app.logger.exception("Saving carousel data failed for %s", g.shop)
        return jsonify({"status": "error", "errors": [str(e)]}), 502

    current_app.logger.info("Saved %d carousel group(s) for %s", len(saved), g.shop)
    return jsonify({"status": "success", "carouselData": saved})

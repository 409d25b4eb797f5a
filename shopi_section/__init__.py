import logging

from flask import Flask, g

from .config import Config
from .extensions import cors, store, sessions
from .filters import register_filters
from .services.shopify_client import ShopifyAuthError


def _register_error_handlers(app: Flask):
    from .utils.admin import reauth_response

    @app.errorhandler(ShopifyAuthError)
    def handle_shopify_auth_error(e: ShopifyAuthError):
        shop = g.get("shop")
        if shop:
            removed = sessions.delete_session(shop)
            app.logger.warning(
                "Shopify answered %s for %s; deleted %d stored session(s)", e.status_code, shop, removed
            )
        return reauth_response(shop, "Shopify rejected the stored access token")


def create_app(config_class: type[Config] = Config):
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_object(config_class)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Extensions
    cors.init_app(app)
    store.init_app(app)

    # Filters
    register_filters(app)
    _register_error_handlers(app)

    # Blueprints
    from .routes.auth import bp as auth_bp
    from .routes.pages import bp as pages_bp
    from .routes.carousel import bp as carousel_bp
    from .routes.sections_api import bp as sections_api
    from .routes.themes_api import bp as themes_api

    app.register_blueprint(auth_bp)
    app.register_blueprint(pages_bp)
    app.register_blueprint(carousel_bp)
    app.register_blueprint(sections_api, url_prefix="/api")
    app.register_blueprint(themes_api, url_prefix="/api")

    return app

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _csv(name: str, default: str) -> list[str]:
    return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]


class Config:
    BASE_DIR = Path(__file__).resolve().parent.parent
    DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
    LIQUID_DIR = Path(__file__).resolve().parent / "liquid"
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    SHOPIFY_API_KEY = os.getenv("SHOPIFY_API_KEY")
    SHOPIFY_API_SECRET = os.getenv("SHOPIFY_API_SECRET")
    SHOPIFY_APP_URL = (os.getenv("SHOPIFY_APP_URL") or "http://localhost:3000").rstrip("/")
    # Hardcoded fallback so the theme scopes are always requested
    SHOPIFY_SCOPES = _csv("SHOPIFY_SCOPES", "write_products,read_themes,write_themes")
    SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2024-10")
    SHOPIFY_FALLBACK_API_VERSIONS = _csv("SHOPIFY_FALLBACK_API_VERSIONS", "2024-01")

    METAFIELD_NAMESPACE = os.getenv("METAFIELD_NAMESPACE", "shopi_section")
    METAFIELD_WRITE_RETRIES = int(os.getenv("METAFIELD_WRITE_RETRIES", "3"))
    # "asset" writes Liquid files into the theme, "extension" only flags the
    # section as enabled for the theme app extension.
    SECTION_INSTALL_MODE = os.getenv("SECTION_INSTALL_MODE", "asset").strip().lower()
    AUTO_ACTIVATE_SECTIONS = _flag("AUTO_ACTIVATE_SECTIONS", "true")

    SESSION_COOKIE_SAMESITE = "None"
    SESSION_COOKIE_SECURE = True


class DevConfig(Config):
    DEBUG = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False


class ProdConfig(Config):
    DEBUG = False

"""
Shared test fixtures and configuration for Shopi Section tests.
"""
import hashlib
import json
import time
import uuid
from pathlib import Path

import httpx
import jwt
import pytest
import respx
from flask import Flask
from flask.testing import FlaskClient

from shopi_section import create_app
from shopi_section.config import Config
from shopi_section.storage.json_store import JsonStore
from shopi_section.storage.sessions import SessionStorage, ShopSession


TEST_SHOP = "test-store.myshopify.com"
TEST_API_KEY = "test_api_key"
TEST_API_SECRET = "test_api_secret"
TEST_TOKEN = "shpat_test_token_123"
TEST_THEME_ID = "123456789"
API_VERSION = "2024-10"
ADMIN_BASE = f"https://{TEST_SHOP}/admin/api/{API_VERSION}"
GRAPHQL_URL = f"{ADMIN_BASE}/graphql.json"


@pytest.fixture
def app(tmp_path: Path) -> Flask:
    """Create a test Flask application backed by a temporary data directory."""

    class TestConfig(Config):
        TESTING = True
        SECRET_KEY = "test-secret"
        DATA_DIR = tmp_path / "data"
        SHOPIFY_API_KEY = TEST_API_KEY
        SHOPIFY_API_SECRET = TEST_API_SECRET
        SHOPIFY_APP_URL = "https://app.example.com"
        SHOPIFY_SCOPES = ["write_products", "read_themes", "write_themes"]
        SHOPIFY_API_VERSION = API_VERSION
        SHOPIFY_FALLBACK_API_VERSIONS = ["2024-01"]
        METAFIELD_NAMESPACE = "shopi_section"
        SECTION_INSTALL_MODE = "asset"
        AUTO_ACTIVATE_SECTIONS = True
        SESSION_COOKIE_SECURE = False

    app = create_app(TestConfig)
    yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create a Flask test client."""
    return app.test_client()


@pytest.fixture
def temp_data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory for JsonStore tests."""
    data_dir = tmp_path / "store"
    data_dir.mkdir()
    return data_dir


@pytest.fixture
def json_store(temp_data_dir: Path) -> JsonStore:
    """Create a JsonStore instance with temporary directory."""
    return JsonStore(str(temp_data_dir))


@pytest.fixture
def session_storage(app) -> SessionStorage:
    from shopi_section.extensions import sessions
    return sessions


@pytest.fixture
def installed_session(session_storage) -> ShopSession:
    """An offline session for TEST_SHOP with every scope the app asks for."""
    return session_storage.store_session(
        ShopSession(shop=TEST_SHOP, access_token=TEST_TOKEN, scope="write_products,write_themes")
    )


def make_session_token(shop: str = TEST_SHOP, secret: str = TEST_API_SECRET,
                       audience: str = TEST_API_KEY, expires_in: int = 60) -> str:
    now = int(time.time())
    claims = {
        "iss": f"https://{shop}/admin",
        "dest": f"https://{shop}",
        "aud": audience,
        "sub": "42",
        "exp": now + expires_in,
        "nbf": now - 5,
        "iat": now - 5,
        "jti": str(uuid.uuid4()),
        "sid": "session-id",
    }
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def auth_headers(installed_session) -> dict:
    return {"Authorization": f"Bearer {make_session_token()}"}


class FakeShopify:
    """In-memory stand-in for the parts of the Admin API the app touches.

    Records every request so tests can assert on exactly what was written.
    """

    def __init__(self, theme_id: str = TEST_THEME_ID):
        self.theme_id = theme_id
        self.themes = [
            {"id": int(theme_id), "name": "Dawn", "role": "main", "processing": False},
            {"id": 987654321, "name": "Dawn (draft)", "role": "unpublished", "processing": False},
        ]
        self.assets: dict[tuple[str, str], str] = {
            (theme_id, "layout/theme.liquid"): "<html>{{ content_for_layout }}</html>",
        }
        self.metafields: dict[tuple[str, str, str], str] = {}
        self.scopes = ["write_products", "read_products", "write_themes", "read_themes"]
        self.asset_writes: list[dict] = []
        self.graphql_calls: list[dict] = []
        self.fail_puts: dict[str, int] = {}
        self.fail_reads: dict[str, int] = {}
        self.stale_writes = 0

    # -----------------------------
    # helpers for tests
    # -----------------------------
    def set_metafield_value(self, key: str, value, owner: str = "shop", namespace: str = "shopi_section"):
        self.metafields[(owner, namespace, key)] = value if isinstance(value, str) else json.dumps(value)

    def metafield_value(self, key: str, owner: str = "shop", namespace: str = "shopi_section"):
        raw = self.metafields.get((owner, namespace, key))
        return None if raw is None else json.loads(raw)

    def section_writes(self) -> list[dict]:
        return [w for w in self.asset_writes if w["key"].startswith("sections/")]

    @staticmethod
    def digest(value: str | None) -> str | None:
        return None if value is None else hashlib.sha256(value.encode("utf-8")).hexdigest()

    # -----------------------------
    # REST
    # -----------------------------
    def _theme_from_path(self, path: str) -> str:
        return path.split("/themes/")[1].split("/")[0].split(".")[0]

    def themes_handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail_reads.get("themes"):
            return httpx.Response(self.fail_reads["themes"], text="unavailable")
        return httpx.Response(200, json={"themes": self.themes})

    def theme_handler(self, request: httpx.Request) -> httpx.Response:
        theme_id = self._theme_from_path(request.url.path)
        for theme in self.themes:
            if str(theme["id"]) == theme_id:
                return httpx.Response(200, json={"theme": theme})
        return httpx.Response(404, json={"errors": "Not Found"})

    def assets_handler(self, request: httpx.Request) -> httpx.Response:
        theme_id = self._theme_from_path(request.url.path)
        version = request.url.path.split("/admin/api/")[1].split("/")[0]
        if request.method == "PUT":
            asset = json.loads(request.content)["asset"]
            status = self.fail_puts.get(f"{version}:{asset['key']}") or self.fail_puts.get(asset["key"])
            if status:
                return httpx.Response(status, json={"errors": "Not Found" if status == 404 else "Rejected"})
            self.assets[(theme_id, asset["key"])] = asset["value"]
            self.asset_writes.append({"version": version, "key": asset["key"], "value": asset["value"]})
            return httpx.Response(200, json={"asset": {"key": asset["key"], "theme_id": int(theme_id)}})
        if request.method == "GET" and self.fail_reads.get(theme_id):
            return httpx.Response(self.fail_reads[theme_id], json={"errors": "Internal Server Error"})
        key = request.url.params.get("asset[key]")
        if (theme_id, key) not in self.assets:
            return httpx.Response(404, json={"errors": "Not Found"})
        if request.method == "DELETE":
            del self.assets[(theme_id, key)]
            return httpx.Response(200, json={"message": f"{key} was successfully deleted"})
        return httpx.Response(200, json={"asset": {"key": key, "value": self.assets[(theme_id, key)]}})

    def access_scopes_handler(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_scopes": [{"handle": s} for s in self.scopes]})

    # -----------------------------
    # GraphQL
    # -----------------------------
    def graphql_handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        query, variables = body["query"], body.get("variables") or {}
        self.graphql_calls.append(body)

        if "metafieldsSet" in query:
            return httpx.Response(200, json={"data": {"metafieldsSet": self._metafields_set(variables)}})
        if "themeFilesUpsert" in query:
            theme_id = variables["themeId"].rsplit("/", 1)[1]
            written = []
            for f in variables["files"]:
                status = self.fail_puts.get(f"graphql:{f['filename']}")
                if status:
                    return httpx.Response(200, json={"data": {"themeFilesUpsert": {
                        "upsertedThemeFiles": [],
                        "userErrors": [{"filename": f["filename"], "code": "ACCESS_DENIED", "message": "Access denied"}],
                    }}})
                self.assets[(theme_id, f["filename"])] = f["body"]["value"]
                self.asset_writes.append({"version": "graphql", "key": f["filename"], "value": f["body"]["value"]})
                written.append({"filename": f["filename"]})
            return httpx.Response(200, json={"data": {"themeFilesUpsert": {"upsertedThemeFiles": written, "userErrors": []}}})
        if "accessScopes" in query:
            return httpx.Response(200, json={"data": {"currentAppInstallation": {
                "accessScopes": [{"handle": s} for s in self.scopes]}}})

        owner = "app" if "currentAppInstallation" in query else "shop"
        field = "currentAppInstallation" if owner == "app" else "shop"
        owner_id = "gid://shopify/AppInstallation/1" if owner == "app" else "gid://shopify/Shop/1"
        if "metafield(" in query:
            raw = self.metafields.get((owner, variables["namespace"], variables["key"]))
            mf = None if raw is None else {
                "id": f"gid://shopify/Metafield/{variables['key']}",
                "value": raw,
                "compareDigest": self.digest(raw),
            }
            return httpx.Response(200, json={"data": {field: {"id": owner_id, "metafield": mf}}})
        return httpx.Response(200, json={"data": {field: {"id": owner_id}}})

    def _metafields_set(self, variables: dict) -> dict:
        saved = []
        for entry in variables["metafields"]:
            owner = "app" if "AppInstallation" in entry["ownerId"] else "shop"
            k = (owner, entry["namespace"], entry["key"])
            if self.stale_writes:
                self.stale_writes -= 1
                return {"metafields": [], "userErrors": [{
                    "field": ["metafields", "0"], "message": "The resource has been updated since it was loaded.",
                    "code": "STALE_OBJECT"}]}
            if "compareDigest" in entry and entry["compareDigest"] != self.digest(self.metafields.get(k)):
                return {"metafields": [], "userErrors": [{
                    "field": ["metafields", "0"], "message": "The resource has been updated since it was loaded.",
                    "code": "STALE_OBJECT"}]}
            self.metafields[k] = entry["value"]
            saved.append({"id": f"gid://shopify/Metafield/{entry['key']}", "key": entry["key"],
                          "namespace": entry["namespace"], "value": entry["value"],
                          "compareDigest": self.digest(entry["value"])})
        return {"metafields": saved, "userErrors": []}


@pytest.fixture
def fake_shopify():
    """Route every Admin API call for TEST_SHOP to a FakeShopify instance."""
    fake = FakeShopify()
    with respx.mock(assert_all_called=False) as router:
        router.get(url__regex=rf"https://{TEST_SHOP}/admin/api/[^/]+/themes\.json").mock(side_effect=fake.themes_handler)
        router.get(url__regex=rf"https://{TEST_SHOP}/admin/api/[^/]+/themes/\d+\.json").mock(side_effect=fake.theme_handler)
        router.route(url__regex=rf"https://{TEST_SHOP}/admin/api/[^/]+/themes/\d+/assets\.json.*").mock(
            side_effect=fake.assets_handler
        )
        router.get(f"https://{TEST_SHOP}/admin/oauth/access_scopes.json").mock(side_effect=fake.access_scopes_handler)
        router.post(url__regex=rf"https://{TEST_SHOP}/admin/api/[^/]+/graphql\.json").mock(side_effect=fake.graphql_handler)
        fake.router = router
        yield fake

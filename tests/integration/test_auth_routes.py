"""
Integration tests for login and the OAuth install flow.
"""
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx

from shopi_section.services.auth import compute_hmac
from shopi_section.storage.sessions import ShopSession
from tests.conftest import TEST_API_KEY, TEST_API_SECRET, TEST_SHOP


def _signed_query(params: dict) -> dict:
    message = "&".join(f"{k}={v}" for k, v in sorted(params.items()))
    return {**params, "hmac": compute_hmac(TEST_API_SECRET, message)}


def _start_oauth(client) -> str:
    response = client.get("/auth", query_string={"shop": TEST_SHOP})
    assert response.status_code == 302
    return parse_qs(urlparse(response.headers["Location"]).query)["state"][0]


@pytest.mark.integration
class TestLogin:

    def test_login_form(self, client):
        response = client.get("/auth/login")

        assert response.status_code == 200
        assert b'name="shop"' in response.data

    def test_empty_shop(self, client):
        response = client.post("/auth/login", data={"shop": ""})

        assert response.status_code == 400
        assert b"Please enter your shop domain to log in" in response.data

    def test_invalid_shop(self, client):
        response = client.post("/auth/login", data={"shop": "not a shop!"})

        assert response.status_code == 400
        assert b"Please enter a valid shop domain to log in" in response.data

    def test_valid_shop_starts_oauth(self, client):
        response = client.post("/auth/login", data={"shop": "test-store"})

        assert response.status_code == 302
        assert response.headers["Location"].endswith(f"/auth?shop={TEST_SHOP}")


@pytest.mark.integration
class TestOAuth:

    def test_auth_redirects_to_shopify(self, client):
        response = client.get("/auth", query_string={"shop": TEST_SHOP})

        location = urlparse(response.headers["Location"])
        query = parse_qs(location.query)
        assert location.netloc == TEST_SHOP
        assert location.path == "/admin/oauth/authorize"
        assert query["client_id"] == [TEST_API_KEY]
        assert query["scope"] == ["write_products,read_themes,write_themes"]
        assert query["redirect_uri"] == ["https://app.example.com/auth/callback"]

    def test_auth_without_shop_goes_to_login(self, client):
        response = client.get("/auth")

        assert response.headers["Location"].endswith("/auth/login")

    @respx.mock
    def test_callback_stores_offline_session(self, client, session_storage):
        state = _start_oauth(client)
        respx.post(f"https://{TEST_SHOP}/admin/oauth/access_token").mock(
            return_value=httpx.Response(200, json={"access_token": "shpat_fresh", "scope": "write_products,write_themes"})
        )

        response = client.get("/auth/callback", query_string=_signed_query({
            "shop": TEST_SHOP, "code": "abc", "state": state, "timestamp": "1700000000", "host": "aG9zdA",
        }))

        assert response.status_code == 302
        assert "/app?" in response.headers["Location"]
        stored = session_storage.load_session(TEST_SHOP)
        assert stored.access_token == "shpat_fresh"
        assert stored.covers(["write_products", "read_themes", "write_themes"])

    @respx.mock
    def test_reinstall_replaces_earlier_session(self, client, session_storage):
        session_storage.store_session(ShopSession(shop=TEST_SHOP, access_token="shpat_old", scope="read_themes"))
        state = _start_oauth(client)
        respx.post(f"https://{TEST_SHOP}/admin/oauth/access_token").mock(
            return_value=httpx.Response(200, json={"access_token": "shpat_new", "scope": "write_products,write_themes"})
        )

        client.get("/auth/callback", query_string=_signed_query({"shop": TEST_SHOP, "code": "abc", "state": state}))

        [only] = session_storage.find_sessions_by_shop(TEST_SHOP)
        assert only.access_token == "shpat_new"

    def test_callback_rejects_bad_hmac(self, client, session_storage):
        state = _start_oauth(client)
        query = _signed_query({"shop": TEST_SHOP, "code": "abc", "state": state})
        query["code"] = "tampered"

        response = client.get("/auth/callback", query_string=query)

        assert response.status_code == 400
        assert response.get_json()["error"] == "HMAC verification failed"
        assert session_storage.load_session(TEST_SHOP) is None

    def test_callback_rejects_state_mismatch(self, client):
        _start_oauth(client)

        response = client.get("/auth/callback", query_string=_signed_query({
            "shop": TEST_SHOP, "code": "abc", "state": "forged",
        }))

        assert response.status_code == 400
        assert response.get_json()["error"] == "State mismatch"

    @respx.mock
    def test_callback_token_exchange_failure(self, client, session_storage):
        state = _start_oauth(client)
        respx.post(f"https://{TEST_SHOP}/admin/oauth/access_token").mock(
            return_value=httpx.Response(400, text="invalid code")
        )

        response = client.get("/auth/callback", query_string=_signed_query({
            "shop": TEST_SHOP, "code": "abc", "state": state,
        }))

        assert response.status_code == 400
        assert session_storage.load_session(TEST_SHOP) is None

    def test_logout_clears_cookie_session(self, client):
        with client.session_transaction() as sess:
            sess["shop"] = TEST_SHOP

        response = client.get("/auth/logout")

        assert response.status_code == 302
        with client.session_transaction() as sess:
            assert "shop" not in sess

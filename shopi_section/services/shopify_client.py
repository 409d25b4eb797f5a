import json
import logging
import re

import httpx

log = logging.getLogger(__name__)

THEME_GID_PREFIX = "gid://shopify/Theme/"


class ShopifyError(Exception):
    """An Admin API call failed; status_code is None for transport errors."""

    def __init__(self, message: str, status_code: int | None = None, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class ShopifyAuthError(ShopifyError):
    """401/403: the stored token is invalid or lacks the scopes for the call."""


class ShopifyUserError(ShopifyError, ValueError):
    """GraphQL answered 200 but reported errors or userErrors."""

    def __init__(self, message: str, errors: list | None = None, status_code: int | None = None):
        super().__init__(message, status_code=status_code, payload=errors)
        self.errors = errors or []
        self.codes = [e.get("code") for e in self.errors if isinstance(e, dict) and e.get("code")]


def theme_numeric_id(theme_id) -> str:
    """Accepts 123, "123" or a Theme GID and returns the bare digits."""
    raw = str(theme_id or "").strip()
    if raw.startswith(THEME_GID_PREFIX):
        raw = raw[len(THEME_GID_PREFIX):]
    digits = re.sub(r"\D", "", raw)
    if not digits:
        raise ValueError(f"Invalid theme id: {theme_id!r}")
    return digits


def theme_gid(theme_id) -> str:
    return f"{THEME_GID_PREFIX}{theme_numeric_id(theme_id)}"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300] or response.reason_phrase
    errors = body.get("errors") if isinstance(body, dict) else None
    if isinstance(errors, dict):
        return "; ".join(f"{k}: {v}" for k, v in errors.items())
    if isinstance(errors, list):
        return "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
    if errors:
        return str(errors)
    return response.reason_phrase


def _raise_for_status(response: httpx.Response):
    if response.is_success:
        return
    message = _error_message(response)
    payload = None
    try:
        payload = response.json()
    except ValueError:
        payload = response.text
    if response.status_code in (401, 403):
        raise ShopifyAuthError(message, status_code=response.status_code, payload=payload)
    raise ShopifyError(message, status_code=response.status_code, payload=payload)


def _user_errors(data: dict, field: str) -> list:
    return ((data.get(field) or {}).get("userErrors")) or []


def _join_messages(errors: list) -> str:
    return "; ".join(e.get("message", "Unknown user error") for e in errors)


class ShopifyAdminClient:
    def __init__(self, shop: str, access_token: str, api_version: str = "2024-10", timeout: float = 60):
        self.shop = shop
        self.token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.base = f"https://{self.shop}/admin/api/{self.api_version}"
        self.headers = {
            "X-Shopify-Access-Token": self.token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def with_api_version(self, api_version: str) -> "ShopifyAdminClient":
        return ShopifyAdminClient(self.shop, self.token, api_version=api_version, timeout=self.timeout)

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        with httpx.Client(timeout=self.timeout) as client:
            try:
                r = client.request(method, url, headers=self.headers, **kwargs)
            except httpx.HTTPError as e:
                raise ShopifyError(f"{method} {url} failed: {e}") from e
        log.debug("%s %s -> %s", method, url, r.status_code)
        _raise_for_status(r)
        return r

    # -----------------------------
    # REST
    # -----------------------------
    def list_themes(self) -> list[dict]:
        r = self._request("GET", f"{self.base}/themes.json")
        return r.json().get("themes", [])

    def get_theme(self, theme_id) -> dict:
        r = self._request("GET", f"{self.base}/themes/{theme_numeric_id(theme_id)}.json")
        return r.json().get("theme", {})

    def get_asset(self, theme_id, key: str) -> dict | None:
        """Fetch one theme asset; None when the theme has no such file."""
        url = f"{self.base}/themes/{theme_numeric_id(theme_id)}/assets.json"
        try:
            r = self._request("GET", url, params={"asset[key]": key})
        except ShopifyError as e:
            if e.status_code == 404:
                return None
            raise
        return r.json().get("asset")

    def put_asset(self, theme_id, key: str, value: str) -> dict:
        url = f"{self.base}/themes/{theme_numeric_id(theme_id)}/assets.json"
        r = self._request("PUT", url, json={"asset": {"key": key, "value": value}})
        return r.json().get("asset", {})

    def delete_asset(self, theme_id, key: str) -> bool:
        """Delete a theme asset; False when it did not exist."""
        url = f"{self.base}/themes/{theme_numeric_id(theme_id)}/assets.json"
        try:
            self._request("DELETE", url, params={"asset[key]": key})
        except ShopifyError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    def get_access_scopes(self) -> list[str]:
        r = self._request("GET", f"https://{self.shop}/admin/oauth/access_scopes.json")
        return [s.get("handle") for s in r.json().get("access_scopes", []) if s.get("handle")]

    # -----------------------------
    # GraphQL
    # -----------------------------
    def graphql(self, query: str, variables: dict | None = None) -> dict:
        payload = {"query": query, "variables": variables or {}}
        r = self._request("POST", f"{self.base}/graphql.json", json=payload)
        body = r.json()
        if body.get("errors"):
            errors = body["errors"]
            if isinstance(errors, list):
                messages = ", ".join(e.get("message", "Unknown GraphQL error") for e in errors)
            else:
                messages, errors = str(errors), [{"message": str(errors)}]
            raise ShopifyUserError(messages, errors)
        return body.get("data") or {}

    def upsert_theme_files(self, theme_id, files: dict[str, str]) -> list[str]:
        """Write text files through themeFilesUpsert; returns the filenames written."""
        mutation = """
        mutation themeFilesUpsert($themeId: ID!, $files: [OnlineStoreThemeFilesUpsertFileInput!]!) {
          themeFilesUpsert(themeId: $themeId, files: $files) {
            upsertedThemeFiles {
              filename
            }
            userErrors {
              filename
              code
              message
            }
          }
        }
        """
        variables = {
            "themeId": theme_gid(theme_id),
            "files": [
                {"filename": name, "body": {"type": "TEXT", "value": body}}
                for name, body in files.items()
            ],
        }
        data = self.graphql(mutation, variables)
        user_errors = _user_errors(data, "themeFilesUpsert")
        if user_errors:
            raise ShopifyUserError(_join_messages(user_errors), user_errors)
        upserted = ((data.get("themeFilesUpsert") or {}).get("upsertedThemeFiles")) or []
        if not upserted:
            raise ShopifyUserError("themeFilesUpsert returned no files", [])
        return [f.get("filename") for f in upserted]

    def app_access_scopes(self) -> list[str]:
        data = self.graphql("{ currentAppInstallation { accessScopes { handle } } }")
        scopes = ((data.get("currentAppInstallation") or {}).get("accessScopes")) or []
        return [s.get("handle") for s in scopes if s.get("handle")]

    @staticmethod
    def _owner_field(owner: str) -> str:
        if owner == "shop":
            return "shop"
        if owner == "app":
            return "currentAppInstallation"
        raise ValueError(f"Unknown metafield owner: {owner!r}")

    def get_metafield(self, namespace: str, key: str, owner: str = "shop") -> dict:
        """Return {"ownerId", "id", "value", "compareDigest"} for a metafield.

        id/value/compareDigest are None when the metafield does not exist yet.
        """
        field = self._owner_field(owner)
        query = f"""
        query GetMetafield($namespace: String!, $key: String!) {{
          {field} {{
            id
            metafield(namespace: $namespace, key: $key) {{
              id
              value
              compareDigest
            }}
          }}
        }}
        """
        data = self.graphql(query, {"namespace": namespace, "key": key})
        node = data.get(field) or {}
        mf = node.get("metafield") or {}
        return {
            "ownerId": node.get("id"),
            "id": mf.get("id"),
            "value": mf.get("value"),
            "compareDigest": mf.get("compareDigest"),
        }

    def owner_id(self, owner: str = "shop") -> str:
        field = self._owner_field(owner)
        data = self.graphql(f"{{ {field} {{ id }} }}")
        oid = (data.get(field) or {}).get("id")
        if not oid:
            raise ShopifyError(f"Could not resolve {field} id")
        return oid

    def set_metafield(
        self,
        owner_id: str,
        namespace: str,
        key: str,
        value,
        type_: str = "json",
        compare_digest: str | None = None,
        check_digest: bool = False,
    ) -> dict:
        """metafieldsSet for one metafield.

        With check_digest, compare_digest is sent even when None, which tells
        the platform the metafield must not exist yet.
        """
        mutation = """
        mutation SetMetafield($metafields: [MetafieldsSetInput!]!) {
          metafieldsSet(metafields: $metafields) {
            metafields {
              id
              key
              namespace
              value
              compareDigest
            }
            userErrors {
              field
              message
              code
            }
          }
        }
        """
        entry = {
            "ownerId": owner_id,
            "namespace": namespace,
            "key": key,
            "type": type_,
            "value": value if isinstance(value, str) else json.dumps(value),
        }
        if check_digest:
            entry["compareDigest"] = compare_digest
        data = self.graphql(mutation, {"metafields": [entry]})
        user_errors = _user_errors(data, "metafieldsSet")
        if user_errors:
            raise ShopifyUserError(_join_messages(user_errors), user_errors)
        saved = ((data.get("metafieldsSet") or {}).get("metafields")) or []
        return saved[0] if saved else {}

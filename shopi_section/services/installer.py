import json
import logging
import re

from .metafields import DEFAULT_NAMESPACE, add_installed_section, installed_sections, remove_installed_section
from .sections import (
    SECTIONS,
    asset_key,
    get_section,
    get_section_code,
    section_type_for_key,
    simplified_asset_key,
)
from .shopify_client import ShopifyAdminClient, ShopifyAuthError, ShopifyError, ShopifyUserError

log = logging.getLogger(__name__)

INDEX_TEMPLATE_KEY = "templates/index.json"
MODE_ASSET = "asset"
MODE_EXTENSION = "extension"

_LEADING_COMMENT_RE = re.compile(r"^\s*/\*.*?\*/\s*", re.DOTALL)


class SectionInstallError(Exception):
    """Every upload method failed; attempts lists what was tried."""

    def __init__(self, message: str, attempts: list[dict]):
        super().__init__(message)
        self.message = message
        self.attempts = attempts


def describe_error(exc: Exception) -> str:
    """Turn a platform failure into something a merchant can act on."""
    if isinstance(exc, ShopifyUserError):
        return f"Shopify rejected the request: {exc.message}"
    if isinstance(exc, ShopifyError):
        status = exc.status_code
        if status == 401:
            return "Your session has expired. Reload the app to sign in again."
        if status == 403:
            return "The app is missing permission to edit themes (write_themes). Reinstall the app to grant it."
        if status == 404:
            return "Theme not found, or its files are protected from editing by apps."
        if status == 422:
            return f"Shopify rejected the section file: {exc.message}"
        if status == 429:
            return "Shopify rate limit reached. Try again in a moment."
        if status and status >= 500:
            return f"Shopify is having trouble right now ({status}). Try again later."
        return exc.message
    return str(exc)


def split_template(raw: str) -> tuple[str, dict]:
    """JSON templates may start with a /* comment */ header the platform adds."""
    match = _LEADING_COMMENT_RE.match(raw or "")
    header = match.group(0) if match else ""
    template = json.loads((raw or "")[len(header):])
    if not isinstance(template, dict):
        raise ValueError(f"Expected a JSON object, got {type(template).__name__}")
    return header, template


def add_to_template(template: dict, section_type: str, instance_id: str) -> bool:
    if template.get("sections") is None:
        template["sections"] = {}
    if template.get("order") is None:
        template["order"] = []
    sections, order = template["sections"], template["order"]
    # Leave templates we don't understand untouched
    if not isinstance(sections, dict) or not isinstance(order, list) or instance_id in sections:
        return False
    sections[instance_id] = {"type": section_type, "settings": {}}
    if instance_id not in order:
        order.insert(0, instance_id)
    return True


def remove_from_template(template: dict, section_types: set[str]) -> bool:
    sections = template.get("sections") or {}
    if not isinstance(sections, dict):
        return False
    doomed = [k for k, v in sections.items() if isinstance(v, dict) and v.get("type") in section_types]
    if not doomed:
        return False
    for k in doomed:
        del sections[k]
    order = template.get("order")
    template["order"] = [k for k in order if k not in doomed] if isinstance(order, list) else []
    return True


class SectionInstaller:
    def __init__(
        self,
        admin: ShopifyAdminClient,
        mode: str = MODE_ASSET,
        fallback_versions: list[str] | None = None,
        namespace: str = DEFAULT_NAMESPACE,
        auto_activate: bool = True,
        metafield_retries: int = 3,
        liquid_dir=None,
    ):
        if mode not in (MODE_ASSET, MODE_EXTENSION):
            raise ValueError(f"Unknown section install mode: {mode!r}")
        self.admin = admin
        self.mode = mode
        self.fallback_versions = [v for v in (fallback_versions or []) if v != admin.api_version]
        self.namespace = namespace
        self.auto_activate = auto_activate
        self.metafield_retries = metafield_retries
        self.liquid_dir = liquid_dir

    @classmethod
    def from_config(cls, admin: ShopifyAdminClient, config) -> "SectionInstaller":
        return cls(
            admin,
            mode=config.get("SECTION_INSTALL_MODE", MODE_ASSET),
            fallback_versions=config.get("SHOPIFY_FALLBACK_API_VERSIONS") or [],
            namespace=config.get("METAFIELD_NAMESPACE", DEFAULT_NAMESPACE),
            auto_activate=config.get("AUTO_ACTIVATE_SECTIONS", True),
            metafield_retries=config.get("METAFIELD_WRITE_RETRIES", 3),
            liquid_dir=config.get("LIQUID_DIR"),
        )

    @property
    def writes_assets(self) -> bool:
        return self.mode == MODE_ASSET

    # -----------------------------
    # Upload chain
    # -----------------------------
    def _upload_methods(self, theme_id, section_id: str, code: str):
        key = asset_key(section_id)
        yield f"rest:{self.admin.api_version}", key, lambda: self.admin.put_asset(theme_id, key, code)
        for version in self.fallback_versions:
            client = self.admin.with_api_version(version)
            yield f"rest:{version}", key, lambda c=client: c.put_asset(theme_id, key, code)
        yield "graphql", key, lambda: self.admin.upsert_theme_files(theme_id, {key: code})
        simple = simplified_asset_key(section_id)
        yield "rest:simplified", simple, lambda: self.admin.put_asset(theme_id, simple, code)

    def upload_section(self, theme_id, section_id: str) -> tuple[str, list[dict]]:
        """Write the section file, trying each method until one sticks.

        Returns the asset key that was written and the attempt log.
        """
        code = get_section_code(section_id, self.liquid_dir)
        attempts: list[dict] = []
        last_error: Exception | None = None
        for method, key, call in self._upload_methods(theme_id, section_id, code):
            try:
                call()
            except ShopifyAuthError:
                raise
            except ShopifyError as e:
                log.warning("Upload of %s via %s failed: %s", key, method, e)
                attempts.append({
                    "method": method,
                    "assetKey": key,
                    "ok": False,
                    "status": e.status_code,
                    "error": describe_error(e),
                })
                last_error = e
                continue
            attempts.append({"method": method, "assetKey": key, "ok": True})
            log.info("Uploaded %s to theme %s via %s", key, theme_id, method)
            return key, attempts
        message = describe_error(last_error) if last_error else "No upload method available"
        raise SectionInstallError(f"Could not upload {section_id}: {message}", attempts)

    # -----------------------------
    # templates/index.json
    # -----------------------------
    def _edit_index_template(self, theme_id, edit) -> bool:
        asset = self.admin.get_asset(theme_id, INDEX_TEMPLATE_KEY)
        if not asset or not asset.get("value"):
            return False
        header, template = split_template(asset["value"])
        if not edit(template):
            return False
        self.admin.put_asset(theme_id, INDEX_TEMPLATE_KEY, header + json.dumps(template, indent=2))
        return True

    def _activate_in_editor(self, theme_id, section_id: str, key: str) -> bool:
        # The section stays installed even if this fails, so errors only get logged.
        section_type = section_type_for_key(key)
        try:
            return self._edit_index_template(
                theme_id, lambda t: add_to_template(t, section_type, f"{section_id}-auto")
            )
        except ShopifyAuthError:
            raise
        except (ShopifyError, ValueError):
            log.exception("Auto-activation of %s in %s failed", section_id, INDEX_TEMPLATE_KEY)
            return False

    def _deactivate_in_editor(self, theme_id, section_id: str) -> bool:
        types = {section_type_for_key(asset_key(section_id)), section_type_for_key(simplified_asset_key(section_id))}
        try:
            return self._edit_index_template(theme_id, lambda t: remove_from_template(t, types))
        except ShopifyAuthError:
            raise
        except (ShopifyError, ValueError):
            log.exception("Cleaning %s out of %s failed", section_id, INDEX_TEMPLATE_KEY)
            return False

    # -----------------------------
    # Public operations
    # -----------------------------
    def activate(self, theme_id, section_id: str) -> dict:
        section = get_section(section_id)
        result = {"sectionId": section_id, "themeId": theme_id, "assetKey": None, "attempts": [], "activated": False}
        if self.writes_assets:
            key, attempts = self.upload_section(theme_id, section_id)
            result["assetKey"] = key
            result["attempts"] = attempts
            if self.auto_activate:
                result["activated"] = self._activate_in_editor(theme_id, section_id, key)
        result["installedSections"] = add_installed_section(
            self.admin, section_id, namespace=self.namespace, retries=self.metafield_retries
        )
        result["message"] = (
            f"{section['name']} enabled and added to the home page"
            if result["activated"]
            else f"{section['name']} enabled"
        )
        return result

    def deactivate(self, theme_id, section_id: str) -> dict:
        section = get_section(section_id)
        result = {"sectionId": section_id, "themeId": theme_id, "removedAssets": []}
        if self.writes_assets:
            for key in (asset_key(section_id), simplified_asset_key(section_id)):
                if self.admin.delete_asset(theme_id, key):
                    result["removedAssets"].append(key)
            self._deactivate_in_editor(theme_id, section_id)
        result["installedSections"] = remove_installed_section(
            self.admin, section_id, namespace=self.namespace, retries=self.metafield_retries
        )
        result["message"] = f"{section['name']} disabled and removed"
        return result

    def installed_in_theme(self, theme_id, flagged: list[str] | None = None) -> list[str]:
        """Catalog sections present in a theme (asset mode) or flagged for the shop (extension mode)."""
        if not self.writes_assets:
            flagged = flagged if flagged is not None else installed_sections(self.admin, self.namespace)
            return [sid for sid in SECTIONS if sid in flagged]
        found = []
        for sid in SECTIONS:
            for key in (asset_key(sid), simplified_asset_key(sid)):
                if self.admin.get_asset(theme_id, key) is not None:
                    found.append(sid)
                    break
        return found

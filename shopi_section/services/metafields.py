import copy
import json
import logging
import threading
from typing import Any, Callable

from .shopify_client import ShopifyAdminClient, ShopifyUserError

log = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "shopi_section"
INSTALLED_SECTIONS_KEY = "installed_sections"
CAROUSEL_DATA_KEY = "carousel_data"

STALE_CODES = {"STALE_OBJECT", "INVALID_COMPARE_DIGEST"}

_locks_guard = threading.Lock()
_shop_locks: dict[str, threading.Lock] = {}


def shop_lock(shop: str) -> threading.Lock:
    """One lock per shop so two admin tabs don't interleave a read-modify-write."""
    with _locks_guard:
        lock = _shop_locks.get(shop)
        if lock is None:
            lock = _shop_locks[shop] = threading.Lock()
        return lock


class MetafieldConflictError(Exception):
    pass


def _decode(raw: str | None, default):
    if raw in (None, ""):
        return copy.deepcopy(default)
    try:
        return json.loads(raw)
    except ValueError:
        log.error("Metafield holds invalid JSON, falling back to default: %r", raw[:200])
        return copy.deepcopy(default)


def read_json_metafield(
    admin: ShopifyAdminClient,
    key: str,
    default: Any = None,
    namespace: str = DEFAULT_NAMESPACE,
    owner: str = "shop",
):
    mf = admin.get_metafield(namespace, key, owner=owner)
    return _decode(mf.get("value"), default)


def update_json_metafield(
    admin: ShopifyAdminClient,
    key: str,
    mutate: Callable[[Any], Any],
    default: Any = None,
    namespace: str = DEFAULT_NAMESPACE,
    owner: str = "shop",
    retries: int = 3,
):
    """Read, apply `mutate`, and write back only if the digest is still current.

    `mutate` receives a private copy of the current value and returns the new
    value. Returns the value that ends up stored.
    """
    with shop_lock(admin.shop):
        for attempt in range(max(1, retries)):
            mf = admin.get_metafield(namespace, key, owner=owner)
            current = _decode(mf.get("value"), default)
            updated = mutate(copy.deepcopy(current))
            if updated == current:
                return current
            try:
                admin.set_metafield(
                    mf.get("ownerId") or admin.owner_id(owner),
                    namespace,
                    key,
                    json.dumps(updated),
                    compare_digest=mf.get("compareDigest"),
                    check_digest=True,
                )
                return updated
            except ShopifyUserError as e:
                if not STALE_CODES.intersection(e.codes):
                    raise
                log.warning(
                    "Metafield %s.%s changed underneath us (attempt %d/%d); retrying",
                    namespace, key, attempt + 1, retries,
                )
        raise MetafieldConflictError(f"Gave up writing {namespace}.{key} after {retries} conflicting updates")


def _as_list(value) -> list[str]:
    return [str(v) for v in value] if isinstance(value, list) else []


def installed_sections(admin: ShopifyAdminClient, namespace: str = DEFAULT_NAMESPACE) -> list[str]:
    return _as_list(read_json_metafield(admin, INSTALLED_SECTIONS_KEY, default=[], namespace=namespace))


def add_installed_section(
    admin: ShopifyAdminClient, section_id: str, namespace: str = DEFAULT_NAMESPACE, retries: int = 3
) -> list[str]:
    def _add(value):
        ids = _as_list(value)
        if section_id not in ids:
            ids.append(section_id)
        return ids

    return update_json_metafield(
        admin, INSTALLED_SECTIONS_KEY, _add, default=[], namespace=namespace, retries=retries
    )


def remove_installed_section(
    admin: ShopifyAdminClient, section_id: str, namespace: str = DEFAULT_NAMESPACE, retries: int = 3
) -> list[str]:
    def _remove(value):
        return [sid for sid in _as_list(value) if sid != section_id]

    return update_json_metafield(
        admin, INSTALLED_SECTIONS_KEY, _remove, default=[], namespace=namespace, retries=retries
    )

import json
import logging

from .metafields import CAROUSEL_DATA_KEY, DEFAULT_NAMESPACE, read_json_metafield, update_json_metafield

log = logging.getLogger(__name__)

SLIDE_FIELDS = ("title", "subtitle", "imageUrl", "link")
DEFAULT_GROUP = "default"


class CarouselDataError(ValueError):
    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


def _normalize_slide(slide, where: str, errors: list[str]) -> dict | None:
    if not isinstance(slide, dict):
        errors.append(f"{where} must be an object")
        return None
    out = {}
    for name in SLIDE_FIELDS:
        value = slide.get(name)
        if value is None:
            value = ""
        if not isinstance(value, str):
            errors.append(f"{where}.{name} must be a string")
            continue
        out[name] = value
    return out


def normalize_carousel_data(value) -> dict[str, list[dict]]:
    """Coerce editor input into {group_id: [slide, ...]}.

    Accepts a JSON string, a mapping of lists, or a bare list of slides (stored
    under the "default" group). Unknown slide keys are dropped and missing ones
    become empty strings.
    """
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value or "{}")
        except ValueError as e:
            raise CarouselDataError([f"carouselJson is not valid JSON: {e}"]) from e
    if value is None:
        return {}
    if isinstance(value, list):
        value = {DEFAULT_GROUP: value}
    if not isinstance(value, dict):
        raise CarouselDataError(["Carousel data must be an object of slide lists"])

    errors: list[str] = []
    groups: dict[str, list[dict]] = {}
    for group_id, slides in value.items():
        if not str(group_id).strip():
            errors.append("Carousel group ids cannot be empty")
            continue
        if not isinstance(slides, list):
            errors.append(f"{group_id} must be a list of slides")
            continue
        normalized = []
        for i, slide in enumerate(slides):
            s = _normalize_slide(slide, f"{group_id}[{i}]", errors)
            if s is not None:
                normalized.append(s)
        groups[str(group_id)] = normalized
    if errors:
        raise CarouselDataError(errors)
    return groups


def load_carousel(admin, namespace: str = DEFAULT_NAMESPACE) -> dict[str, list[dict]]:
    raw = read_json_metafield(admin, CAROUSEL_DATA_KEY, default={}, namespace=namespace)
    try:
        return normalize_carousel_data(raw)
    except CarouselDataError as e:
        log.warning("Ignoring malformed carousel metafield: %s", e)
        return {}


def save_carousel(admin, data, namespace: str = DEFAULT_NAMESPACE, retries: int = 3) -> dict[str, list[dict]]:
    groups = normalize_carousel_data(data)
    update_json_metafield(
        admin, CAROUSEL_DATA_KEY, lambda _current: groups, default={}, namespace=namespace, retries=retries
    )
    return groups

import json
import logging
import re
from pathlib import Path

log = logging.getLogger(__name__)

LIQUID_DIR = Path(__file__).resolve().parent.parent / "liquid"

SCHEMA_RE = re.compile(r"{%-?\s*schema\s*-?%}(.*?){%-?\s*endschema\s*-?%}", re.DOTALL)

SECTIONS = {
    "my-custom-section": {
        "name": "My Custom Section",
        "description": "A header banner with heading, text, button and colour settings.",
        "filename": "my-section.liquid",
    },
    "3d-carousel-pro": {
        "name": "3D Carousel Pro",
        "description": "A perspective product carousel fed by a collection or by the slides saved in the app.",
        "filename": "3d-carousel.liquid",
        "editor_url": "/app/carousel",
    },
}


class UnknownSectionError(KeyError):
    pass


def get_section(section_id: str) -> dict:
    meta = SECTIONS.get(str(section_id or ""))
    if meta is None:
        raise UnknownSectionError(section_id)
    return {"id": section_id, **meta}


def list_sections() -> list[dict]:
    return [get_section(sid) for sid in SECTIONS]


def asset_key(section_id: str) -> str:
    return f"sections/{section_id}.liquid"


def simplified_asset_key(section_id: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", str(section_id).lower()).strip("-")
    return f"sections/shopi-{slug}.liquid"


def section_type_for_key(key: str) -> str:
    """The theme editor refers to a section by its filename stem."""
    return Path(key).stem


def ensure_presets(code: str, section_id: str) -> str:
    """Make sure the schema carries presets so the section shows up under "Add section"."""
    match = SCHEMA_RE.search(code)
    if not match:
        return code
    try:
        schema = json.loads(match.group(1))
    except ValueError:
        log.warning("Schema for %s is not valid JSON; uploading it unchanged", section_id)
        return code
    if not isinstance(schema, dict) or schema.get("presets"):
        return code
    schema["presets"] = [{"name": schema.get("name") or section_id, "settings": {}}]
    body = "\n" + json.dumps(schema, indent=2, ensure_ascii=False) + "\n"
    return code[:match.start(1)] + body + code[match.end(1):]


def get_section_code(section_id: str, liquid_dir: Path | None = None) -> str:
    meta = get_section(section_id)
    path = Path(liquid_dir or LIQUID_DIR) / meta["filename"]
    code = path.read_text(encoding="utf-8")
    return ensure_presets(code, section_id)

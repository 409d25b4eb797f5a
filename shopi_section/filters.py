ROLE_LABELS = {
    "main": "Live",
    "unpublished": "Draft",
    "demo": "Trial",
    "development": "Development",
}


def _role_label(role):
    return ROLE_LABELS.get(str(role or "").lower(), str(role or "").title())


def register_filters(app):
    app.jinja_env.filters["role_label"] = _role_label

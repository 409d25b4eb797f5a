# shopi_section/extensions.py
from flask_cors import CORS

from .storage.json_store import JsonStore
from .storage.sessions import SessionStorage

# CORS is a real Flask extension (keeps init_app)
cors = CORS()

# JsonStore is pointed at DATA_DIR in create_app
store = JsonStore()

# Offline access tokens, one per shop
sessions = SessionStorage(store)

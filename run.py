import os

from shopi_section import create_app
from shopi_section.config import DevConfig

app = create_app(DevConfig)

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    debug = os.getenv("DEBUG", "true").strip().lower() in {"1", "true", "yes", "on"}
    app.logger.info("Starting server on %s:%s", host, port)
    app.run(host=host, port=port, debug=debug)

"""Local API + CORS proxy for development (what the browser app calls on localhost:8080)."""
import logging

import uvicorn

from .config import server_bind
from .main import app


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    host, port = server_bind()
    logging.getLogger(__name__).info("Running Local Proxy + API on %s:%s", host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()

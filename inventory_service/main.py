"""Main entry point for the Inventory Service."""

import uvicorn

from inventory_service.config import Settings
from inventory_service.server import app


def main() -> None:
    settings = Settings.from_env()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()

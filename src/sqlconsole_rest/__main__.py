"""Run the service with ``python -m sqlconsole_rest``."""

import uvicorn

from ._app import create_app
from ._config import Settings


def main() -> None:
    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()

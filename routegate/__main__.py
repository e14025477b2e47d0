"""Run the gateway with uvicorn: ``python -m routegate``."""

import uvicorn

from routegate.config.settings import settings


def main() -> None:
    uvicorn.run(
        "routegate.core.gateway:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

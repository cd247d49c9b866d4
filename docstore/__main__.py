"""Run the API with uvicorn using the configured bind address and worker count."""
from __future__ import annotations

import uvicorn

from docstore import config


def main() -> None:
    uvicorn.run(
        "docstore.main:app",
        host=config.HOST,
        port=config.PORT,
        workers=config.WORKERS,
    )


if __name__ == "__main__":
    main()

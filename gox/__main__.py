"""
Entry point for running gox via `python -m gox`.

Starts the FastAPI server with uvicorn.
"""

import uvicorn

from .config import config
from .logs import setup_logging


def main():
    """Run the gox server."""
    setup_logging()
    uvicorn.run(
        "gox.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )


if __name__ == "__main__":
    main()

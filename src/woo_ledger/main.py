"""WooCommerce Ledger - Main Entry Point."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv(Path.cwd() / ".env")

from woo_ledger.config.settings import settings  # noqa: E402
from woo_ledger.server.app import create_app  # noqa: E402

# Create FastAPI application
app = create_app()


def run() -> None:
    """Run the API server under uvicorn."""
    import uvicorn

    reload = os.getenv("RELOAD", "false").lower() == "true"

    # timeout_graceful_shutdown bounds how long uvicorn waits for pending syncs
    uvicorn.run(
        "woo_ledger.main:app",
        host=settings.host,
        port=settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=120,
        timeout_keep_alive=5,
        access_log=False,  # structured logging instead
    )


if __name__ == "__main__":
    run()

"""Run the service with uvicorn: ``python -m fleetsync``."""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
    host = os.getenv("UVICORN_HOST", os.getenv("HOST", "127.0.0.1"))
    port = int(os.getenv("UVICORN_PORT", os.getenv("PORT", "3001")))
    reload_enabled = os.getenv("UVICORN_RELOAD", os.getenv("RELOAD", "false")).lower() == "true"

    # The scheduler and in-flight guards are per process; keep a single worker.
    uvicorn.run("fleetsync.main:app", host=host, port=port, reload=reload_enabled, workers=1)


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    main()

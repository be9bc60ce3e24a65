"""Service entrypoint for the background worker (health endpoint + worker pool)."""

from __future__ import annotations

import asyncio
import contextlib
import os

from fastapi import FastAPI

from fieldops.worker import run_workers

app = FastAPI()
_worker_task: asyncio.Task | None = None


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.on_event("startup")
async def _startup() -> None:
    global _worker_task
    _worker_task = asyncio.create_task(run_workers())


@app.on_event("shutdown")
async def _shutdown() -> None:
    if _worker_task:
        _worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _worker_task


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    host = os.getenv("HOST", "0.0.0.0")
    # nosec B104 - container platforms require binding to all interfaces.
    uvicorn.run("fieldops.worker_service:app", host=host, port=port)


if __name__ == "__main__":
    main()

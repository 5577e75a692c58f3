import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from genstore.config.settings import Settings
from genstore.database.connection import close_pool, init_pool
from genstore.logging.logger import Log
from genstore.processor.models import ProgressEvent
from genstore.service.generation_service import (
    GenerationRequest,
    GenerationResponse,
    build_service,
)


def _log_progress(event: ProgressEvent) -> None:
    Log.info(
        f"[{event.progress:3d}%] file {event.file_index + 1}/{event.total_files} "
        f"{event.stage}: {event.message or ''}"
    )


def load_jobs(path: Path) -> list[dict[str, Any]]:
    """Read one ``{"result": ..., "request": ...}`` object or a list of them."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    return payload if isinstance(payload, list) else [payload]


async def run(settings: Settings, jobs: list[dict[str, Any]]) -> list[GenerationResponse]:
    """Initialize pool -> build service -> handle each job -> drain and close."""
    await init_pool(settings)
    responses = []
    try:
        service = build_service(settings)
        try:
            for job in jobs:
                request = GenerationRequest(**job["request"], on_progress=_log_progress)
                responses.append(await service.handle_generation(job["result"], request))
        finally:
            await service.aclose()
    finally:
        await close_pool()
    return responses


def main(argv: list[str] | None = None) -> None:
    """Entry point: store the assets of saved generation results."""
    parser = argparse.ArgumentParser(
        prog="genstore", description="Persist the assets of finished generations."
    )
    parser.add_argument("input", type=Path, help="JSON file with generation results")
    args = parser.parse_args(argv)

    settings = Settings()
    Log.configure(settings.log_level)

    responses = asyncio.run(run(settings, load_jobs(args.input)))
    for response in responses:
        sys.stdout.write(response.model_dump_json() + "\n")


if __name__ == "__main__":
    main()

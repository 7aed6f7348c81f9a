"""
FastAPI application exposing the streaming crawl endpoint.

POST /api/crawl returns newline-delimited JSON: one object per progress
frame, flushed as soon as each wave finishes.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

from crawlaudit import __version__
from crawlaudit.config import Config
from crawlaudit.constants import SCREENSHOT_URL_PREFIX, VIOLATION_SCREENSHOT_URL_PREFIX
from crawlaudit.crawler import CrawlOrchestrator
from crawlaudit.models import error_frame
from crawlaudit.output_manager import OutputManager
from crawlaudit.request import CrawlRequest

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"
MALFORMED_REQUEST_MESSAGE = "Internal server error"

# (request, clean_outputs) -> orchestrator
OrchestratorFactory = Callable[[CrawlRequest, bool], CrawlOrchestrator]


def encode_frame(frame: dict) -> str:
    """One NDJSON line."""
    return json.dumps(frame) + "\n"


async def _single_frame(frame: dict) -> AsyncIterator[str]:
    yield encode_frame(frame)


def create_app(
    config: Optional[Config] = None,
    orchestrator_factory: Optional[OrchestratorFactory] = None,
) -> FastAPI:
    """Build the crawl service application.

    Args:
        config: Service configuration (from the environment if None)
        orchestrator_factory: Builds the orchestrator for each request

    Returns:
        FastAPI application
    """
    config = config or Config.from_env()
    output = OutputManager(config.public_dir, config.temp_dir)
    active_crawls: Dict[str, CrawlOrchestrator] = {}

    def default_factory(request: CrawlRequest, clean_outputs: bool) -> CrawlOrchestrator:
        return CrawlOrchestrator(
            request,
            output_manager=output,
            config=config,
            clean_outputs=clean_outputs,
        )

    factory = orchestrator_factory or default_factory

    # StaticFiles requires its directory to exist when mounted
    for directory in (output.screenshot_dir, output.violation_screenshot_dir, output.temp_dir):
        directory.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting crawlaudit API {__version__}")
        output.cleanup_temp()

        yield

        logger.info("Shutting down crawlaudit API")
        for orchestrator in list(active_crawls.values()):
            orchestrator.cancel()

    app = FastAPI(
        title="crawlaudit",
        description="Website crawler with screenshots and accessibility audits",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.active_crawls = active_crawls

    app.mount(
        SCREENSHOT_URL_PREFIX,
        StaticFiles(directory=str(output.screenshot_dir)),
        name="screenshots",
    )
    app.mount(
        VIOLATION_SCREENSHOT_URL_PREFIX,
        StaticFiles(directory=str(output.violation_screenshot_dir)),
        name="violation-screenshots",
    )

    @app.post("/api/crawl")
    async def crawl(request: Request):
        """
        Streaming crawl endpoint.

        Returns NDJSON stream:
        - {"newResults": [...], "usedSitemap": ..., "isComplete": false, "progress": {...}, ...}
        - {"results": [...], "usedSitemap": ..., "isComplete": true, ...}
        - {"error": "..."}
        """
        headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}

        try:
            crawl_request = CrawlRequest.model_validate(await request.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"Malformed crawl request: {e}")
            return StreamingResponse(
                _single_frame(error_frame(MALFORMED_REQUEST_MESSAGE)),
                media_type=NDJSON_MEDIA_TYPE,
                headers=headers,
            )

        crawl_id = uuid4().hex
        # Only the sole active crawl may wipe the shared output directories
        orchestrator = factory(crawl_request, not active_crawls)
        active_crawls[crawl_id] = orchestrator
        logger.info(f"Received crawl request {crawl_id} for {crawl_request.url}")

        async def stream() -> AsyncIterator[str]:
            frames = orchestrator.run()
            try:
                async for frame in frames:
                    if await request.is_disconnected():
                        logger.info(f"Client disconnected, stopping crawl {crawl_id}")
                        orchestrator.cancel()
                        break
                    yield encode_frame(frame)
            finally:
                await frames.aclose()
                active_crawls.pop(crawl_id, None)

        return StreamingResponse(
            stream(),
            media_type=NDJSON_MEDIA_TYPE,
            headers={**headers, "X-Crawl-Id": crawl_id},
        )

    @app.post("/api/crawl/{crawl_id}/cancel")
    async def cancel_crawl(crawl_id: str):
        """Stop a running crawl after its current wave."""
        orchestrator = active_crawls.get(crawl_id)
        if orchestrator is None:
            raise HTTPException(status_code=404, detail=f"Unknown crawl: {crawl_id}")
        orchestrator.cancel()
        return {"crawlId": crawl_id, "cancelled": True}

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        return {"status": "ok", "active_crawls": len(active_crawls)}

    return app

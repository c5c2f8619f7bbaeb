from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from link_preserver.core.config import settings
from link_preserver.models.common import ErrorResponse
from link_preserver.models.links.results import CheckReport, LinkTarget
from link_preserver.models.links.schemas import LinkCheckRequest
from link_preserver.services.links.checker import LinkChecker, build_link_checker, build_targets

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/links", tags=["links"])


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------


def _get_checker(request: Request) -> LinkChecker:
    """Build a ``LinkChecker`` around the cache and throttle owned by the app."""
    return build_link_checker(request.app.state.cache, request.app.state.throttle, settings)


def _targets(body: LinkCheckRequest) -> list[LinkTarget]:
    page_url = str(body.page_url) if body.page_url is not None else None
    return build_targets(body.links, page_url)


# ---------------------------------------------------------------------------
# POST /links/check
# ---------------------------------------------------------------------------


@router.post(
    "/check",
    response_model=CheckReport,
    responses={500: {"model": ErrorResponse}},
    summary="Check external links and find archived copies of dead ones",
)
async def check_links(
    body: LinkCheckRequest,
    checker: LinkChecker = Depends(_get_checker),
) -> CheckReport:
    """Run both checking phases and return every result at once.

    ``occurrences`` in each result are positions in the submitted ``links``
    list.  ``skipped`` lists URLs over the per-run limit; they were not
    checked.

    - **200**: check completed (dead links are a normal result)
    - **422**: malformed request body
    - **500**: unexpected failure
    """
    try:
        return await checker.check(_targets(body))
    except Exception as exc:
        logger.error("POST /links/check failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))


# ---------------------------------------------------------------------------
# POST /links/check/stream
# ---------------------------------------------------------------------------


@router.post(
    "/check/stream",
    response_class=StreamingResponse,
    summary="Stream link check results as they complete",
)
async def stream_links(
    body: LinkCheckRequest,
    checker: LinkChecker = Depends(_get_checker),
) -> StreamingResponse:
    """Stream one NDJSON line per distinct URL as soon as it is terminal.

    Live links arrive during phase 1; dead links arrive during phase 2 with
    their archive result.  The stream ends once every retained URL has a
    result.
    """
    targets = _targets(body)

    async def lines() -> AsyncIterator[str]:
        async for result in checker.stream(targets):
            yield result.model_dump_json() + "\n"

    return StreamingResponse(lines(), media_type="application/x-ndjson")

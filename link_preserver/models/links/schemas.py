from __future__ import annotations

from pydantic import BaseModel, Field, HttpUrl


class LinkCheckRequest(BaseModel):
    """Request body for POST /links/check and POST /links/check/stream.

    ``links`` holds the raw ``href`` values found on the page, in document
    order.  Relative values are resolved against ``page_url``.
    """

    page_url: HttpUrl | None = None
    links: list[str] = Field(default_factory=list)

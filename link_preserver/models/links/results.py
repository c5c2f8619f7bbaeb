from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field

_HTTP_SCHEME = re.compile(r"^http://", re.IGNORECASE)


def format_snapshot_date(timestamp: str | None) -> str:
    """Format a Wayback timestamp ``YYYYMMDDhhmmss`` as ``YYYY-MM-DD``."""
    if not timestamp or len(timestamp) < 8:
        return "unknown date"
    return f"{timestamp[0:4]}-{timestamp[4:6]}-{timestamp[6:8]}"


def upgrade_to_https(url: str) -> str:
    return _HTTP_SCHEME.sub("https://", url, count=1)


class LinkTarget(BaseModel):
    """A distinct external URL and every place it was found.

    ``occurrences`` is opaque to the checker and handed back untouched.
    """

    url: str
    occurrences: list[Any] = Field(default_factory=list)


class LivenessResult(BaseModel):
    alive: bool


class Archived(BaseModel):
    status: Literal["archived"] = "archived"
    archive_url: str
    snapshot_time: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def snapshot_date(self) -> str:
        return format_snapshot_date(self.snapshot_time)

    def to_payload(self) -> dict[str, str]:
        return {"archiveUrl": self.archive_url, "snapshotTime": self.snapshot_time}


class NotArchived(BaseModel):
    """No snapshot available.

    ``lookup_failed`` is set when the availability request timed out or
    errored, i.e. the archive was never actually asked.
    """

    status: Literal["not_archived"] = "not_archived"
    lookup_failed: bool = False

    def to_payload(self) -> dict[str, bool]:
        return {"lookupFailed": True} if self.lookup_failed else {}


ArchiveResult = Annotated[Union[Archived, NotArchived], Field(discriminator="status")]


def archive_result_from_payload(payload: Any) -> Archived | NotArchived | None:
    """Rebuild an archive result from its cached payload, or ``None`` if malformed."""
    if not isinstance(payload, dict):
        return None
    archive_url = payload.get("archiveUrl")
    if archive_url:
        if not isinstance(archive_url, str):
            return None
        return Archived(
            archive_url=archive_url,
            snapshot_time=str(payload.get("snapshotTime") or ""),
        )
    return NotArchived(lookup_failed=bool(payload.get("lookupFailed", False)))


class CheckResult(BaseModel):
    """Terminal outcome for one ``LinkTarget``.

    ``archive`` is only ever set for dead links.
    """

    url: str
    occurrences: list[Any] = Field(default_factory=list)
    alive: bool
    archive: Optional[ArchiveResult] = None


class CheckReport(BaseModel):
    """All results of one run plus the URLs the per-run cap dropped."""

    results: list[CheckResult] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)

"""Archive domain types."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

GroupingMode = Literal["session", "domain"]


class Session(BaseModel):
    id: int
    timestamp: int  # ms since epoch
    name: str | None = None


class Domain(BaseModel):
    id: int
    name: str


class Tab(BaseModel):
    id: int
    url: str
    title: str
    session_id: int
    domain_id: int | None = None


class ArchivedTab(BaseModel):
    """A stored tab decorated with its favicon at read time."""

    id: int
    url: str
    title: str
    session_id: int
    favicon: str


class ArchiveView(BaseModel):
    groups: list[Session] | list[Domain]
    tabs: dict[int, list[ArchivedTab]] | dict[str, list[ArchivedTab]]
    grouping_mode: GroupingMode = "session"


class GroupDeletion(BaseModel):
    grouping: GroupingMode
    id: int | str
    tab_ids: list[int] = Field(default_factory=list)


class TabEntry(BaseModel):
    url: str
    title: str


class RestoreRequest(BaseModel):
    """URLs the browser should reopen, and whether the archive dropped them."""

    urls: list[str]
    in_background: bool = False
    removed: bool = False

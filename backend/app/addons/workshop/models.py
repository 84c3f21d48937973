from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


# ------------------------------------------------------------------------------
# Steam Web API wire models
# ------------------------------------------------------------------------------

class PublishedFileDetail(BaseModel):
    """
    One item of ISteamRemoteStorage/GetPublishedFileDetails.

    Only the fields we read are declared; Steam sends many more.
    """
    model_config = ConfigDict(extra="allow")

    publishedfileid: str
    result: int
    title: Optional[str] = None
    description: Optional[str] = None
    filename: Optional[str] = None
    preview_url: Optional[str] = None
    time_created: Optional[int] = None
    time_updated: Optional[int] = None


class SteamResponseBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    result: int
    resultcount: int = 0
    publishedfiledetails: List[PublishedFileDetail] = Field(default_factory=list)


class SteamResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    response: SteamResponseBody


# ------------------------------------------------------------------------------
# Cache records
# ------------------------------------------------------------------------------

class CatalogEntry(BaseModel):
    """
    Cached title/description for one Workshop item.

    lastUpdated is epoch milliseconds of the fetch that produced the record.
    """
    model_config = ConfigDict(extra="ignore")

    workshopId: str
    title: str
    description: str = ""
    lastUpdated: int = 0


class CacheStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total: int = 0
    valid: int = 0


# ------------------------------------------------------------------------------
# API models
# ------------------------------------------------------------------------------

class TitlesRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    filenames: List[str] = Field(default_factory=list)


class CleanupResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    evicted: int = 0

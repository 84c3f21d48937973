from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import requests
from pydantic import ValidationError

from ...config import STEAM_PUBLISHED_FILE_DETAILS_URL
from .models import PublishedFileDetail, SteamResponse

logger = logging.getLogger("addonmgr.workshop.client")


class RemoteFetchError(RuntimeError):
    pass


class SteamWorkshopClient:
    """POST id batches to GetPublishedFileDetails and parse the envelope."""

    def __init__(
        self,
        url: str = STEAM_PUBLISHED_FILE_DETAILS_URL,
        *,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    @staticmethod
    def build_form(workshop_ids: Sequence[str]) -> dict:
        form = {"itemcount": str(len(workshop_ids))}
        for index, workshop_id in enumerate(workshop_ids):
            form[f"publishedfileids[{index}]"] = workshop_id
        return form

    def fetch_details(self, workshop_ids: Sequence[str]) -> List[PublishedFileDetail]:
        """
        Fetch details for up to one batch of ids.

        Returns only items Steam reports with result == 1. Raises
        RemoteFetchError on transport errors, non-2xx status, bad JSON or a
        top-level result other than 1.
        """
        logger.debug(f"Requesting details for {len(workshop_ids)} workshop item(s)")

        try:
            resp = self.session.post(self.url, data=self.build_form(workshop_ids), timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteFetchError(f"Steam request failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise RemoteFetchError(f"HTTP error! status: {resp.status_code}")

        try:
            payload = SteamResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise RemoteFetchError(f"Invalid response from Steam API: {e}") from e

        if payload.response.result != 1:
            raise RemoteFetchError(f"Invalid response from Steam API: result={payload.response.result}")

        details = [d for d in payload.response.publishedfiledetails if d.result == 1]
        logger.debug(f"Steam returned {len(details)} usable detail(s) of {len(workshop_ids)} requested")
        return details

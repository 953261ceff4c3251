from __future__ import annotations

import base64
import logging
import threading
from typing import Optional, Protocol

import requests

from ctp.domain.models import Location

log = logging.getLogger("ctp.timeclock")


class LocationProvider(Protocol):
    def get_current_position(self) -> Optional[Location]: ...


class LocationService:
    """Best-effort clock-in/out enrichment. Never raises."""

    STATIC_MAP_URL = "https://maps.googleapis.com/maps/api/staticmap"

    def __init__(self, provider: LocationProvider | None = None, maps_api_key: str = "", timeout: float = 5.0):
        self.provider = provider
        self.maps_api_key = maps_api_key
        self.timeout = float(timeout)

    def _fetch_map(self, location: Location) -> tuple[bytes, str]:
        params = {
            "center": f"{location.lat},{location.lng}",
            "zoom": 15,
            "size": "200x150",
            "markers": f"color:red|{location.lat},{location.lng}",
            "key": self.maps_api_key,
        }
        r = requests.get(self.STATIC_MAP_URL, params=params, timeout=self.timeout)
        r.raise_for_status()
        return r.content, r.headers.get("Content-Type", "image/png")

    def current_position(self) -> Optional[Location]:
        """Runs the provider on a daemon thread so a hung lookup never holds the process open."""
        if self.provider is None:
            return None
        outcome: dict = {}

        def lookup() -> None:
            try:
                outcome["location"] = self.provider.get_current_position()
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=lookup, name="ctp-geolocation", daemon=True)
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            log.warning("geolocation_timeout timeout=%.1fs", self.timeout)
            return None
        if "error" in outcome:
            log.warning("geolocation_failed error=%s", outcome["error"])
            return None
        return outcome.get("location")

    def map_image_data_url(self, location: Optional[Location]) -> Optional[str]:
        if location is None or not self.maps_api_key:
            return None
        try:
            content, content_type = self._fetch_map(location)
        except (requests.RequestException, ValueError) as e:
            log.warning("map_image_failed lat=%s lng=%s error=%s", location.lat, location.lng, e)
            return None
        encoded = base64.b64encode(content).decode("ascii")
        return f"data:{content_type};base64,{encoded}"

    def capture(self) -> tuple[Optional[Location], Optional[str]]:
        location = self.current_position()
        return location, self.map_image_data_url(location)

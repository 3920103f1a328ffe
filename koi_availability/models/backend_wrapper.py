import logging
from typing import Any, Dict, List, Optional

import requests

from koi_availability.base.config import settings
from koi_availability.base.exceptions import ScheduleFetchError

logger = logging.getLogger("backend_wrapper")


class BookingBackendClient:
    """Thin wrapper over the booking backend REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.BACKEND_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.REQUEST_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def get_master_schedule(self, master_id: str) -> List[Dict[str, Any]]:
        path = settings.MASTER_SCHEDULE_ENDPOINT.format(master_id=master_id)
        return self._get_list(path)

    def get_all_schedules(self) -> List[Dict[str, Any]]:
        return self._get_list(settings.ALL_SCHEDULES_ENDPOINT)

    def get_all_masters(self) -> List[Dict[str, Any]]:
        return self._get_list(settings.MASTER_ROSTER_ENDPOINT)

    # === Internal ===

    def _get_list(self, path: str) -> List[Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as e:
            raise ScheduleFetchError(f"Timeout calling {path}: {e}", transient=True)
        except requests.ConnectionError as e:
            raise ScheduleFetchError(f"Connection error calling {path}: {e}", transient=True)
        except requests.RequestException as e:
            raise ScheduleFetchError(f"Request to {path} failed: {e}")

        if response.status_code >= 500:
            raise ScheduleFetchError(
                f"Server error {response.status_code} from {path}",
                transient=True,
                status_code=response.status_code,
            )
        if response.status_code != 200:
            raise ScheduleFetchError(
                f"Unexpected status {response.status_code} from {path}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            raise ScheduleFetchError(f"Non-JSON body from {path}")

        return self._unwrap(payload, path)

    def _unwrap(self, payload: Any, path: str) -> List[Dict[str, Any]]:
        # Backend wraps results as {"isSuccess": bool, "data": [...]}
        if isinstance(payload, list):
            return payload
        if not isinstance(payload, dict):
            raise ScheduleFetchError(f"Unexpected payload type from {path}: {type(payload).__name__}")
        if payload.get("isSuccess") is False:
            raise ScheduleFetchError(f"Backend reported failure for {path}: {payload.get('message')}")
        data = payload.get("data")
        if not isinstance(data, list):
            raise ScheduleFetchError(f"Response from {path} has no data list")
        logger.debug(f"[Backend] {path} -> {len(data)} items")
        return data

"""
iCafeCloud API Service
"""
from typing import Dict, Any, Optional, List
import logging

import httpx

from ledgersync.config import settings
from ledgersync.exceptions import UpstreamUnavailable
from ledgersync.schemas.cafe import CafeCredentials

logger = logging.getLogger(__name__)


class IcafeService:
    """Service for the iCafeCloud reporting API (shift list, report data, shift detail)"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.ICAFE_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.ICAFE_TIMEOUT_SECONDS
        self._transport = transport

    async def _get(
        self,
        credentials: CafeCredentials,
        path: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        GET an iCafeCloud endpoint and return its `data` payload

        iCafeCloud answers HTTP 200 with {"code": 4xx, "message": ...} for most
        errors, so the body code is checked as well as the HTTP status.

        Raises:
            UpstreamUnavailable: on transport errors, HTTP errors, non-JSON
                bodies, or an error code in the body
        """
        url = f"{self.base_url}/api/v2/cafe/{credentials.cafe_id}{path}"
        logger.debug("iCafe GET %s params=%s", url, params)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    url,
                    headers={
                        "Authorization": f"Bearer {credentials.api_key.strip()}",
                        "Content-Type": "application/json",
                    },
                    params=params,
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise UpstreamUnavailable(
                f"iCafeCloud API returned HTTP {status} for {path}", status_code=status
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"iCafeCloud API unreachable for {path}: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailable(f"iCafeCloud API returned a non-JSON body for {path}") from e

        if not isinstance(body, dict):
            raise UpstreamUnavailable(f"iCafeCloud API returned an unexpected body for {path}")

        code = body.get("code")
        if isinstance(code, int) and code >= 400:
            message = body.get("message") if isinstance(body.get("message"), str) else "Unknown error"
            raise UpstreamUnavailable(f"iCafeCloud error {code}: {message}", status_code=code)

        return body.get("data")

    async def list_shifts(
        self,
        credentials: CafeCredentials,
        date_start: str,
        date_end: str,
        time_start: Optional[str] = None,
        time_end: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List shifts in a date range

        Args:
            credentials: Cafe credentials
            date_start: YYYY-MM-DD
            date_end: YYYY-MM-DD
            time_start: HH:MM (optional)
            time_end: HH:MM (optional)

        Returns:
            Raw shift rows (includes the "All Shifts" pseudo-row)
        """
        params = {
            "date_start": date_start,
            "date_end": date_end,
            "shift_staff_name": "all",
        }
        if time_start:
            params["time_start"] = time_start
        if time_end:
            params["time_end"] = time_end

        data = await self._get(credentials, "/reports/shiftList", params)

        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return data.get("shift_list") or data.get("shifts") or []
        return []

    async def get_report(
        self,
        credentials: CafeCredentials,
        date_start: str,
        date_end: str,
        time_start: str = "00:00",
        time_end: str = "23:59",
        staff_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Fetch reportData for a time range, optionally scoped to one staff member

        Args:
            credentials: Cafe credentials
            date_start: YYYY-MM-DD
            date_end: YYYY-MM-DD
            time_start: HH:MM
            time_end: HH:MM
            staff_name: Restrict to transactions logged by this staff member

        Returns:
            Raw report payload (report, sale, topup, refund, top lists, products)
        """
        params = {
            "date_start": date_start,
            "date_end": date_end,
            "time_start": time_start,
            "time_end": time_end,
            "data_source": "recent",
        }
        if staff_name:
            params["log_staff_name"] = staff_name

        data = await self._get(credentials, "/reports/reportData", params)
        if not isinstance(data, dict):
            raise UpstreamUnavailable(
                f"iCafeCloud reportData returned no data for {staff_name or 'all staff'}"
            )
        return data

    async def get_shift_detail(self, credentials: CafeCredentials, shift_id: str) -> Dict[str, Any]:
        """
        Fetch the detail of one shift (center expenses, shop sales)

        Args:
            credentials: Cafe credentials
            shift_id: iCafeCloud shift id

        Returns:
            Raw shift detail payload
        """
        data = await self._get(credentials, f"/reports/shiftDetail/{shift_id}")
        return data if isinstance(data, dict) else {}


# Singleton instance
icafe_service = IcafeService()

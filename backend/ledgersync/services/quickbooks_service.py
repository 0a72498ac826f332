"""
QuickBooks Online API Service
"""
from typing import List, Dict, Any, Optional
from datetime import timedelta
from urllib.parse import urlencode
import logging

import httpx

from ledgersync.config import settings
from ledgersync.exceptions import LedgerRejection, UpstreamAuthError, UpstreamUnavailable
from ledgersync.schemas.ledger import JournalEntry, TokenPair
from ledgersync.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
API_BASE = "https://quickbooks.api.intuit.com/v3/company"
SANDBOX_API_BASE = "https://sandbox-quickbooks.api.intuit.com/v3/company"

ACCOUNTING_SCOPE = "com.intuit.quickbooks.accounting"


def fault_message(response: httpx.Response) -> str:
    """Readable text from a QuickBooks Fault body, falling back to the raw body"""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"

    fault = body.get("Fault") or body.get("fault") if isinstance(body, dict) else None
    errors = fault.get("Error") or fault.get("error") if isinstance(fault, dict) else None
    if isinstance(errors, list) and errors:
        parts = []
        for error in errors:
            if not isinstance(error, dict):
                continue
            message = error.get("Message") or error.get("message") or ""
            detail = error.get("Detail") or error.get("detail") or ""
            parts.append(f"{message}: {detail}" if detail and detail != message else message)
        if parts:
            return "; ".join(parts)
    if isinstance(body, dict) and body.get("error"):
        return str(body.get("error_description") or body["error"])
    return str(body)[:500]


class QuickBooksService:
    """Service for the QuickBooks Online OAuth and accounting APIs"""

    def __init__(
        self,
        environment: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
    ):
        environment = environment or settings.QB_ENVIRONMENT
        self.api_base = SANDBOX_API_BASE if environment == "sandbox" else API_BASE
        self.timeout = timeout if timeout is not None else settings.QB_TIMEOUT_SECONDS
        self.clock = clock or SystemClock()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.status_code < 400:
            return
        message = fault_message(response)
        logger.warning("QuickBooks %s failed (HTTP %s): %s", action, response.status_code, message)
        if response.status_code == 401:
            raise UpstreamAuthError(f"QuickBooks rejected the access token during {action}: {message}")
        if response.status_code in (400, 403, 404, 422):
            raise LedgerRejection(
                f"QuickBooks {action} rejected: {message}",
                status_code=response.status_code,
                fault=message,
            )
        raise UpstreamUnavailable(
            f"QuickBooks {action} failed with HTTP {response.status_code}: {message}",
            status_code=response.status_code,
        )

    def get_authorization_url(self, redirect_uri: Optional[str] = None, state: str = "") -> str:
        """
        Generate the QuickBooks OAuth authorization URL

        Args:
            redirect_uri: Callback URL registered with Intuit
            state: State parameter for CSRF protection

        Returns:
            OAuth authorization URL
        """
        params = {
            "client_id": settings.QB_CLIENT_ID,
            "scope": ACCOUNTING_SCOPE,
            "redirect_uri": redirect_uri or settings.QB_REDIRECT_URI,
            "response_type": "code",
            "state": state,
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, data: Dict[str, str], action: str) -> TokenPair:
        try:
            async with self._client() as client:
                response = await client.post(
                    TOKEN_URL,
                    data=data,
                    auth=(settings.QB_CLIENT_ID, settings.QB_CLIENT_SECRET),
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"QuickBooks token endpoint unreachable: {e}") from e

        if response.status_code in (400, 401):
            # invalid_grant: the refresh token (or code) is expired or revoked
            raise UpstreamAuthError(f"QuickBooks {action} failed: {fault_message(response)}")
        self._raise_for_status(response, action)

        body = response.json()
        now = self.clock.now()
        return TokenPair(
            access_token=body["access_token"],
            refresh_token=body["refresh_token"],
            access_token_expires_at=now + timedelta(seconds=int(body.get("expires_in", 3600))),
            refresh_token_expires_at=now + timedelta(
                seconds=int(body.get("x_refresh_token_expires_in", 8726400))
            ),
        )

    async def exchange_code_for_token(self, code: str, redirect_uri: Optional[str] = None) -> TokenPair:
        """
        Exchange an authorization code for access + refresh tokens

        Args:
            code: Authorization code from the OAuth callback
            redirect_uri: The redirect URI used for the authorization request

        Returns:
            TokenPair with absolute expiry instants
        """
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or settings.QB_REDIRECT_URI,
            },
            "code exchange",
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenPair:
        """
        Refresh an expired access token

        QuickBooks rotates the refresh token on every refresh; the returned pair
        must replace the stored one.

        Args:
            refresh_token: Current refresh token

        Returns:
            New TokenPair
        """
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "token refresh",
        )

    async def revoke_token(self, token: str) -> None:
        """Revoke a refresh (or access) token"""
        try:
            async with self._client() as client:
                response = await client.post(
                    REVOKE_URL,
                    json={"token": token},
                    auth=(settings.QB_CLIENT_ID, settings.QB_CLIENT_SECRET),
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"QuickBooks revoke endpoint unreachable: {e}") from e
        self._raise_for_status(response, "token revoke")

    async def _get(self, access_token: str, realm_id: str, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.api_base}/{realm_id}/{path}",
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                    },
                    params=params,
                )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"QuickBooks API unreachable: {e}") from e
        self._raise_for_status(response, path.split("/")[0])
        return response.json()

    async def get_company_info(self, access_token: str, realm_id: str) -> Dict[str, Any]:
        """
        Get company information (used to verify a new connection)

        Args:
            access_token: QuickBooks access token
            realm_id: Company (realm) id

        Returns:
            CompanyInfo object
        """
        data = await self._get(access_token, realm_id, f"companyinfo/{realm_id}")
        return data.get("CompanyInfo", {})

    async def query_accounts(self, access_token: str, realm_id: str) -> List[Dict[str, Any]]:
        """
        Query the active chart of accounts

        Args:
            access_token: QuickBooks access token
            realm_id: Company (realm) id

        Returns:
            List of Account objects
        """
        data = await self._get(
            access_token,
            realm_id,
            "query",
            params={"query": "SELECT * FROM Account WHERE Active = true MAXRESULTS 1000"},
        )
        return (data.get("QueryResponse") or {}).get("Account", [])

    async def create_journal_entry(self, access_token: str, realm_id: str, entry: JournalEntry) -> str:
        """
        Create a journal entry

        Args:
            access_token: QuickBooks access token
            realm_id: Company (realm) id
            entry: Balanced journal entry

        Returns:
            The ledger's journal entry id

        Raises:
            UpstreamAuthError: the access token was rejected
            LedgerRejection: QuickBooks refused the entry (validation fault)
            UpstreamUnavailable: network failure or server error
        """
        payload = entry.to_qbo_payload()
        logger.info(
            "Creating QuickBooks journal entry %s (%s) with %d line(s)",
            entry.doc_number, entry.txn_date, len(entry.lines),
        )

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.api_base}/{realm_id}/journalentry",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Content-Type": "application/json",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"QuickBooks API unreachable: {e}") from e
        self._raise_for_status(response, "journal entry")

        journal_entry = response.json().get("JournalEntry") or {}
        journal_entry_id = journal_entry.get("Id")
        if not journal_entry_id:
            raise UpstreamUnavailable("QuickBooks returned no journal entry id")

        logger.info("QuickBooks journal entry created: %s", journal_entry_id)
        return str(journal_entry_id)


# Singleton instance
quickbooks_service = QuickBooksService()

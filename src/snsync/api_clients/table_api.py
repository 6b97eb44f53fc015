"""REST table API client; every request carries a valid credential."""

import asyncio
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import aiohttp

from .base import APIConnectionError, AuthenticationError, RemoteAPIError
from ..config.settings import AuthMode, InstanceSettings
from ..utils.logging import get_logger

if TYPE_CHECKING:
    from ..auth.oauth_handler import OAuthHandler


TABLE_API_PATH = "/api/now/table"


class TableAPIClient:
    """Table API client for record listing, update, creation and metadata lookups."""

    def __init__(
        self,
        settings: InstanceSettings,
        oauth_handler: Optional["OAuthHandler"] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize the table API client.

        Args:
            settings: Instance URL and credentials
            oauth_handler: Token provider, required in browser OAuth mode
            session: Optional pre-built HTTP session
        """
        self.settings = settings
        self.oauth_handler = oauth_handler
        self.session = session
        self._owns_session = session is None
        self.base_url = settings.base_url
        self.logger = get_logger(self.__class__.__name__)

    async def __aenter__(self):
        """Async context manager entry."""
        if not self.session:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def _auth_kwargs(self) -> Dict[str, Any]:
        """Credential for the next request, obtained before it is sent."""
        mode = self.settings.auth_mode

        if mode == AuthMode.OAUTH_BROWSER:
            if not self.oauth_handler:
                raise AuthenticationError("Browser OAuth configured but no token provider available")
            token = await self.oauth_handler.get_valid_token()
            return {"headers": {"Authorization": f"Bearer {token}"}}

        if mode == AuthMode.BASIC:
            return {"auth": aiohttp.BasicAuth(self.settings.user, self.settings.password or "")}

        raise AuthenticationError(
            "No authentication configured (set SN_USER/SN_PASSWORD or SN_CLIENT_ID)"
        )

    async def _make_api_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Make an authenticated API request and return its `result`."""
        if not self.session:
            self.session = aiohttp.ClientSession()
            self._owns_session = True

        auth_kwargs = await self._auth_kwargs()
        headers = {"Accept": "application/json", **auth_kwargs.pop("headers", {})}
        url = f"{self.base_url}{path}"

        try:
            async with self.session.request(
                method, url, params=params, json=payload, headers=headers, **auth_kwargs
            ) as response:
                if response.status == 401:
                    raise AuthenticationError("Invalid or expired credential")
                if response.status >= 400:
                    message = await self._error_message(response)
                    raise RemoteAPIError(
                        f"{method} {path} failed: {response.status} - {message}",
                        status=response.status
                    )

                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    raise RemoteAPIError(
                        f"{method} {path} returned a non-JSON body "
                        f"({response.headers.get('Content-Type', 'unknown type')}): {e}",
                        status=response.status
                    )
                if not isinstance(body, dict):
                    return None
                return body.get("result")

        except aiohttp.ClientError as e:
            raise APIConnectionError(f"Network error: {e}")
        except asyncio.TimeoutError:
            raise APIConnectionError(f"Request timed out: {method} {path}")

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        text = await response.text()
        try:
            body = await response.json(content_type=None)
        except ValueError:
            return text
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"].get("message") or text
        return text

    def _table_path(self, table: str, sys_id: Optional[str] = None) -> str:
        path = f"{TABLE_API_PATH}/{quote(table, safe='')}"
        if sys_id:
            path += f"/{quote(sys_id, safe='')}"
        return path

    async def list_records(
        self,
        table: str,
        query: Optional[str] = None,
        fields: Optional[Iterable[str]] = None,
        display_value: str = "false",
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """List records of a table matching an encoded query."""
        params: Dict[str, Any] = {"sysparm_display_value": display_value}
        if limit:
            params["sysparm_limit"] = str(limit)
        if query:
            params["sysparm_query"] = query
        if fields:
            params["sysparm_fields"] = ",".join(fields)

        result = await self._make_api_request("GET", self._table_path(table), params=params)

        self.logger.debug(
            "Retrieved records",
            table=table,
            query=query,
            count=len(result or [])
        )
        return result or []

    async def get_record(
        self,
        table: str,
        sys_id: str,
        fields: Optional[Iterable[str]] = None,
        display_value: str = "false"
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"sysparm_display_value": display_value}
        if fields:
            params["sysparm_fields"] = ",".join(fields)
        return await self._make_api_request("GET", self._table_path(table, sys_id), params=params) or {}

    async def update_record(self, table: str, sys_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Update fields of one record; returns the updated record."""
        return await self._make_api_request("PUT", self._table_path(table, sys_id), payload=payload) or {}

    async def create_record(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a record; returns the created record with its server-assigned id."""
        return await self._make_api_request("POST", self._table_path(table), payload=payload) or {}

    async def get_dictionary(self, table: str) -> List[Dict[str, Any]]:
        """Active column definitions of a table."""
        return await self.list_records(
            "sys_dictionary",
            query=f"name={table}^active=true",
            fields=["element", "column_label", "internal_type", "reference", "choice", "display"],
            limit=500
        )

    async def get_choices(self, table: str, elements: Iterable[str]) -> List[Dict[str, Any]]:
        """Active choice options for the given columns of a table."""
        return await self.list_records(
            "sys_choice",
            query=f"name={table}^elementIN{','.join(elements)}^inactive=false",
            fields=["element", "label", "value", "sequence"]
        )

    async def get_number_prefix(self, table: str) -> Optional[str]:
        """Record numbering prefix of a table, if it has one."""
        result = await self.list_records(
            "sys_number",
            query=f"category={table}",
            fields=["prefix"],
            limit=1
        )
        if result:
            return result[0].get("prefix") or None
        return None

    def record_url(self, table: str, sys_id: str) -> str:
        """Browser URL of a record in the instance UI."""
        target = quote(f"{table}.do?sys_id={sys_id}", safe="")
        return f"{self.base_url}/now/nav/ui/classic/params/target/{target}"

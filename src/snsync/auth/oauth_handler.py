"""
OAuth handler for the instance's authorization-code flow.

This module owns the credential lifecycle: the encrypted token cache, the
inactivity timeout, refresh-token exchange and the interactive browser login
served from an ephemeral local callback listener.
"""

import asyncio
import time
import urllib.parse
import webbrowser
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

import aiohttp
from aiohttp import web
import structlog

from .token_cache import CryptoError, TokenCache, TokenStore
from ..api_clients.base import AuthenticationError
from ..config.settings import AuthMode, InstanceSettings

logger = structlog.get_logger(__name__)

IDLE_TIMEOUT_SECONDS = 20 * 60
TOUCH_INTERVAL_SECONDS = 10
EXPIRY_MARGIN_SECONDS = 60

SUCCESS_PAGE = (
    "<html><body><h1>Login successful!</h1>"
    "<p>You can close this window and return to the terminal.</p></body></html>"
)


class SessionIdleError(Exception):
    """Raised internally when the cached session exceeded the inactivity window."""
    pass


class OAuthHandler:
    """Hands out a valid access token, refreshing or re-authenticating as needed."""

    def __init__(
        self,
        settings: InstanceSettings,
        token_store: TokenStore,
        idle_timeout: float = IDLE_TIMEOUT_SECONDS,
        touch_interval: float = TOUCH_INTERVAL_SECONDS,
        expiry_margin: float = EXPIRY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
        open_browser: Callable[[str], object] = webbrowser.open
    ):
        self.settings = settings
        self.token_store = token_store
        self.idle_timeout = idle_timeout
        self.touch_interval = touch_interval
        self.expiry_margin = expiry_margin
        self.clock = clock
        self.open_browser = open_browser

        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry."""
        if not self.session:
            self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    @property
    def browser_login_available(self) -> bool:
        return self.settings.auth_mode == AuthMode.OAUTH_BROWSER

    def get_authorization_url(self) -> str:
        """URL the user visits to grant access."""
        params = {
            "response_type": "code",
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
        }
        return f"{self.settings.authorize_url}?{urllib.parse.urlencode(params)}"

    async def get_valid_token(self) -> str:
        """
        Get a valid access token, refreshing or logging in if necessary.

        Returns:
            Access token

        Raises:
            AuthenticationError: If no credential path is available
        """
        if self.token_store.exists():
            try:
                token = await self._token_from_cache()
                if token:
                    return token
            except SessionIdleError:
                logger.warning("Session expired due to inactivity, please login again")
            except CryptoError as e:
                logger.warning("Token cache unreadable, discarding it", error=str(e))
                self.token_store.delete()
            except (AuthenticationError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning("Error reading or refreshing token cache", error=str(e))

        if self.browser_login_available:
            return await self.authenticate_user()

        raise AuthenticationError(
            "No valid token and browser login is not configured "
            "(set SN_CLIENT_ID without SN_PASSWORD to enable it)"
        )

    async def _token_from_cache(self) -> Optional[str]:
        cache = self.token_store.load()
        now = self.clock()

        if cache.is_idle(now, self.idle_timeout):
            self.token_store.delete()
            raise SessionIdleError()

        # Sliding inactivity window, persisted at most every touch_interval
        if cache.needs_touch(now, self.touch_interval):
            cache.last_used_at = now
            self.token_store.save(cache)

        if cache.is_fresh(now, self.expiry_margin):
            return cache.access_token

        if not cache.refresh_token:
            logger.info("Token expired and no refresh token available")
            return None

        logger.info("Token expired or expiring soon, attempting refresh")
        refreshed = await self.refresh_access_token(cache.refresh_token)
        return refreshed.access_token

    async def _post_token_request(self, data: Dict[str, str]) -> Dict:
        if not self.session:
            self.session = aiohttp.ClientSession()

        payload = {
            "client_id": self.settings.client_id or "",
            "client_secret": self.settings.client_secret or "",
            **data
        }

        async with self.session.post(self.settings.token_url, data=payload) as response:
            if response.status != 200:
                response_text = await response.text()
                logger.error(
                    "Token request rejected",
                    grant_type=data.get("grant_type"),
                    status=response.status,
                    response=response_text
                )
                raise AuthenticationError(
                    f"Token request failed: {response.status} - {response_text}"
                )
            return await response.json(content_type=None)

    async def exchange_code_for_token(self, authorization_code: str) -> TokenCache:
        """
        Exchange an authorization code for access and refresh tokens.

        Args:
            authorization_code: The code received on the callback

        Returns:
            The persisted token cache
        """
        logger.info("Exchanging authorization code for tokens")

        token_data = await self._post_token_request({
            "grant_type": "authorization_code",
            "code": authorization_code,
            "redirect_uri": self.settings.redirect_uri,
        })

        cache = self._build_cache(token_data)
        self.token_store.save(cache)

        logger.info("Tokens saved", encrypted=self.token_store.encrypted)
        return cache

    async def refresh_access_token(self, refresh_token: str) -> TokenCache:
        """
        Refresh the access token, keeping the old refresh token if none is returned.

        Args:
            refresh_token: The refresh token

        Returns:
            The persisted token cache
        """
        token_data = await self._post_token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

        cache = self._build_cache(token_data, previous_refresh_token=refresh_token)
        self.token_store.save(cache)

        logger.info("Token refreshed", encrypted=self.token_store.encrypted)
        return cache

    def _build_cache(self, token_data: Dict, previous_refresh_token: Optional[str] = None) -> TokenCache:
        try:
            return TokenCache.from_token_response(
                token_data, now=self.clock(), previous_refresh_token=previous_refresh_token
            )
        except ValueError as e:
            raise AuthenticationError(f"Invalid token response: {e}")

    def _build_callback_app(self, result: asyncio.Future) -> web.Application:
        async def oauth_callback(request: web.Request) -> web.Response:
            code = request.query.get("code")

            if not code:
                error = request.query.get("error", "Code not received")
                logger.error("No authorization code received", error=error)
                if not result.done():
                    result.set_exception(AuthenticationError(f"No code received: {error}"))
                return web.Response(text=f"Error: {error}", status=400)

            logger.info("Authorization code received, exchanging for token")
            try:
                cache = await self.exchange_code_for_token(code)
            except (AuthenticationError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.error("Token exchange error", error=str(e))
                if not result.done():
                    result.set_exception(
                        e if isinstance(e, AuthenticationError) else AuthenticationError(str(e))
                    )
                return web.Response(text=f"Token exchange failed: {e}", status=500)

            if not result.done():
                result.set_result(cache.access_token)
            return web.Response(text=SUCCESS_PAGE, content_type="text/html")

        app = web.Application()
        app.router.add_get(urlparse(self.settings.redirect_uri).path or "/", oauth_callback)
        return app

    async def authenticate_user(self, timeout: Optional[float] = None) -> str:
        """
        Run the interactive browser login.

        The callback listener lives for exactly one exchange and is released
        on success, on a callback without a code, on exchange failure and on
        timeout.

        Returns:
            Access token
        """
        timeout = timeout or self.settings.login_timeout_seconds
        redirect = urlparse(self.settings.redirect_uri)

        result: asyncio.Future = asyncio.get_running_loop().create_future()
        runner = web.AppRunner(self._build_callback_app(result))
        await runner.setup()

        try:
            site = web.TCPSite(runner, redirect.hostname or "localhost", self.settings.redirect_port)
            await site.start()

            auth_url = self.get_authorization_url()
            logger.info("Opening browser for login", url=auth_url)
            self.open_browser(auth_url)

            return await asyncio.wait_for(result, timeout=timeout)
        except asyncio.TimeoutError:
            raise AuthenticationError(f"Login timed out after {timeout} seconds")
        except OSError as e:
            raise AuthenticationError(f"Could not start the login listener: {e}")
        finally:
            await runner.cleanup()
            logger.debug("Login listener stopped")

"""
Drive storage registrar.

Registers drive URLs with a dat-store pinning service so the drives stay
hosted on the network. Speaks the HTTP pinning service API:

    POST /v1/accounts/login   {username, password} -> {sessionToken}
    POST /v1/dats/add         {url}
    POST /v1/dats/remove      {url}
"""

import logging
from typing import Optional

import aiohttp

from pinning.errors import PublishFailure

logger = logging.getLogger(__name__)


class DatStoreClient:
    """Client for a dat-store pinning service."""

    def __init__(
        self,
        server: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: int = 30
    ):
        """
        Initialize registrar client.

        Args:
            server: Pinning service base URL
            session: Shared aiohttp session (created lazily when omitted)
            timeout: Request timeout (seconds)
        """
        self.server = server.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self.session_token: Optional[str] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.session_token:
            headers["Authorization"] = f"Bearer {self.session_token}"
        return headers

    async def _post(self, path: str, body: dict) -> dict:
        url = f"{self.server}{path}"
        try:
            async with self._get_session().post(url, json=body, headers=self._headers()) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise PublishFailure(f"POST {url} failed with {resp.status}: {text}")
                if resp.content_type == "application/json":
                    return await resp.json()
                return {}
        except aiohttp.ClientError as e:
            raise PublishFailure(f"POST {url} failed: {e}") from e

    async def login(self, username: str, password: str):
        """Log in and keep the session token for later requests."""
        logger.info(f"Connecting to dat-store at {self.server} ...")
        data = await self._post("/v1/accounts/login", {
            "username": username,
            "password": password,
        })
        self.session_token = data.get("sessionToken")
        logger.info(f"Logged in to dat-store at {self.server}")

    async def add(self, url: str):
        """Register a drive URL for persistent hosting."""
        await self._post("/v1/dats/add", {"url": url})
        logger.info(f"Registered {url} with dat-store")

    async def remove(self, url: str):
        """Stop hosting a drive URL."""
        await self._post("/v1/dats/remove", {"url": url})
        logger.info(f"Removed {url} from dat-store")

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

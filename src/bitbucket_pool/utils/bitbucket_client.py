"""HTTP client for Bitbucket's startup and Universal Plugin Manager APIs."""

from pathlib import Path
from typing import Optional

import httpx

from bitbucket_pool.models.members import StartupStatus
from bitbucket_pool.utils import get_logger
from bitbucket_pool.utils.exceptions import BitbucketAPIError

logger = get_logger(__name__)

UPM_ROOT = "/rest/plugins/1.0/"
UPM_TOKEN_HEADER = "upm-token"

# Errors seen while Bitbucket is still binding its port or restarting its
# connector. They mean "not ready yet", not "broken".
TRANSIENT_STARTUP_ERRORS = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadError,
    httpx.ReadTimeout,
    httpx.RemoteProtocolError,
)


class BitbucketClient:
    """Async client for a single Bitbucket pool member's HTTP API."""

    def __init__(
        self,
        username: str,
        password: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize Bitbucket client.

        Args:
            username: Admin username for basic auth
            password: Admin password for basic auth
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self._auth = httpx.BasicAuth(username, password)
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "BitbucketClient":
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_startup_status(self, base_url: str) -> Optional[StartupStatus]:
        """
        Fetch the startup status of a Bitbucket instance.

        Args:
            base_url: Instance base URL (e.g. "http://localhost:32768")

        Returns:
            Decoded status, or None while the instance is not accepting requests yet

        Raises:
            BitbucketAPIError: On any other transport error or an undecodable body
        """
        url = f"{base_url}/system/startup"
        client = self._get_client()

        try:
            response = await client.get(url, headers={"Accept": "application/json"})
        except TRANSIENT_STARTUP_ERRORS as e:
            logger.debug(
                "Bitbucket not accepting requests yet",
                extra={"url": url, "error": repr(e)},
            )
            return None
        except httpx.HTTPError as e:
            raise BitbucketAPIError(f"unable to request startup status from {url}: {e}", e) from e

        try:
            return StartupStatus.model_validate(response.json())
        except ValueError as e:
            raise BitbucketAPIError(
                f"unable to decode startup status from {url} "
                f"(HTTP {response.status_code}): {e}",
                e,
            ) from e

    async def get_upm_token(self, base_url: str) -> str:
        """
        Obtain a plugin manager token.

        Args:
            base_url: Instance base URL

        Returns:
            UPM token

        Raises:
            BitbucketAPIError: If the request fails or no token is returned
        """
        url = f"{base_url}{UPM_ROOT}"
        client = self._get_client()

        try:
            response = await client.get(
                url,
                params={"os_authType": "basic"},
                headers={"Accept": "application/vnd.atl.plugins.installed+json"},
                auth=self._auth,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BitbucketAPIError(f"unable to get upm token from {url}: {e}", e) from e

        token = response.headers.get(UPM_TOKEN_HEADER)
        if not token:
            raise BitbucketAPIError(f"no {UPM_TOKEN_HEADER} header in response from {url}")
        return token

    async def install_addon(self, base_url: str, token: str, addon_path: str) -> str:
        """
        Upload and install an add-on.

        Args:
            base_url: Instance base URL
            token: UPM token
            addon_path: Path to the add-on .jar file

        Returns:
            Response body reported by the plugin manager

        Raises:
            BitbucketAPIError: If the file cannot be read or the upload fails
        """
        url = f"{base_url}{UPM_ROOT}"
        path = Path(addon_path)

        try:
            content = path.read_bytes()
        except OSError as e:
            raise BitbucketAPIError(f"unable to read addon file {addon_path}: {e}", e) from e

        client = self._get_client()
        try:
            response = await client.post(
                url,
                params={"token": token},
                files={"plugin": (path.name, content, "application/java-archive")},
                headers={"Accept": "application/json"},
                auth=self._auth,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BitbucketAPIError(
                f"unable to install addon {addon_path} on {base_url}: {e}", e
            ) from e

        return response.text

    async def set_addon_license(self, base_url: str, addon_key: str, license_text: str) -> None:
        """
        Submit a license for an installed add-on.

        Args:
            base_url: Instance base URL
            addon_key: Plugin key
            license_text: Raw license

        Raises:
            BitbucketAPIError: If the request fails
        """
        url = f"{base_url}{UPM_ROOT}{addon_key}-key/license"
        client = self._get_client()

        try:
            response = await client.put(
                url,
                json={"rawLicense": license_text},
                headers={
                    "Content-Type": "application/vnd.atl.plugins+json",
                    "Accept": "application/json",
                },
                auth=self._auth,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BitbucketAPIError(
                f"unable to set license for addon {addon_key} on {base_url}: {e}", e
            ) from e

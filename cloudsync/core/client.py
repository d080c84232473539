"""HTTP client wrapper for the Google Drive REST API."""

import json
import logging
import time
from typing import Any

import requests

from ..models.config import StoreSettings

logger = logging.getLogger(__name__)


class RemoteIOError(Exception):
    """Exception raised for remote store errors."""

    def __init__(self, message: str, status_code: int | None = None, response: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response


def _error_message(response: requests.Response, fallback: str) -> str:
    """Extract the provider's error message from a failed response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500] or fallback

    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return payload.get("error_description") or error
    return fallback


class DriveClient:
    """HTTP client for the Drive v3 API with bearer token authentication.

    All calls are scoped to the app-private space configured in the store
    settings. No call is retried.
    """

    def __init__(
        self,
        access_token: str,
        settings: StoreSettings | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize client.

        Args:
            access_token: OAuth access token
            settings: Store settings (defaults if not provided)
            session: Shared requests session (created if not provided)
        """
        self.access_token = access_token
        self.settings = settings or StoreSettings()
        self.session = session or requests.Session()

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        failure: str = "Request failed",
    ) -> requests.Response:
        """Make an authenticated request.

        Args:
            method: HTTP method
            url: Full URL
            params: Optional query parameters
            data: Optional raw request body
            headers: Extra headers
            failure: Message used when the provider gives none

        Returns:
            The successful response

        Raises:
            RemoteIOError: On non-success status or transport failure
        """
        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                data=data,
                headers=self._headers(headers),
                timeout=self.settings.request_timeout,
            )
        except requests.RequestException as e:
            raise RemoteIOError(f"{failure}: {e}") from e

        if response.status_code >= 400:
            message = _error_message(response, failure)
            logger.debug("%s %s -> %s: %s", method, url, response.status_code, message)
            raise RemoteIOError(message, response.status_code, response)

        return response

    # -------------------------------------------------------------------------
    # File Operations
    # -------------------------------------------------------------------------

    def list_files(self, name_prefix: str) -> list[dict[str, Any]]:
        """List files in the app space whose name contains the prefix.

        Follows pagination until every page has been read.

        Args:
            name_prefix: Name fragment to query for

        Returns:
            List of file resources (id, name, modifiedTime, size)
        """
        escaped = name_prefix.replace("\\", "\\\\").replace("'", "\\'")
        params: dict[str, Any] = {
            "spaces": self.settings.space,
            "q": f"name contains '{escaped}' and trashed = false",
            "fields": "nextPageToken, files(id,name,modifiedTime,size)",
            "pageSize": 1000,
        }

        files: list[dict[str, Any]] = []
        while True:
            response = self._request(
                "GET",
                f"{self.settings.api_base_url}/files",
                params=params,
                failure="Failed to list versions",
            )
            payload = response.json()
            files.extend(payload.get("files") or [])

            page_token = payload.get("nextPageToken")
            if not page_token:
                return files
            params["pageToken"] = page_token

    def download(self, file_id: str) -> Any:
        """Download a file body and decode it as JSON."""
        response = self._request(
            "GET",
            f"{self.settings.api_base_url}/files/{file_id}",
            params={"alt": "media"},
            failure="Failed to download version",
        )
        try:
            return response.json()
        except ValueError as e:
            raise RemoteIOError(f"Version {file_id} is not valid JSON", response.status_code, response) from e

    def create_json_file(self, name: str, content: Any) -> dict[str, Any]:
        """Create a new JSON file in the app space with a multipart upload.

        Args:
            name: File name
            content: JSON-serializable body

        Returns:
            The created file resource
        """
        metadata = {
            "name": name,
            "parents": [self.settings.space],
            "mimeType": "application/json",
        }

        boundary = f"cloudsync_boundary_{int(time.time() * 1000)}"
        body = "\r\n".join([
            f"--{boundary}",
            "Content-Type: application/json; charset=UTF-8",
            "",
            json.dumps(metadata),
            f"--{boundary}",
            "Content-Type: application/json",
            "",
            json.dumps(content),
            f"--{boundary}--",
        ])

        response = self._request(
            "POST",
            f"{self.settings.upload_base_url}/files",
            params={"uploadType": "multipart", "fields": "id,name,modifiedTime,size"},
            data=body.encode("utf-8"),
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            failure="Failed to create version",
        )
        return response.json()  # type: ignore[no-any-return]

    def delete(self, file_id: str) -> None:
        """Delete a file by id."""
        self._request(
            "DELETE",
            f"{self.settings.api_base_url}/files/{file_id}",
            failure="Failed to delete version",
        )

"""GitHub repository contents as a versioned store."""

from __future__ import annotations

import base64
import binascii
from typing import Any
from urllib.parse import quote

import httpx

from remotekv.backends import AccessInfo, VersionedBlob
from remotekv.config import RemoteKVConfig
from remotekv.errors import BackendError, NotFoundError, VersionConflictError


class GitHubVersionedStore:
    """Files in one repository branch, versioned by their blob SHA."""

    def __init__(
        self,
        *,
        owner: str,
        repo: str,
        branch: str | None = None,
        token: str | None = None,
        config: RemoteKVConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            owner: Repository owner (user or organization)
            repo: Repository name
            branch: Branch holding the documents; the default branch when omitted
            token: Access token sent as a bearer credential
            config: Transport settings
            transport: Optional httpx transport, used by tests
        """
        config = config or RemoteKVConfig()
        self.owner = owner
        self.repo = repo
        self.repository_id = f"{owner}/{repo}"
        self.ref = branch
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=config.github_api_url.rstrip("/"),
            headers=headers,
            timeout=config.github_request_timeout_s,
            transport=transport,
        )

    def _contents_url(self, name: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/contents/{quote(name, safe='/')}"

    def _error(self, operation: str, response: httpx.Response) -> BackendError:
        if response.status_code == 401:
            return BackendError(operation, "Invalid or missing authentication token")
        try:
            message = response.json().get("message", f"HTTP {response.status_code}")
        except ValueError:
            message = f"HTTP {response.status_code}: {response.text}"
        return BackendError(operation, f"HTTP {response.status_code}: {message}")

    async def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise BackendError(operation, f"Network error: {e}") from e

    async def read(self, name: str) -> VersionedBlob:
        params = {"ref": self.ref} if self.ref else None
        response = await self._request("get_contents", "GET", self._contents_url(name), params=params)
        if response.status_code == 404:
            raise NotFoundError(name)
        if response.status_code >= 400:
            raise self._error("get_contents", response)

        data = response.json()
        if isinstance(data, list) or data.get("type") == "dir":
            raise BackendError("get_contents", f"Did not expect '{name}' to be a directory")
        if data.get("encoding") != "base64":
            raise BackendError(
                "get_contents", f"Unsupported content encoding {data.get('encoding')!r} for '{name}'"
            )
        try:
            content = base64.b64decode(data.get("content", ""))
        except (binascii.Error, ValueError) as e:
            raise BackendError("get_contents", f"Malformed content for '{name}': {e}") from e
        return VersionedBlob(content=content, version=str(data["sha"]))

    async def write_if_version(
        self,
        name: str,
        content: bytes,
        expected_version: str | None,
        *,
        message: str,
    ) -> str:
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
        }
        if expected_version is not None:
            payload["sha"] = expected_version
        if self.ref:
            payload["branch"] = self.ref

        response = await self._request(
            "create_or_update_file", "PUT", self._contents_url(name), json=payload
        )
        if response.status_code == 409:
            raise VersionConflictError(name, expected_version, "HTTP 409")
        if response.status_code == 422 and "sha" in response.text:
            # Creating a file that already exists is reported as a missing sha.
            raise VersionConflictError(name, expected_version, "HTTP 422")
        if response.status_code >= 400:
            raise self._error("create_or_update_file", response)
        return str(response.json()["content"]["sha"])

    async def check_access(self) -> AccessInfo:
        response = await self._request(
            "get_repository", "GET", f"/repos/{self.owner}/{self.repo}"
        )
        if response.status_code >= 400:
            raise self._error("get_repository", response)
        permissions = response.json().get("permissions") or {}
        return AccessInfo(can_write=bool(permissions.get("push")))

    async def check_ref(self) -> bool:
        if not self.ref:
            return True
        response = await self._request(
            "get_branch",
            "GET",
            f"/repos/{self.owner}/{self.repo}/branches/{quote(self.ref, safe='')}",
        )
        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise self._error("get_branch", response)
        return True

    async def close(self) -> None:
        await self.client.aclose()

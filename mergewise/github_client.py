"""GitHub API client helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import httpx
import jwt

from mergewise.config import GitHubAppCredentials


class GitHubAPIError(RuntimeError):
    """Raised when a GitHub API request fails."""

    def __init__(
        self,
        message: str,
        status_code: int,
        response_body: Any | None = None,
        *,
        method: str | None = None,
        url: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.method = method
        self.url = url


class InvalidRepositoryNameError(ValueError):
    """Raised when a repository full name is not in ``owner/name`` form."""


DEFAULT_ACCEPT_HEADER = "application/vnd.github+json"
DEFAULT_API_VERSION = "2022-11-28"
DEFAULT_PER_PAGE = 100
DEFAULT_MAX_PAGES = 20


@dataclass(frozen=True)
class RepositoryCoordinates:
    owner: str
    repository: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repository}"


def parse_repository_full_name(full_name: str) -> RepositoryCoordinates:
    """Split ``owner/name`` into coordinates, rejecting anything else."""

    segments = full_name.split("/")
    if len(segments) != 2:
        raise InvalidRepositoryNameError(f"Repository full name '{full_name}' is invalid.")
    owner, repository = (segment.strip() for segment in segments)
    if not owner or not repository:
        raise InvalidRepositoryNameError(f"Repository full name '{full_name}' is invalid.")
    return RepositoryCoordinates(owner=owner, repository=repository)


@dataclass
class InstallationToken:
    token: str
    expires_at: datetime
    permissions: Dict[str, Any] | None = None

    def is_active(self, *, skew_seconds: int = 60) -> bool:
        """Return True if the token is still valid accounting for clock skew."""

        return self.expires_at - timedelta(seconds=skew_seconds) > datetime.now(timezone.utc)


def create_app_jwt(credentials: GitHubAppCredentials, *, now: datetime | None = None) -> str:
    """Sign a short-lived RS256 JWT identifying the GitHub App."""

    issued = now or datetime.now(timezone.utc)
    payload = {
        "iat": int((issued - timedelta(seconds=60)).timestamp()),
        "exp": int((issued + timedelta(minutes=10)).timestamp()),
        "iss": str(credentials.app_id),
    }
    try:
        return jwt.encode(payload, credentials.private_key_pem, algorithm="RS256")
    except Exception as exc:
        raise GitHubAPIError(
            f"Failed to encode JWT: {exc}. Check that GITHUB_APP_PRIVATE_KEY is a valid RSA private key in PEM format.",
            0,
            None,
        ) from exc


class GitHubInstallationClient:
    """GitHub App helper for installation-scoped API operations."""

    def __init__(
        self,
        *,
        base_url: str,
        credentials: GitHubAppCredentials,
        timeout: float = 10.0,
        user_agent: str = "mergewise-worker",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._user_agent = user_agent
        self._credentials = credentials
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={
                "User-Agent": self._user_agent,
                "Accept": DEFAULT_ACCEPT_HEADER,
                "X-GitHub-Api-Version": DEFAULT_API_VERSION,
            },
        )
        self._owns_client = client is None

    def _app_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {create_app_jwt(self._credentials)}",
            "Accept": DEFAULT_ACCEPT_HEADER,
            "X-GitHub-Api-Version": DEFAULT_API_VERSION,
            "User-Agent": self._user_agent,
        }

    def _installation_headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": DEFAULT_ACCEPT_HEADER,
            "X-GitHub-Api-Version": DEFAULT_API_VERSION,
            "User-Agent": self._user_agent,
        }

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: Dict[str, str],
        params: Dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        response = await self._client.request(method, url, headers=headers, params=params, json=json)
        if response.status_code >= 400:
            detail: Any | None
            if response.content:
                try:
                    detail = response.json()
                except ValueError:
                    detail = response.text
            else:
                detail = None
            raise GitHubAPIError(
                f"GitHub API request failed: {method} {url} ({response.status_code}).",
                response.status_code,
                detail,
                method=method,
                url=url,
            )
        return response

    async def exchange_installation_token(self, installation_id: int) -> InstallationToken:
        """Exchange the app JWT for an installation access token."""

        response = await self._request(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            headers=self._app_headers(),
        )
        data = response.json()
        token_value = data.get("token")
        if not token_value:
            raise GitHubAPIError(
                "GitHub did not return an installation token.",
                response.status_code,
                data,
            )

        expires_at_raw = data.get("expires_at")
        if not expires_at_raw:
            raise GitHubAPIError(
                "GitHub did not return an expires_at value for installation token.",
                response.status_code,
                data,
            )
        return InstallationToken(
            token=token_value,
            expires_at=_parse_github_timestamp(expires_at_raw),
            permissions=data.get("permissions"),
        )

    async def _paginate(
        self,
        url: str,
        token: str,
        *,
        per_page: int,
        max_pages: int,
        description: str,
    ) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        for page in range(1, max_pages + 1):
            response = await self._request(
                "GET",
                url,
                headers=self._installation_headers(token),
                params={"per_page": per_page, "page": page},
            )
            batch = response.json()
            if not isinstance(batch, list):
                raise GitHubAPIError(
                    f"Unexpected response while listing {description}.",
                    response.status_code,
                    batch,
                    method="GET",
                    url=url,
                )
            items.extend(batch)
            if len(batch) < per_page:
                break
        return items

    async def list_pull_request_files(
        self,
        repo: RepositoryCoordinates,
        pull_number: int,
        token: str,
        *,
        per_page: int = DEFAULT_PER_PAGE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> List[Dict[str, Any]]:
        return await self._paginate(
            f"/repos/{repo.owner}/{repo.repository}/pulls/{pull_number}/files",
            token,
            per_page=per_page,
            max_pages=max_pages,
            description="pull request files",
        )

    async def list_issue_comments(
        self,
        repo: RepositoryCoordinates,
        pull_number: int,
        token: str,
        *,
        per_page: int = DEFAULT_PER_PAGE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> List[Dict[str, Any]]:
        return await self._paginate(
            f"/repos/{repo.owner}/{repo.repository}/issues/{pull_number}/comments",
            token,
            per_page=per_page,
            max_pages=max_pages,
            description="pull request comments",
        )

    async def create_issue_comment(
        self,
        repo: RepositoryCoordinates,
        pull_number: int,
        token: str,
        body: str,
    ) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"/repos/{repo.owner}/{repo.repository}/issues/{pull_number}/comments",
            headers=self._installation_headers(token),
            json={"body": body},
        )
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def _parse_github_timestamp(raw: str) -> datetime:
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw).astimezone(timezone.utc)

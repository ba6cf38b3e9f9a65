"""
Repository host client — repository metadata and branch heads from GitHub.

Errors are classified for the worker:
  - 404 on the repository, malformed JSON, or a missing branch
    → ``TerminalSourceError``
  - any other non-200 response or a transport error
    → ``TransientSourceError`` (network backoff)
"""
import logging
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from contract_verifier import USER_AGENT
from contract_verifier.errors import TerminalSourceError, TransientSourceError

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"


class RepoLicense(BaseModel):
    spdx_id: Optional[str] = None
    name: Optional[str] = None


class RepoInfo(BaseModel):
    """Subset of ``GET /repos/{owner}/{repo}`` the acquirer uses."""
    full_name: str
    default_branch: str
    size: int                      # kilobytes
    private: bool = False
    license: Optional[RepoLicense] = None

    @property
    def license_id(self) -> Optional[str]:
        if self.license is None or self.license.spdx_id in (None, "NOASSERTION"):
            return None
        return self.license.spdx_id


class BranchCommit(BaseModel):
    sha: str


class BranchInfo(BaseModel):
    """Subset of ``GET /repos/{owner}/{repo}/branches/{branch}``."""
    name: str
    commit: BranchCommit


class RepoHost(Protocol):
    """What the source acquirer needs from a repository host."""

    async def get_repo(self, repo_name: str) -> RepoInfo: ...

    async def resolve_branch(self, repo_name: str, branch: str) -> str: ...

    def clone_url(self, repo_name: str) -> str: ...


class GitHubClient:
    """GitHub REST client over ``httpx.AsyncClient``."""

    def __init__(
        self,
        api_base: str = "https://api.github.com",
        clone_base: str = "https://github.com",
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.clone_base = clone_base.rstrip("/")
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings) -> "GitHubClient":
        return cls(
            api_base=settings.GITHUB_API_BASE,
            clone_base=settings.GITHUB_CLONE_BASE,
            api_key=settings.GITHUB_API_KEY,
            timeout=settings.HTTP_TIMEOUT,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def clone_url(self, repo_name: str) -> str:
        return f"{self.clone_base}/{repo_name}"

    async def _get_json(self, path: str, not_found: str) -> Dict[str, Any]:
        url = f"{self.api_base}{path}"
        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as e:
            raise TransientSourceError(f"GitHub request failed: {e}") from e

        if resp.status_code == 404:
            raise TerminalSourceError(not_found)
        if resp.status_code != 200:
            logger.warning(f"GitHub returned {resp.status_code} for {path}")
            raise TransientSourceError(f"GitHub returned status {resp.status_code}")

        try:
            return resp.json()
        except ValueError as e:
            raise TerminalSourceError(f"Malformed GitHub response for {path}") from e

    async def get_repo(self, repo_name: str) -> RepoInfo:
        data = await self._get_json(
            f"/repos/{repo_name}", f"Repository not found: {repo_name}"
        )
        try:
            return RepoInfo.model_validate(data)
        except ValidationError as e:
            raise TerminalSourceError(f"Malformed repository metadata for {repo_name}") from e

    async def resolve_branch(self, repo_name: str, branch: str) -> str:
        """Head commit hash of *branch*."""
        data = await self._get_json(
            f"/repos/{repo_name}/branches/{quote(branch, safe='/')}",
            f"Branch not found: {repo_name}@{branch}",
        )
        try:
            return BranchInfo.model_validate(data).commit.sha
        except ValidationError as e:
            raise TerminalSourceError(f"Malformed branch metadata for {repo_name}@{branch}") from e

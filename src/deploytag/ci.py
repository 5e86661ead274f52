"""CI run providers.

The run monitor and the rollback history only need two queries from the CI
system: the most recent runs, and the current state of one run. Both GitHub
Actions backends implement ``RunProvider``:

- ``GitHubActionsClient`` talks to the REST API with httpx and a token.
- ``GhCliRunProvider`` shells out to an authenticated ``gh`` CLI.

Example:
    >>> from deploytag.ci import GitHubActionsClient
    >>> with GitHubActionsClient("acme/payments", token="ghp_...") as client:
    ...     runs = client.list_recent_runs(limit=5)
"""

from __future__ import annotations

import json
import re
import shutil
import subprocess
from types import TracebackType
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
import structlog

from deploytag.errors import RunQueryError
from deploytag.schemas.runs import WorkflowRun

if TYPE_CHECKING:
    from deploytag.config import DeployConfig
    from deploytag.repository import TagRepository

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 20.0

_GH_JSON_FIELDS = "databaseId,status,conclusion,headBranch,headSha,url,name,createdAt"

# git@github.com:owner/repo.git, https://github.com/owner/repo, ssh://git@github.com/owner/repo.git
_GITHUB_REMOTE_PATTERN = re.compile(
    r"github\.com[:/](?P<slug>[A-Za-z0-9_.\-]+/[A-Za-z0-9_.\-]+?)(?:\.git)?/?$"
)


@runtime_checkable
class RunProvider(Protocol):
    """Read-only view of CI runs.

    Implementations raise ``RunQueryError`` when the CI system cannot be queried.
    """

    @property
    def actions_url(self) -> str | None: ...

    def list_recent_runs(self, limit: int = 5) -> list[WorkflowRun]: ...

    def get_run(self, run_id: int) -> WorkflowRun: ...


def parse_repo_slug(remote_url: str | None) -> str | None:
    """Extract ``owner/repo`` from a GitHub remote URL.

    Examples:
        >>> parse_repo_slug("git@github.com:acme/payments.git")
        'acme/payments'
        >>> parse_repo_slug("https://gitlab.com/acme/payments.git") is None
        True
    """
    if not remote_url:
        return None
    match = _GITHUB_REMOTE_PATTERN.search(remote_url.strip())
    return match.group("slug") if match else None


def actions_url(repository: str | None) -> str | None:
    """Return the Actions page for ``owner/repo``, used for manual monitoring."""
    if not repository:
        return None
    return f"https://github.com/{repository}/actions"


def _run_from_api(payload: dict[str, Any]) -> WorkflowRun:
    return WorkflowRun(
        run_id=payload["id"],
        status=payload.get("status") or "queued",
        conclusion=payload.get("conclusion"),
        head_branch=payload.get("head_branch"),
        head_sha=payload.get("head_sha"),
        url=payload.get("html_url"),
        name=payload.get("name"),
        created_at=payload.get("created_at"),
    )


def _run_from_gh(payload: dict[str, Any]) -> WorkflowRun:
    # gh reports an empty string for runs that have not concluded yet
    return WorkflowRun(
        run_id=payload["databaseId"],
        status=payload.get("status") or "queued",
        conclusion=payload.get("conclusion") or None,
        head_branch=payload.get("headBranch"),
        head_sha=payload.get("headSha"),
        url=payload.get("url"),
        name=payload.get("name"),
        created_at=payload.get("createdAt") or None,
    )


class GitHubActionsClient:
    """GitHub Actions REST client.

    Args:
        repository: ``owner/repo`` slug.
        token: Token with ``actions:read``; anonymous access works for public repos.
        api_url: API base URL (GitHub Enterprise uses ``https://<host>/api/v3``).
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        repository: str,
        token: str | None = None,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.repository = repository
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "deploytag",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._log = logger.bind(repository=repository)

    @property
    def actions_url(self) -> str | None:
        return actions_url(self.repository)

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"/repos/{self.repository}{path}"
        try:
            response = self._client.get(url, params=params)
        except httpx.HTTPError as e:
            self._log.warning("run_query_failed", path=path, error=str(e))
            raise RunQueryError(f"GitHub API request failed: {e}") from e

        if response.status_code in (401, 403):
            raise RunQueryError(
                f"GitHub API denied access to {self.repository} "
                f"(HTTP {response.status_code}); check GITHUB_TOKEN"
            )
        if response.status_code >= 400:
            raise RunQueryError(
                f"GitHub API returned HTTP {response.status_code} for {url}: "
                f"{response.text[:200]}"
            )
        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise RunQueryError(f"GitHub API returned invalid JSON for {url}") from e
        return data

    def list_recent_runs(self, limit: int = 5) -> list[WorkflowRun]:
        data = self._get("/actions/runs", params={"per_page": limit})
        runs = [_run_from_api(item) for item in data.get("workflow_runs", [])]
        self._log.debug("runs_listed", count=len(runs))
        return runs[:limit]

    def get_run(self, run_id: int) -> WorkflowRun:
        return _run_from_api(self._get(f"/actions/runs/{run_id}"))

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GitHubActionsClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class GhCliRunProvider:
    """Run provider backed by the ``gh`` CLI and its stored credentials.

    Args:
        repository: Optional ``owner/repo``; when omitted ``gh`` infers it from
            the current directory's remotes.
    """

    def __init__(self, repository: str | None = None) -> None:
        self.repository = repository
        self._log = logger.bind(repository=repository or "auto")

    @property
    def actions_url(self) -> str | None:
        return actions_url(self.repository)

    def _gh(self, *args: str) -> Any:
        command = ["gh", *args, "--json", _GH_JSON_FIELDS]
        if self.repository:
            command.extend(["--repo", self.repository])
        try:
            result = subprocess.run(command, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            self._log.warning("run_query_failed", command=args[:2], error=stderr)
            raise RunQueryError(f"gh {' '.join(args[:2])} failed: {stderr}") from e
        except FileNotFoundError as e:
            raise RunQueryError("gh command not found") from e
        try:
            return json.loads(result.stdout or "null")
        except json.JSONDecodeError as e:
            raise RunQueryError("gh returned invalid JSON") from e

    def list_recent_runs(self, limit: int = 5) -> list[WorkflowRun]:
        payload = self._gh("run", "list", "--limit", str(limit))
        return [_run_from_gh(item) for item in payload or []]

    def get_run(self, run_id: int) -> WorkflowRun:
        payload = self._gh("run", "view", str(run_id))
        if not payload:
            raise RunQueryError(f"gh returned no data for run {run_id}")
        return _run_from_gh(payload)


def resolve_repo_slug(config: DeployConfig, repository: TagRepository) -> str | None:
    """Configured ``owner/repo``, or the one parsed from the git remote."""
    return config.github_repository or parse_repo_slug(repository.remote_url())


def create_run_provider(config: DeployConfig, repository: TagRepository) -> RunProvider | None:
    """Pick a run provider from configuration.

    ``run_provider`` may be ``api``, ``gh``, ``auto`` or ``none``. In auto mode
    the REST client is used when a token is configured, then ``gh`` if it is
    installed.

    Returns:
        A provider, or None when no CI backend is reachable. Monitoring and run
        annotations then degrade to manual URLs and ``unknown``.
    """
    mode = config.run_provider
    if mode == "none":
        return None
    slug = resolve_repo_slug(config, repository)
    token = config.github_token.get_secret_value() if config.github_token else None

    if mode == "api" or (mode == "auto" and token and slug):
        if not slug:
            logger.warning("run_provider_unavailable", reason="repository slug unknown")
            return None
        return GitHubActionsClient(
            slug,
            token,
            api_url=config.github_api_url,
        )
    if mode == "gh" or (mode == "auto" and shutil.which("gh")):
        return GhCliRunProvider(slug)

    logger.info("run_provider_unavailable", reason="no token and gh not installed")
    return None


__all__: list[str] = [
    "DEFAULT_API_URL",
    "GhCliRunProvider",
    "GitHubActionsClient",
    "RunProvider",
    "actions_url",
    "create_run_provider",
    "parse_repo_slug",
    "resolve_repo_slug",
]

"""GitHub API client module.

This module provides the shared HTTP session for GitHub's REST and GraphQL
APIs, token resolution, rate-limit handling and repository validation.
"""

import time
import logging
import subprocess
import requests
from typing import Dict, Any, Optional, Tuple

from config import GITHUB_API_URL, GITHUB_GRAPHQL_URL, GITHUB_TOKEN
from errors import TransportError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 60
RATE_LIMIT_LOW_WATERMARK = 50
RATE_LIMIT_MAX_WAIT_SECONDS = 3600

# Initialize HTTP session; the Authorization header is added by configure_session()
session = requests.Session()
session.headers.update(
    {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }
)


def resolve_github_token() -> str:
    """Return a GitHub token from the environment or the gh CLI's stored login."""
    if GITHUB_TOKEN:
        return GITHUB_TOKEN

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=10
        )
    except (FileNotFoundError, subprocess.SubprocessError) as e:
        logger.debug(f"Could not read token from gh CLI: {e}")
        return ""

    if result.returncode != 0:
        return ""
    return result.stdout.strip()


def configure_session(token: Optional[str] = None) -> None:
    """Attach bearer authentication to the shared session.

    Raises:
        RuntimeError: if no token can be found
    """
    token = token or resolve_github_token()
    if not token:
        raise RuntimeError(
            "No GitHub token found.\n"
            "Please either:\n"
            "  1. Set the GITHUB_TOKEN or GH_TOKEN environment variable, or\n"
            "  2. Authenticate the GitHub CLI with 'gh auth login'"
        )
    session.headers["Authorization"] = f"Bearer {token}"


def is_transient_http_error(e: requests.RequestException) -> bool:
    """Connection errors, timeouts and 5xx responses are worth retrying."""
    if isinstance(e, (requests.ConnectionError, requests.Timeout)):
        return True
    response = getattr(e, "response", None)
    return response is not None and response.status_code >= 500


def check_rate_limit(resource: str = "graphql", sleep=time.sleep) -> None:
    """Pause until the ``resource`` bucket resets when it is nearly exhausted.

    PR polling spends one GraphQL point per poll, so long check waits are the
    usual way to run low. Failures to read the limit are logged and ignored.
    """
    try:
        response = session.get(f"{GITHUB_API_URL}/rate_limit", timeout=10)
        response.raise_for_status()
        bucket = response.json()["resources"][resource]
        remaining = int(bucket["remaining"])
        reset_at = float(bucket["reset"])
    except (requests.RequestException, ValueError, KeyError, TypeError) as e:
        logger.warning(f"Could not check {resource} rate limit: {e}")
        return

    if remaining >= RATE_LIMIT_LOW_WATERMARK:
        return

    wait_seconds = reset_at - time.time()
    if wait_seconds <= 0:
        return
    wait_seconds = min(wait_seconds + 5, RATE_LIMIT_MAX_WAIT_SECONDS)
    logger.warning(
        f"GitHub {resource} rate limit low ({remaining} left), sleeping {int(wait_seconds)}s until it resets"
    )
    sleep(wait_seconds)


def graphql_query(query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run a GraphQL query and return the decoded payload.

    Raises:
        TransportError: if the request fails or the response carries errors
    """
    check_rate_limit()

    body: Dict[str, Any] = {"query": query}
    if variables:
        body["variables"] = variables

    try:
        response = session.post(GITHUB_GRAPHQL_URL, json=body, timeout=REQUEST_TIMEOUT_SECONDS)
        response.raise_for_status()
        result = response.json()
    except requests.RequestException as e:
        raise TransportError(f"GraphQL request failed: {e}", transient=is_transient_http_error(e)) from e
    except ValueError as e:
        raise TransportError(f"GraphQL response was not valid JSON: {e}") from e

    if not isinstance(result, dict):
        raise TransportError(f"Unexpected GraphQL response: {result!r}")
    if result.get("errors"):
        messages = "; ".join(err.get("message", str(err)) for err in result["errors"])
        raise TransportError(f"GraphQL query returned errors: {messages}")

    return result


def split_owner_repo(repository: str) -> Tuple[str, str]:
    """Return (owner, name) for an 'owner/name' string.

    Raises:
        ValueError: if either part is missing
    """
    owner, _, name = repository.partition("/")
    if not owner or not name:
        raise ValueError(f"Invalid repository: {repository!r}. Expected 'owner/repo'.")
    return owner, name


def check_auth() -> str:
    """Verify the configured token against the GitHub API.

    Returns:
        The authenticated user's login

    Raises:
        RuntimeError: if authentication fails
    """
    try:
        response = session.get(f"{GITHUB_API_URL}/user", timeout=30)
    except requests.RequestException as e:
        raise RuntimeError(
            f"Failed to verify GitHub authentication: {e}\n"
            f"Please check your network connection and try again."
        ) from e

    if response.status_code == 401:
        raise RuntimeError(
            "GitHub authentication failed.\n"
            "Please check that:\n"
            "  1. GITHUB_TOKEN or GH_TOKEN is set to a valid token, or\n"
            "  2. You have authenticated with 'gh auth login'"
        )
    response.raise_for_status()

    login = response.json().get("login", "")
    logger.info(f"✓ Authenticated with GitHub as {login}")
    return login


_REPO_ACCESS_ERRORS = {
    404: (
        "Repository '{repository}' not found or not accessible.\n"
        "Check that:\n"
        "  1. The repository name is correct (use --owner/--repo or the origin remote)\n"
        "  2. Your token can see the repository (private repos need the 'repo' scope)"
    ),
    401: (
        "Authentication failed for repository '{repository}'.\n"
        "Check that GITHUB_TOKEN or GH_TOKEN holds a valid, unexpired token,\n"
        "or run 'gh auth login'."
    ),
    403: (
        "Access forbidden to repository '{repository}'.\n"
        "The loop pushes branches, opens and merges PRs; make sure your token has\n"
        "contents and pull request write permissions and is not rate limited."
    ),
}


def validate_repository_access(repository: str) -> Dict[str, Any]:
    """Make sure the loop can work against ``repository``.

    Besides existence, this warns when the token lacks push access, since
    every iteration pushes a branch and merges its PR.

    Returns:
        The repository payload from the REST API

    Raises:
        RuntimeError: with a human-readable explanation when access fails
    """
    owner, repo = split_owner_repo(repository)

    try:
        response = session.get(f"{GITHUB_API_URL}/repos/{owner}/{repo}", timeout=30)
    except requests.RequestException as e:
        raise RuntimeError(
            f"Failed to validate repository access: {e}\n"
            f"Please check your network connection and try again."
        ) from e

    template = _REPO_ACCESS_ERRORS.get(response.status_code)
    if template:
        raise RuntimeError(template.format(repository=repository))

    try:
        response.raise_for_status()
        repo_data = response.json()
    except (requests.RequestException, ValueError) as e:
        raise RuntimeError(f"Failed to validate repository access: {e}") from e

    permissions = repo_data.get("permissions") or {}
    if permissions and not permissions.get("push"):
        logger.warning(f"⚠️  Token has no push access to {repository}; pushes and merges will fail")

    logger.info(f"✓ Repository access validated: {repository} (default branch: {repo_data.get('default_branch')})")
    return repo_data

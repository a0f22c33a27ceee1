"""Pull request management module.

This module handles all PR-related operations against the GitHub API:
creation, check and review status queries, merging and closing.
"""

import logging
import requests
from typing import Dict, Any, List, Optional

from config import GITHUB_API_URL
from errors import TransportError
from github_api import (
    session, split_owner_repo, graphql_query, is_transient_http_error, REQUEST_TIMEOUT_SECONDS
)
from review_tracker import Check

logger = logging.getLogger(__name__)

REVIEW_DECISION_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      reviewDecision
    }
  }
}
"""


def _request(method: str, url: str, **kwargs) -> requests.Response:
    """Send a request on the shared session, raising TransportError on failure."""
    kwargs.setdefault("timeout", REQUEST_TIMEOUT_SECONDS)
    try:
        response = session.request(method, url, **kwargs)
        response.raise_for_status()
        return response
    except requests.RequestException as e:
        detail = ""
        if getattr(e, "response", None) is not None:
            detail = f"\nResponse: {e.response.text}"
        raise TransportError(
            f"{method} {url} failed: {e}{detail}", transient=is_transient_http_error(e)
        ) from e


def _json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise TransportError(f"Malformed JSON from {response.url}: {e}") from e


def get_pull_request(repository: str, pr_number: int) -> Dict[str, Any]:
    owner, repo = split_owner_repo(repository)
    response = _request("GET", f"{GITHUB_API_URL}/repos/{owner}/{repo}/pulls/{pr_number}")
    data = _json(response)
    if not isinstance(data, dict):
        raise TransportError(f"[PR #{pr_number}] Unexpected pull request payload")
    return data


def create_pull_request(repository: str, title: str, body: str, base: str, head: str) -> Dict[str, Any]:
    """Open a pull request from ``head`` into ``base``.

    Returns the created PR object; ``number`` and ``html_url`` are guaranteed.
    """
    owner, repo = split_owner_repo(repository)
    payload = {"title": title, "body": body, "base": base, "head": head}

    response = _request("POST", f"{GITHUB_API_URL}/repos/{owner}/{repo}/pulls", json=payload)
    data = _json(response)

    if not isinstance(data, dict) or "number" not in data:
        raise TransportError(f"Unexpected response when creating PR for {head}")

    logger.info(f"[PR #{data['number']}] ✓ Created: {data.get('html_url', '')}")
    return data


def _check_run_state(check_run: Dict[str, Any]) -> str:
    """Collapse a check run's status/conclusion pair into one state string."""
    status = (check_run.get("status") or "").upper()
    conclusion = (check_run.get("conclusion") or "").upper()
    if status == "COMPLETED" and conclusion:
        return conclusion
    return status


def _list_check_runs(url: str) -> List[Dict[str, Any]]:
    """Fetch every page of a commit's check runs, following the Link header."""
    response = _request("GET", url, params={"per_page": 100})
    check_runs = []
    while True:
        data = _json(response)
        try:
            check_runs.extend(data["check_runs"])
        except (KeyError, TypeError) as e:
            raise TransportError(f"Malformed check runs payload from {url}: {e}") from e

        next_url = response.links.get("next", {}).get("url")
        if not next_url:
            return check_runs
        response = _request("GET", next_url)


def get_pr_checks(repository: str, pr_number: int) -> List[Check]:
    """Get the CI checks for a PR's head commit.

    Both check runs (GitHub Actions and apps) and legacy commit statuses are
    included. States use GitHub's upper-case vocabulary, e.g. SUCCESS,
    IN_PROGRESS, FAILURE.
    """
    owner, repo = split_owner_repo(repository)

    pr_data = get_pull_request(repository, pr_number)
    head_sha = pr_data.get("head", {}).get("sha")
    if not head_sha:
        raise TransportError(f"[PR #{pr_number}] Pull request has no head SHA")

    check_runs = _list_check_runs(f"{GITHUB_API_URL}/repos/{owner}/{repo}/commits/{head_sha}/check-runs")

    status_url = f"{GITHUB_API_URL}/repos/{owner}/{repo}/commits/{head_sha}/status"
    status_data = _json(_request("GET", status_url))

    try:
        statuses = status_data["statuses"]
        checks = [Check(name=c["name"], state=_check_run_state(c)) for c in check_runs]
        checks.extend(
            Check(name=s["context"], state=(s.get("state") or "").upper()) for s in statuses
        )
    except (KeyError, TypeError) as e:
        raise TransportError(f"[PR #{pr_number}] Malformed checks payload: {e}") from e

    return checks


def get_pr_review_decision(repository: str, pr_number: int) -> str:
    """Return the PR's reviewDecision (APPROVED, CHANGES_REQUESTED,
    REVIEW_REQUIRED) or an empty string when no review is required."""
    owner, repo = split_owner_repo(repository)
    variables = {"owner": owner, "repo": repo, "number": int(pr_number)}

    result = graphql_query(REVIEW_DECISION_QUERY, variables)

    try:
        pull_request = result["data"]["repository"]["pullRequest"]
    except (KeyError, TypeError) as e:
        raise TransportError(f"[PR #{pr_number}] Malformed review decision response: {e}") from e
    if pull_request is None:
        raise TransportError(f"[PR #{pr_number}] Pull request not found")

    return pull_request.get("reviewDecision") or ""


def delete_branch(repository: str, branch: str) -> None:
    """Delete a branch on GitHub. Missing branches are ignored."""
    owner, repo = split_owner_repo(repository)
    url = f"{GITHUB_API_URL}/repos/{owner}/{repo}/git/refs/heads/{branch}"
    try:
        response = session.delete(url, timeout=REQUEST_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise TransportError(f"Failed to delete branch {branch}: {e}",
                             transient=is_transient_http_error(e)) from e

    if response.status_code in (404, 422):
        logger.debug(f"Branch {branch} already deleted")
        return
    try:
        response.raise_for_status()
    except requests.HTTPError as e:
        raise TransportError(f"Failed to delete branch {branch}: {e}",
                             transient=is_transient_http_error(e)) from e


def merge_pull_request(repository: str, pr_number: int, merge_method: str, delete_head: bool = True) -> None:
    """Merge a pull request with the given method (squash, merge or rebase)."""
    owner, repo = split_owner_repo(repository)

    head_ref = None
    if delete_head:
        head_ref = get_pull_request(repository, pr_number).get("head", {}).get("ref")

    url = f"{GITHUB_API_URL}/repos/{owner}/{repo}/pulls/{pr_number}/merge"
    _request("PUT", url, json={"merge_method": merge_method})
    logger.info(f"[PR #{pr_number}] ✓ Successfully merged ({merge_method})")

    if head_ref:
        delete_branch(repository, head_ref)


def close_pull_request(
    repository: str,
    pr_number: int,
    comment: Optional[str] = None,
    delete_head: bool = False,
) -> None:
    """Close a pull request without merging.

    Optionally add a comment before closing and delete the head branch.
    """
    owner, repo = split_owner_repo(repository)

    if comment:
        comment_url = f"{GITHUB_API_URL}/repos/{owner}/{repo}/issues/{pr_number}/comments"
        _request("POST", comment_url, json={"body": comment})
        logger.info(f"[PR #{pr_number}] Added closing comment")

    url = f"{GITHUB_API_URL}/repos/{owner}/{repo}/pulls/{pr_number}"
    pr_data = _json(_request("PATCH", url, json={"state": "closed"}))
    logger.info(f"[PR #{pr_number}] ✓ Closed without merging")

    if delete_head:
        head_ref = pr_data.get("head", {}).get("ref") if isinstance(pr_data, dict) else None
        if head_ref:
            delete_branch(repository, head_ref)


class GitHubReviewSystem:
    """Review system backed by GitHub pull requests for one repository."""

    def __init__(self, repository: str):
        split_owner_repo(repository)
        self.repository = repository

    def open(self, title: str, body: str, base: str, head: str) -> int:
        return int(create_pull_request(self.repository, title, body, base, head)["number"])

    def get_checks(self, pr_number: int) -> List[Check]:
        return get_pr_checks(self.repository, pr_number)

    def get_review_decision(self, pr_number: int) -> str:
        return get_pr_review_decision(self.repository, pr_number)

    def merge(self, pr_number: int, strategy: str) -> None:
        merge_pull_request(self.repository, pr_number, strategy)

    def close(self, pr_number: int, delete_branch: bool = False, comment: Optional[str] = None) -> None:
        close_pull_request(self.repository, pr_number, comment=comment, delete_head=delete_branch)

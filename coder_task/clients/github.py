"""GitHub REST API v3 issue commenter."""

import logging
import re
import subprocess

import httpx
from pydantic import TypeAdapter, ValidationError

from coder_task.clients.base import IssueCommenter
from coder_task.errors import InputValidationError
from coder_task.models import IssueComment, IssueRef
from coder_task.settings import DEFAULT_GITHUB_API_URL, CoderTaskSettings

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "Task created:"

_COMMENT_LIST = TypeAdapter(list[IssueComment])

_ISSUE_URL = re.compile(r"([^/]+)/([^/]+)/issues/(\d+)")


def parse_github_issue_url(url: str) -> IssueRef:
    """Parse owner, repo and number out of https://github.com/owner/repo/issues/123."""
    if not url:
        raise InputValidationError("Missing issue URL")
    match = _ISSUE_URL.search(url)
    if not match:
        raise InputValidationError(f"Invalid issue URL: {url}")
    return IssueRef(owner=match[1], repo=match[2], number=int(match[3]))


def format_comment(task_url: str) -> str:
    return f"{COMMENT_PREFIX} {task_url}"


class GitHubCommenter(IssueCommenter):
    """Keeps one `Task created:` comment per issue up to date.

    Every failure surfaces as RuntimeError (or httpx.HTTPError for
    transport and status problems) so callers can treat commenting as
    best effort.
    """

    def __init__(self, settings: CoderTaskSettings) -> None:
        self._token = self._resolve_token(settings)
        self._base_url = (settings.github_api_url or DEFAULT_GITHUB_API_URL).rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _resolve_token(self, settings: CoderTaskSettings) -> str:
        if settings.github_auth == "gh-cli":
            try:
                result = subprocess.run(
                    ["gh", "auth", "token"],
                    capture_output=True,
                    text=True,
                )
            except FileNotFoundError as exc:
                raise RuntimeError("gh CLI not found. Install it or set CODER_TASK_GITHUB_TOKEN") from exc
            if result.returncode != 0:
                raise RuntimeError("gh auth token failed. Run: gh auth login")
            return result.stdout.strip()
        if settings.github_token:
            return settings.github_token.get_secret_value()
        raise RuntimeError("No GitHub credentials. Set CODER_TASK_GITHUB_TOKEN")

    def _send(
        self, method: str, url: str, body: dict | None = None, params: dict | None = None
    ) -> httpx.Response:
        response = httpx.request(
            method,
            url if url.startswith("http") else f"{self._base_url}{url}",
            headers=self._headers,
            params=params,
            json=body,
            timeout=30,
        )
        if response.status_code == 401:
            raise RuntimeError("GitHub API returned 401. Check the GitHub token used for issue comments.")
        response.raise_for_status()
        return response

    def _list_comments(self, issue: IssueRef) -> list[IssueComment]:
        """All comments on the issue, oldest first, following the Link header across pages."""
        comments: list[IssueComment] = []
        url: str | None = f"/repos/{issue.owner}/{issue.repo}/issues/{issue.number}/comments"
        params: dict | None = {"per_page": "100"}
        while url:
            response = self._send("GET", url, params=params)
            try:
                comments.extend(_COMMENT_LIST.validate_json(response.content))
            except ValidationError as exc:
                raise RuntimeError(f"Unexpected comment list from GitHub for {issue}") from exc
            url = response.links.get("next", {}).get("url")
            params = None  # the next link carries its own query
        return comments

    def upsert_comment(self, issue: IssueRef, body: str) -> None:
        """Update the newest comment starting with COMMENT_PREFIX, or post a new one."""
        comments = self._list_comments(issue)
        existing = next((c for c in reversed(comments) if (c.body or "").startswith(COMMENT_PREFIX)), None)
        if existing:
            logger.info("Updating comment %s on %s", existing.id, issue)
            self._send("PATCH", f"/repos/{issue.owner}/{issue.repo}/issues/comments/{existing.id}", {"body": body})
        else:
            logger.info("Creating comment on %s", issue)
            self._send("POST", f"/repos/{issue.owner}/{issue.repo}/issues/{issue.number}/comments", {"body": body})

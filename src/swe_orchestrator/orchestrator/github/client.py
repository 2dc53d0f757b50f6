"""Posting run updates as GitHub issue comments.

This wraps PyGithub to keep GitHub calls out of trigger handling and make tests
easy.
"""

from __future__ import annotations

import logging
from typing import Protocol

from github import Auth, Github, GithubException

logger = logging.getLogger(__name__)


class CommentPostError(RuntimeError):
    pass


class CommentPoster(Protocol):
    def post_comment(self, *, owner: str, repo: str, issue_number: int, body: str) -> None: ...


class GitHubCommentPoster:
    """Small wrapper around PyGithub for posting issue comments."""

    def __init__(
        self,
        *,
        token: str,
        base_url: str = "https://api.github.com",
        github_api: Github | None = None,
    ) -> None:
        if not token and github_api is None:
            raise ValueError("GitHub token is required")
        self._github = github_api or Github(auth=Auth.Token(token), base_url=base_url)

    def post_comment(self, *, owner: str, repo: str, issue_number: int, body: str) -> None:
        if issue_number <= 0:
            raise ValueError("issue_number must be a positive integer")
        full_name = f"{owner}/{repo}"
        try:
            issue = self._github.get_repo(full_name).get_issue(number=issue_number)
            issue.create_comment(body)
        except GithubException as e:
            raise CommentPostError(f"Failed to comment on {full_name}#{issue_number}: {e}") from e
        logger.info("Posted issue comment", extra={"repo": full_name, "issue_number": issue_number})

    def close(self) -> None:
        self._github.close()


class LoggingCommentPoster:
    """Used when no GitHub token is configured: comments are only logged."""

    def post_comment(self, *, owner: str, repo: str, issue_number: int, body: str) -> None:
        logger.info(
            "Issue comment (not posted: no GitHub token configured)",
            extra={"repo": f"{owner}/{repo}", "issue_number": issue_number, "body": body},
        )


def build_comment_poster(*, token: str, base_url: str) -> CommentPoster:
    if not token:
        return LoggingCommentPoster()
    return GitHubCommentPoster(token=token, base_url=base_url)

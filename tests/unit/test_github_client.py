from __future__ import annotations

from unittest.mock import Mock

import pytest
from github import GithubException

from swe_orchestrator.orchestrator.github.client import (
    CommentPostError,
    GitHubCommentPoster,
    LoggingCommentPoster,
    build_comment_poster,
)


def test_post_comment_uses_the_issue_api() -> None:
    api = Mock()
    poster = GitHubCommentPoster(token="", github_api=api)

    poster.post_comment(owner="acme", repo="repo", issue_number=42, body="hello")

    api.get_repo.assert_called_once_with("acme/repo")
    api.get_repo.return_value.get_issue.assert_called_once_with(number=42)
    api.get_repo.return_value.get_issue.return_value.create_comment.assert_called_once_with("hello")


def test_github_errors_become_comment_post_errors() -> None:
    api = Mock()
    api.get_repo.side_effect = GithubException(404, {"message": "Not Found"}, None)
    poster = GitHubCommentPoster(token="", github_api=api)

    with pytest.raises(CommentPostError, match="acme/repo#42"):
        poster.post_comment(owner="acme", repo="repo", issue_number=42, body="hello")


def test_post_comment_validates_issue_number() -> None:
    poster = GitHubCommentPoster(token="", github_api=Mock())

    with pytest.raises(ValueError):
        poster.post_comment(owner="acme", repo="repo", issue_number=0, body="hello")


def test_token_is_required_without_an_api_client() -> None:
    with pytest.raises(ValueError, match="token"):
        GitHubCommentPoster(token="")


def test_build_comment_poster_falls_back_to_logging() -> None:
    assert isinstance(build_comment_poster(token="", base_url="https://api.github.com"), LoggingCommentPoster)
    assert isinstance(
        build_comment_poster(token="ghp_test", base_url="https://api.github.com"), GitHubCommentPoster
    )

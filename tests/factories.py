"""Builders for raw GitLab API payloads used across tests."""
from typing import Any, Dict


def make_raw_commit(
    sha: str,
    committed_date: str = "2025-01-01T00:00:00.000Z",
    message: str = "Fix the build\n\nDetails here.",
    **overrides,
) -> Dict[str, Any]:
    """A commit as GET /projects/:id/repository/commits?with_stats=true returns it."""
    raw = {
        "id": sha,
        "short_id": sha[:8],
        "title": message.split("\n", 1)[0],
        "message": message,
        "author_name": "Ada Lovelace",
        "author_email": "ada@example.com",
        "authored_date": committed_date,
        "committer_name": "Ada Lovelace",
        "committer_email": "ada@example.com",
        "committed_date": committed_date,
        "created_at": committed_date,
        "web_url": f"https://gitlab.example.com/group/gitlab-runner/-/commit/{sha}",
        "stats": {"additions": 10, "deletions": 2, "total": 12},
    }
    raw.update(overrides)
    return raw


def make_raw_project(gitlab_id: int = 278964, **overrides) -> Dict[str, Any]:
    raw = {
        "id": gitlab_id,
        "name": "gitlab-runner",
        "path_with_namespace": "group/gitlab-runner",
        "description": "CI runner",
        "web_url": "https://gitlab.example.com/group/gitlab-runner",
        "default_branch": "main",
        "visibility": "public",
        "created_at": "2015-03-03T12:00:00.000Z",
    }
    raw.update(overrides)
    return raw


def sha(n: int) -> str:
    """A deterministic 40-char hex SHA."""
    return f"{n:040x}"

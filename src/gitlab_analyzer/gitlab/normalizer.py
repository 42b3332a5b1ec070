"""
GitLab API response normalizer.

Converts raw dicts from the GitLab REST API into clean field dicts that map
directly onto SQLModel columns. No DB access here; callers (sync_service)
handle persistence.

GitLab timestamps come in a few ISO 8601 shapes depending on the endpoint
and instance version:

  - "2025-01-01T09:30:00.000+09:00"   (commits: authored/committed dates)
  - "2025-01-01T00:30:00.000Z"        (projects: created_at)
  - "2025-01-01T00:30:00Z"

All are converted to naive UTC datetimes, which is how the DB stores them.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from gitlab_analyzer.clock import to_naive_utc
from gitlab_analyzer.models.project import VISIBILITIES


def parse_gitlab_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a GitLab ISO 8601 timestamp into a naive UTC datetime."""
    if not value:
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(s))


def normalize_commit(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a commit from GET /projects/:id/repository/commits.

    Args:
        raw: One commit dict. "stats" is present only when the list was
             requested with with_stats=true.

    Returns:
        Dict with keys matching Commit model columns (minus project_id).

    Raises:
        ValueError: if the commit has no id (sha).
    """
    sha = raw.get("id")
    if not sha:
        raise ValueError("GitLab commit has no id")

    message = raw.get("message") or ""
    title = raw.get("title") or message.split("\n", 1)[0]
    authored = parse_gitlab_datetime(raw.get("authored_date") or raw.get("created_at"))
    committed = parse_gitlab_datetime(raw.get("committed_date")) or authored

    stats = raw.get("stats") or {}

    return {
        "sha": sha,
        "short_id": raw.get("short_id") or sha[:8],
        "title": title,
        "message": message,
        "author_name": raw.get("author_name") or "",
        "author_email": raw.get("author_email") or "",
        "authored_date": authored,
        "committer_name": raw.get("committer_name"),
        "committer_email": raw.get("committer_email"),
        "committed_date": committed,
        "web_url": raw.get("web_url"),
        "additions": stats.get("additions"),
        "deletions": stats.get("deletions"),
        "total": stats.get("total"),
    }


def normalize_project(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a project from GET /projects/:id into Project model fields.

    Empty repositories have no default_branch; "main" is assumed. Unknown
    visibility values are stored as "private".
    """
    visibility = raw.get("visibility") or "private"
    if visibility not in VISIBILITIES:
        visibility = "private"

    return {
        "gitlab_id": int(raw["id"]),
        "name": raw.get("name") or raw.get("path_with_namespace") or str(raw["id"]),
        "description": raw.get("description") or None,
        "web_url": raw.get("web_url") or "",
        "default_branch": raw.get("default_branch") or "main",
        "visibility": visibility,
        "gitlab_created_at": parse_gitlab_datetime(raw.get("created_at")),
    }

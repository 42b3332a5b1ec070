"""
Command-line entrypoint.

FastAPI runs separately under uvicorn.

Usage:
    python -m gitlab_analyzer register 278964 13083   # register GitLab projects
    python -m gitlab_analyzer sync                    # sync every project
    python -m gitlab_analyzer sync --project-id 1     # sync one project
    python -m gitlab_analyzer schedule                # periodic sync until Ctrl+C
    uvicorn gitlab_analyzer.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from gitlab_analyzer.config import Settings, get_settings

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitlab_analyzer", description="Sync GitLab commit history into a database."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="sync commits for registered projects")
    sync.add_argument(
        "--project-id",
        dest="project_ids",
        type=int,
        action="append",
        metavar="N",
        help="internal project id (repeatable); defaults to all projects",
    )

    register = sub.add_parser("register", help="register GitLab projects by id")
    register.add_argument("gitlab_ids", type=int, nargs="+", metavar="GITLAB_ID")

    sub.add_parser("schedule", help="run the periodic sync scheduler")
    return parser


async def _run_sync(settings: Settings, project_ids: Optional[List[int]]) -> int:
    from gitlab_analyzer.db.engine import build_engine, create_tables
    from gitlab_analyzer.gitlab.client import GitLabClient
    from gitlab_analyzer.gitlab.sync_service import CommitSyncService
    from gitlab_analyzer.repositories.container import Repositories

    engine = build_engine(settings)
    failures = 0
    try:
        create_tables(engine)
        repos = Repositories.from_engine(engine)
        async with GitLabClient(settings) as client:
            service = CommitSyncService(client=client, repos=repos, settings=settings)

            if project_ids:
                results = []
                for project_id in project_ids:
                    try:
                        results.append(await service.sync_project_by_id(project_id))
                    except Exception as exc:
                        print(f"project {project_id}: sync failed: {exc}", file=sys.stderr)
                        failures += 1
            else:
                results = await service.sync_all()
                if not results:
                    logger.warning("No projects registered. Run `register` first.")

            for result in results:
                if result.ok:
                    print(
                        f"project {result.project_id}: {result.sync_type.value} sync ok "
                        f"(processed={result.records_processed} added={result.records_added} "
                        f"updated={result.records_updated})"
                    )
                else:
                    print(f"project {result.project_id}: sync failed: {result.error}", file=sys.stderr)
                    failures += 1
    except Exception as exc:
        print(f"sync failed: {exc}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()

    return 1 if failures else 0


async def _run_register(settings: Settings, gitlab_ids: List[int]) -> int:
    from gitlab_analyzer.db.engine import build_engine, create_tables
    from gitlab_analyzer.gitlab.client import GitLabClient
    from gitlab_analyzer.gitlab.sync_service import CommitSyncService
    from gitlab_analyzer.repositories.container import Repositories

    engine = build_engine(settings)
    failures = 0
    try:
        create_tables(engine)
        repos = Repositories.from_engine(engine)
        async with GitLabClient(settings) as client:
            service = CommitSyncService(client=client, repos=repos, settings=settings)
            for gitlab_id in gitlab_ids:
                try:
                    project = await service.register_project(gitlab_id)
                except Exception as exc:
                    print(f"gitlab project {gitlab_id}: {exc}", file=sys.stderr)
                    failures += 1
                    continue
                print(f"registered {project.name} (id={project.id}, gitlab_id={project.gitlab_id})")
    except Exception as exc:
        print(f"register failed: {exc}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()

    return 1 if failures else 0


async def _run_schedule(settings: Settings) -> int:
    from gitlab_analyzer.db.engine import build_engine, create_tables
    from gitlab_analyzer.scheduler.jobs import build_scheduler

    engine = build_engine(settings)
    create_tables(engine)

    scheduler = build_scheduler(engine, settings=settings)
    scheduler.start()
    logger.info("Scheduler started (sync every %d minutes)", settings.sync_interval_minutes)

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        engine.dispose()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if args.command == "sync":
        return asyncio.run(_run_sync(settings, args.project_ids))
    if args.command == "register":
        return asyncio.run(_run_register(settings, args.gitlab_ids))
    try:
        return asyncio.run(_run_schedule(settings))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())

import argparse
import asyncio
from pathlib import Path
from typing import Awaitable, Callable

from . import __version__
from .adapter import LocalStoreAdapter, RemoteStoreAdapter
from .board import FREQUENCIES
from .config import Settings, get_settings
from .env import load_env
from .errors import StoreError
from .logger import configure_logger, get_logger
from .models import STAGES, EntityType
from .server import run_server
from .session import TrackerSession
from .store_service import EntityStore

logger = get_logger()


def build_session(args: argparse.Namespace, settings: Settings) -> TrackerSession:
    if args.local:
        store = EntityStore.open(Path(args.db) if args.db else settings.db_path)
        factory = lambda identity: LocalStoreAdapter(store, identity)
    else:
        factory = lambda identity: RemoteStoreAdapter(settings.api_url, identity, timeout=settings.http_timeout)
    return TrackerSession(factory, cache_path=settings.cache_path)


def run_with_session(args: argparse.Namespace, action: Callable[[TrackerSession], Awaitable[None]]) -> None:
    """Sign in with the configured identity, run ``action``, sign out."""
    settings = get_settings()
    user_id = args.user or settings.user_id
    token = settings.token or ("local" if args.local else None)
    if not user_id:
        raise SystemExit("JOBTRACKER_USER_ID not set. Set env var or pass --user.")
    if not token:
        raise SystemExit("JOBTRACKER_TOKEN not set. Set env var or use --local.")

    async def main() -> None:
        session = build_session(args, settings)
        try:
            await session.sign_in(user_id, token)
        except StoreError as e:
            raise SystemExit(f"Could not load your board ({e.kind.value}): {e.message}")
        try:
            await action(session)
        finally:
            await session.sign_out()

    asyncio.run(main())


def report(result) -> None:
    if not result.ok:
        kind = result.error.kind.value if result.error else result.state.value
        raise SystemExit(f"[{kind}] {result.message}")
    print(f"{result.entity_type.label}: {result.entity_id}")
    print(f"Status: {result.state.value}")


def cmd_serve(args: argparse.Namespace) -> None:
    run_server(get_settings(), host=args.host)


def cmd_jobs(args: argparse.Namespace) -> None:
    async def action(session: TrackerSession) -> None:
        board = session.board()
        total = sum(len(jobs) for jobs in board.values())
        if not total:
            print("No jobs on the board.")
            return
        print(f"Found {total} jobs:\n")
        for stage, jobs in board.items():
            print(f"{stage.label} ({len(jobs)})")
            for job in jobs:
                print(f"  {job.id}  {job.title} @ {job.company}")
                if job.notes:
                    print(f"      {job.notes}")
            print()

    run_with_session(args, action)


def cmd_add_job(args: argparse.Namespace) -> None:
    async def action(session: TrackerSession) -> None:
        report(await session.add_job(args.title, args.company, notes=args.notes or "", status=args.status))

    run_with_session(args, action)


def cmd_move(args: argparse.Namespace) -> None:
    async def action(session: TrackerSession) -> None:
        result = await session.move_job(args.id, args.stage)
        report(result)
        print(f"Moved to {args.stage}")

    run_with_session(args, action)


def cmd_edit_job(args: argparse.Namespace) -> None:
    fields = {k: v for k, v in (("title", args.title), ("company", args.company), ("notes", args.notes)) if v is not None}
    if not fields:
        raise SystemExit("Nothing to change. Pass --title, --company or --notes.")

    async def action(session: TrackerSession) -> None:
        report(await session.update(EntityType.JOB, args.id, fields))

    run_with_session(args, action)


def cmd_remove(entity_type: EntityType) -> Callable[[argparse.Namespace], None]:
    def command(args: argparse.Namespace) -> None:
        async def action(session: TrackerSession) -> None:
            report(await session.delete(entity_type, args.id))

        run_with_session(args, action)

    return command


def cmd_companies(args: argparse.Namespace) -> None:
    async def action(session: TrackerSession) -> None:
        companies = session.companies()
        if not companies:
            print("No companies tracked.")
            return
        print(f"Found {len(companies)} companies:\n")
        for company in companies:
            star = "*" if company.starred else " "
            mark = "updated" if company.updated else "not updated"
            last = f" (last {company.last_updated})" if company.last_updated else ""
            print(f"{star} {company.id}  {company.display_name or '(unnamed)'}  [{mark}{last}]")

    run_with_session(args, action)


def cmd_add_company(args: argparse.Namespace) -> None:
    async def action(session: TrackerSession) -> None:
        report(await session.add_company(args.name, custom=args.custom))

    run_with_session(args, action)


def cmd_star(args: argparse.Namespace) -> None:
    async def action(session: TrackerSession) -> None:
        report(await session.toggle_star(args.id))

    run_with_session(args, action)


def cmd_mark_updated(args: argparse.Namespace) -> None:
    async def action(session: TrackerSession) -> None:
        report(await session.toggle_updated(args.id))

    run_with_session(args, action)


def cmd_review(args: argparse.Namespace) -> None:
    async def action(session: TrackerSession) -> None:
        results = await session.review_companies(args.frequency)
        reset = sum(1 for r in results if r.ok)
        failed = [r for r in results if not r.ok]
        for r in failed:
            print(f"[error] {r.entity_id} -> {r.message}")
        print(f"Done. reset={reset} failed={len(failed)}")

    run_with_session(args, action)


def add_session_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--user", help="User id (or set JOBTRACKER_USER_ID)")
    parser.add_argument("--local", action="store_true", help="Use the SQLite store directly instead of the API")
    parser.add_argument("--db", help="SQLite path for --local (default: JOBTRACKER_DB_PATH or data/jobtracker.db)")


def main():
    # Load .env if present (JOBTRACKER_TOKEN, JOBTRACKER_API_URL, etc.)
    load_env()
    get_settings.cache_clear()
    configure_logger()
    parser = argparse.ArgumentParser(prog="jobtracker", description="Job application tracker")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    srv = subparsers.add_parser("serve", help="Run the store API (port from PORT, default 3001)")
    srv.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    srv.set_defaults(func=cmd_serve)

    jobs = subparsers.add_parser("jobs", help="Show the job board grouped by stage")
    add_session_args(jobs)
    jobs.set_defaults(func=cmd_jobs)

    addj = subparsers.add_parser("add-job", help="Add a job card")
    addj.add_argument("--title", required=True, help="Job title")
    addj.add_argument("--company", required=True, help="Company name")
    addj.add_argument("--notes", help="Free-form notes")
    addj.add_argument("--status", choices=STAGES, help="Initial stage (default: wishlist)")
    add_session_args(addj)
    addj.set_defaults(func=cmd_add_job)

    mv = subparsers.add_parser("move", help="Move a job card to another stage")
    mv.add_argument("--id", required=True, help="Job id")
    mv.add_argument("--stage", required=True, choices=STAGES, help="Target stage")
    add_session_args(mv)
    mv.set_defaults(func=cmd_move)

    edj = subparsers.add_parser("edit-job", help="Change a job's title, company or notes")
    edj.add_argument("--id", required=True, help="Job id")
    edj.add_argument("--title", help="New title")
    edj.add_argument("--company", help="New company")
    edj.add_argument("--notes", help="New notes")
    add_session_args(edj)
    edj.set_defaults(func=cmd_edit_job)

    rmj = subparsers.add_parser("remove-job", help="Delete a job card")
    rmj.add_argument("--id", required=True, help="Job id")
    add_session_args(rmj)
    rmj.set_defaults(func=cmd_remove(EntityType.JOB))

    cos = subparsers.add_parser("companies", help="List tracked companies, starred first")
    add_session_args(cos)
    cos.set_defaults(func=cmd_companies)

    addc = subparsers.add_parser("add-company", help="Track a company")
    addc.add_argument("--name", required=True, help="Company name")
    addc.add_argument("--custom", action="store_true", help="Store as a custom name")
    add_session_args(addc)
    addc.set_defaults(func=cmd_add_company)

    star = subparsers.add_parser("star", help="Star or unstar a company")
    star.add_argument("--id", required=True, help="Company id")
    add_session_args(star)
    star.set_defaults(func=cmd_star)

    mku = subparsers.add_parser("mark-updated", help="Toggle a company's updated mark")
    mku.add_argument("--id", required=True, help="Company id")
    add_session_args(mku)
    mku.set_defaults(func=cmd_mark_updated)

    rmc = subparsers.add_parser("remove-company", help="Stop tracking a company")
    rmc.add_argument("--id", required=True, help="Company id")
    add_session_args(rmc)
    rmc.set_defaults(func=cmd_remove(EntityType.COMPANY))

    rev = subparsers.add_parser("review", help="Clear the updated mark on companies not refreshed recently")
    rev.add_argument("--frequency", required=True, choices=FREQUENCIES, help="How often companies should be refreshed")
    add_session_args(rev)
    rev.set_defaults(func=cmd_review)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()

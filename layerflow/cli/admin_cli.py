"""
Admin CLI for the layered pipeline catalog.

Usage:
    layerflow-admin init-db [--drop]
    layerflow-admin apply --file <catalog.yaml>
    layerflow-admin infer-schema --project <slug> --source <name> [--limit N]
    layerflow-admin start-run --project <slug> --pipeline <name>
    layerflow-admin show-run --project <slug> --run-id <id>
    layerflow-admin list-runs --project <slug> [--pipeline <name>] [--limit N]
    layerflow-admin run-errors --project <slug> --run-id <id> [--stage silver|gold]
    layerflow-admin fail-stale-runs --project <slug> [--pipeline <name>] [--older-than-minutes N]

Database options default to the DB_* environment variables.
"""

import argparse
import dataclasses
import json
import sys
from datetime import datetime, timedelta, timezone

from layerflow.catalog import CatalogConfigLoader, CatalogService
from layerflow.config import Settings, load_settings
from layerflow.core.models import PipelineRun
from layerflow.observability.logger import get_logger
from layerflow.orchestration import RunOrchestrator
from layerflow.utils.validation import NotFoundError, ValidationError
from layerflow.warehouse import (
    CatalogStore,
    DatabaseConnectionPool,
    RunStore,
    create_schema,
    drop_schema,
)
from layerflow.worker import HttpWorkerClient, WorkerError

logger = get_logger(__name__)


def format_timestamp(ts: datetime | str | None) -> str:
    """Format timestamp for display."""
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def format_count(value: int | None) -> str:
    return "-" if value is None else str(value)


def build_settings(args) -> Settings:
    """Environment settings, overridden by the options given on the command line."""
    settings = load_settings(args.env_file)
    overrides = {
        "db_host": args.db_host,
        "db_port": args.db_port,
        "db_name": args.db_name,
        "db_user": args.db_user,
        "db_password": args.db_password,
        "worker_url": args.worker_url,
    }
    return dataclasses.replace(settings, **{k: v for k, v in overrides.items() if v is not None})


class AdminContext:
    """Pool, stores and services for one command invocation."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.pool = DatabaseConnectionPool.from_settings(settings)
        self.catalog_store = CatalogStore(self.pool)
        self.run_store = RunStore(self.pool)
        self.worker = HttpWorkerClient.from_settings(settings)
        self.service = CatalogService(
            self.catalog_store, self.worker, settings=settings, run_store=self.run_store
        )

    def __enter__(self):
        self.pool.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.pool.close()
        return False

    def project_id(self, slug: str) -> str:
        project = self.service.find_project(slug)
        if project is None:
            raise NotFoundError(f"project '{slug}' does not exist", "project")
        return project.project_id

    def pipeline_id(self, project_id: str, name: str) -> int:
        pipeline = self.service.find_pipeline(project_id, name)
        if pipeline is None:
            raise NotFoundError(f"pipeline '{name}' does not exist", "pipeline")
        return pipeline.pipeline_id


def print_run(run: PipelineRun) -> None:
    print(f"\n{'=' * 60}")
    print(f"RUN {run.run_id} (pipeline {run.pipeline_id})")
    print(f"{'=' * 60}\n")
    print(f"  State:     {run.state}")
    if run.state_reason:
        print(f"  Reason:    {run.state_reason}")
    if run.failure_code:
        print(f"  Failure:   {run.failure_code} ({run.failed_stage} stage)")
    print(f"  Started:   {format_timestamp(run.started_at)}")
    print(f"  Finished:  {format_timestamp(run.finished_at)}\n")

    print("Rows:")
    print(f"  {'source read':<22} {format_count(run.rows_source):>10}")
    print(f"  {'source rejected':<22} {format_count(run.rows_source_rejected):>10}")
    print(f"  {'silver written':<22} {format_count(run.rows_silver):>10}")
    print(f"  {'silver rejected':<22} {format_count(run.rows_silver_rejected):>10}")
    print(f"  {'gold written':<22} {format_count(run.rows_gold):>10}\n")

    print("Snapshots:")
    print(f"  silver: {run.silver_snapshot or '-'}")
    print(f"  gold:   {run.gold_snapshot or '-'}")

    if run.dq_summary:
        print("\nData quality:")
        for rule_code, result in run.dq_summary.items():
            print(f"  {rule_code:<30} {json.dumps(result)}")

    if run.logs:
        print("\nWorker logs:")
        for line in run.logs:
            print(f"  {line}")

    print(f"\n{'=' * 60}\n")


def init_db_command(args, settings: Settings) -> int:
    """Create the catalog and run-history tables."""
    with AdminContext(settings) as ctx:
        if args.drop:
            drop_schema(ctx.pool)
            print("\nExisting tables dropped.")
        create_schema(ctx.pool)
    print("\nSchema created.")
    return 0


def apply_command(args, settings: Settings) -> int:
    """Apply a YAML catalog definition."""
    loader = CatalogConfigLoader(args.file)
    with AdminContext(settings) as ctx:
        summary = loader.apply(ctx.service)

    print(f"\nApplied {args.file} to project {summary['project_id']}")
    for kind in ("sources", "datasets", "mappings", "pipelines"):
        print(f"  {kind:<12} {summary[kind]:>6}")
    return 0


def infer_schema_command(args, settings: Settings) -> int:
    """Sample a source and seed its bronze dataset."""
    with AdminContext(settings) as ctx:
        project_id = ctx.project_id(args.project)
        source = next((s for s in ctx.service.list_sources(project_id) if s.name == args.source), None)
        if source is None:
            raise NotFoundError(f"source '{args.source}' does not exist", "source")

        dataset = ctx.service.infer_bronze_schema(project_id, source.source_id, limit=args.limit)

    if dataset is None:
        print(f"\nWorker returned no schema for {args.source}; nothing changed.")
        return 0

    print(f"\nBronze dataset {dataset.name} ({len(dataset.columns)} columns):")
    for column in dataset.columns:
        print(f"  {column.name:<30} {column.type:<12} {'nullable' if column.nullable else ''}")
    return 0


def start_run_command(args, settings: Settings) -> int:
    """Run a pipeline and print its outcome."""
    with AdminContext(settings) as ctx:
        project_id = ctx.project_id(args.project)
        pipeline_id = ctx.pipeline_id(project_id, args.pipeline)
        orchestrator = RunOrchestrator(ctx.catalog_store, ctx.run_store, ctx.worker, settings)
        run = orchestrator.start_run(project_id, pipeline_id)

    print_run(run)
    return 0 if run.state == "succeeded" else 1


def show_run_command(args, settings: Settings) -> int:
    with AdminContext(settings) as ctx:
        run = ctx.service.get_run(ctx.project_id(args.project), args.run_id)
    print_run(run)
    return 0


def list_runs_command(args, settings: Settings) -> int:
    with AdminContext(settings) as ctx:
        project_id = ctx.project_id(args.project)
        pipeline_id = ctx.pipeline_id(project_id, args.pipeline) if args.pipeline else None
        runs = ctx.service.list_runs(project_id, pipeline_id=pipeline_id, limit=args.limit)

    if not runs:
        print("\nNo runs found.")
        return 0

    print(f"\n{'Run':<8} {'Pipeline':<10} {'State':<11} {'Started':<20} {'Source':>9} {'Silver':>9} {'Gold':>9}")
    print(f"{'-' * 80}")
    for run in runs:
        print(
            f"{run.run_id:<8} {run.pipeline_id:<10} {run.state:<11} "
            f"{format_timestamp(run.started_at):<20} {format_count(run.rows_source):>9} "
            f"{format_count(run.rows_silver):>9} {format_count(run.rows_gold):>9}"
        )
    print()
    return 0


def run_errors_command(args, settings: Settings) -> int:
    """Show the rejected-row samples of a run."""
    with AdminContext(settings) as ctx:
        samples = ctx.service.list_error_samples(
            ctx.project_id(args.project), args.run_id, stage=args.stage, limit=args.limit
        )

    if not samples:
        print(f"\nNo error samples for run {args.run_id}.")
        return 0

    print(f"\n{'Stage':<8} {'Row':>8}  {'Reason':<16} {'Message'}")
    print(f"{'-' * 80}")
    for sample in samples:
        print(f"{sample.stage:<8} {format_count(sample.row_no):>8}  {sample.reason_code:<16} {sample.message}")
        if args.show_values:
            print(f"{'':<18}{json.dumps(sample.source_values)}")
    print()
    return 0


def fail_stale_runs_command(args, settings: Settings) -> int:
    """Fail runs left running by a process that stopped before finishing them."""
    now = datetime.now(timezone.utc)
    with AdminContext(settings) as ctx:
        project_id = ctx.project_id(args.project)
        pipeline_id = ctx.pipeline_id(project_id, args.pipeline) if args.pipeline else None
        run_ids = ctx.run_store.fail_stale_runs(
            project_id,
            now - timedelta(minutes=args.older_than_minutes),
            now,
            pipeline_id=pipeline_id,
        )

    if not run_ids:
        print("\nNo stale runs found.")
        return 0

    print(f"\nFailed {len(run_ids)} stale run(s): {', '.join(str(r) for r in run_ids)}")
    return 0


COMMANDS = {
    "init-db": init_db_command,
    "apply": apply_command,
    "infer-schema": infer_schema_command,
    "start-run": start_run_command,
    "show-run": show_run_command,
    "list-runs": list_runs_command,
    "run-errors": run_errors_command,
    "fail-stale-runs": fail_stale_runs_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="layerflow-admin",
        description="Admin CLI for the layered pipeline catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Global connection options; unset values come from the environment
    parser.add_argument("--env-file", help="Optional .env file to load")
    parser.add_argument("--db-host", help="Database host (default: $DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, help="Database port (default: $DB_PORT or 5432)")
    parser.add_argument("--db-name", help="Database name (default: $DB_NAME or layerflow)")
    parser.add_argument("--db-user", help="Database user (default: $DB_USER or layerflow)")
    parser.add_argument("--db-password", help="Database password (default: $DB_PASSWORD)")
    parser.add_argument("--worker-url", help="Transform worker URL (default: $WORKER_URL)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init-db", help="Create the catalog and run-history tables")
    init_parser.add_argument(
        "--drop", action="store_true", help="Drop existing tables first (deletes all data)"
    )

    apply_parser = subparsers.add_parser("apply", help="Apply a YAML catalog definition")
    apply_parser.add_argument("--file", required=True, help="Path to the YAML definition")

    infer_parser = subparsers.add_parser("infer-schema", help="Infer a source's bronze schema")
    infer_parser.add_argument("--project", required=True, help="Project slug")
    infer_parser.add_argument("--source", required=True, help="Source name")
    infer_parser.add_argument(
        "--limit", type=int, default=200, help="Rows to sample, 1-1000 (default: 200)"
    )

    run_parser = subparsers.add_parser("start-run", help="Run a pipeline")
    run_parser.add_argument("--project", required=True, help="Project slug")
    run_parser.add_argument("--pipeline", required=True, help="Pipeline name")

    show_parser = subparsers.add_parser("show-run", help="Show one run")
    show_parser.add_argument("--project", required=True, help="Project slug")
    show_parser.add_argument("--run-id", type=int, required=True, help="Run ID")

    list_parser = subparsers.add_parser("list-runs", help="List recent runs")
    list_parser.add_argument("--project", required=True, help="Project slug")
    list_parser.add_argument("--pipeline", help="Only runs of this pipeline (optional)")
    list_parser.add_argument("--limit", type=int, default=20, help="Maximum runs (default: 20)")

    errors_parser = subparsers.add_parser("run-errors", help="Show rejected-row samples of a run")
    errors_parser.add_argument("--project", required=True, help="Project slug")
    errors_parser.add_argument("--run-id", type=int, required=True, help="Run ID")
    errors_parser.add_argument("--stage", choices=["silver", "gold"], help="Filter by stage")
    errors_parser.add_argument("--limit", type=int, default=50, help="Maximum samples (default: 50)")
    errors_parser.add_argument(
        "--show-values", action="store_true", help="Print the raw values of each rejected row"
    )

    stale_parser = subparsers.add_parser(
        "fail-stale-runs", help="Fail runs left running by a crashed process"
    )
    stale_parser.add_argument("--project", required=True, help="Project slug")
    stale_parser.add_argument("--pipeline", help="Only runs of this pipeline (optional)")
    stale_parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=60,
        help="Only runs started at least this long ago (default: 60)",
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for admin CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        settings = build_settings(args)
        sys.exit(COMMANDS[args.command](args, settings))

    except ValidationError as e:
        field = f" [{e.field_name}]" if e.field_name else ""
        print(f"\nRejected{field}: {e}")
        sys.exit(2)
    except (WorkerError, FileNotFoundError, ValueError) as e:
        logger.error(f"Command {args.command} failed: {e}")
        print(f"\nError: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()

# cli.py
from __future__ import annotations

import subprocess
import sys
import time
from pathlib import Path

import click

from shipci.artifacts import ArtifactStore, artifact_summary
from shipci.config import ShipConfig
from shipci.dag import overall_status, run_pipeline
from shipci.exceptions import ConflictError, ShipError
from shipci.git_facts.git import get_current_ref, head_sha, repo_root
from shipci.model import JobStatus, Trigger
from shipci.publish import Publisher, open_feed
from shipci.release import GitHubReleases, Identity, ReleasePublisher, ReleaseTagger
from shipci.report import build_report, write_report
from shipci.runner import load_workflow
from shipci.secret_store import Secrets
from shipci.services import RunServices
from shipci.ui.console import Console, get_console, set_console
from shipci.versioning import run_version_gate

DEFAULT_WORKFLOW = "shipci_workflow.py"


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  shipci run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_WORKFLOW}",
                "  *_workflow.py",
            ],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}\n\nOr specify a workflow explicitly:\n  shipci run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  shipci run --workflow {DEFAULT_WORKFLOW}",
        )
        sys.exit(1)

    return workflow_files[0]


def _load_config(**overrides) -> ShipConfig:
    config = ShipConfig.from_env().with_overrides(**overrides)
    try:
        config.validate()
    except ValueError as e:
        get_console().print_error("Invalid configuration", str(e))
        sys.exit(2)
    return config


def _fail(ctx: click.Context, title: str, exc: BaseException, suggestion: str | None = None) -> None:
    console = get_console()
    console.print_error(title, str(exc), suggestion=suggestion)
    if ctx.obj.get("debug", False):
        console.print_exception(exc)
    sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print errors")
@click.pass_context
def cli(ctx, debug, quiet):
    """shipci: build, version-check, tag, release and publish pipelines."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


# ---------------------------------------------------------------------
# run
# ---------------------------------------------------------------------

@cli.command()
@click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)",
)
@click.option("--event", default="push", show_default=True, help="Trigger event")
@click.option("--branch", default=None, help="Trigger branch (defaults to the current branch)")
@click.option("--sha", default=None, help="Trigger commit (defaults to HEAD)")
@click.option("--repo", default=None, help="Repository path or URL jobs check out (defaults to this repository)")
@click.option("--workers", default=None, type=int, help="Number of parallel workers")
@click.option("--run-id", default=None, help="Run id (defaults to a random id)")
@click.option("--work-dir", default=None, type=click.Path(path_type=Path), help="Where job sandboxes are created")
@click.option("--artifact-dir", default=None, type=click.Path(path_type=Path), help="Artifact store root")
@click.option("--keep-workspaces", is_flag=True, default=None, help="Do not delete job sandboxes")
@click.option("--report", "report_path", default=None, type=click.Path(path_type=Path), help="Write a JSON run report")
@click.pass_context
def run(ctx, workflow, event, branch, sha, repo, workers, run_id, work_dir, artifact_dir, keep_workspaces, report_path):
    """Run a shipci workflow for one trigger."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    config = _load_config(
        work_dir=work_dir,
        artifact_root=artifact_dir,
        max_workers=workers,
        keep_workspaces=keep_workspaces,
    )

    try:
        if repo is None:
            repo = str(repo_root())
        branch = branch or get_current_ref(cwd=repo if Path(repo).exists() else None)
        sha = sha or head_sha(cwd=repo if Path(repo).exists() else None)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        console.print_error(
            "Could not determine the trigger",
            "Not inside a git repository (or git is missing).",
            details=[str(e)],
            suggestion="Pass the trigger explicitly:\n  shipci run --repo <path|url> --branch <name> --sha <commit>",
        )
        sys.exit(1)

    trigger = Trigger(event=event, branch=branch, sha=sha, repository=repo)

    try:
        pipeline = load_workflow(workflow_path)
        services = RunServices.create(config, run_id=run_id, console=console)

        console.print_run_started(
            pipeline=pipeline.name,
            workflow=workflow_path.name,
            job_count=len(pipeline.jobs),
            branch=branch,
            sha=sha,
        )
        results = run_pipeline(pipeline, trigger, services=services, max_workers=workers)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except ShipError as e:
        _fail(ctx, "Invalid pipeline", e)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if not results:
        return

    console.print_results(results)
    if report_path is not None:
        report = build_report(services.run_id, pipeline.name, trigger, results)
        write_report(report, report_path)
        console.print_info(f"Report written to {report_path}")

    if overall_status(results) in (JobStatus.FAILED, JobStatus.CANCELLED):
        sys.exit(1)


# ---------------------------------------------------------------------
# check-version
# ---------------------------------------------------------------------

@cli.command("check-version")
@click.argument("project_file", type=click.Path(path_type=Path))
@click.option("--repo", default=".", type=click.Path(path_type=Path), help="Repository holding the release tags")
@click.option("--prefix", default=None, help="Release tag prefix (default: SHIPCI_TAG_PREFIX or 'v')")
@click.option("--element", default="Version", show_default=True, help="Project file element holding the version")
@click.option("--strict", is_flag=True, default=False, help="Exit 1 when the version was not incremented")
@click.pass_context
def check_version_cmd(ctx, project_file, repo, prefix, element, strict):
    """Compare the declared project version with the latest release tag."""
    console = get_console()
    config = _load_config(tag_prefix=prefix)
    try:
        result = run_version_gate(project_file, repo, prefix=config.tag_prefix, element=element)
    except (ShipError, FileNotFoundError, subprocess.CalledProcessError) as e:
        _fail(ctx, "Version check failed", e)

    for key, value in result.outputs().items():
        click.echo(f"{key}={value}")
    if result.is_valid:
        console.print_info(result.message)
    else:
        console.print_warning(result.message)
        if strict:
            sys.exit(1)


# ---------------------------------------------------------------------
# tag
# ---------------------------------------------------------------------

@cli.command()
@click.argument("version")
@click.option("--repo", default=".", type=click.Path(path_type=Path), help="Repository to tag")
@click.option("--commit", default="HEAD", show_default=True, help="Commit to tag")
@click.option("--prefix", default=None, help="Release tag prefix")
@click.option("--remote", default=None, help="Remote to push the tag to")
@click.option("--push/--no-push", default=True, show_default=True, help="Push the tag after creating it")
@click.option("--author-name", default=None, help="Tagger name (defaults to git config)")
@click.option("--author-email", default=None, help="Tagger email (defaults to git config)")
@click.pass_context
def tag(ctx, version, repo, commit, prefix, remote, push, author_name, author_email):
    """Create (and push) the release tag for VERSION."""
    config = _load_config(tag_prefix=prefix, remote=remote)
    identity = Identity(author_name, author_email) if author_name and author_email else None
    tagger = ReleaseTagger(repo, prefix=config.tag_prefix, remote=config.remote, identity=identity)
    try:
        name = tagger.tag(version, commit=commit, push=push)
    except ConflictError as e:
        _fail(ctx, "Tag already exists", e, suggestion="Bump the project version; release tags are never moved.")
    except ShipError as e:
        _fail(ctx, "Tagging failed", e)
    get_console().print_info(f"Created tag {name}" + (f" and pushed it to {config.remote}" if push else ""))


# ---------------------------------------------------------------------
# publish
# ---------------------------------------------------------------------

@cli.command("publish")
@click.argument("packages", nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option("--source", required=True, help="Feed URL or local feed directory")
@click.option("--api-key-secret", default=None, help="Name of the secret holding the feed API key")
@click.option("--skip-duplicate/--no-skip-duplicate", default=True, show_default=True,
              help="Treat an already published version as success")
@click.pass_context
def publish_cmd(ctx, packages, source, api_key_secret, skip_duplicate):
    """Push package files to a feed."""
    console = get_console()
    try:
        api_key = Secrets.from_env().get(api_key_secret) if api_key_secret else None
        publisher = Publisher(open_feed(source), api_key=api_key, skip_duplicate=skip_duplicate)
        results = publisher.publish(list(packages))
    except (ShipError, FileNotFoundError) as e:
        _fail(ctx, "Publish failed", e)

    for r in results:
        console.print_info(f"{r.status}: {r.package_id} {r.version}")


# ---------------------------------------------------------------------
# release
# ---------------------------------------------------------------------

@cli.command()
@click.argument("tag_name")
@click.option("--repository", required=True, help="owner/name on the hosting provider")
@click.option("--token-secret", default="GITHUB_TOKEN", show_default=True, help="Name of the secret holding the API token")
@click.option("--repo", default=".", type=click.Path(path_type=Path), help="Local repository holding the tag")
@click.option("--api-url", default="https://api.github.com", show_default=True, help="Releases API base URL")
@click.option("--prefix", default=None, help="Release tag prefix")
@click.option("--notes/--no-notes", default=True, show_default=True, help="Generate notes from commit history")
@click.pass_context
def release(ctx, tag_name, repository, token_secret, repo, api_url, prefix, notes):
    """Create the release record for an existing tag."""
    config = _load_config(tag_prefix=prefix)
    try:
        client = GitHubReleases(repository, Secrets.from_env().get(token_secret), api_url=api_url)
        record = ReleasePublisher(repo, client, prefix=config.tag_prefix).create(tag_name, generate=notes)
    except ConflictError as e:
        _fail(ctx, "Release already exists", e)
    except (ShipError, ValueError) as e:
        _fail(ctx, "Release failed", e)
    get_console().print_info(f"Released {record.title}" + (f": {record.url}" if record.url else ""))


# ---------------------------------------------------------------------
# artifacts
# ---------------------------------------------------------------------

@cli.group()
def artifacts():
    """Inspect and clean the artifact store."""


@artifacts.command("list")
@click.argument("run_id")
@click.option("--artifact-dir", default=None, type=click.Path(path_type=Path), help="Artifact store root")
def artifacts_list(run_id, artifact_dir):
    """List artifacts uploaded by RUN_ID."""
    config = _load_config(artifact_root=artifact_dir)
    store = ArtifactStore(config.artifact_root, run_id=run_id, retention_days=config.artifact_retention_days)
    summary = artifact_summary(store.list())
    if not summary:
        get_console().print_info(f"No artifacts for run {run_id}")
    for name, count in summary.items():
        click.echo(f"{name}\t{count} file(s)")


@artifacts.command("purge")
@click.option("--artifact-dir", default=None, type=click.Path(path_type=Path), help="Artifact store root")
def artifacts_purge(artifact_dir):
    """Delete artifacts whose retention period has elapsed."""
    config = _load_config(artifact_root=artifact_dir)
    store = ArtifactStore(config.artifact_root, run_id="purge", retention_days=config.artifact_retention_days)
    removed = store.purge_expired(time.time())
    get_console().print_info(f"Removed {len(removed)} expired artifact(s)")


if __name__ == "__main__":
    cli()

"""Click entry point — all commands."""

import json
import signal
import sys
from contextlib import contextmanager

import click

from release_tags import __version__, log
from release_tags import config as config_mod
from release_tags import release as release_mod
from release_tags.classify import STATES
from release_tags.errors import Conflict, LockTimeout, TagError
from release_tags.version import BUMPS

EXIT_ERROR = 1
EXIT_BUSY = 2


@contextmanager
def _graceful_signals():
    """Turn SIGTERM/SIGINT into SystemExit so lock files are released on the way out."""
    original_sigterm = signal.getsignal(signal.SIGTERM)
    original_sigint = signal.getsignal(signal.SIGINT)

    def _cleanup_handler(signum, frame):
        log.error(f"Received signal {signum}, cleaning up...")
        raise SystemExit(1)

    signal.signal(signal.SIGTERM, _cleanup_handler)
    signal.signal(signal.SIGINT, _cleanup_handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, original_sigterm)
        signal.signal(signal.SIGINT, original_sigint)


def _run(ctx: click.Context, fn, **kwargs):
    """Load config, call an entry point, and map TagErrors to exit codes."""
    try:
        cfg = config_mod.load_config(ctx.obj["config_path"])
        with _graceful_signals():
            return fn(config=cfg, **kwargs)
    except (Conflict, LockTimeout) as e:
        _fail(ctx, e, EXIT_BUSY)
    except TagError as e:
        _fail(ctx, e, EXIT_ERROR)


def _fail(ctx: click.Context, err: TagError, code: int) -> None:
    log.error(err.message)
    if err.detail:
        log.error(err.detail)
    log.output("error_kind", err.kind)
    if ctx.obj["json"]:
        click.echo(json.dumps({"error": err.to_dict()}, indent=2))
    sys.exit(code)


def _emit(ctx: click.Context, data) -> None:
    """Print structured output and publish top-level scalars as step outputs."""
    if isinstance(data, dict):
        for key, value in data.items():
            if value is None or isinstance(value, (str, int, float, bool)):
                log.output(key, value)
    if ctx.obj["json"]:
        click.echo(json.dumps(data, indent=2))


def _short(commit: str | None) -> str:
    return commit[:12] if commit else "(none)"


@click.group()
@click.version_option(version=__version__, prog_name="release-tags")
@click.option("--config", "config_path", default=None, help="Config file (default: .release-tags.yml)")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON on stdout")
@click.pass_context
def main(ctx, config_path, as_json):
    """Release, deployment and rollback state kept in git tags."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["json"] = as_json
    log.use_stderr(as_json)


@main.command(name="create-version")
@click.argument("version")
@click.option("--sub-path", default="", help="Monorepo component prefix")
@click.option("--commit", default="HEAD", show_default=True, help="Commit to tag")
@click.option("--message", "-m", default=None, help="Tag message")
@click.pass_context
def create_version(ctx, version, sub_path, commit, message):
    """Create an immutable version tag."""
    result = _run(ctx, release_mod.create_version, sub_path=sub_path, version=version, commit=commit, message=message)
    _emit(ctx, result.to_dict())


@main.command()
@click.argument("environment")
@click.option("--sub-path", default="", help="Monorepo component prefix")
@click.option("--commit", default=None, help="Commit to deploy")
@click.option("--version", "version", default=None, help="Version to deploy (instead of --commit)")
@click.pass_context
def deploy(ctx, environment, sub_path, commit, version):
    """Move an environment tag to a released commit."""
    if commit is None and version is None:
        commit = "HEAD"
    log.header(f"deploy {environment}")
    result = _run(
        ctx,
        release_mod.move_environment,
        sub_path=sub_path,
        environment=environment,
        commit=commit,
        version=version,
    )
    log.footer(f"{result.tag_name} at {_short(result.new_commit)}")
    _emit(ctx, result.to_dict())


@main.command(name="assign-state")
@click.argument("version")
@click.argument("state", type=click.Choice(STATES))
@click.option("--sub-path", default="", help="Monorepo component prefix")
@click.option("--commit", default=None, help="Expected commit of the version")
@click.pass_context
def assign_state(ctx, version, state, sub_path, commit):
    """Mark a version stable, unstable or deprecated."""
    result = _run(ctx, release_mod.assign_state, sub_path=sub_path, version=version, state=state, commit=commit)
    _emit(ctx, result.to_dict())


@main.command()
@click.argument("environment")
@click.option("--sub-path", default="", help="Monorepo component prefix")
@click.option("--dry-run", is_flag=True, help="Only show which version would be restored")
@click.pass_context
def rollback(ctx, environment, sub_path, dry_run):
    """Roll an environment back to the best prior version."""
    if dry_run:
        target = _run(ctx, release_mod.select_rollback_target, sub_path=sub_path, environment=environment)
        result = None
    else:
        log.header(f"rollback {environment}")
        target, result = _run(ctx, release_mod.rollback, sub_path=sub_path, environment=environment)

    log.info(f"current: {target.current_version} ({_short(target.current_commit)})")
    log.info(f"target:  {target.target_version} ({_short(target.target_commit)})")
    for rejection in target.rejected:
        log.step(f"skipped {rejection.version}: {rejection.reason}")
    if result is not None:
        log.footer(f"{result.tag_name} at {_short(result.new_commit)}")

    data = target.to_dict()
    if result is not None:
        data.update(result.to_dict())
    data["dry_run"] = dry_run
    _emit(ctx, data)


@main.command()
@click.option("--sub-path", default=None, help="Only this monorepo component")
@click.pass_context
def status(ctx, sub_path):
    """Show what is deployed where."""
    rows = _run(ctx, release_mod.status, sub_path=sub_path)
    if not rows:
        log.info("No environment tags")
    for row in rows:
        versions = ", ".join(row.versions) or "(no version)"
        states = f" [{', '.join(row.states)}]" if row.states else ""
        when = row.updated_at.strftime("%Y-%m-%d %H:%M") if row.updated_at else "unknown"
        log.info(f"  {row.tag_name}  {_short(row.commit)}  {versions}{states}  {when}")
    if ctx.obj["json"]:
        click.echo(json.dumps([row.to_dict() for row in rows], indent=2))


@main.command()
@click.argument("environment")
@click.option("--sub-path", default="", help="Monorepo component prefix")
@click.option("--limit", "-n", default=10, show_default=True, type=int, help="Number of deployments")
@click.pass_context
def history(ctx, environment, sub_path, limit):
    """Show recent deployments to an environment."""
    entries = _run(ctx, release_mod.history, sub_path=sub_path, environment=environment, limit=limit)
    if not entries:
        log.info("No deployment history found")
    for entry in entries:
        when = entry.deployed_at.strftime("%Y-%m-%d %H:%M:%S") if entry.deployed_at else "unknown"
        log.info(f"  {when}  {_short(entry.commit)}  {', '.join(entry.versions) or '(no version)'}")
    if ctx.obj["json"]:
        click.echo(json.dumps([e.to_dict() for e in entries], indent=2))


@main.command(name="next-version")
@click.option("--sub-path", default="", help="Monorepo component prefix")
@click.option("--bump", type=click.Choice(BUMPS), default="patch", show_default=True)
@click.option("--prerelease", default=None, help="Pre-release identifier, e.g. rc.1")
@click.pass_context
def next_version(ctx, sub_path, bump, prerelease):
    """Print the next version for a sub-path."""
    version = _run(ctx, release_mod.next_version, sub_path=sub_path, bump=bump, prerelease=prerelease)
    log.output("version", version.full_version)
    if ctx.obj["json"]:
        click.echo(json.dumps({"version": version.full_version, "semver": version.semver}))
    else:
        click.echo(version.full_version)


@main.command()
@click.option("--sub-path", default=None, help="Only this monorepo component")
@click.pass_context
def validate(ctx, sub_path):
    """Check every tag against the release invariants."""
    findings = _run(ctx, release_mod.audit, sub_path=sub_path)
    for finding in findings:
        if finding.level == "error":
            log.failure(f"{finding.tag}: {finding.message}")
        else:
            log.warn(f"{finding.tag}: {finding.message}")
    errors = [f for f in findings if f.level == "error"]
    if ctx.obj["json"]:
        click.echo(json.dumps([f.to_dict() for f in findings], indent=2))
    if errors:
        log.error(f"Tag consistency validation failed with {len(errors)} error(s)")
        sys.exit(EXIT_ERROR)
    log.success("Tag consistency validation passed")


if __name__ == "__main__":
    main()

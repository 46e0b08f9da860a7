"""
CLI interface for goaldispatch.

Provides commands to sign and verify goal messages, render the Kubernetes
Job an isolated goal would run as, prune the file-system goal cache and
inspect scheduler selection.

Goal documents are JSON in the camelCase wire form; "-" reads stdin.
"""

import os
import uuid
from datetime import timedelta
from pathlib import Path

import click
import yaml

from goaldispatch import __version__


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'goaldispatch init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _identity(config):
    from goaldispatch.context import DispatcherIdentity

    return DispatcherIdentity(name=config.name, version=config.version)


@click.group()
@click.version_option(version=__version__, prog_name="goaldispatch")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx, config_path, verbose):
    """
    goaldispatch - Delivery goal dispatch.

    Sign and verify goals, build isolated goal Jobs, manage the goal cache.
    """
    from goaldispatch.config import load_config
    from goaldispatch.errors import ConfigError
    from goaldispatch.utils import setup_logging

    ctx.ensure_object(dict)
    level = "DEBUG" if verbose else "WARNING"
    log_format = "pretty"
    log_file = None
    console_output = True
    try:
        config = load_config(config_path)
        ctx.obj["config"] = config
        level = "DEBUG" if verbose else config.logging.level
        log_format = config.logging.format
        log_file = Path(config.logging.file).expanduser() if config.logging.file else None
        console_output = config.logging.console
    except (FileNotFoundError, ConfigError) as e:
        # init works without a config; other commands check ctx.obj
        ctx.obj["config_error"] = str(e)

    setup_logging(log_file=log_file, log_level=level, log_format=log_format, console_output=console_output)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize goaldispatch configuration."""
    from goaldispatch.config import get_goaldispatch_home

    home = get_goaldispatch_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "name": "goaldispatch",
        "version": __version__,
        "cache": {
            "enabled": False,
            "path": str(home / "cache"),
            "max_age_hours": 2,
        },
        "signing": {
            "enabled": False,
        },
        "scheduler": {
            "namespace": None,
            "pod_name": None,
        },
        "logging": {
            "level": "INFO",
            "format": "pretty",
        },
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    click.echo(f"Initialized goaldispatch config at {cfg_path}")


@main.command("sign")
@click.argument("goal_json", type=click.Path(path_type=Path, allow_dash=True))
@click.pass_context
def sign(ctx, goal_json: Path):
    """Sign a goal and print the signed wire form."""
    from goaldispatch.errors import SigningError
    from goaldispatch.schemas import GoalMessage
    from goaldispatch.signing import sign_goal
    from goaldispatch.utils import dump_json, read_json

    config = _require_config(ctx)
    try:
        goal = GoalMessage.from_dict(read_json(goal_json))
        signed = sign_goal(goal, config.signing)
    except (ValueError, KeyError) as e:
        click.echo(f"✗ Invalid goal: {e}", err=True)
        raise SystemExit(1)
    except SigningError as e:
        click.echo(f"✗ Signing failed: {e}", err=True)
        raise SystemExit(1)

    click.echo(dump_json(signed.to_dict()))


@main.command("verify")
@click.argument("signed_json", type=click.Path(path_type=Path, allow_dash=True))
@click.option("--workspace-id", default="local", help="Workspace of the receiving event")
@click.pass_context
def verify(ctx, signed_json: Path, workspace_id: str):
    """Verify a signed goal; exit 1 if it is rejected."""
    from goaldispatch.context import ExecutionContext
    from goaldispatch.errors import SignatureInvalidError
    from goaldispatch.messaging import InMemoryMessageClient
    from goaldispatch.schemas import SignedGoalMessage
    from goaldispatch.signing import verify_goal
    from goaldispatch.utils import dump_json, read_json

    config = _require_config(ctx)
    try:
        signed = SignedGoalMessage.from_dict(read_json(signed_json))
    except (ValueError, KeyError) as e:
        click.echo(f"✗ Invalid goal: {e}", err=True)
        raise SystemExit(1)

    if not config.signing.enabled:
        click.echo("Goal signing is disabled; goal accepted without verification")
        return

    client = InMemoryMessageClient()
    context = ExecutionContext(
        workspace_id=workspace_id,
        correlation_id=str(uuid.uuid4()),
        message_client=client,
    )
    try:
        goal = verify_goal(signed, config.signing, context, _identity(config))
    except SignatureInvalidError as e:
        click.echo(f"✗ {e}", err=True)
        for message in client.sent:
            click.echo(dump_json(message))
        raise SystemExit(1)

    click.echo(f"✓ Signature of goal {goal.unique_name} is valid (signer: {signed.signer_name})")


@main.command("job-spec")
@click.argument("pod_file", type=click.Path(exists=True, path_type=Path))
@click.argument("goal_json", type=click.Path(path_type=Path, allow_dash=True))
@click.option("--namespace", "-n", help="Namespace for the Job (default: scheduler.namespace)")
@click.option("--workspace-id", required=True, help="Workspace the goal belongs to")
@click.option("--workspace-name", help="Workspace display name")
@click.option("--correlation-id", help="Correlation id (default: random)")
@click.option("--format", "output_format", type=click.Choice(["yaml", "json"]), default="yaml")
@click.pass_context
def job_spec(ctx, pod_file: Path, goal_json: Path, namespace, workspace_id, workspace_name, correlation_id, output_format):
    """Print the Kubernetes Job an isolated goal would run as."""
    from goaldispatch.context import ExecutionContext, GoalInvocation
    from goaldispatch.schemas import GoalMessage
    from goaldispatch.scheduling import create_job_spec
    from goaldispatch.utils import dump_json, read_json

    config = _require_config(ctx)
    namespace = namespace or config.scheduler.namespace or "default"

    try:
        pod = yaml.safe_load(pod_file.read_text())
        goal = GoalMessage.from_dict(read_json(goal_json))
    except (yaml.YAMLError, ValueError, KeyError) as e:
        click.echo(f"✗ Invalid input: {e}", err=True)
        raise SystemExit(1)

    invocation = GoalInvocation(
        goal_event=goal,
        context=ExecutionContext(
            workspace_id=workspace_id,
            workspace_name=workspace_name,
            correlation_id=correlation_id or str(uuid.uuid4()),
        ),
        identity=_identity(config),
        configuration=config,
    )
    try:
        spec = create_job_spec(pod, namespace, invocation)
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        click.echo(f"✗ Invalid pod template: {e}", err=True)
        raise SystemExit(1)

    if output_format == "json":
        click.echo(dump_json(spec))
    else:
        click.echo(yaml.safe_dump(spec, sort_keys=False), nl=False)


@main.group("cache")
def cache_group():
    """Goal cache maintenance."""
    pass


@cache_group.command("prune")
@click.option("--max-age-hours", type=float, help="Override cache.max_age_hours")
@click.pass_context
def cache_prune(ctx, max_age_hours):
    """Delete cache entries older than the maximum age."""
    from goaldispatch.cache import prune_cache

    config = _require_config(ctx)
    if not config.cache.path:
        click.echo("✗ No cache.path configured", err=True)
        raise SystemExit(1)

    hours = max_age_hours if max_age_hours is not None else config.cache.max_age_hours
    removed = prune_cache(Path(config.cache.path).expanduser(), max_age=timedelta(hours=hours))
    click.echo(f"✓ Pruned {len(removed)} cache entr{'y' if len(removed) == 1 else 'ies'}")


@main.command("selector")
@click.argument("candidates", nargs=-1, required=True)
def selector(candidates):
    """Check whether a goal scheduler is selected in the environment."""
    from goaldispatch.scheduling import configured_selectors, is_configured_in_env

    env = dict(os.environ)
    selected = sorted(configured_selectors(env))
    if is_configured_in_env(env, *candidates):
        click.echo(f"✓ configured ({', '.join(selected)})")
    else:
        click.echo(f"✗ not configured ({', '.join(selected) or 'no selectors set'})")
        raise SystemExit(1)


if __name__ == "__main__":
    main()

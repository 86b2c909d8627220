"""
Command Line Interface

    tina-datalayer build         one-shot build (in-memory index)
    tina-datalayer server-start  build, then serve queries over HTTP
    tina-datalayer audit         read-only verification build

Every command exits non-zero on a schema error, a denied write, a strict
validation failure or a missing root path.
"""

from __future__ import annotations

import logging
from typing import Optional

import click

from .builder import BuildContext
from .config import settings
from .core.errors import BuildFailed, DatalayerError
from .factory import BuildMode, DatalayerSetup, build_setup

logger = logging.getLogger("datalayer.cli")


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _echo_summary(ctx: BuildContext) -> None:
    report = ctx.report
    if report is None:
        return
    if report.skipped:
        click.echo("Content unchanged; index reused.")
    else:
        click.echo(
            f"Indexed {report.indexed} document(s), removed {report.deleted}, "
            f"{report.error_count} error(s)."
        )
    for error in report.errors:
        click.echo(f"  - {error}", err=True)
        for issue in getattr(error, "issues", []):
            click.echo(f"      {issue}", err=True)
    if report.truncated:
        click.echo(f"  ... and {report.truncated} more", err=True)


def _fail(exc: DatalayerError) -> click.ClickException:
    lines = [str(exc)]
    for issue in getattr(exc, "issues", []):
        lines.append(f"  - {issue}")
    if isinstance(exc, BuildFailed):
        lines.extend(f"  - {error}" for error in exc.errors)
    return click.ClickException("\n".join(lines))


def _run_build(setup: DatalayerSetup, strict: Optional[bool], force: bool) -> BuildContext:
    overrides = {"force": force}
    if strict is not None:
        overrides["strict"] = strict
    return setup.builder.build(setup.build_options(**overrides))


root_option = click.option(
    "--root",
    "root",
    type=click.Path(file_okay=False),
    default=None,
    help="Content root (defaults to TINA_ROOT_PATH).",
)
strict_option = click.option(
    "--strict/--lenient",
    default=None,
    help="Fail the build on content validation errors.",
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Debug logging.")


@click.group()
@click.version_option(version="0.1.0", prog_name="tina-datalayer")
def cli() -> None:
    """Index structured content and serve queries over it."""


@cli.command()
@root_option
@click.option("--git", is_flag=True, help="Read content from the committed git tree.")
@click.option("--git-ref", default=None, help="Ref to read with --git (default HEAD).")
@strict_option
@click.option("--force", is_flag=True, help="Reindex even if content is unchanged.")
@verbose_option
def build(root, git, git_ref, strict, force, verbose) -> None:
    """Compile the schema, index content and write generated artifacts."""
    configure_logging(verbose)
    try:
        with build_setup(BuildMode.BUILD, root, git=git, git_ref=git_ref) as setup:
            ctx = _run_build(setup, strict, force)
    except DatalayerError as exc:
        raise _fail(exc) from exc

    _echo_summary(ctx)
    click.echo(f"Build complete ({len(ctx.artifacts)} artifact(s)).")


@cli.command("server-start")
@root_option
@click.option("--host", default=None, help="Bind address (default TINA_HOST).")
@click.option("--port", type=int, default=None, help="Port (default TINA_PORT).")
@click.option("--git", is_flag=True, help="Read content from the committed git tree.")
@click.option("--git-ref", default=None)
@strict_option
@verbose_option
def server_start(root, host, port, git, git_ref, strict, verbose) -> None:
    """Build against the persistent index, then serve queries."""
    import uvicorn

    from .main import create_app

    configure_logging(verbose)
    try:
        setup = build_setup(BuildMode.SERVER_START, root, git=git, git_ref=git_ref)
    except DatalayerError as exc:
        raise _fail(exc) from exc

    try:
        try:
            ctx = _run_build(setup, strict, force=False)
        except DatalayerError as exc:
            raise _fail(exc) from exc
        _echo_summary(ctx)

        app = create_app(setup.database)
        uvicorn.run(
            app,
            host=host or settings.host,
            port=port or settings.port,
            log_level=settings.log_level.lower(),
        )
    finally:
        setup.close()


@cli.command()
@root_option
@click.option("--clean", is_flag=True, help="Allow the build to write (plain bridge).")
@strict_option
@verbose_option
def audit(root, clean, strict, verbose) -> None:
    """Run a build that must not modify the content source."""
    configure_logging(verbose)
    try:
        with build_setup(BuildMode.AUDIT, root, clean=clean) as setup:
            ctx = _run_build(setup, strict, force=True)
    except DatalayerError as exc:
        raise _fail(exc) from exc

    _echo_summary(ctx)
    click.echo("Audit complete: no writes attempted.")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

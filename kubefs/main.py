from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
import urllib3
from kubernetes.config.config_exception import ConfigException
from pydantic import ValidationError

from kubefs.core.exceptions import FetchError
from kubefs.core.integrations.kubernetes import KubernetesFetcher
from kubefs.core.models.config import Config
from kubefs.core.mount import build_filesystem
from kubefs.core.mount import mount as mount_filesystem
from kubefs.utils.version import get_version

app = typer.Typer(
    pretty_exceptions_show_locals=False,
    pretty_exceptions_short=True,
    no_args_is_help=True,
    help="Browse the namespaces and pods of a Kubernetes cluster as a read-only filesystem.",
)

# NOTE: Disable insecure request warnings, as it might be expected to use self-signed certificates inside the cluster
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger("kubefs")


@app.command(rich_help_panel="Utils")
def version() -> None:
    typer.echo(get_version())


@app.command()
def mount(
    mountpoint: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        dir_okay=True,
        help="Directory to mount the filesystem on.",
    ),
    kubeconfig: Optional[str] = typer.Option(
        None,
        "--kubeconfig",
        "-k",
        help="Path to kubeconfig file. If not provided, will attempt to find it.",
        rich_help_panel="Kubernetes Settings",
    ),
    context: Optional[str] = typer.Option(
        None,
        "--context",
        "-c",
        help="Kubeconfig context to use. By default, will use the current context.",
        rich_help_panel="Kubernetes Settings",
    ),
    impersonate_user: Optional[str] = typer.Option(
        None,
        "--as",
        help="Impersonate a user, just like `kubectl --as`. For example, system:serviceaccount:default:kubefs.",
        rich_help_panel="Kubernetes Settings",
    ),
    impersonate_group: Optional[str] = typer.Option(
        None,
        "--as-group",
        help="Impersonate a user inside of a group, just like `kubectl --as-group`. For example, system:authenticated.",
        rich_help_panel="Kubernetes Settings",
    ),
    request_timeout: Optional[float] = typer.Option(
        None,
        "--request-timeout",
        help="Timeout of a single Kubernetes API request, in seconds. Defaults to 10.",
        rich_help_panel="Kubernetes Settings",
    ),
    fetch_attempts: Optional[int] = typer.Option(
        None,
        "--fetch-attempts",
        help="How many times to try listing when the cluster can not be reached. Defaults to 1 (no retries).",
        rich_help_panel="Kubernetes Settings",
    ),
    fsname: Optional[str] = typer.Option(
        None,
        "--fsname",
        help="Filesystem name shown by mount and df. Defaults to kubefs.",
        rich_help_panel="Filesystem Settings",
    ),
    attr_timeout: Optional[float] = typer.Option(
        None,
        "--attr-timeout",
        help="How long the kernel may cache attributes, in seconds. Defaults to 1.",
        rich_help_panel="Filesystem Settings",
    ),
    entry_timeout: Optional[float] = typer.Option(
        None,
        "--entry-timeout",
        help="How long the kernel may cache name lookups, in seconds. Defaults to 1.",
        rich_help_panel="Filesystem Settings",
    ),
    debug_fuse: bool = typer.Option(
        False,
        "--debug-fuse",
        help="Enable the debug output of libfuse.",
        rich_help_panel="Filesystem Settings",
    ),
    max_workers: Optional[int] = typer.Option(
        None,
        "--max-workers",
        "-w",
        help="Number of threads serving filesystem requests. Defaults to 1.",
        rich_help_panel="Threading Settings",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose mode", rich_help_panel="Logging Settings"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Enable quiet mode", rich_help_panel="Logging Settings"),
    log_to_stderr: bool = typer.Option(
        False, "--logtostderr", help="Pass logs to stderr", rich_help_panel="Logging Settings"
    ),
    width: Optional[int] = typer.Option(
        None,
        "--width",
        help="Width of the output. Will use console width by default.",
        rich_help_panel="Logging Settings",
    ),
) -> None:
    """Mount the cluster on MOUNTPOINT and serve it until unmounted."""

    options = dict(
        kubeconfig=kubeconfig,
        context=context,
        impersonate_user=impersonate_user,
        impersonate_group=impersonate_group,
        request_timeout=request_timeout,
        fetch_attempts=fetch_attempts,
        fsname=fsname,
        attr_timeout=attr_timeout,
        entry_timeout=entry_timeout,
        debug_fuse=debug_fuse,
        max_workers=max_workers,
        verbose=verbose,
        quiet=quiet,
        log_to_stderr=log_to_stderr,
        width=width,
    )

    try:
        # NOTE: options left unset fall back to KUBEFS_* environment variables, then to the defaults
        config = Config(**{name: value for name, value in options.items() if value is not None})
        Config.set_config(config)
    except ValidationError:
        logger.exception("Error occured while parsing arguments")
        raise typer.Exit(code=2)

    try:
        config.load_kubeconfig()
    except ConfigException as e:
        logger.critical(f"Unable to load the kubernetes configuration: {e}")
        raise typer.Exit(code=1)

    try:
        operations = build_filesystem(KubernetesFetcher())
    except FetchError as e:
        logger.critical(f"Unable to list namespaces, there is nothing to mount: {e}")
        raise typer.Exit(code=1)

    mount_filesystem(operations, str(mountpoint))


def run() -> None:
    app()


if __name__ == "__main__":
    run()

"""Typer-powered command line for ``cwkit``.

Each command loads configuration once, runs inside a structured logging
operation and maps fatal errors onto the well-known exit codes in
:mod:`cwkit.exit_codes`.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import (
    API_KEYS,
    SSH_KEY_NAME_KEY,
    SSH_KEY_PATH_KEY,
    AppConfig,
    ConfigError,
    Credentials,
    load_config,
    load_credentials,
)
from .dependencies import DependencyMissing, require_tools
from .exit_codes import ExitCode
from .inventory import (
    InventoryCounts,
    build_domain_map,
    build_server_map,
    domain_list,
    find_duplicate_domains,
    parse_filter,
    select_servers,
)
from .logging import OperationScope, StructuredLogger, redact
from .models import SchemaError, Server
from .output import (
    ArtifactWriter,
    OutputWriteError,
    domains_filename,
    inventory_filename,
    run_timestamp,
    servers_filename,
)
from .providers import (
    WPCLI,
    AuthenticationError,
    CloudwaysClient,
    GeneratorClient,
    GeneratorError,
    GeneratorUnavailable,
    HttpClient,
    NetworkError,
    ThemeSelection,
    WPCLIError,
)
from .providers.perfmatters import build_payload
from .sshkeys import (
    InvalidKeyFormat,
    SshKeyUploader,
    UploadOutcome,
    UploadState,
    UploadSummary,
    load_public_key,
    partition_servers,
)

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to cwkit's YAML config file.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the result as JSON.",
)

# Ordered most specific first; the first match decides the exit code.
_ERROR_EXIT_CODES: tuple[tuple[type[BaseException], ExitCode], ...] = (
    (ConfigError, ExitCode.VALIDATION),
    (InvalidKeyFormat, ExitCode.VALIDATION),
    (DependencyMissing, ExitCode.ENVIRONMENT),
    (OutputWriteError, ExitCode.ENVIRONMENT),
    (WPCLIError, ExitCode.ENVIRONMENT),
    (AuthenticationError, ExitCode.PROVIDER),
    (SchemaError, ExitCode.PROVIDER),
    (NetworkError, ExitCode.PROVIDER),
    (GeneratorUnavailable, ExitCode.PROVIDER),
    (GeneratorError, ExitCode.FAILURES),
)
FATAL_ERRORS: tuple[type[BaseException], ...] = tuple(kind for kind, _ in _ERROR_EXIT_CODES)

_OUTCOME_STYLE = {
    UploadState.CREATED: "[green]SUCCESS[/green]",
    UploadState.ALREADY_EXISTS: "[green]Key already exists (OK)[/green]",
    UploadState.FAILED: "[red]FAILED[/red]",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Cloudways and WordPress operations toolkit.

        Export server/application inventories, push an SSH public key to every
        running server, and generate Perfmatters configurations for a local
        WordPress site.
        """
    ).strip(),
)
servers_app = typer.Typer(help="Export inventories and manage SSH keys on Cloudways servers.")
perfmatters_app = typer.Typer(help="Generate and import Perfmatters configurations.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(servers_app, name="servers")
app.add_typer(perfmatters_app, name="perfmatters")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    timestamp: str

    def http_client(self) -> HttpClient:
        """Return a new HTTP client configured from :attr:`config`."""
        return HttpClient(self.config.http)

    def cloudways(self, http: HttpClient) -> CloudwaysClient:
        """Return a hosting API client bound to *http*."""
        return CloudwaysClient(http, self.config.api.base_url)


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        timestamp=run_timestamp(),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the cwkit version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"cwkit {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]ERROR:[/red] {escape(message)}")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _exit_code_for(exc: BaseException) -> ExitCode:
    for kind, code in _ERROR_EXIT_CODES:
        if isinstance(exc, kind):
            return code
    return ExitCode.FAILURES


def _fail(op: OperationScope, exc: BaseException) -> NoReturn:
    """Report a fatal error raised by one of the workflow steps."""
    body = getattr(exc, "body", "")
    if body and not isinstance(exc, GeneratorError):
        console.print(f"Response: {escape(redact(str(body)))}")
    _command_error(op, str(exc), rc=_exit_code_for(exc))


def _step(message: str) -> None:
    console.print(f"[blue]>[/blue] {message}")


def _ok(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def _load_credentials(
    runtime: RuntimeContext,
    op: OperationScope,
    required: Sequence[str],
) -> Credentials:
    credentials = load_credentials(runtime.config.credentials_file, required=required)
    op.add_step("credentials.load", detail={"file": str(credentials.source)})
    return credentials


def _authenticate(
    client: CloudwaysClient,
    credentials: Credentials,
    op: OperationScope,
    *,
    quiet: bool = False,
) -> str:
    if not quiet:
        _step("Authenticating with Cloudways...")
    token = client.authenticate(credentials.email, credentials.api_key)
    op.add_step("api.authenticate")
    if not quiet:
        _ok("Authenticated successfully")
    return token


def _fetch_servers(
    client: CloudwaysClient,
    token: str,
    op: OperationScope,
    *,
    quiet: bool = False,
) -> list[Server]:
    if not quiet:
        _step("Fetching server and application data...")
    servers = client.fetch_servers(token)
    op.add_step("api.servers", detail={"count": len(servers)})
    if not quiet:
        _ok(f"Fetched {len(servers)} server(s)")
    return servers


# ----------------------------------------------------------------------
# servers export
# ----------------------------------------------------------------------


@servers_app.command("export")
def servers_export(
    ctx: typer.Context,
    filter_type: str = typer.Argument(
        "all",
        metavar="[APP_TYPE|all]",
        help="Application type to export: 'all', 'wordpress' (WordPress, WooCommerce, "
        "WordPress MU) or an exact type such as 'phpstack'.",
    ),
    include_stopped: bool = typer.Option(
        False,
        "--include-stopped",
        help="Also export applications on servers that are not running.",
    ),
    output_dir: Path | None = typer.Option(
        None,
        "--output-dir",
        file_okay=False,
        help="Directory receiving the exported files (defaults to output_dir in config).",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Export a domain database, a per-server map and a domain list."""
    runtime = _get_runtime(ctx)
    app_filter = parse_filter(filter_type)
    target_dir = output_dir or runtime.config.output_dir

    with runtime.logger.operation(
        "servers export",
        args={
            "filter": app_filter.keyword,
            "include_stopped": include_stopped,
            "output_dir": str(target_dir),
            "json": json_output,
        },
        target={"kind": "inventory", "filter": app_filter.keyword},
    ) as op:
        if not json_output:
            console.print("[bold]Cloudways inventory export[/bold]")
            console.print(f"Filter: {escape(app_filter.keyword)}")
        try:
            credentials = _load_credentials(runtime, op, API_KEYS)
            with runtime.http_client() as http:
                client = runtime.cloudways(http)
                token = _authenticate(client, credentials, op, quiet=json_output)
                servers = _fetch_servers(client, token, op, quiet=json_output)

            exported = select_servers(servers, include_stopped=include_stopped)
            domain_map = build_domain_map(exported, app_filter)
            server_map = build_server_map(exported, app_filter)
            duplicates = find_duplicate_domains(exported, app_filter)
            counts = InventoryCounts.compute(servers, exported, app_filter)

            writer = ArtifactWriter(target_dir, runtime.timestamp)
            names = {
                "database": inventory_filename(app_filter.keyword, writer.timestamp),
                "servers": servers_filename(app_filter.keyword, writer.timestamp),
                "domains": domains_filename(app_filter.keyword, writer.timestamp),
            }
            writer.reserve(names.values())
            written: list[Path] = []
            try:
                written.append(writer.write_json(names["database"], domain_map))
                written.append(writer.write_json(names["servers"], server_map))
                written.append(writer.write_text(names["domains"], domain_list(domain_map)))
            except OutputWriteError:
                writer.discard(written)
                raise
            data_path, servers_path, domains_path = written
        except FATAL_ERRORS as exc:
            _fail(op, exc)

        files = {
            "database": str(data_path),
            "servers": str(servers_path),
            "domains": str(domains_path),
        }
        op.add_step("artifacts.write", detail=files)
        result = {
            "filter": app_filter.keyword,
            "counts": counts.to_dict(),
            "domains": len(domain_map),
            "duplicate_domains": duplicates,
            "files": files,
        }

        if json_output:
            console.print_json(data=result)
        else:
            console.print()
            console.print(
                f"Found {counts.matched_apps} app(s) matching filter: "
                f"{escape(app_filter.keyword)}"
            )
            console.print(
                f"Servers: {counts.servers} total, {counts.running} running, "
                f"{counts.stopped} not running"
                + ("" if include_stopped else " (skipped)")
            )
            if duplicates:
                console.print(
                    "[yellow]Duplicate domains (last entry kept): "
                    f"{escape(', '.join(duplicates))}[/yellow]"
                )
            console.print()
            console.print("Files created:")
            console.print(f"  {escape(str(data_path))}    # Full database")
            console.print(f"  {escape(str(servers_path))}    # Apps grouped by server")
            console.print(f"  {escape(str(domains_path))}    # Domain list")

        if duplicates:
            op.warning(
                "Inventory exported with duplicate domains.",
                warnings=[f"duplicate-domain:{domain}" for domain in duplicates],
                changed=3,
                context=result,
            )
        else:
            op.success("Inventory exported.", changed=3, context=result)


# ----------------------------------------------------------------------
# servers upload-key
# ----------------------------------------------------------------------


def _print_outcome(outcome: UploadOutcome) -> None:
    label = _OUTCOME_STYLE[outcome.state]
    if outcome.state is UploadState.CREATED:
        detail = f" (Key ID: {escape(outcome.key_id or '')})"
    elif outcome.state is UploadState.FAILED:
        detail = f" - {escape(outcome.message)}"
    else:
        detail = ""
    console.print(f"Server {escape(outcome.server_id)}: {label}{detail}")


def _render_upload_summary(summary: UploadSummary) -> None:
    table = Table(title="Summary", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Total servers", str(summary.total))
    table.add_row("Successful", str(summary.succeeded))
    table.add_row("Already present", str(summary.already_present))
    table.add_row("Failed", str(summary.failed))
    if summary.skipped:
        table.add_row("Not running (skipped)", " ".join(server.id for server in summary.skipped))
    console.print(table)
    if summary.ok:
        console.print("Status: [green]ALL SUCCESSFUL ✓[/green]")
    else:
        console.print("Status: [red]SOME FAILURES[/red]")
        console.print(f"Failed servers: {escape(' '.join(summary.failed_servers))}")


@servers_app.command("upload-key")
def servers_upload_key(
    ctx: typer.Context,
    key_file: Path | None = typer.Option(
        None,
        "--key-file",
        dir_okay=False,
        help="Public key to upload (defaults to CW_SSH_KEY_PATH from the credential file).",
    ),
    key_name: str | None = typer.Option(
        None,
        "--key-name",
        help="Display name for the key (defaults to CW_SSH_KEY_NAME).",
    ),
    delay: float | None = typer.Option(
        None,
        "--delay",
        min=0.0,
        help="Seconds to wait between consecutive uploads (defaults to upload.delay).",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Upload an SSH public key to every running server."""
    runtime = _get_runtime(ctx)
    pause = runtime.config.upload.delay if delay is None else delay

    with runtime.logger.operation(
        "servers upload-key",
        args={
            "key_file": str(key_file) if key_file else None,
            "key_name": key_name,
            "delay": pause,
            "json": json_output,
        },
        target={"kind": "ssh-key"},
    ) as op:
        required = list(API_KEYS)
        if key_file is None:
            required.append(SSH_KEY_PATH_KEY)
        if key_name is None:
            required.append(SSH_KEY_NAME_KEY)

        try:
            credentials = _load_credentials(runtime, op, required)
            resolved_key_path = key_file or credentials.ssh_key_path
            resolved_key_name = key_name or credentials.ssh_key_name or ""
            if resolved_key_path is None:
                raise ConfigError(f"{SSH_KEY_PATH_KEY} is not set.")

            if not json_output:
                _step("Preparing SSH key...")
            public_key = load_public_key(resolved_key_path)
            op.add_step(
                "key.validate",
                detail={"path": str(public_key.path), "type": public_key.key_type},
            )
            if not json_output:
                _ok(f"SSH key prepared ({len(public_key.content)} characters)")

            with runtime.http_client() as http:
                client = runtime.cloudways(http)
                token = _authenticate(client, credentials, op, quiet=json_output)
                servers = _fetch_servers(client, token, op, quiet=json_output)

                if not json_output:
                    running, stopped = partition_servers(servers)
                    console.print(f"All servers: {' '.join(server.id for server in servers)}")
                    console.print(f"Running: {' '.join(server.id for server in running)}")
                    console.print(f"Stopped: {' '.join(server.id for server in stopped)}")
                    console.print()
                    _step(f"Uploading SSH key to {len(running)} running server(s)...")

                uploader = SshKeyUploader(
                    client=client,
                    token=token,
                    key=public_key,
                    key_name=resolved_key_name,
                    delay=pause,
                    on_outcome=None if json_output else _print_outcome,
                )
                summary = uploader.run(servers)
        except FATAL_ERRORS as exc:
            _fail(op, exc)

        for outcome in summary.outcomes:
            op.add_step(
                f"upload.{outcome.server_id}",
                status="success" if outcome.succeeded else "error",
                detail=outcome.to_dict(),
            )

        payload = summary.to_dict()
        if json_output:
            console.print_json(data=payload)
        else:
            console.print()
            _render_upload_summary(summary)

        if summary.ok:
            op.success(
                f"SSH key present on {summary.succeeded} server(s).",
                changed=summary.succeeded - summary.already_present,
                context=payload,
            )
            return

        op.error(
            f"SSH key upload failed on {summary.failed} server(s).",
            errors=[f"server:{server_id}" for server_id in summary.failed_servers],
            rc=int(ExitCode.FAILURES),
            context=payload,
        )
        raise typer.Exit(code=int(ExitCode.FAILURES))


# ----------------------------------------------------------------------
# perfmatters generate
# ----------------------------------------------------------------------


@perfmatters_app.command("generate")
def perfmatters_generate(
    ctx: typer.Context,
    wordpress_path: Path | None = typer.Argument(
        None,
        help="WordPress installation to inspect (defaults to the current directory).",
    ),
    api_url: str | None = typer.Argument(
        None,
        help="Configuration generator base URL (defaults to perfmatters.api_url).",
    ),
    use_child: bool = typer.Option(
        False,
        "--use-child",
        envvar="PM_USE_CHILD",
        help="Send the child theme as the primary theme instead of the parent.",
    ),
    keep_files: bool = typer.Option(
        False,
        "--keep-files",
        help="Keep the generated configuration after a successful import.",
    ),
) -> None:
    """Generate a Perfmatters configuration for a WordPress site and import it."""
    runtime = _get_runtime(ctx)
    settings = runtime.config.perfmatters
    site_path = (wordpress_path or Path.cwd()).expanduser()
    endpoint = (api_url or settings.api_url).rstrip("/")
    output_dir = settings.output_dir
    if not output_dir.is_absolute():
        output_dir = site_path / output_dir

    with runtime.logger.operation(
        "perfmatters generate",
        args={
            "wordpress_path": str(site_path),
            "api_url": endpoint,
            "use_child": use_child,
            "keep_files": keep_files,
        },
        target={"kind": "wordpress", "path": str(site_path)},
    ) as op:
        console.print("[bold]WordPress → Perfmatters Configuration Generator[/bold]")
        try:
            require_tools([settings.wp_bin])
            if not site_path.is_dir():
                raise WPCLIError(f"Cannot access: {site_path}")
            wp = WPCLI(site_path, wp_bin=settings.wp_bin)
            _step(f"WP-CLI: {escape(wp.version())}")
            if not wp.is_installed():
                raise WPCLIError("WordPress not installed / not accessible here.")
            site_url = wp.site_url()
            _step(f"WordPress v{escape(wp.core_version())} ({escape(site_url) or 'no site URL'})")
            op.add_step("wordpress.detect", detail={"site_url": site_url})

            with runtime.http_client() as http:
                generator = GeneratorClient(http, endpoint, user_agent=settings.user_agent)
                _step("Checking API...")
                health = generator.health()
                _ok(
                    f"API is up (status: {escape(health.status)}, "
                    f"version: {escape(health.version)})"
                )
                op.add_step(
                    "api.health",
                    detail={"status": health.status, "version": health.version},
                )

                _step("Reading active plugins...")
                plugins = wp.active_plugins()
                if not plugins:
                    console.print("[yellow]No active plugins found.[/yellow]")
                for plugin in plugins:
                    console.print(f"  - {escape(plugin.name)} (v{escape(plugin.version)})")

                _step("Figuring out active theme...")
                themes = wp.theme_selection(use_child=use_child)
                _describe_themes(wp, themes, use_child)

                domain = site_url
                if not domain:
                    console.print("[yellow]Could not fetch site URL.[/yellow]")
                    domain = "https://example.com"

                console.print()
                console.print("Summary:")
                console.print(f"  Plugins: {len(plugins)}")
                console.print(f"  Themes:  {escape(', '.join(themes.themes))}")
                console.print(f"  Primary: {escape(themes.primary)}")
                console.print(f"  Domain:  {escape(domain)}")
                console.print()

                payload = build_payload(plugins, domain, themes)
                op.add_step("payload.build", detail=payload)
                _step("POST /generate-config payload:")
                console.print_json(data=payload)

                created_dir = not output_dir.exists()
                writer = ArtifactWriter(output_dir, runtime.timestamp)
                try:
                    generated = generator.generate(payload)
                except GeneratorError as exc:
                    error_path = writer.write_raw(f"error-{writer.timestamp}.json", exc.body)
                    console.print(f"Body: {escape(exc.body.strip())}")
                    console.print(
                        f"[yellow]Saved error payload: {escape(str(error_path))}[/yellow]"
                    )
                    op.add_step("config.error-saved", status="error", detail=str(error_path))
                    raise

            config_path = writer.write_raw(
                f"perfmatters-config-{writer.timestamp}.json", generated.body
            )
            _ok(f"Config saved → {escape(str(config_path))}")
            info = generated.processing_info
            if info is None:
                console.print("  (No processing_info provided)")
            else:
                console.print(f"  Plugins processed: {info.plugins_processed}")
                console.print(f"  Theme processed: {info.theme_processed}")
                console.print(f"  Generated at: {escape(info.generated_at)}")
            op.add_step("config.save", detail=str(config_path))

        except FATAL_ERRORS as exc:
            _fail(op, exc)

        _step("Importing into Perfmatters...")
        try:
            wp.import_perfmatters(config_path)
        except WPCLIError as exc:
            op.add_step("config.import", status="error", detail=str(exc))
            _command_error(op, str(exc), rc=ExitCode.FAILURES)
        _ok("Import done.")
        op.add_step("config.import")

        if keep_files:
            op.add_step("cleanup", status="skipped", detail="--keep-files")
        else:
            _step("Cleaning up temp files...")
            writer.discard([config_path])
            if created_dir and not any(output_dir.iterdir()):
                output_dir.rmdir()
            op.add_step("cleanup", detail=str(config_path))
            _ok("Cleanup complete.")

        op.success(
            "Perfmatters configuration generated and imported.",
            changed=1,
            context={"config": str(config_path), "plugins": len(plugins), "domain": domain},
        )


def _describe_themes(wp: WPCLI, selection: ThemeSelection, use_child: bool) -> None:
    child_title = wp.theme_title(selection.child)
    if child_title:
        console.print(f"Active: {escape(child_title)} (slug: {escape(selection.child)})")
    if selection.parent != selection.child:
        parent_title = wp.theme_title(selection.parent)
        if parent_title:
            console.print(f"Parent: {escape(parent_title)} (slug: {escape(selection.parent)})")
    if use_child:
        _step("Primary set to CHILD (by request).")
    else:
        _step("Primary is PARENT (default).")


# ----------------------------------------------------------------------
# config show
# ----------------------------------------------------------------------


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, escape(rendered))

        credentials_state = (
            "present" if runtime.config.credentials_file.is_file() else "missing"
        )
        table.add_row("credentials", credentials_state)
        console.print(table)
        op.success("Rendered configuration table.", changed=0)


__all__ = ["app"]

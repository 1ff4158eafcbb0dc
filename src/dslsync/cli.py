"""CLI entry point for dslsync.

Commands:
    dslsync export          # Download the app's DSL and split it into prompt files
    dslsync update          # Merge prompt files, import and publish the DSL
    dslsync split           # Split the local DSL again (no network)
    dslsync merge           # Merge prompt files into the local DSL (no network)
    dslsync auth status     # Show the cached console credential
    dslsync auth refresh    # Exchange the refresh token for a new credential
    dslsync auth clear      # Delete the cached credential
"""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from dslsync import __version__
from dslsync.artifacts import ArtifactLayout, SplitResult, merge, split
from dslsync.config_manager import ConfigManager, SyncSettings
from dslsync.console_client import ConsoleClient
from dslsync.credential_manager import CredentialCache, CredentialManager
from dslsync.credential_store import CredentialStoreExtractor
from dslsync.dsl_codec import load_document, save_document
from dslsync.exceptions import DslSyncError
from dslsync.sync_driver import SyncDriver, ensure_not_protected

logger = logging.getLogger(__name__)

console = Console()

app_dir_option = click.option(
    "--app-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="DSLSYNC_APP_PATH",
    default=".",
    show_default=True,
    help="Application directory (env: DSLSYNC_APP_PATH)",
)
app_config_option = click.option(
    "--config", "config_path", help="App config file (default: <app-dir>/app.toml)"
)


def build_credential_manager(settings: SyncSettings) -> CredentialManager:
    """Wire the credential manager from settings."""
    store_path = None
    if settings.browser_store_path:
        store_path = Path(settings.browser_store_path).expanduser()
    extractor = CredentialStoreExtractor(store_path=store_path, origin=settings.origin)
    cache = CredentialCache(ConfigManager.get_credential_cache_path(settings))
    return CredentialManager(cache, extractor)


def build_client(settings: SyncSettings) -> ConsoleClient:
    console_url = settings.require_console_url()
    return ConsoleClient(console_url, build_credential_manager(settings))


def _fail(error: Exception) -> None:
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def _print_split_summary(result: SplitResult) -> None:
    if result.prompt_nodes:
        table = Table(title="Prompt artifacts")
        table.add_column("Node ID", style="cyan")
        table.add_column("Artifact", style="green")
        for node_id, name in result.prompt_nodes.items():
            table.add_row(node_id, name)
        console.print(table)
    else:
        click.echo("No llm nodes found.")
    if result.placeholders_created:
        click.echo(f"Created {len(result.placeholders_created)} input placeholder file(s).")


@click.group(context_settings={"help_option_names": ["--help", "-h"]})
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option(
    "--settings", "settings_path", help="Global settings file (default: ~/.dslsync/config.toml)"
)
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool, settings_path: str | None) -> None:
    """dslsync - edit a console workflow's DSL locally.

    \b
    WORKFLOW:
        export   Download DSL/main.yml and split prompts into prompts/
        (edit prompts/*.md and prompts/*.json)
        update   Merge prompts back, import and publish

    \b
    CONFIGURATION:
        Settings file: ~/.dslsync/config.toml
            console_url = "https://cloud.dify.ai"
            browser_store_path = "..."   # optional Chrome Local Storage dir
        App config: <app-dir>/app.toml
            app_id = "<application id>"
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    ctx.ensure_object(dict)
    ctx.obj["settings_path"] = settings_path


def _load_settings(ctx: click.Context) -> SyncSettings:
    return ConfigManager.load_settings(ctx.obj.get("settings_path"))


@main.command(name="export")
@app_dir_option
@app_config_option
@click.pass_context
def export_command(ctx: click.Context, app_dir: Path, config_path: str | None) -> None:
    """Export the application's DSL and split it into prompt files.

    \b
    Examples:
        dslsync export
        dslsync export --app-dir apps/support-bot --config app.test.toml
    """
    try:
        app_dir = app_dir.resolve()
        settings = _load_settings(ctx)
        app_config = ConfigManager.load_app_config(app_dir, config_path)
        driver = SyncDriver(
            app_dir,
            app_config,
            build_client(settings),
            protected_tags=settings.protected_tags,
            app_config_path=config_path,
        )
        result = driver.export()
    except DslSyncError as e:
        _fail(e)
        return

    click.echo(f"Exported {result.dsl_path}")
    _print_split_summary(result.split)


@main.command(name="update")
@app_dir_option
@app_config_option
@click.pass_context
def update_command(ctx: click.Context, app_dir: Path, config_path: str | None) -> None:
    """Merge prompt files into the DSL, import it and publish.

    Refused for protected (production) applications.

    \b
    Examples:
        dslsync update
        dslsync update --app-dir apps/support-bot
    """
    try:
        app_dir = app_dir.resolve()
        settings = _load_settings(ctx)
        app_config = ConfigManager.load_app_config(app_dir, config_path)
        ensure_not_protected(app_dir, app_config, settings.protected_tags)
        driver = SyncDriver(
            app_dir,
            app_config,
            build_client(settings),
            protected_tags=settings.protected_tags,
            app_config_path=config_path,
        )
        result = driver.update()
    except DslSyncError as e:
        _fail(e)
        return

    click.echo(f"Merged {result.prompt_nodes} llm node(s) into {result.dsl_path}")
    click.echo(f"Import: {result.import_result}")
    click.echo(f"Publish: {result.publish_result}")


@main.command(name="split")
@app_dir_option
def split_command(app_dir: Path) -> None:
    """Split the local DSL/main.yml into prompt files (no network)."""
    try:
        app_dir = app_dir.resolve()
        document = load_document(ArtifactLayout(app_dir).dsl_path)
        result = split(document, app_dir)
    except DslSyncError as e:
        _fail(e)
        return

    _print_split_summary(result)


@main.command(name="merge")
@app_dir_option
def merge_command(app_dir: Path) -> None:
    """Merge prompt files into the local DSL/main.yml (no network)."""
    try:
        app_dir = app_dir.resolve()
        dsl_path = ArtifactLayout(app_dir).dsl_path
        document = merge(load_document(dsl_path), app_dir)
        save_document(dsl_path, document)
    except DslSyncError as e:
        _fail(e)
        return

    click.echo(f"Merged {len(document.prompt_nodes())} llm node(s) into {dsl_path}")


@main.group(name="auth")
def auth_group():
    """Manage the cached console credential.

    \b
    SUBCOMMANDS:
        status   Show the cached credential (masked)
        refresh  Exchange the refresh token for a new credential
        clear    Delete the cached credential
    """
    pass


@auth_group.command(name="status")
@click.pass_context
def auth_status(ctx: click.Context) -> None:
    """Show the cached credential without extracting a new one."""
    try:
        settings = _load_settings(ctx)
    except DslSyncError as e:
        _fail(e)
        return

    manager = build_credential_manager(settings)
    credential = manager.cache.load()

    table = Table(title="Console credential")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Cache file", str(manager.cache.cache_path))
    table.add_row("Origin", settings.origin or "-")
    table.add_row("Browser store", str(manager.extractor.store_path))
    if credential:
        masked = credential.to_dict_masked()
        table.add_row("Session token", masked["sessionToken"])
        table.add_row("Refresh token", masked["refreshToken"])
    else:
        table.add_row("Session token", "[yellow]not cached[/yellow]")
    console.print(table)


@auth_group.command(name="refresh")
@click.pass_context
def auth_refresh(ctx: click.Context) -> None:
    """Exchange the refresh token for a new credential."""
    try:
        client = build_client(_load_settings(ctx))
        credential = client.credentials.exchange_refresh_token(client.refresh_url)
    except DslSyncError as e:
        _fail(e)
        return

    click.echo(f"Credential renewed: {credential.to_dict_masked()['sessionToken']}")


@auth_group.command(name="clear")
@click.pass_context
def auth_clear(ctx: click.Context) -> None:
    """Delete the cached credential; the next request re-reads the browser."""
    try:
        manager = build_credential_manager(_load_settings(ctx))
    except DslSyncError as e:
        _fail(e)
        return

    if manager.clear_cache():
        click.echo(f"Removed {manager.cache.cache_path}")
    else:
        click.echo("No cached credential.")


if __name__ == "__main__":
    main()

"""CLI commands for mirror-remote."""

import asyncio
import os
import signal
from datetime import datetime
from functools import partial
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mirror_remote import __logo__, __version__

app = typer.Typer(
    name="mirror-remote",
    help=f"{__logo__} mirror-remote - control surface for a running mirror display",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} mirror-remote v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """mirror-remote - control surface for a running mirror display."""
    pass


def _build_store(settings):
    from mirror_remote.config.store import ConfigStore

    return ConfigStore(
        settings.mirror.resolve(settings.mirror.config_path),
        backup_history_size=settings.mirror.backup_history_size,
    )


# ============================================================================
# Config Commands
# ============================================================================


config_app = typer.Typer(help="Inspect the mirror config managed by mirror-remote")
app.add_typer(config_app, name="config")


@config_app.command("check")
def config_check(
    settings_file: Path | None = typer.Option(None, "--settings", help="Service settings JSON path"),
    mirror_config: Path | None = typer.Option(None, "--mirror-config", help="Mirror config path override"),
):
    """Validate the mirror config file and list its modules."""
    from mirror_remote.config.document import ConfigDocument
    from mirror_remote.config.loader import load_config
    from mirror_remote.config.store import parse_config_text

    settings = load_config(settings_file.expanduser() if settings_file else None)
    path = (mirror_config or settings.mirror.resolve(settings.mirror.config_path)).expanduser()
    if not path.exists():
        console.print(f"[red]Mirror config not found:[/red] {path}")
        raise typer.Exit(2)

    try:
        doc = ConfigDocument.model_validate(parse_config_text(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as exc:
        console.print(f"[red]Mirror config invalid:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    console.print("[green]✓[/green] Mirror config validation passed")
    console.print(f"path={path}")
    console.print(f"modules={len(doc.modules)}")
    for name in doc.module_names():
        console.print(f"  - {name}")


@config_app.command("backups")
def config_backups(
    settings_file: Path | None = typer.Option(None, "--settings", help="Service settings JSON path"),
):
    """List backup rotation slots and the slot the next save will use."""
    from mirror_remote.config.loader import load_config

    settings = load_config(settings_file.expanduser() if settings_file else None)
    store = _build_store(settings)

    table = Table(title=f"Backups of {store.config_path}")
    table.add_column("Slot", style="cyan")
    table.add_column("Path")
    table.add_column("Modified")
    for item in store.list_backups():
        mtime = item["mtime"]
        modified = datetime.fromtimestamp(mtime).isoformat(timespec="seconds") if mtime else "[dim]never[/dim]"
        table.add_row(str(item["slot"]), item["path"], modified)
    console.print(table)

    slot = store.select_backup_slot()
    if slot is None:
        console.print("[red]No backup slot available; saves would be refused.[/red]")
        raise typer.Exit(1)
    console.print(f"next save backs up into slot {slot}")


# ============================================================================
# Serve
# ============================================================================


@app.command()
def serve(
    settings_file: Path | None = typer.Option(None, "--settings", help="Service settings JSON path"),
    host: str | None = typer.Option(None, "--host", help="Control API host override"),
    port: int | None = typer.Option(None, "--port", help="Control API port override"),
    channel: str | None = typer.Option(None, "--channel", help="Channel override: websocket/mock"),
    channel_port: int | None = typer.Option(None, "--channel-port", help="Mirror channel port override"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs"),
):
    """Start the mirror channel, runtime and HTTP control surface."""
    from loguru import logger

    from mirror_remote.api.actions import ActionDispatcher
    from mirror_remote.api.control_server import RemoteControlServer
    from mirror_remote.channel import MockChannel, WebSocketChannel
    from mirror_remote.config.loader import load_config
    from mirror_remote.extensions import ExtensionCatalog, extension_help_url
    from mirror_remote.runtime import RemoteRuntimeCore
    from mirror_remote.web import FALLBACK_LANGUAGE, STATIC_DIR, TemplateRenderer

    settings = load_config(settings_file.expanduser() if settings_file else None)
    if logs:
        logger.enable("mirror_remote")
    else:
        logger.disable("mirror_remote")

    if host:
        settings.server.host = host
    if port:
        settings.server.port = port
    if channel:
        settings.channel.adapter = channel
    if channel_port:
        settings.channel.port = channel_port

    mirror = settings.mirror
    store = _build_store(settings)
    store.load_or_default()

    catalog = ExtensionCatalog(
        extensions_dir=mirror.resolve(mirror.extensions_dir),
        default_extensions_dir=mirror.resolve(mirror.default_extensions_dir),
        catalog_path=Path(mirror.modules_catalog_path).expanduser()
        if mirror.modules_catalog_path
        else STATIC_DIR / "modules.json",
        default_modules=mirror.default_modules,
        mirror_repo_url=mirror.mirror_repo_url,
    )
    catalog.scan()

    renderer = TemplateRenderer(
        template_path=Path(mirror.template_path).expanduser() if mirror.template_path else STATIC_DIR / "remote.html",
        translations_dir=Path(mirror.translations_dir).expanduser()
        if mirror.translations_dir
        else STATIC_DIR / "translations",
    )
    renderer.load_template()
    renderer.load_translation(FALLBACK_LANGUAGE)

    if settings.channel.adapter.lower() == "mock":
        notification_channel = MockChannel()
    else:
        notification_channel = WebSocketChannel(
            host=settings.channel.host,
            port=settings.channel.port,
            require_token=settings.channel.require_token,
            token=settings.channel.token,
        )

    runtime = RemoteRuntimeCore(
        channel=notification_channel,
        settings_path=Path(mirror.settings_path).expanduser(),
        waiter_timeout_ms=settings.waiter.timeout_ms,
        renderer=renderer,
    )
    margin_s = settings.waiter.response_margin_ms / 1000.0
    dispatcher = ActionDispatcher(
        runtime=runtime,
        commands=settings.commands,
        catalog=catalog,
        extensions_dir=mirror.resolve(mirror.extensions_dir),
        wait_margin_s=margin_s,
    )
    runtime.attach_dispatcher(dispatcher)
    help_resolver = partial(
        extension_help_url,
        extensions_dir=mirror.resolve(mirror.extensions_dir),
        mirror_root=mirror.root_path,
        default_modules=mirror.default_modules,
        mirror_repo_url=mirror.mirror_repo_url,
    )

    console.print(f"{__logo__} mirror-remote v{__version__}")
    console.print(f"mirror config={store.config_path} modules={len(store.current.modules)}")
    console.print(
        f"extensions available={len(catalog.available)} installed={len(catalog.installed)}"
    )
    console.print(
        f"channel={settings.channel.adapter} ws://{settings.channel.host}:{settings.channel.port}"
    )
    console.print(f"control-api=http://{settings.server.host}:{settings.server.port}/remote.html")

    async def run() -> None:
        control: RemoteControlServer | None = None
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def _request_stop() -> None:
            loop.call_soon_threadsafe(stop_event.set)

        if os.name != "nt":
            signal.signal(signal.SIGINT, lambda *_: _request_stop())
            signal.signal(signal.SIGTERM, lambda *_: _request_stop())

        try:
            await runtime.start()
            control = RemoteControlServer(
                host=settings.server.host,
                port=settings.server.port,
                runtime=runtime,
                dispatcher=dispatcher,
                store=store,
                loop=loop,
                catalog=catalog,
                renderer=renderer,
                help_resolver=help_resolver,
                max_request_body_bytes=settings.server.max_request_body_bytes,
                wait_timeout_s=settings.waiter.timeout_ms / 1000.0 + margin_s,
                auth_enabled=settings.server.auth.enabled,
                auth_token=settings.server.auth.token,
            )
            control.start()
            await stop_event.wait()
        except KeyboardInterrupt:
            pass
        finally:
            if control:
                control.stop()
            await runtime.stop()

    asyncio.run(run())


if __name__ == "__main__":
    app()

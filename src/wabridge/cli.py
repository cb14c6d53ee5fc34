"""CLI module for wabridge."""

from __future__ import annotations

import asyncio
from typing import Optional

try:
    import click
    from rich.console import Console
    from rich.panel import Panel
    from rich.progress import Progress, SpinnerColumn, TextColumn
except ImportError:
    raise ImportError("Please install CLI dependencies: pip install click rich")

from wabridge import __version__
from wabridge.client import Client
from wabridge.config import CONFIG
from wabridge.events import (
    AuthenticatedEvent,
    DisconnectedEvent,
    MessageAckEvent,
    MessageReceivedEvent,
    PairingCodeReceivedEvent,
    QrReceivedEvent,
    ReadyEvent,
    StateChangedEvent,
)
from wabridge.logging_config import setup_logging
from wabridge.options import ClientOptions

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="wabridge")
def cli():
    """wabridge - session bridge for the WhatsApp Web client over CDP."""
    pass


@cli.command()
@click.option("--cdp-url", default=None, help="CDP endpoint of a running browser (default: WABRIDGE_CDP_URL)")
@click.option("--phone", default=None, help="Link with a pairing code for this phone number instead of a QR code")
@click.option("--bundle-dir", type=click.Path(file_okay=False), default=None, help="Directory holding the cached bundle")
@click.option("--auth-timeout", type=float, default=None, help="Seconds to wait for the authentication state")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def connect(
    cdp_url: Optional[str],
    phone: Optional[str],
    bundle_dir: Optional[str],
    auth_timeout: Optional[float],
    verbose: bool,
):
    """Connect to the web client and print lifecycle events until interrupted.

    Challenges (QR codes or pairing codes), state changes and incoming
    messages are printed as they arrive.

    Example:
        >>> wabridge connect --cdp-url http://localhost:9222
        >>> wabridge connect --phone 5511999999999 -v
    """
    setup_logging(log_level="debug" if verbose else None, force_setup=True)

    overrides = {"cdp_url": cdp_url, "bundle_dir": bundle_dir, "auth_timeout": auth_timeout}
    if phone:
        overrides.update(linking_method="phone", phone_number=phone)
    try:
        options = ClientOptions.from_env(**overrides)
    except ValueError as e:
        raise click.BadParameter(str(e))
    if not options.cdp_url:
        raise click.UsageError("No CDP endpoint: pass --cdp-url or set WABRIDGE_CDP_URL")

    console.print(Panel.fit(
        f"[bold blue]wabridge[/bold blue]\n"
        f"Browser: {options.cdp_url}\n"
        f"Linking: {options.linking_method}",
        title="Connecting",
    ))

    async def execute():
        client = Client(options)
        stop = asyncio.Event()

        def show_qr(event: QrReceivedEvent):
            console.print(Panel.fit(event.qr, title="Scan this QR code"))

        def show_code(event: PairingCodeReceivedEvent):
            console.print(Panel.fit(f"[bold]{event.code}[/bold]", title="Enter this code on your phone"))

        def show_state(event: StateChangedEvent):
            console.print(f"[cyan]{event.previous_state.value} -> {event.state.value}[/cyan]")

        def show_authenticated(event: AuthenticatedEvent):
            console.print("[green]Authenticated[/green]")

        def show_ready(event: ReadyEvent):
            console.print("[bold green]Ready[/bold green]")

        def show_message(event: MessageReceivedEvent):
            sender = event.message.get("from") or event.message.get("author") or "?"
            console.print(f"[bold]{sender}[/bold]: {event.message.get('body', '')}")

        def show_ack(event: MessageAckEvent):
            message_id = event.message.get("id")
            console.print(f"[dim]ack {event.ack} for {message_id}[/dim]")

        def show_disconnected(event: DisconnectedEvent):
            console.print(f"[yellow]Disconnected ({event.reason})[/yellow]")
            stop.set()

        client.on("qr", show_qr)
        client.on("code", show_code)
        client.on("change_state", show_state)
        client.on("authenticated", show_authenticated)
        client.on("ready", show_ready)
        client.on("message", show_message)
        client.on("message_ack", show_ack)
        client.on("disconnected", show_disconnected)

        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task(description="Initializing session...", total=None)
                result = await client.initialize()

            if not result:
                console.print(f"[red]Initialization failed during {result.stage}: {result.error}[/red]")
                return

            await stop.wait()
        finally:
            await client.destroy()

    try:
        asyncio.run(execute())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")


@cli.command()
def init():
    """Create the configuration file and show where wabridge looks for things."""
    options = CONFIG.load_config()
    console.print("[blue]Initializing wabridge configuration...[/blue]")

    bundle_dir = CONFIG.BUNDLE_DIR
    bundle_files = sorted(p.name for p in bundle_dir.glob("*.js")) if bundle_dir.is_dir() else []
    bundle_status = ", ".join(bundle_files) if bundle_files else "[yellow]no bundle files[/yellow]"

    console.print(Panel.fit(
        f"Config file: {CONFIG.CONFIG_FILE}\n"
        f"Bundle dir: {bundle_dir} ({bundle_status})\n"
        f"Web version cache: {CONFIG.WEB_CACHE_DIR}\n"
        f"CDP URL: {options.get('cdp_url') or '[yellow]not set[/yellow]'}",
        title="Configuration",
    ))


@cli.command()
def version():
    """Print the wabridge version."""
    console.print(f"wabridge {__version__}")


def main():
    """Main entry point for CLI.

    The CLI provides the following commands:
        - connect: Connect to the web client and stream lifecycle events
        - init: Create configuration and show paths
        - version: Print the version
    """
    cli()


if __name__ == "__main__":
    main()

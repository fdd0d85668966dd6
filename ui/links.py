from datetime import datetime, timezone

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from links.errors import UpstreamUnavailable, ValidationError
from links.manager import TokenManager
from ui.prompts import prompt_storage_key, prompt_token

console = Console()


def create_link_flow(manager: TokenManager) -> None:
    console.print()
    key = prompt_storage_key()

    try:
        token = manager.create(key)
    except UpstreamUnavailable as e:
        console.print(f"[red]Failed to create link:[/red] {e}\n")
        return

    console.print(
        Panel(
            f"[bold cyan]{manager.build_link(token)}[/bold cyan]",
            title="[bold]Download Link[/bold]",
            subtitle=(
                f"[dim]{key}  ·  {_fmt_duration(manager.ttl_seconds)}"
                f"  ·  {manager.max_downloads} download(s)[/dim]"
            ),
            border_style="green",
            padding=(1, 4),
        )
    )
    console.print("[dim]Send this link to the buyer.[/dim]\n")


def inspect_link_flow(manager: TokenManager) -> None:
    console.print()
    token = prompt_token()

    try:
        status = manager.inspect(token)
    except ValidationError:
        console.print("[red]That does not look like a download token.[/red]\n")
        return
    except UpstreamUnavailable as e:
        console.print(f"[red]Error reading link:[/red] {e}\n")
        return

    if status is None:
        console.print("[yellow]Link not found or already expired.[/yellow]\n")
        return

    record = status.record
    created = datetime.fromtimestamp(record.created_at / 1000, tz=timezone.utc)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Key", record.storage_reference or "[red](missing)[/red]")
    if status.exhausted:
        table.add_row("Downloads left", "[red]0 (exhausted)[/red]")
    else:
        table.add_row("Downloads left", f"{record.remaining_uses} of {manager.max_downloads}")
    table.add_row("Created", created.strftime("%Y-%m-%d %H:%M:%S UTC"))
    expires = _fmt_duration(status.expires_in) if status.expires_in is not None else "never"
    table.add_row("Expires in", expires)

    console.print(
        Panel(
            table,
            title=f"[bold cyan]Link[/bold cyan]  [dim]{record.token[:8]}…[/dim]",
            border_style="red" if status.exhausted else "cyan",
            padding=(1, 2),
        )
    )
    console.print()


def _fmt_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    else:
        return f"{seconds // 3600}h {seconds % 3600 // 60}m"

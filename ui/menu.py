from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from links.manager import RedemptionMode, TokenManager
from ui.links import create_link_flow, inspect_link_flow

console = Console()

MENU_OPTIONS = {
    "1": ("Create", "Mint a download link for an S3 key"),
    "2": ("Inspect", "Show remaining downloads and lifetime of a link"),
    "3": ("Exit", "Quit the admin console"),
}


def show_admin_menu(manager: TokenManager) -> None:
    while True:
        _render_menu(manager)
        choice = Prompt.ask("Select an option", choices=list(MENU_OPTIONS.keys()))

        if choice == "1":
            create_link_flow(manager)
        elif choice == "2":
            inspect_link_flow(manager)
        elif choice == "3":
            console.print("\n[cyan]Goodbye![/cyan]\n")
            break


def _render_menu(manager: TokenManager) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan bold", width=4)
    table.add_column("Option", style="white")
    table.add_column("Description", style="dim")

    for key, (name, desc) in MENU_OPTIONS.items():
        table.add_row(f"[{key}]", name, desc)

    if manager.mode is RedemptionMode.DEGRADED:
        mode = "[yellow]degraded[/yellow]"
    else:
        mode = "[green]atomic[/green]"
    panel = Panel(
        table,
        title=f"[bold cyan]dlgate admin[/bold cyan]  [dim]redemption:[/dim] {mode}",
        border_style="cyan",
        padding=(1, 2),
    )
    console.print(panel)

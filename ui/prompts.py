from rich.console import Console
from rich.prompt import Prompt

console = Console()


def prompt_storage_key() -> str:
    key = Prompt.ask("[cyan]S3 object key[/cyan]").strip()
    while not key:
        console.print("[red]Key cannot be empty.[/red]")
        key = Prompt.ask("[cyan]S3 object key[/cyan]").strip()
    return key


def prompt_token() -> str:
    """Accept either a bare token or a full download link."""
    raw = Prompt.ask("[cyan]Token or download link[/cyan]").strip()
    return raw.rstrip("/").rsplit("/dl/", 1)[-1]

import argparse
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from config import ConfigError, load_config, run_setup_wizard, save_config, validate_config
from links.manager import RedemptionMode, TokenManager
from links.retrieval import RetrievalCoordinator
from links.token_store import create_store
from storage.s3_client import S3Client
from ui.menu import show_admin_menu
from web.app import create_app

console = Console()
logger = logging.getLogger("dlgate")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="dlgate", description="Usage-limited download links")
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "admin", "setup"],
        help="serve the HTTP endpoints (default), open the admin console, or run setup",
    )
    args = parser.parse_args(argv)

    if args.command == "setup":
        save_config(run_setup_wizard())
        console.print("\n[green]Configuration saved to ~/.dlgate/config.json[/green]\n")
        return

    config = load_config()
    problems = validate_config(config)
    if problems:
        for problem in problems:
            console.print(f"[red]Config error:[/red] {problem}")
        console.print("[dim]Run [cyan]dlgate setup[/cyan] or fix the environment.[/dim]")
        sys.exit(1)

    configure_logging(config["log_level"])

    store = create_store(config)
    try:
        if not store.ping():
            console.print(f"[red]Cannot reach token store at {config['redis_url']}.[/red]")
            sys.exit(1)

        try:
            manager = TokenManager.from_config(store, config)
        except ConfigError as e:
            console.print(f"[red]Config error:[/red] {e}")
            sys.exit(1)

        s3_client = S3Client(config)
        if not s3_client.verify_connection():
            # Presigning works offline; a bad bucket only fails at download time
            logger.warning("Bucket %s could not be verified", config["bucket_name"])

        _print_banner(config, manager)

        if args.command == "admin":
            show_admin_menu(manager)
            return

        coordinator = RetrievalCoordinator(manager, s3_client, config["presigned_url_expires"])
        app = create_app(manager, coordinator)
        app.run(host=config["host"], port=config["port"], threaded=True)
    finally:
        store.close()
        logger.debug("Token store closed")


def _print_banner(config: dict, manager: TokenManager) -> None:
    if manager.mode is RedemptionMode.DEGRADED:
        mode = "[bold yellow]DEGRADED (non-atomic)[/bold yellow]"
    else:
        mode = "[green]atomic[/green]"
    console.print(
        Panel.fit(
            "[bold cyan]dlgate[/bold cyan]\n[dim]Usage-limited download links[/dim]\n\n"
            f"Bucket: [cyan]{config['bucket_name']}[/cyan]\n"
            f"Links: {config['max_downloads']} download(s), {config['token_ttl']}s lifetime\n"
            f"Redemption: {mode}",
            border_style="yellow" if manager.mode is RedemptionMode.DEGRADED else "cyan",
            padding=(1, 4),
        )
    )


if __name__ == "__main__":
    main()

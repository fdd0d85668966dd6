import json
import os
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.prompt import Prompt

CONFIG_DIR = Path.home() / ".dlgate"
CONFIG_FILE = CONFIG_DIR / "config.json"

REDEMPTION_MODES = ("auto", "atomic", "degraded")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULTS = {
    "redis_url": "redis://127.0.0.1:6379",
    "redis_timeout": 5,
    "bucket_name": "example-bucket",
    "aws_region": "us-east-1",
    "s3_endpoint": "",
    "s3_force_path_style": False,
    "aws_access_key": "",
    "aws_secret_key": "",
    "presigned_url_expires": 60,
    "token_ttl": 1800,
    "max_downloads": 3,
    "token_bytes": 32,
    "public_base_url": "http://localhost:3000",
    "redemption_mode": "auto",
    "host": "0.0.0.0",
    "port": 3000,
    "log_level": "INFO",
}

# config key -> environment variable
ENV_VARS = {
    "redis_url": "REDIS_URL",
    "redis_timeout": "REDIS_TIMEOUT",
    "bucket_name": "S3_BUCKET",
    "aws_region": "AWS_REGION",
    "s3_endpoint": "S3_ENDPOINT",
    "s3_force_path_style": "S3_FORCE_PATH_STYLE",
    "aws_access_key": "AWS_ACCESS_KEY_ID",
    "aws_secret_key": "AWS_SECRET_ACCESS_KEY",
    "presigned_url_expires": "PRESIGNED_URL_EXPIRES",
    "token_ttl": "TOKEN_TTL",
    "max_downloads": "MAX_DOWNLOADS",
    "token_bytes": "TOKEN_BYTES",
    "public_base_url": "PUBLIC_BASE_URL",
    "redemption_mode": "REDEMPTION_MODE",
    "host": "HOST",
    "port": "PORT",
    "log_level": "LOG_LEVEL",
}

_REQUIRED_KEYS = {"redis_url", "bucket_name", "aws_region", "public_base_url"}
_POSITIVE_INT_KEYS = {"redis_timeout", "presigned_url_expires", "token_ttl", "max_downloads", "port"}
_MIN_TOKEN_BYTES = 32

console = Console()


class ConfigError(Exception):
    """Raised when the loaded configuration cannot be used to start the service."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


def load_config(env: dict | None = None) -> dict:
    """Build the effective config: defaults, then the JSON file, then the environment.

    ``env`` defaults to ``os.environ`` after loading a ``.env`` file if present.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    config = dict(DEFAULTS)
    config.update(load_config_file() or {})

    for key, var in ENV_VARS.items():
        raw = env.get(var)
        if raw is not None and raw != "":
            config[key] = raw

    return _coerce(config)


def load_config_file() -> dict | None:
    if not CONFIG_FILE.exists():
        return None
    try:
        with open(CONFIG_FILE) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return None
    return data if isinstance(data, dict) else None


def validate_config(config: dict) -> list[str]:
    """Return a list of problems with ``config``; an empty list means it is usable."""
    if not isinstance(config, dict):
        return ["config must be a mapping"]

    problems = []
    for key in sorted(_REQUIRED_KEYS):
        if not str(config.get(key, "")).strip():
            problems.append(f"{key} is required")

    for key in sorted(_POSITIVE_INT_KEYS):
        value = config.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            problems.append(f"{key} must be a positive integer")

    token_bytes = config.get("token_bytes")
    if not isinstance(token_bytes, int) or token_bytes < _MIN_TOKEN_BYTES:
        problems.append(f"token_bytes must be at least {_MIN_TOKEN_BYTES}")

    expires = config.get("presigned_url_expires")
    ttl = config.get("token_ttl")
    if isinstance(expires, int) and isinstance(ttl, int) and expires >= ttl:
        problems.append("presigned_url_expires must be shorter than token_ttl")

    if config.get("redemption_mode") not in REDEMPTION_MODES:
        problems.append(f"redemption_mode must be one of {', '.join(REDEMPTION_MODES)}")

    if str(config.get("log_level", "")).upper() not in LOG_LEVELS:
        problems.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")

    return problems


def save_config(config: dict) -> None:
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    with open(CONFIG_FILE, "w") as f:
        json.dump(config, f, indent=2)


def run_setup_wizard() -> dict:
    console.print("[bold]dlgate Configuration Setup[/bold]\n")
    console.print(
        "Values are saved to [cyan]~/.dlgate/config.json[/cyan]. "
        "Environment variables still take precedence at runtime.\n"
    )

    redis_url = Prompt.ask("[cyan]Redis URL[/cyan]", default=DEFAULTS["redis_url"])
    bucket = Prompt.ask("[cyan]S3 Bucket Name[/cyan]", default=DEFAULTS["bucket_name"])
    region = Prompt.ask("[cyan]AWS Region[/cyan]", default=DEFAULTS["aws_region"])
    endpoint = Prompt.ask(
        "[cyan]S3 endpoint[/cyan] [dim](blank for AWS)[/dim]", default=""
    ).strip()
    path_style = Prompt.ask("Use path-style addressing?", choices=["y", "n"], default="n")
    base_url = Prompt.ask("[cyan]Public base URL[/cyan]", default=DEFAULTS["public_base_url"])
    ttl = Prompt.ask("[cyan]Link lifetime (seconds)[/cyan]", default=str(DEFAULTS["token_ttl"]))
    max_downloads = Prompt.ask(
        "[cyan]Downloads per link[/cyan]", default=str(DEFAULTS["max_downloads"])
    )

    return _coerce({
        "redis_url": redis_url.strip(),
        "bucket_name": bucket.strip(),
        "aws_region": region.strip(),
        "s3_endpoint": endpoint,
        "s3_force_path_style": path_style == "y",
        "public_base_url": base_url.strip(),
        "token_ttl": ttl.strip(),
        "max_downloads": max_downloads.strip(),
    })


def _coerce(config: dict) -> dict:
    """Normalize raw string values from files and the environment into typed values."""
    result = dict(config)
    for key in _POSITIVE_INT_KEYS | {"token_bytes"}:
        if key in result:
            try:
                result[key] = int(result[key])
            except (TypeError, ValueError):
                pass  # left as-is; validate_config reports it
    if "s3_force_path_style" in result:
        result["s3_force_path_style"] = _as_bool(result["s3_force_path_style"])
    if "redemption_mode" in result:
        result["redemption_mode"] = str(result["redemption_mode"]).strip().lower()
    if "public_base_url" in result:
        result["public_base_url"] = str(result["public_base_url"]).rstrip("/")
    return result


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")

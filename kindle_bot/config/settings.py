# kindle_bot/config/settings.py

"""Central configuration for the kindle_bot checkers."""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from dotenv import load_dotenv

load_dotenv()


class ConfigError(Exception):
    """Raised when required configuration is missing or malformed."""


class Settings:
    """Static defaults shared by every checker."""

    # --- Retry ---
    MAX_RETRIES: int = 5                # Attempts per PA-API call
    INITIAL_BACKOFF: float = 2.0        # Seconds before the 2nd attempt
    MAX_BACKOFF: float = 30.0           # Absolute cap on a single wait
    MAX_JITTER: float = 0.5             # Upper bound (exclusive) of jitter
    POST_SUCCESS_DELAY: float = 2.0     # Courtesy pause after a good call

    # --- Scheduling ---
    CYCLE_DAYS: float = 1.0             # Slot scheduler cycle length
    SEGMENT_SIZE: int = 10              # Items per sale-checker run
    GET_ITEMS_BATCH_LIMIT: int = 10     # PA-API hard limit per GetItems

    # --- Business rules ---
    SALE_THRESHOLD: int = 151           # Yen drop / points for a "sale"
    POINT_PERCENT: int = 20             # Point ratio for a "sale"
    PRICE_CHANGE_AMOUNT: int = 100      # Yen delta worth announcing
    KINDLE_SEARCH_PRICE_MARGIN: float = 20000.0
    KINDLE_BINDING: str = "Kindle版"
    TIMEZONE: str = "JST"
    UTC_OFFSET_HOURS: int = 9          # JST has no DST

    # --- PA-API ---
    PAAPI_HOST: str = "webservices.amazon.co.jp"
    PAAPI_REGION: str = "us-west-2"
    PAAPI_MARKETPLACE: str = "www.amazon.co.jp"
    PAAPI_TIMEOUT: int = 15
    KINDLE_BROWSE_NODE_ID: str = "2293143051"
    KINDLE_MIN_PRICE: int = 22100

    # --- HTTP ---
    IMPERSONATE_BROWSER: str = "chrome131"
    HTTP_TIMEOUT: int = 15

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    LOGS_DIR: Path = BASE_DIR / "logs"
    LAMBDA_LOGS_DIR: Path = Path("/tmp/logs")
    LOCAL_STORAGE_DIR: Path = BASE_DIR / "data"

    # --- Checker registry ---
    AVAILABLE_CHECKERS: list[dict[str, str]] = [
        {
            "id": "sale-checker",
            "label": "Sale Checker",
            "runner": "kindle_bot.checkers.sale_checker.SaleChecker",
        },
        {
            "id": "new-release-checker",
            "label": "New Release Checker",
            "runner": (
                "kindle_bot.checkers.new_release_checker"
                ".NewReleaseChecker"
            ),
        },
        {
            "id": "paper-to-kindle-checker",
            "label": "Paper To Kindle Checker",
            "runner": (
                "kindle_bot.checkers.paper_to_kindle_checker"
                ".PaperToKindleChecker"
            ),
        },
        {
            "id": "release-notifier",
            "label": "Release Notifier",
            "runner": (
                "kindle_bot.checkers.release_notifier.ReleaseNotifier"
            ),
        },
    ]


def is_lambda(environ: Mapping[str, str] | None = None) -> bool:
    """Return True when running inside AWS Lambda."""
    env = os.environ if environ is None else environ
    return bool(env.get("AWS_LAMBDA_FUNCTION_NAME"))


@dataclass(frozen=True)
class EnvConfig:
    """Deployment configuration, built once per process at entry."""

    storage_backend: str = "local"
    local_storage_dir: Path = Settings.LOCAL_STORAGE_DIR
    s3_bucket_name: str = ""
    s3_region: str = "ap-northeast-1"

    unprocessed_key: str = "unprocessed.json"
    paper_books_key: str = "paper_books.json"
    authors_key: str = "authors.json"
    excluded_title_keywords_key: str = "excluded_title_keywords.json"
    notified_key: str = "notified.json"
    upcoming_key: str = "upcoming.json"
    prev_index_new_release_key: str = "prev_index_new_release.txt"
    prev_index_paper_to_kindle_key: str = (
        "prev_index_paper_to_kindle.txt"
    )
    prev_index_sale_checker_key: str = "prev_index_sale_checker.txt"
    checker_config_key: str = "checker_config.json"

    amazon_partner_tag: str = ""
    amazon_access_key: str = ""
    amazon_secret_key: str = ""

    mastodon_server: str = ""
    mastodon_access_token: str = ""

    slack_bot_token: str = ""
    slack_notice_channel: str = ""
    slack_error_channel: str = ""
    slack_mention_user: str = ""

    github_token: str = ""
    metrics_enabled: bool = False
    logs_dir: Path = Settings.LOGS_DIR


# Environment variable -> EnvConfig field
_ENV_FIELDS: dict[str, str] = {
    "STORAGE_BACKEND": "storage_backend",
    "LOCAL_STORAGE_DIR": "local_storage_dir",
    "S3_BUCKET_NAME": "s3_bucket_name",
    "S3_REGION": "s3_region",
    "S3_UNPROCESSED_OBJECT_KEY": "unprocessed_key",
    "S3_PAPER_BOOKS_OBJECT_KEY": "paper_books_key",
    "S3_AUTHORS_OBJECT_KEY": "authors_key",
    "S3_EXCLUDED_TITLE_KEYWORDS_OBJECT_KEY": (
        "excluded_title_keywords_key"
    ),
    "S3_NOTIFIED_OBJECT_KEY": "notified_key",
    "S3_UPCOMING_OBJECT_KEY": "upcoming_key",
    "S3_PREV_INDEX_NEW_RELEASE_OBJECT_KEY": "prev_index_new_release_key",
    "S3_PREV_INDEX_PAPER_TO_KINDLE_OBJECT_KEY": (
        "prev_index_paper_to_kindle_key"
    ),
    "S3_PREV_INDEX_SALE_CHECKER_OBJECT_KEY": (
        "prev_index_sale_checker_key"
    ),
    "S3_CHECKER_CONFIG_OBJECT_KEY": "checker_config_key",
    "AMAZON_PARTNER_TAG": "amazon_partner_tag",
    "AMAZON_ACCESS_KEY": "amazon_access_key",
    "AMAZON_SECRET_KEY": "amazon_secret_key",
    "MASTODON_SERVER": "mastodon_server",
    "MASTODON_ACCESS_TOKEN": "mastodon_access_token",
    "SLACK_BOT_TOKEN": "slack_bot_token",
    "SLACK_NOTICE_CHANNEL": "slack_notice_channel",
    "SLACK_ERROR_CHANNEL": "slack_error_channel",
    "SLACK_MENTION_USER": "slack_mention_user",
    "GITHUB_TOKEN": "github_token",
    "METRICS_ENABLED": "metrics_enabled",
    "LOGS_DIR": "logs_dir",
}

_PATH_FIELDS = frozenset({"local_storage_dir", "logs_dir"})
_BOOL_FIELDS = frozenset({"metrics_enabled"})


def _coerce(field_name: str, raw: str) -> Any:
    """Convert a raw string to the type of the target field."""
    if field_name in _PATH_FIELDS:
        return Path(raw)
    if field_name in _BOOL_FIELDS:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return raw


def fetch_ssm_parameters(
    prefix: str,
    with_decryption: bool,
    client: Any = None,
) -> dict[str, str]:
    """Read every parameter under *prefix* from SSM Parameter Store.

    Keys are returned with the prefix stripped, e.g.
    ``/kindle_bot/plain/S3_BUCKET_NAME`` becomes ``S3_BUCKET_NAME``.
    """
    if client is None:
        client = boto3.client("ssm")

    params: dict[str, str] = {}
    kwargs: dict[str, Any] = {
        "Path": prefix,
        "WithDecryption": with_decryption,
        "Recursive": True,
    }
    while True:
        response = client.get_parameters_by_path(**kwargs)
        for param in response.get("Parameters", []):
            key = str(param["Name"]).removeprefix(prefix + "/")
            params[key] = str(param["Value"])
        next_token = response.get("NextToken")
        if not next_token:
            break
        kwargs["NextToken"] = next_token
    return params


def load_env_config(
    environ: Mapping[str, str] | None = None,
    ssm_client: Any = None,
) -> EnvConfig:
    """Build the :class:`EnvConfig` for this process.

    Values come from the environment (``.env`` is loaded at import).
    Inside Lambda, SSM parameters under ``/kindle_bot/plain`` and
    ``/kindle_bot/secure`` are merged on top.

    Raises:
        ConfigError: S3 storage selected without a bucket name, or an
            unknown storage backend.
    """
    env: dict[str, str] = dict(
        os.environ if environ is None else environ
    )
    if is_lambda(env):
        env.update(
            fetch_ssm_parameters(
                "/kindle_bot/plain", False, ssm_client
            )
        )
        env.update(
            fetch_ssm_parameters(
                "/kindle_bot/secure", True, ssm_client
            )
        )
        env.setdefault("STORAGE_BACKEND", "s3")
        env.setdefault("METRICS_ENABLED", "true")
        env.setdefault("LOGS_DIR", str(Settings.LAMBDA_LOGS_DIR))

    values: dict[str, Any] = {}
    for env_name, field_name in _ENV_FIELDS.items():
        raw = env.get(env_name)
        if raw:
            values[field_name] = _coerce(field_name, raw)

    config = EnvConfig(**values)
    if config.storage_backend not in ("local", "s3"):
        raise ConfigError(
            f"Unknown STORAGE_BACKEND: {config.storage_backend!r}"
        )
    if config.storage_backend == "s3" and not config.s3_bucket_name:
        raise ConfigError("S3_BUCKET_NAME is required for S3 storage")
    return config

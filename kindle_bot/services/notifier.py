# kindle_bot/services/notifier.py

"""Outbound notifications: Slack, Mastodon and GitHub Gist summaries."""

import logging
from typing import Any

from curl_cffi import requests as curl_requests

from kindle_bot.config.settings import EnvConfig, Settings
from kindle_bot.models.author import Author
from kindle_bot.models.book import KindleBook

logger = logging.getLogger("kindle_bot.notifier")

_SLACK_POST_URL = "https://slack.com/api/chat.postMessage"
_GIST_URL = "https://api.github.com/gists/{gist_id}"


class NotificationError(Exception):
    """A notification endpoint rejected the message."""


class Notifier:
    """Posts announcements and error alerts for one checker.

    Delivery failures are logged and never propagate; a failed
    announcement is reported to the error channel instead.
    """

    def __init__(
        self,
        config: EnvConfig,
        checker_name: str,
        session: curl_requests.Session | None = None,
    ) -> None:
        self.config = config
        self.checker_name = checker_name
        self.session = session or curl_requests.Session(
            impersonate=Settings.IMPERSONATE_BROWSER
        )

    # ── Transport ────────────────────────────────────────

    def _post_slack(self, channel: str, text: str) -> None:
        if not self.config.slack_bot_token or not channel:
            logger.info("Slack not configured, message: %s", text)
            return
        resp = self.session.post(
            _SLACK_POST_URL,
            json={"channel": channel, "text": text},
            headers={
                "Authorization": f"Bearer {self.config.slack_bot_token}",
                "Content-Type": "application/json; charset=utf-8",
            },
            timeout=Settings.HTTP_TIMEOUT,
        )
        body: dict[str, Any] = {}
        try:
            body = resp.json()
        except ValueError:
            pass
        if resp.status_code != 200 or not body.get("ok", False):
            raise NotificationError(
                f"Slack chat.postMessage failed: HTTP "
                f"{resp.status_code} {body.get('error', '')}".strip()
            )

    def _post_mastodon(self, text: str) -> None:
        server = self.config.mastodon_server.rstrip("/")
        if not server or not self.config.mastodon_access_token:
            logger.debug("Mastodon not configured, skipping toot")
            return
        resp = self.session.post(
            f"{server}/api/v1/statuses",
            data={"status": text, "visibility": "public"},
            headers={
                "Authorization": (
                    f"Bearer {self.config.mastodon_access_token}"
                ),
            },
            timeout=Settings.HTTP_TIMEOUT,
        )
        if resp.status_code >= 300:
            raise NotificationError(
                f"Mastodon post failed: HTTP {resp.status_code}"
            )

    # ── Public API ───────────────────────────────────────

    def notify(self, message: str, broadcast: bool = True) -> None:
        """Announce *message* on Slack and, if *broadcast*, Mastodon."""
        logger.info("Notify: %s", message.replace("\n", " | "))
        try:
            self._post_slack(self.config.slack_notice_channel, message)
            if broadcast:
                self._post_mastodon(message)
        except (NotificationError, curl_requests.RequestsError) as exc:
            logger.error("Notification failed: %s", exc)
            self.alert(exc)

    def alert(self, error: BaseException | str, mention: bool = False) -> None:
        """Post an error to the Slack error channel."""
        text = f"{self.checker_name}\n```{error}```"
        if mention and self.config.slack_mention_user:
            text = f"<@{self.config.slack_mention_user}> {text}"
        logger.error("Alert: %s", text.replace("\n", " | "))
        try:
            self._post_slack(self.config.slack_error_channel, text)
        except (NotificationError, curl_requests.RequestsError) as exc:
            logger.error("Alert delivery failed: %s", exc)


# ── Gist ─────────────────────────────────────────────────


def render_books_markdown(books: list[KindleBook]) -> str:
    """Markdown list of *books* with a total count header."""
    lines = [f"## 合計 {len(books)}冊"]
    for book in books:
        lines.append(
            f"* [[{book.release_label}]{book.title}]({book.url})"
        )
    return "\n".join(lines)


def render_authors_markdown(authors: list[Author]) -> str:
    """Markdown table of authors and their latest release."""
    lines = [
        f"## 合計 {len(authors)}人(最新の単行本発売日降順)",
        "| 作者 | 最新作 |",
        "|------|--------|",
    ]
    for author in authors:
        date = (
            author.latest_release_date.strftime("%Y-%m-%d")
            if author.latest_release_date
            else ""
        )
        lines.append(
            f"| [{author.name}]({author.url}) "
            f"| [[{date}] {author.latest_release_title}]"
            f"({author.latest_release_url}) |"
        )
    return "\n".join(lines)


class GistPublisher:
    """Replaces one file of a GitHub Gist."""

    def __init__(
        self,
        token: str,
        session: curl_requests.Session | None = None,
    ) -> None:
        self.token = token
        self.session = session or curl_requests.Session(
            impersonate=Settings.IMPERSONATE_BROWSER
        )

    def update(self, gist_id: str, filename: str, markdown: str) -> None:
        """PATCH *filename* of *gist_id* with *markdown*.

        Raises:
            NotificationError: GitHub rejected the update.
        """
        if not gist_id or not filename or not self.token:
            logger.debug("Gist not configured, skipping update")
            return
        resp = self.session.patch(
            _GIST_URL.format(gist_id=gist_id),
            json={"files": {filename: {"content": markdown}}},
            headers={
                "Authorization": f"token {self.token}",
                "Accept": "application/vnd.github+json",
            },
            timeout=Settings.HTTP_TIMEOUT,
        )
        if resp.status_code >= 300:
            raise NotificationError(
                f"Gist update failed: HTTP {resp.status_code}"
            )
        logger.info("Updated gist %s/%s", gist_id, filename)

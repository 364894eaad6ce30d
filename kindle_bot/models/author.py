# kindle_bot/models/author.py

"""Author data model for the new-release checker."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from kindle_bot.models.book import format_date, parse_date


@dataclass
class Author:
    """An author whose upcoming Kindle releases are watched."""

    name: str
    url: str = ""
    latest_release_date: datetime | None = None
    latest_release_title: str = ""
    latest_release_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the stored JSON representation."""
        return {
            "Name": self.name,
            "URL": self.url,
            "LatestReleaseDate": format_date(self.latest_release_date),
            "LatestReleaseTitle": self.latest_release_title,
            "LatestReleaseURL": self.latest_release_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Author":
        """Build an author from its stored JSON representation."""
        return cls(
            name=str(data.get("Name", "") or ""),
            url=str(data.get("URL", "") or ""),
            latest_release_date=parse_date(
                data.get("LatestReleaseDate")
            ),
            latest_release_title=str(
                data.get("LatestReleaseTitle", "") or ""
            ),
            latest_release_url=str(
                data.get("LatestReleaseURL", "") or ""
            ),
        )


def sort_unique_authors(authors: Iterable[Author]) -> list[Author]:
    """Unique by name, newest latest-release first, ties by name."""
    seen: set[str] = set()
    unique: list[Author] = []
    for author in authors:
        if author.name in seen:
            continue
        seen.add(author.name)
        unique.append(author)

    def key(a: Author) -> tuple[int, float, str]:
        if a.latest_release_date is None:
            return (1, 0.0, a.name)
        return (0, -a.latest_release_date.timestamp(), a.name)

    return sorted(unique, key=key)

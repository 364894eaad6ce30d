# kindle_bot/checkers/rules.py

"""Business predicates and message formats shared by the checkers.

Everything here is pure: no storage, no network. The checkers decide
*when* to call these; the rules only decide *what* an item means.
"""

import re
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from urllib.parse import urlsplit, urlunsplit

from kindle_bot.api.paapi_client import ApiItem
from kindle_bot.config.checker_config import SaleCheckerConfig
from kindle_bot.config.settings import Settings
from kindle_bot.models.author import Author
from kindle_bot.models.book import KindleBook, detail_url

# Volume numbers, labels and publisher imprints trail the series name
_TITLE_TAIL = re.compile(r"[(（【〔\[].*$|\s*[0-9０-９]+.*$")
_YEAR_MONTH = re.compile(r"\d{4}年\d{1,2}月")

_FULLWIDTH_FIRST = ord("！")   # U+FF01
_FULLWIDTH_LAST = ord("～")    # U+FF5E
_FULLWIDTH_OFFSET = 0xFEE0
_IDEOGRAPHIC_SPACE = "　"

_LOCAL_TZ = timezone(
    timedelta(hours=Settings.UTC_OFFSET_HOURS), Settings.TIMEZONE
)


def is_kindle(item: ApiItem) -> bool:
    return item.binding == Settings.KINDLE_BINDING


# ── Titles & names ───────────────────────────────────────


def clean_title(title: str) -> str:
    """Reduce a paper-book title to its series name for searching.

    Everything from the first opening bracket or the first digit
    (half- or full-width) onwards is dropped.

    >>> clean_title("監禁王　６ (ドラゴンコミックスエイジ)")
    '監禁王'
    """
    cleaned = _TITLE_TAIL.sub("", title).strip()
    return cleaned or title.strip()


def normalize_name(name: str) -> str:
    """Fold full-width ASCII to half-width and drop all spaces."""
    chars: list[str] = []
    for ch in name:
        code = ord(ch)
        if _FULLWIDTH_FIRST <= code <= _FULLWIDTH_LAST:
            ch = chr(code - _FULLWIDTH_OFFSET)
        elif ch == _IDEOGRAPHIC_SPACE:
            ch = " "
        chars.append(ch)
    return "".join(chars).replace(" ", "").strip()


def is_name_matched(author_name: str, contributors: Iterable[str]) -> bool:
    """True when a contributor's normalised name is part of the author's.

    Containment rather than equality lets an author entry such as
    ``"原作：山田太郎"`` match the contributor ``"山田 太郎"``.
    """
    target = normalize_name(author_name)
    for contributor in contributors:
        name = normalize_name(contributor)
        if name and name in target:
            return True
    return False


def clean_url(raw_url: str) -> str:
    """Drop the query string and fragment (affiliate tags) from a URL."""
    try:
        parts = urlsplit(raw_url)
    except ValueError:
        return raw_url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


# ── Paper to Kindle ──────────────────────────────────────


def is_same_kindle_book(paper: KindleBook, kindle: ApiItem) -> bool:
    """A different-ASIN Kindle edition released on the paper date."""
    if paper.asin == kindle.asin:
        return False
    if not is_kindle(kindle):
        return False
    if kindle.release_date is None or paper.release_date is None:
        return False
    return (
        paper.release_date.strftime("%Y-%m-%d")
        == kindle.release_date.strftime("%Y-%m-%d")
    )


def kindle_search_max_price(paper: KindleBook) -> float:
    return paper.current_price + Settings.KINDLE_SEARCH_PRICE_MARGIN


# ── Sale checks ──────────────────────────────────────────


def extract_sale_conditions(
    item: ApiItem,
    max_price: float,
    config: SaleCheckerConfig,
) -> list[str]:
    """Return the sale conditions *item* satisfies (empty if none).

    A sale is a drop from the historical maximum of at least the
    threshold, at least threshold loyalty points, or a point ratio of
    at least ``point_percent``.
    """
    if item.price is None:
        return []
    current = item.price
    points = item.points

    conditions: list[str] = []
    price_diff = max_price - current
    if price_diff >= config.sale_threshold:
        conditions.append(f"✅ 最高額との価格差 {price_diff:.0f}円")
    if points >= config.sale_threshold:
        conditions.append(f"✅ ポイント {points}pt")
    if current > 0:
        percent = points / current * 100
        if percent >= config.point_percent:
            conditions.append(f"✅ ポイント還元 {percent:.1f}%")
    return conditions


def format_sale_message(item: ApiItem, conditions: list[str]) -> str:
    return (
        f"📚 セール情報: {item.title}\n"
        f"条件達成: {' '.join(conditions)}\n"
        f"{item.url}"
    )


def check_price_change(
    old: KindleBook, new: KindleBook, amount: int,
) -> str:
    """Message for a price move of at least *amount* yen, else ``""``.

    Books never priced before (``current_price == 0``) are skipped.
    """
    if old.current_price == 0:
        return ""
    diff = new.current_price - old.current_price
    base = (
        f"{new.title}\n"
        f"価格変動: {old.current_price:.0f}円 → "
        f"{new.current_price:.0f}円 ({diff:.0f}円)\n"
        f"{new.url}"
    )
    if diff >= amount:
        return "📈 プチ値上がり情報: " + base
    if diff <= -amount:
        return "📉 プチ値下がり情報: " + base
    return ""


def is_execution_minute(now: datetime, interval_minutes: int) -> bool:
    """Gate for the sale checker: run on multiples of the interval."""
    if interval_minutes <= 0:
        return True
    return now.minute % interval_minutes == 0


# ── New releases ─────────────────────────────────────────


def should_skip_release(
    item: ApiItem,
    author: Author,
    notified_asins: set[str],
    excluded_keywords: Iterable[str],
    now: datetime,
) -> bool:
    """Whether a search hit is not a new, announceable release.

    Hits that pass the identity filters update *author*'s latest
    release in place, even when the release itself is in the past.
    """
    if item.asin in notified_asins:
        return True
    if item.release_date is None:
        return True
    if not is_kindle(item):
        return True
    if any(k and k in item.title for k in excluded_keywords):
        return True
    if _YEAR_MONTH.search(item.title):
        return True
    if not is_name_matched(author.name, item.contributors):
        return True

    latest = author.latest_release_date
    if latest is None or item.release_date > latest:
        author.latest_release_date = item.release_date
        author.latest_release_title = item.title
        author.latest_release_url = clean_url(item.url)

    return item.release_date < now


def format_new_release_message(item: ApiItem, author: Author) -> str:
    release = (
        item.release_date.strftime("%Y-%m-%d") if item.release_date else ""
    )
    return (
        f"📚 新刊予定があります: {item.title}\n"
        f"作者: {author.name}\n"
        f"発売日: {release}\n"
        f"ASIN: {item.asin}\n"
        f"{item.url}"
    )


def format_paper_to_kindle_message(
    paper: KindleBook, kindle: ApiItem,
) -> str:
    return (
        f"📚 新刊予定があります: {kindle.title}\n"
        f"📕 紙書籍({paper.current_price:.0f}円): {paper.url}\n"
        f"📱 電子書籍({kindle.price or 0:.0f}円): {kindle.url}"
    )


def format_release_day_message(book: KindleBook) -> str:
    return f"📚 本日発売の書籍\n{book.title}\n{book.url}"


# ── Errors ───────────────────────────────────────────────


def format_process_error(
    operation: str,
    index: int,
    total: int,
    asin: str,
    error: BaseException | str,
) -> str:
    """``op: 007 / 120`` header, product URL, then the error."""
    return (
        f"{operation}: {index + 1:03d} / {total:03d}\n"
        f"{detail_url(asin)}\n"
        f"{error}"
    )


def format_author_error(
    index: int,
    authors: list[Author],
    error: BaseException | str,
) -> str:
    """``0007 / 0120: name`` header, author URL, then the error."""
    author = authors[index]
    return (
        f"{index + 1:04d} / {len(authors):04d}: {author.name}\n"
        f"{author.url}\n"
        f"{error}"
    )


# ── Time ─────────────────────────────────────────────────


def to_local(value: datetime) -> datetime:
    """Convert to the store's local time zone (JST)."""
    return value.astimezone(_LOCAL_TZ)


def format_time_local(value: datetime) -> str:
    return to_local(value).strftime("%Y-%m-%d %H:%M:%S %Z")

# kindle_bot/api/paapi_client.py

"""Client for the Amazon Product Advertising API (PA-API 5).

Each public method performs exactly one signed HTTPS request and maps
every failure onto the typed errors in :mod:`kindle_bot.api.errors`.
Retrying is the caller's job (see :class:`RetryingCaller`).
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from curl_cffi import requests as curl_requests

from kindle_bot.api.errors import (
    AuthError,
    ItemNotFoundError,
    MalformedRequestError,
    RateLimitError,
    SchemaMismatchError,
    TruncatedResponseError,
    UpstreamError,
)
from kindle_bot.config.settings import Settings
from kindle_bot.models.book import KindleBook, parse_date

logger = logging.getLogger("kindle_bot.paapi")

_SERVICE = "ProductAdvertisingAPI"
_TARGET_PREFIX = "com.amazon.paapi5.v1.ProductAdvertisingAPIv1."

_RESOURCES: list[str] = [
    "ItemInfo.Title",
    "ItemInfo.ByLineInfo",
    "ItemInfo.Classifications",
    "ItemInfo.ProductInfo",
    "Offers.Listings.Price",
    "Offers.Listings.LoyaltyPoints",
]

# libcurl codes for a read that ended before the full body arrived
_TRUNCATED_CURL_CODES: frozenset[int] = frozenset({
    18,  # CURLE_PARTIAL_FILE
    52,  # CURLE_GOT_NOTHING
    56,  # CURLE_RECV_ERROR
})

_AUTH_CODES: frozenset[str] = frozenset({
    "UnrecognizedClient",
    "InvalidSignature",
    "AccessDenied",
    "AccessDeniedAwsUsers",
    "IncompleteSignature",
})


@dataclass
class ApiItem:
    """One item record from a GetItems / SearchItems response."""

    asin: str
    title: str = ""
    binding: str = ""
    release_date: datetime | None = None
    price: float | None = None
    points: int = 0
    url: str = ""
    contributors: list[str] = field(
        default_factory=lambda: list[str]()
    )

    def to_book(self, max_price: float = 0.0) -> KindleBook:
        """Build a collection entry from this record."""
        current = self.price or 0.0
        return KindleBook(
            asin=self.asin,
            title=self.title,
            release_date=self.release_date,
            current_price=current,
            max_price=max_price if max_price > 0 else current,
            url=self.url,
        )


@dataclass(frozen=True)
class SearchQuery:
    """A Kindle store search, newest arrivals first."""

    field: str  # "Title", "Author" or "Keywords"
    value: str
    max_price: float = 0.0


def _display(node: Any, *path: str) -> Any:
    """Walk nested dicts and return the ``DisplayValue`` at *path*."""
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    if isinstance(node, dict):
        return node.get("DisplayValue")
    return None


def parse_item(raw: dict[str, Any]) -> ApiItem:
    """Convert a raw PA-API item into an :class:`ApiItem`.

    Raises:
        SchemaMismatchError: the record has no ASIN or bad field types.
    """
    asin = raw.get("ASIN") if isinstance(raw, dict) else None
    if not asin or not isinstance(asin, str):
        raise SchemaMismatchError(f"Item without ASIN: {raw!r}"[:200])

    info = raw.get("ItemInfo") or {}
    try:
        release_raw = _display(info, "ProductInfo", "ReleaseDate")
        release_date = parse_date(release_raw) if release_raw else None

        price: float | None = None
        points = 0
        listings = (raw.get("Offers") or {}).get("Listings") or []
        if listings:
            first = listings[0]
            amount = (first.get("Price") or {}).get("Amount")
            if amount is not None:
                price = float(amount)
            points = int(
                (first.get("LoyaltyPoints") or {}).get("Points", 0)
            )

        contributors = [
            str(c.get("Name", ""))
            for c in (info.get("ByLineInfo") or {}).get(
                "Contributors"
            ) or []
        ]
    except (AttributeError, TypeError, ValueError) as exc:
        raise SchemaMismatchError(
            f"Unexpected item structure for {asin}: {exc}"
        ) from exc

    return ApiItem(
        asin=asin,
        title=str(_display(info, "Title") or ""),
        binding=str(
            _display(info, "Classifications", "Binding") or ""
        ),
        release_date=release_date,
        price=price,
        points=points,
        url=str(raw.get("DetailPageURL", "") or ""),
        contributors=contributors,
    )


class PaapiClient:
    """Signed PA-API 5 client over a ``curl_cffi`` session."""

    def __init__(
        self,
        partner_tag: str,
        access_key: str,
        secret_key: str,
        session: curl_requests.Session | None = None,
        request_interval: float = Settings.POST_SUCCESS_DELAY,
    ) -> None:
        self.settings = Settings()
        self.partner_tag = partner_tag
        self._credentials = Credentials(access_key, secret_key)
        self.session = session or curl_requests.Session(
            impersonate=Settings.IMPERSONATE_BROWSER
        )
        self._request_interval = request_interval
        self._last_request_at: float | None = None

    @classmethod
    def from_config(cls, config: Any) -> "PaapiClient":
        """Build a client from an :class:`EnvConfig`."""
        return cls(
            config.amazon_partner_tag,
            config.amazon_access_key,
            config.amazon_secret_key,
        )

    # ── Transport ────────────────────────────────────────

    def _wait(self) -> None:
        """Keep at least ``request_interval`` between requests."""
        if self._last_request_at is None:
            return
        elapsed = time.monotonic() - self._last_request_at
        if elapsed < self._request_interval:
            time.sleep(self._request_interval - elapsed)

    def _signed_headers(
        self, operation: str, url: str, body: str,
    ) -> dict[str, str]:
        request = AWSRequest(
            method="POST",
            url=url,
            data=body.encode("utf-8"),
            headers={
                "content-encoding": "amz-1.0",
                "content-type": "application/json; charset=utf-8",
                "host": self.settings.PAAPI_HOST,
                "x-amz-target": _TARGET_PREFIX + operation,
            },
        )
        SigV4Auth(
            self._credentials, _SERVICE, self.settings.PAAPI_REGION
        ).add_auth(request)
        return dict(request.headers.items())

    def _request(
        self, operation: str, payload: dict[str, Any],
    ) -> dict[str, Any]:
        """POST one operation and return the decoded JSON body."""
        url = (
            f"https://{self.settings.PAAPI_HOST}"
            f"/paapi5/{operation.lower()}"
        )
        body = json.dumps(
            {
                **payload,
                "PartnerTag": self.partner_tag,
                "PartnerType": "Associates",
                "Marketplace": self.settings.PAAPI_MARKETPLACE,
                "Resources": _RESOURCES,
            },
            ensure_ascii=False,
        )
        headers = self._signed_headers(operation, url, body)

        self._wait()
        try:
            resp = self.session.post(
                url,
                data=body.encode("utf-8"),
                headers=headers,
                timeout=self.settings.PAAPI_TIMEOUT,
            )
        except curl_requests.RequestsError as exc:
            code = getattr(exc, "code", None)
            if code is not None and int(code) in _TRUNCATED_CURL_CODES:
                raise TruncatedResponseError(
                    f"{operation}: truncated read ({exc})"
                ) from exc
            raise UpstreamError(
                f"{operation}: transport error ({exc})"
            ) from exc
        finally:
            self._last_request_at = time.monotonic()

        if resp.status_code != 200:
            try:
                data = self._decode(operation, resp.text)
            except (TruncatedResponseError, SchemaMismatchError):
                # Error pages are often HTML; the status decides
                data = {}
            self._raise_for_status(operation, resp.status_code, data)
        return self._decode(operation, resp.text)

    @staticmethod
    def _decode(operation: str, text: str) -> dict[str, Any]:
        stripped = text.strip()
        if not stripped:
            return {}
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as exc:
            if stripped.startswith(("{", "[")):
                raise TruncatedResponseError(
                    f"{operation}: incomplete JSON body ({exc})"
                ) from exc
            raise SchemaMismatchError(
                f"{operation}: non-JSON body: {stripped[:120]}"
            ) from exc
        if not isinstance(data, dict):
            raise SchemaMismatchError(
                f"{operation}: expected a JSON object"
            )
        return data

    @staticmethod
    def _raise_for_status(
        operation: str, status: int, data: dict[str, Any],
    ) -> None:
        errors = data.get("Errors") or [{}]
        code = str(errors[0].get("Code", ""))
        message = str(errors[0].get("Message", "")) or f"HTTP {status}"
        detail = f"{operation}: {code or status}: {message}"

        if status == 429 or code == "TooManyRequests":
            raise RateLimitError(detail, status)
        if status in (401, 403) or code in _AUTH_CODES:
            raise AuthError(detail, status)
        if status == 404:
            raise ItemNotFoundError(detail, status)
        if status == 400:
            raise MalformedRequestError(detail, status)
        raise UpstreamError(detail, status)

    # ── Operations ───────────────────────────────────────

    def get_items(self, asins: list[str]) -> list[ApiItem]:
        """Look up to ``GET_ITEMS_BATCH_LIMIT`` ASINs.

        ASINs the API cannot return are logged and left out of the
        result; callers compare counts to detect partial batches.

        Raises:
            ValueError: empty batch or more ASINs than the limit.
            ItemNotFoundError: none of the ASINs were returned.
        """
        if not asins:
            raise ValueError("get_items needs at least one ASIN")
        if len(asins) > self.settings.GET_ITEMS_BATCH_LIMIT:
            raise ValueError(
                f"get_items accepts at most "
                f"{self.settings.GET_ITEMS_BATCH_LIMIT} ASINs"
            )

        data = self._request("GetItems", {"ItemIds": asins})
        for err in data.get("Errors") or []:
            logger.warning(
                "GetItems reported %s: %s",
                err.get("Code"),
                err.get("Message"),
            )

        result = data.get("ItemsResult")
        if result is None:
            if data.get("Errors"):
                raise ItemNotFoundError(
                    f"GetItems: no items for {', '.join(asins)}"
                )
            raise SchemaMismatchError("GetItems: missing ItemsResult")

        items = [parse_item(raw) for raw in result.get("Items") or []]
        logger.debug(
            "GetItems returned %d of %d items", len(items), len(asins)
        )
        return items

    def search_items(self, query: SearchQuery) -> list[ApiItem]:
        """Search the Kindle store; no hits yields an empty list."""
        payload: dict[str, Any] = {
            query.field: query.value,
            "SearchIndex": "KindleStore",
            "SortBy": "NewestArrivals",
            "BrowseNodeId": self.settings.KINDLE_BROWSE_NODE_ID,
            "MinPrice": self.settings.KINDLE_MIN_PRICE,
        }
        if query.max_price > 0:
            payload["MaxPrice"] = int(query.max_price)

        try:
            data = self._request("SearchItems", payload)
        except ItemNotFoundError:
            logger.info("SearchItems: no results for %r", query.value)
            return []

        result = data.get("SearchResult")
        if result is None:
            return []
        items = [parse_item(raw) for raw in result.get("Items") or []]
        logger.debug(
            "SearchItems %s=%r returned %d items",
            query.field,
            query.value,
            len(items),
        )
        return items

# tests/test_paapi_client.py

"""Tests for the PA-API 5 client over a mocked curl_cffi session."""

import json
import unittest
from unittest.mock import MagicMock

from curl_cffi import requests as curl_requests

from bot_fakes import utc

from kindle_bot.api.errors import (
    AuthError,
    ItemNotFoundError,
    MalformedRequestError,
    RateLimitError,
    SchemaMismatchError,
    TruncatedResponseError,
    UpstreamError,
)
from kindle_bot.api.paapi_client import PaapiClient, SearchQuery, parse_item
from kindle_bot.config.settings import EnvConfig

_RAW_ITEM = {
    "ASIN": "B0KINDLE01",
    "DetailPageURL": "https://www.amazon.co.jp/dp/B0KINDLE01?tag=t-22",
    "ItemInfo": {
        "Title": {"DisplayValue": "テスト本 1"},
        "Classifications": {"Binding": {"DisplayValue": "Kindle版"}},
        "ProductInfo": {
            "ReleaseDate": {"DisplayValue": "2025-04-01T00:00:00Z"}
        },
        "ByLineInfo": {
            "Contributors": [{"Name": "山田 太郎", "Role": "著"}]
        },
    },
    "Offers": {
        "Listings": [
            {
                "Price": {"Amount": 660.0, "Currency": "JPY"},
                "LoyaltyPoints": {"Points": 33},
            }
        ]
    },
}


def _response(status: int, body: object) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = body if isinstance(body, str) else json.dumps(body)
    return resp


class TestParseItem(unittest.TestCase):
    """Raw record decoding."""

    def test_full_record(self) -> None:
        item = parse_item(_RAW_ITEM)
        self.assertEqual(item.asin, "B0KINDLE01")
        self.assertEqual(item.title, "テスト本 1")
        self.assertEqual(item.binding, "Kindle版")
        self.assertEqual(item.release_date, utc(2025, 4, 1))
        self.assertEqual(item.price, 660.0)
        self.assertEqual(item.points, 33)
        self.assertEqual(item.contributors, ["山田 太郎"])

    def test_no_offers_means_no_price(self) -> None:
        item = parse_item({"ASIN": "B0X"})
        self.assertIsNone(item.price)
        self.assertEqual(item.points, 0)
        self.assertEqual(item.title, "")

    def test_missing_asin(self) -> None:
        with self.assertRaises(SchemaMismatchError):
            parse_item({"ItemInfo": {}})

    def test_bad_price_type(self) -> None:
        raw = {
            "ASIN": "B0X",
            "Offers": {"Listings": [{"Price": {"Amount": "n/a"}}]},
        }
        with self.assertRaises(SchemaMismatchError):
            parse_item(raw)

    def test_to_book_keeps_larger_max(self) -> None:
        item = parse_item(_RAW_ITEM)
        self.assertEqual(item.to_book().max_price, 660.0)
        self.assertEqual(item.to_book(900.0).max_price, 900.0)


class TestPaapiClient(unittest.TestCase):
    """Request building and error mapping."""

    def setUp(self) -> None:
        self.session = MagicMock()
        self.client = PaapiClient(
            "tag-22", "AKIDEXAMPLE", "secret",
            session=self.session, request_interval=0,
        )

    def _sent(self) -> tuple[str, dict, dict]:
        call = self.session.post.call_args
        body = json.loads(call.kwargs["data"].decode("utf-8"))
        return call.args[0], body, call.kwargs["headers"]

    def test_get_items_request(self) -> None:
        """Payload carries the partner fields and the header is signed."""
        self.session.post.return_value = _response(
            200, {"ItemsResult": {"Items": [_RAW_ITEM]}}
        )
        items = self.client.get_items(["B0KINDLE01"])

        self.assertEqual([i.asin for i in items], ["B0KINDLE01"])
        url, body, headers = self._sent()
        self.assertEqual(
            url, "https://webservices.amazon.co.jp/paapi5/getitems"
        )
        self.assertEqual(body["ItemIds"], ["B0KINDLE01"])
        self.assertEqual(body["PartnerTag"], "tag-22")
        self.assertEqual(body["PartnerType"], "Associates")
        self.assertEqual(body["Marketplace"], "www.amazon.co.jp")
        self.assertIn("Offers.Listings.LoyaltyPoints", body["Resources"])

        lowered = {k.lower(): v for k, v in headers.items()}
        self.assertTrue(
            lowered["authorization"].startswith(
                "AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/"
            )
        )
        self.assertIn(
            "/us-west-2/ProductAdvertisingAPI/aws4_request",
            lowered["authorization"],
        )
        self.assertEqual(
            lowered["x-amz-target"],
            "com.amazon.paapi5.v1.ProductAdvertisingAPIv1.GetItems",
        )
        self.assertIn("x-amz-date", lowered)

    def test_get_items_batch_validation(self) -> None:
        with self.assertRaises(ValueError):
            self.client.get_items([])
        with self.assertRaises(ValueError):
            self.client.get_items([f"B{i:09d}" for i in range(11)])
        self.session.post.assert_not_called()

    def test_partial_batch_returns_found_items(self) -> None:
        """Per-item errors are logged; found items are returned."""
        self.session.post.return_value = _response(
            200,
            {
                "ItemsResult": {"Items": [_RAW_ITEM]},
                "Errors": [
                    {"Code": "InvalidParameterValue", "Message": "B0GONE"}
                ],
            },
        )
        with self.assertLogs("kindle_bot.paapi", "WARNING"):
            items = self.client.get_items(["B0KINDLE01", "B0GONE"])
        self.assertEqual(len(items), 1)

    def test_no_items_at_all(self) -> None:
        self.session.post.return_value = _response(
            200, {"Errors": [{"Code": "ItemNotAccessible", "Message": "x"}]}
        )
        with self.assertRaises(ItemNotFoundError):
            self.client.get_items(["B0GONE"])

    def test_missing_items_result_without_errors(self) -> None:
        self.session.post.return_value = _response(200, {"Other": 1})
        with self.assertRaises(SchemaMismatchError):
            self.client.get_items(["B0X"])

    def test_status_mapping(self) -> None:
        cases = [
            (429, {"Errors": [{"Code": "TooManyRequests"}]}, RateLimitError),
            (401, {"Errors": [{"Code": "InvalidSignature"}]}, AuthError),
            (403, {}, AuthError),
            (404, {"Errors": [{"Code": "NoResults"}]}, ItemNotFoundError),
            (
                400,
                {"Errors": [{"Code": "InvalidParameterValue"}]},
                MalformedRequestError,
            ),
            (500, {}, UpstreamError),
            (503, "<html>Service Unavailable</html>", UpstreamError),
            (429, "<html>slow down</html>", RateLimitError),
        ]
        for status, body, expected in cases:
            with self.subTest(status=status, expected=expected.__name__):
                self.session.post.return_value = _response(status, body)
                with self.assertRaises(expected) as ctx:
                    self.client.get_items(["B0X"])
                self.assertEqual(ctx.exception.status, status)

    def test_truncated_json_body(self) -> None:
        self.session.post.return_value = _response(
            200, '{"ItemsResult": {"Items": [{"ASIN": "B0'
        )
        with self.assertRaises(TruncatedResponseError):
            self.client.get_items(["B0X"])

    def test_non_json_success_body(self) -> None:
        self.session.post.return_value = _response(200, "<html></html>")
        with self.assertRaises(SchemaMismatchError):
            self.client.get_items(["B0X"])

    def test_transport_errors(self) -> None:
        """Early-EOF curl codes are truncation; others are upstream."""
        self.session.post.side_effect = curl_requests.RequestsError(
            "Recv failure", code=56
        )
        with self.assertRaises(TruncatedResponseError):
            self.client.get_items(["B0X"])

        self.session.post.side_effect = curl_requests.RequestsError(
            "Couldn't connect", code=7
        )
        with self.assertRaises(UpstreamError):
            self.client.get_items(["B0X"])

    def test_search_items_payload(self) -> None:
        self.session.post.return_value = _response(
            200, {"SearchResult": {"Items": [_RAW_ITEM]}}
        )
        items = self.client.search_items(
            SearchQuery("Title", "テスト本", max_price=20600.5)
        )
        self.assertEqual(len(items), 1)
        url, body, _ = self._sent()
        self.assertTrue(url.endswith("/paapi5/searchitems"))
        self.assertEqual(body["Title"], "テスト本")
        self.assertEqual(body["SearchIndex"], "KindleStore")
        self.assertEqual(body["SortBy"], "NewestArrivals")
        self.assertEqual(body["BrowseNodeId"], "2293143051")
        self.assertEqual(body["MaxPrice"], 20600)

    def test_search_without_max_price(self) -> None:
        self.session.post.return_value = _response(200, {})
        self.assertEqual(
            self.client.search_items(SearchQuery("Author", "山田")), []
        )
        _, body, _ = self._sent()
        self.assertNotIn("MaxPrice", body)

    def test_search_not_found_is_empty(self) -> None:
        self.session.post.return_value = _response(
            404, {"Errors": [{"Code": "NoResults"}]}
        )
        self.assertEqual(
            self.client.search_items(SearchQuery("Author", "x")), []
        )

    def test_from_config(self) -> None:
        client = PaapiClient.from_config(
            EnvConfig(
                amazon_partner_tag="p-22",
                amazon_access_key="a",
                amazon_secret_key="s",
            )
        )
        self.assertEqual(client.partner_tag, "p-22")


if __name__ == "__main__":
    unittest.main()

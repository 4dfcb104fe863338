from __future__ import annotations

import sys
import unittest
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT / "py" / "src"))

from appharness.util import (  # noqa: E402
    canonicalize_headers,
    clone_query,
    first_header_value,
    header_values,
    normalize_path,
    ordered_headers,
    parse_cookies,
    split_path_and_query,
    to_bytes,
)


class TestUtil(unittest.TestCase):
    def test_normalize_path_handles_empty_query_and_missing_slash(self) -> None:
        self.assertEqual(normalize_path(""), "/")
        self.assertEqual(normalize_path(" /x?y=1 "), "/x")
        self.assertEqual(normalize_path("x"), "/x")

    def test_split_path_and_query_keeps_repeated_and_blank_values(self) -> None:
        path, query = split_path_and_query("/s?q=a%20b&q=c&empty=")
        self.assertEqual(path, "/s")
        self.assertEqual(query, {"q": ["a b", "c"], "empty": [""]})
        self.assertEqual(split_path_and_query("plain"), ("/plain", {}))

    def test_canonicalize_headers_skips_empty_keys_and_normalizes_values(self) -> None:
        out = canonicalize_headers({"": "skip", "X-One": "1", "X-Two": ["2", 3]})
        self.assertNotIn("", out)
        self.assertEqual(out["x-one"], ["1"])
        self.assertEqual(out["x-two"], ["2", "3"])

    def test_ordered_headers_keep_casing_and_order(self) -> None:
        out = ordered_headers({"X-B": "1", "X-A": ["2", 3], " ": "skip"})
        self.assertEqual(list(out), ["X-B", "X-A"])
        self.assertEqual(out["X-A"], ["2", "3"])

    def test_header_lookup_is_case_insensitive(self) -> None:
        headers = {"Content-Type": ["text/plain"], "x-multi": ["1", "2"]}
        self.assertEqual(first_header_value(headers, "content-type"), "text/plain")
        self.assertEqual(header_values(headers, "X-Multi"), ["1", "2"])
        self.assertEqual(first_header_value(headers, "missing"), "")
        self.assertEqual(first_header_value(None, "missing"), "")

    def test_clone_query_coerces_scalars_and_lists(self) -> None:
        out = clone_query({"a": "1", "b": ["2", 3]})
        self.assertEqual(out, {"a": ["1"], "b": ["2", "3"]})

    def test_parse_cookies_skips_malformed_segments(self) -> None:
        out = parse_cookies([" ; a=b; c; =bad; d=e "])
        self.assertEqual(out, {"a": "b", "d": "e"})

    def test_to_bytes_supports_common_types_and_errors_for_other_values(self) -> None:
        self.assertEqual(to_bytes(None), b"")
        self.assertEqual(to_bytes(bytearray(b"x")), b"x")
        self.assertEqual(to_bytes(memoryview(b"y")), b"y")
        self.assertEqual(to_bytes("é"), "é".encode("utf-8"))
        with self.assertRaisesRegex(TypeError, "bytes-like or str"):
            to_bytes(123)

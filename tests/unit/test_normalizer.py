"""Unit tests for text normalization."""

from __future__ import annotations

import pytest

from docrag.ingestion.normalizer import normalize


class TestNormalize:
    def test_collapses_whitespace_runs(self) -> None:
        assert normalize("Quarterly   report\n\n\tfor  2023") == "Quarterly report for 2023"

    def test_trims_both_ends(self) -> None:
        assert normalize("  \n padded \r\n ") == "padded"

    def test_strips_control_characters(self) -> None:
        assert normalize("nul\x00byte bell\x07 del\x7f") == "nulbyte bell del"

    def test_vertical_tab_and_form_feed_are_removed_not_spaced(self) -> None:
        assert normalize("page\x0cbreak and\x0bvt") == "pagebreak andvt"

    @pytest.mark.parametrize("raw", [None, "", "   ", "\x00\x01\n\t"])
    def test_empty_results(self, raw: str | None) -> None:
        assert normalize(raw) == ""

    def test_keeps_unicode_text(self) -> None:
        assert normalize("Umsatz  für Q3:\n über Plan") == "Umsatz für Q3: über Plan"

    def test_unicode_spaces_collapse(self) -> None:
        assert normalize("a\u2003\u00a0b") == "a b"

    @pytest.mark.parametrize(
        "raw",
        [
            "plain text",
            "  lots \n\n of \t\t space  ",
            "mixed\x00controls\x1f and \x0b\x0c form feeds",
            "\u2003em space and\u00a0nbsp",
            "",
        ],
    )
    def test_idempotent(self, raw: str) -> None:
        once = normalize(raw)
        assert normalize(once) == once

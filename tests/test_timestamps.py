"""
Tests for timestamps.py.
"""

from datetime import datetime, timedelta, timezone

import pytest

from categorysync.timestamps import parse_timestamp, to_wiki_timestamp

EXPECTED = datetime(2024, 3, 1, 12, 0, 0)


class TestParseTimestamp:
    @pytest.mark.parametrize(
        "value",
        [
            "20240301120000",
            "2024-03-01T12:00:00",
            "2024-03-01T12:00:00Z",
            "2024-03-01T14:00:00+02:00",
            " 20240301120000 ",
            datetime(2024, 3, 1, 12, 0, 0, 999999),
            datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc),
        ],
    )
    def test_accepted_forms(self, value):
        assert parse_timestamp(value) == EXPECTED

    def test_epoch_seconds(self):
        epoch = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc).timestamp()

        assert parse_timestamp(epoch) == EXPECTED
        assert parse_timestamp(int(epoch)) == EXPECTED

    def test_result_is_naive_utc(self):
        parsed = parse_timestamp(datetime(2024, 3, 1, 7, 0, 0, tzinfo=timezone(timedelta(hours=-5))))

        assert parsed.tzinfo is None
        assert parsed == EXPECTED

    @pytest.mark.parametrize("value", ["yesterday", "2024-13-01", "", None, ["20240301120000"]])
    def test_rejected_forms(self, value):
        with pytest.raises(ValueError):
            parse_timestamp(value)


class TestToWikiTimestamp:
    def test_formats_fourteen_digits(self):
        assert to_wiki_timestamp(EXPECTED) == "20240301120000"

    def test_round_trip_through_params(self):
        assert parse_timestamp(to_wiki_timestamp(EXPECTED)) == EXPECTED

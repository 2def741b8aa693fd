"""Tests for the ERDDAP client: configuration, range planning, fetching and merging."""

import json
import os
from datetime import date, timedelta
from unittest.mock import MagicMock

import numpy as np
import pandas as pd
import pytest
import requests
import requests_cache

from erddap_client import (
    OBSERVATION_COLUMNS,
    DateRange,
    EmptyResultError,
    ErddapClientConfig,
    FetchError,
    InvalidRangeError,
    OisstGriddapClient,
    merge_observations,
    plan_date_ranges,
)

CONFIG_KWARGS = {
    "server": "https://erddap.example.org/erddap/",
    "dataset_id": "ncdcOisst21Agg_LonPM180",
    "site": "Test Site",
    "start_date": "2020-01-01",
    "end_date": "2020-01-02",
    "bounding_box": {"north": 1.375, "south": 1.125, "west": 103.625, "east": 104.375},
    "num_sub_ranges": 1,
}

CSV_RESPONSE = """time,zlev,latitude,longitude,sst
UTC,m,degrees_north,degrees_east,degree_C
2020-01-01T12:00:00Z,0.0,1.125,103.625,28.0
2020-01-01T12:00:00Z,0.0,1.125,103.875,30.0
2020-01-02T12:00:00Z,0.0,1.125,103.625,29.0
2020-01-02T12:00:00Z,0.0,1.125,103.875,NaN
"""


def make_config(**overrides):
    kwargs = dict(CONFIG_KWARGS)
    kwargs.update(overrides)
    return ErddapClientConfig(create_from_file=False, kwargs=kwargs)


def make_response(text):
    response = MagicMock()
    response.text = text
    return response


def make_client(config, *responses):
    session = MagicMock()
    session.get.side_effect = list(responses)
    return OisstGriddapClient(config, session=session), session


def assert_partition(ranges, start, end):
    assert [r.index for r in ranges] == list(range(1, len(ranges) + 1))
    assert ranges[0].start == start
    assert ranges[-1].end == end
    for previous, current in zip(ranges, ranges[1:]):
        assert current.start == previous.end + timedelta(days=1)
    assert sum(r.days for r in ranges) == (end - start).days + 1


class TestErddapClientConfig:
    """Test configuration loading and validation."""

    def test_from_kwargs(self):
        config = make_config()
        assert config.server == "https://erddap.example.org/erddap"
        assert config.variable == "sst"
        assert config.start_date == date(2020, 1, 1)
        assert config.end_date == date(2020, 1, 2)
        assert config.bounding_box["south"] == 1.125
        assert config.zlev == 0.0
        assert config.sub_ranges is None
        assert config.num_sub_ranges == 1
        assert config.retries == 3
        assert config.cache_path is None

    def test_kwargs_required_without_file(self):
        with pytest.raises(ValueError):
            ErddapClientConfig(create_from_file=False)

    def test_from_file_with_overrides(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(CONFIG_KWARGS))

        config = ErddapClientConfig(
            create_from_file=True,
            config_file=str(path),
            kwargs={"site": "Johor Strait", "retries": 0},
        )

        assert config.site == "Johor Strait"
        assert config.retries == 0
        assert config.dataset_id == "ncdcOisst21Agg_LonPM180"

    def test_repository_config_plans_five_blocks(self):
        config_file = os.path.join(
            os.path.dirname(__file__), "..", "config", "config.json"
        )
        config = ErddapClientConfig(create_from_file=True, config_file=config_file)

        ranges = config.plan()

        assert config.num_sub_ranges == 5
        assert len(ranges) == 5
        assert_partition(ranges, date(1982, 1, 1), date(2019, 12, 31))
        assert ranges[1].start == date(1990, 1, 1)

    def test_integer_coordinates_are_accepted(self):
        config = make_config(
            bounding_box={"north": 2, "south": 1, "west": 103, "east": 104}
        )
        assert config.bounding_box == {
            "north": 2.0,
            "south": 1.0,
            "west": 103.0,
            "east": 104.0,
        }

    @pytest.mark.parametrize(
        "bounding_box",
        [
            None,
            {"north": 1.0, "south": 0.0, "west": 100.0},
            {"north": "1", "south": 0.0, "west": 100.0, "east": 101.0},
            {"north": 0.0, "south": 1.0, "west": 100.0, "east": 101.0},
            {"north": 1.0, "south": 0.0, "west": 101.0, "east": 100.0},
        ],
    )
    def test_invalid_bounding_box(self, bounding_box):
        with pytest.raises(ValueError):
            make_config(bounding_box=bounding_box)

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            make_config(retries=-1)
        with pytest.raises(ValueError):
            make_config(start_date=20200101)
        with pytest.raises(ValueError):
            make_config(sub_ranges="1982-01-01")
        with pytest.raises(ValueError):
            make_config(site="")

    def test_num_sub_ranges_defaults_to_fixed_list_length(self):
        config = make_config(
            num_sub_ranges=None,
            sub_ranges=[["2020-01-01", "2020-01-01"], ["2020-01-02", "2020-01-02"]],
        )
        assert config.num_sub_ranges == 2
        assert config.sub_ranges[1] == (date(2020, 1, 2), date(2020, 1, 2))


class TestRangePlanner:
    """Test sub-range planning."""

    def test_generated_plan_is_year_aligned(self):
        ranges = plan_date_ranges(date(1982, 1, 1), date(2019, 12, 31), 5)

        assert_partition(ranges, date(1982, 1, 1), date(2019, 12, 31))
        assert [r.start.year for r in ranges] == [1982, 1990, 1998, 2006, 2013]
        for r in ranges[1:]:
            assert (r.start.month, r.start.day) == (1, 1)
        for r in ranges[:-1]:
            assert (r.end.month, r.end.day) == (12, 31)

    @pytest.mark.parametrize(
        "start,end,count",
        [
            (date(1982, 3, 15), date(2019, 6, 30), 5),
            (date(2000, 1, 1), date(2000, 12, 31), 1),
            (date(2001, 7, 1), date(2004, 2, 1), 4),
        ],
    )
    def test_generated_plan_covers_span(self, start, end, count):
        ranges = plan_date_ranges(start, end, count)
        assert len(ranges) == count
        assert_partition(ranges, start, end)

    def test_fixed_boundaries(self):
        boundaries = [
            (date(1982, 1, 1), date(1989, 12, 31)),
            (date(1990, 1, 1), date(1997, 12, 31)),
            (date(1998, 1, 1), date(2005, 12, 31)),
            (date(2006, 1, 1), date(2013, 12, 31)),
            (date(2014, 1, 1), date(2019, 12, 31)),
        ]

        ranges = plan_date_ranges(date(1982, 1, 1), date(2019, 12, 31), 5, boundaries)

        assert [(r.start, r.end) for r in ranges] == boundaries
        assert_partition(ranges, date(1982, 1, 1), date(2019, 12, 31))

    @pytest.mark.parametrize(
        "boundaries",
        [
            # gap
            [(date(2000, 1, 1), date(2000, 6, 30)), (date(2000, 7, 2), date(2000, 12, 31))],
            # overlap
            [(date(2000, 1, 1), date(2000, 7, 1)), (date(2000, 7, 1), date(2000, 12, 31))],
            # does not reach the end
            [(date(2000, 1, 1), date(2000, 6, 30)), (date(2000, 7, 1), date(2000, 12, 30))],
            # starts late
            [(date(2000, 1, 2), date(2000, 6, 30)), (date(2000, 7, 1), date(2000, 12, 31))],
            # inverted range
            [(date(2000, 1, 1), date(2000, 6, 30)), (date(2000, 12, 31), date(2000, 7, 1))],
        ],
    )
    def test_invalid_fixed_boundaries(self, boundaries):
        with pytest.raises(InvalidRangeError):
            plan_date_ranges(date(2000, 1, 1), date(2000, 12, 31), 2, boundaries)

    def test_fixed_boundaries_must_match_count(self):
        boundaries = [(date(2000, 1, 1), date(2000, 12, 31))]
        with pytest.raises(InvalidRangeError):
            plan_date_ranges(date(2000, 1, 1), date(2000, 12, 31), 2, boundaries)

    @pytest.mark.parametrize("count", [0, -3])
    def test_non_positive_count(self, count):
        with pytest.raises(InvalidRangeError):
            plan_date_ranges(date(2000, 1, 1), date(2010, 12, 31), count)

    def test_start_after_end(self):
        with pytest.raises(InvalidRangeError):
            plan_date_ranges(date(2010, 1, 1), date(2000, 1, 1), 2)

    def test_more_ranges_than_years(self):
        with pytest.raises(InvalidRangeError):
            plan_date_ranges(date(2000, 1, 1), date(2001, 12, 31), 3)

    def test_date_range_rejects_inverted_bounds(self):
        with pytest.raises(InvalidRangeError):
            DateRange(1, date(2000, 1, 2), date(2000, 1, 1))

    def test_invalid_range_is_a_value_error(self):
        assert issubclass(InvalidRangeError, ValueError)


class TestOisstGriddapClient:
    """Test the OISST griddap fetcher with a mocked HTTP session."""

    def test_build_query(self):
        client, _ = make_client(make_config())
        date_range = DateRange(1, date(2020, 1, 1), date(2020, 1, 2))

        assert client.build_query(date_range) == (
            "sst[(2020-01-01T12:00:00Z):1:(2020-01-02T12:00:00Z)]"
            "[(0.0):1:(0.0)]"
            "[(1.125):1:(1.375)]"
            "[(103.625):1:(104.375)]"
        )

    def test_get_data_normalises_response(self):
        client, session = make_client(make_config(), make_response(CSV_RESPONSE))
        date_range = DateRange(1, date(2020, 1, 1), date(2020, 1, 2))

        data = client.get_data(date_range)

        url = session.get.call_args.args[0]
        assert url.startswith(
            "https://erddap.example.org/erddap/griddap/ncdcOisst21Agg_LonPM180.csv?sst%5B"
        )
        assert session.get.call_args.kwargs["timeout"] == 600.0

        assert list(data.columns) == OBSERVATION_COLUMNS
        assert len(data) == 3
        assert not data["temperature"].isna().any()
        assert list(data["date"]) == [
            pd.Timestamp("2020-01-01"),
            pd.Timestamp("2020-01-01"),
            pd.Timestamp("2020-01-02"),
        ]
        assert (data["date"] == data["date"].dt.normalize()).all()
        assert data["temperature"].tolist() == [28.0, 30.0, 29.0]
        assert data["longitude"].tolist() == [103.625, 103.875, 103.625]

    def test_dates_without_time_suffix(self):
        text = "time,zlev,latitude,longitude,sst\nUTC,m,degrees_north,degrees_east,degree_C\n2020-01-01,0.0,1.125,103.625,28.5\n"
        client, _ = make_client(make_config(), make_response(text))

        data = client.get_data(DateRange(1, date(2020, 1, 1), date(2020, 1, 1)))

        assert data["date"].iloc[0] == pd.Timestamp("2020-01-01")
        assert data["temperature"].iloc[0] == 28.5

    def test_http_error_raises_fetch_error(self):
        response = make_response("")
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            "500 Server Error"
        )
        client, _ = make_client(make_config(), response)
        date_range = DateRange(3, date(2020, 1, 1), date(2020, 1, 2))

        with pytest.raises(FetchError) as excinfo:
            client.get_data(date_range)

        assert excinfo.value.date_range == date_range
        assert isinstance(excinfo.value.cause, requests.exceptions.HTTPError)
        assert "sub-range 3" in str(excinfo.value)

    def test_transport_error_raises_fetch_error(self):
        client, _ = make_client(
            make_config(), requests.exceptions.ConnectionError("connection refused")
        )

        with pytest.raises(FetchError):
            client.get_data(DateRange(1, date(2020, 1, 1), date(2020, 1, 2)))

    def test_missing_field_raises_fetch_error(self):
        text = "time,zlev,latitude,longitude\nUTC,m,degrees_north,degrees_east\n2020-01-01T12:00:00Z,0.0,1.125,103.625\n"
        client, _ = make_client(make_config(), make_response(text))

        with pytest.raises(FetchError, match="sst"):
            client.get_data(DateRange(1, date(2020, 1, 1), date(2020, 1, 1)))

    def test_empty_body_raises_fetch_error(self):
        client, _ = make_client(make_config(), make_response(""))

        with pytest.raises(FetchError):
            client.get_data(DateRange(1, date(2020, 1, 1), date(2020, 1, 1)))

    def test_unparseable_date_raises_fetch_error(self):
        text = "time,zlev,latitude,longitude,sst\nUTC,m,degrees_north,degrees_east,degree_C\nyesterday,0.0,1.125,103.625,28.0\n"
        client, _ = make_client(make_config(), make_response(text))

        with pytest.raises(FetchError):
            client.get_data(DateRange(1, date(2020, 1, 1), date(2020, 1, 1)))

    def test_non_numeric_temperature_raises_fetch_error(self):
        text = (
            "time,zlev,latitude,longitude,sst\n"
            "UTC,m,degrees_north,degrees_east,degree_C\n"
            "2020-01-01T12:00:00Z,0.0,1.125,103.625,28.0\n"
            "2020-01-01T12:00:00Z,0.0,1.125,103.875,<html>oops\n"
            "2020-01-01T12:00:00Z,0.0,1.125,104.125,30.0\n"
        )
        client, _ = make_client(make_config(), make_response(text))

        with pytest.raises(FetchError, match="sub-range 1"):
            client.get_data(DateRange(1, date(2020, 1, 1), date(2020, 1, 1)))

    def test_all_missing_raises_empty_result(self):
        text = "time,zlev,latitude,longitude,sst\nUTC,m,degrees_north,degrees_east,degree_C\n2020-01-01T12:00:00Z,0.0,1.125,103.625,NaN\n"
        client, _ = make_client(make_config(), make_response(text))

        with pytest.raises(EmptyResultError):
            client.get_data(DateRange(1, date(2020, 1, 1), date(2020, 1, 1)))

    def test_main_fetches_sub_ranges_in_order(self):
        config = make_config(
            start_date="2019-01-01", end_date="2020-12-31", num_sub_ranges=2
        )
        first = CSV_RESPONSE.replace("2020-01-0", "2019-01-0")
        client, session = make_client(
            config, make_response(first), make_response(CSV_RESPONSE)
        )

        data = client.main()

        assert session.get.call_count == 2
        urls = [call.args[0] for call in session.get.call_args_list]
        assert "2019-01-01T12" in urls[0] and "2019-12-31T12" in urls[0]
        assert "2020-01-01T12" in urls[1] and "2020-12-31T12" in urls[1]
        assert len(data) == 6
        assert list(data.index) == list(range(6))
        assert data["date"].iloc[0].year == 2019
        assert data["date"].iloc[-1].year == 2020

    def test_main_aborts_on_failing_sub_range(self):
        config = make_config(
            start_date="2018-01-01", end_date="2020-12-31", num_sub_ranges=3
        )
        client, session = make_client(
            config,
            make_response(CSV_RESPONSE),
            requests.exceptions.Timeout("read timed out"),
            make_response(CSV_RESPONSE),
        )

        with pytest.raises(FetchError) as excinfo:
            client.main()

        assert excinfo.value.date_range.index == 2
        assert session.get.call_count == 2

    def test_default_session_without_cache(self):
        client = OisstGriddapClient(make_config())
        assert isinstance(client.session, requests.Session)
        assert not isinstance(client.session, requests_cache.CachedSession)

    def test_cached_session(self, tmp_path):
        client = OisstGriddapClient(
            make_config(cache_path=str(tmp_path / "http_cache"))
        )
        assert isinstance(client.session, requests_cache.CachedSession)


class TestMergeObservations:
    """Test concatenation of sub-range results."""

    def test_keeps_order_columns_and_duplicates(self):
        first = pd.DataFrame(
            {
                "longitude": [102.0, 103.0],
                "latitude": [1.0, 1.0],
                "date": pd.to_datetime(["2020-01-01", "2020-01-01"]),
                "temperature": [28.0, 30.0],
                "zlev": [0.0, 0.0],
            }
        )
        second = pd.DataFrame(
            {
                "temperature": [29.0],
                "date": pd.to_datetime(["2020-01-01"]),
                "latitude": [1.0],
                "longitude": [103.0],
            }
        )

        data = merge_observations([first, second])

        assert list(data.columns) == OBSERVATION_COLUMNS
        assert data["temperature"].tolist() == [28.0, 30.0, 29.0]
        assert list(data.index) == [0, 1, 2]

    def test_nothing_to_merge(self):
        with pytest.raises(EmptyResultError):
            merge_observations([])

    def test_all_empty_frames(self):
        empty = pd.DataFrame(columns=OBSERVATION_COLUMNS)
        with pytest.raises(EmptyResultError):
            merge_observations([empty, empty])


@pytest.mark.integration
def test_live_oisst_week():
    """Integration test against the public CoastWatch ERDDAP server."""
    config = make_config(
        server="https://coastwatch.pfeg.noaa.gov/erddap",
        start_date="2019-01-01",
        end_date="2019-01-07",
        retries=1,
    )

    data = OisstGriddapClient(config).main()

    assert set(data["date"].dt.day.unique()) == set(range(1, 8))
    assert np.isfinite(data["temperature"]).all()

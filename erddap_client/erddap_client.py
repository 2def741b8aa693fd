"""ERDDAP Client Library for Sea Surface Temperature Retrieval

This module provides the retrieval half of the SST site pipeline. It plans a long
historical request as a small number of sub-ranges, queries an ERDDAP griddap
server for every sub-range one after the other, normalises each CSV response into
a table of point observations and merges the results.

Core Components:

Configuration Management:
- ErddapClientConfig: Configuration from a JSON file, kwargs, or both
- Parameter validation and type conversion for griddap compatibility
- Bounding box and vertical level handling

Range Planning:
- DateRange: One contiguous span fetched by a single request
- plan_date_ranges(): Fixed boundary list or calendar-year aligned generation

API Client Architecture:
- ErddapClient: Abstract base class with session handling and the fetch loop
- OisstGriddapClient: NOAA OISST v2.1 daily grid (time, zlev, latitude, longitude)
- merge_observations(): Concatenation of sub-range tables in plan order

Error Types:
- SstPipelineError: Base class of every pipeline error
- InvalidRangeError: Invalid planner input
- FetchError: Transport, HTTP or payload failure for one sub-range
- EmptyResultError: A stage produced no valid observations

Usage Patterns:

Historical Data Retrieval:\n
    config = ErddapClientConfig(create_from_file=True)
    client = OisstGriddapClient(config)
    observations = client.main()

Configuration from kwargs only:\n
    config = ErddapClientConfig(
        create_from_file=False,
        kwargs={
            "server": "https://coastwatch.pfeg.noaa.gov/erddap",
            "dataset_id": "ncdcOisst21Agg_LonPM180",
            "site": "Singapore Strait",
            "start_date": "1982-01-01",
            "end_date": "2019-12-31",
            "bounding_box": {"north": 1.5, "south": 1.0, "west": 103.5, "east": 104.5},
        },
    )

Request Strategy:
The OISST archive is too large to be served in one griddap request, so the span is
split into sub-ranges (five 8-year blocks by default). Requests are issued
sequentially. Any failing sub-range aborts the whole run because partial coverage
biases every downstream mean.

Dependencies:
- requests: HTTP transport
- requests_cache: Optional on-disk HTTP cache
- retry_requests: Bounded retry with exponential backoff on transient statuses
- pandas: CSV parsing and tabular processing
- numpy: Calendar year partitioning
"""

import io
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import InitVar, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Sequence, Tuple
from urllib.parse import quote

import numpy as np
import pandas as pd
import requests
import requests_cache
from retry_requests import retry

OBSERVATION_COLUMNS = ["longitude", "latitude", "date", "temperature"]


class SstPipelineError(Exception):
    """Base class for all errors raised by the SST pipeline."""


class InvalidRangeError(SstPipelineError, ValueError):
    """Raised when a date span or sub-range plan is invalid."""


class EmptyResultError(SstPipelineError):
    """Raised when a stage yields zero valid observations."""


class FetchError(SstPipelineError):
    """Raised when a sub-range cannot be retrieved.

    Attributes:
        date_range (DateRange): The sub-range whose request failed.
        cause (BaseException): Underlying transport, service or parsing error.
    """

    def __init__(self, date_range: "DateRange", cause: BaseException) -> None:
        self.date_range = date_range
        self.cause = cause
        super().__init__(f"Failed to fetch {date_range}: {cause}")


@dataclass(frozen=True)
class DateRange:
    """A contiguous, inclusive span of calendar dates fetched by one request.

    Attributes:
        index (int): 1-based position of the range inside its plan.
        start (date): First date of the range.
        end (date): Last date of the range.

    Raises:
        InvalidRangeError: When start is after end.
    """

    index: int
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidRangeError(
                f"Sub-range {self.index} starts after it ends: {self.start} > {self.end}"
            )

    def __str__(self) -> str:
        return f"sub-range {self.index} ({self.start} to {self.end})"

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def _validate_boundaries(
    start: date, end: date, count: int, boundaries: Sequence[Tuple[date, date]]
) -> List[DateRange]:
    if len(boundaries) != count:
        raise InvalidRangeError(
            f"Expected {count} sub-ranges, boundary list holds {len(boundaries)}."
        )

    ranges = [
        DateRange(index, range_start, range_end)
        for index, (range_start, range_end) in enumerate(boundaries, start=1)
    ]

    if ranges[0].start != start:
        raise InvalidRangeError(
            f"First sub-range starts at {ranges[0].start}, requested span starts at {start}."
        )
    if ranges[-1].end != end:
        raise InvalidRangeError(
            f"Last sub-range ends at {ranges[-1].end}, requested span ends at {end}."
        )

    for previous, current in zip(ranges, ranges[1:]):
        if current.start != previous.end + timedelta(days=1):
            raise InvalidRangeError(
                f"{previous} and {current} overlap or leave a gap."
            )

    return ranges


def plan_date_ranges(
    start: date,
    end: date,
    count: int,
    boundaries: Sequence[Tuple[date, date]] | None = None,
) -> List[DateRange]:
    """Partition [start, end] into count contiguous, non-overlapping sub-ranges.

    When a fixed boundary list is given it is validated and returned as DateRange
    values. Otherwise the calendar years of the span are split into count roughly
    equal consecutive groups, so every boundary falls on a year boundary except
    the outer ones, which are clamped to start and end.

    Args:
        start (date): First date of the requested span.
        end (date): Last date of the requested span.
        count (int): Number of sub-ranges.
        boundaries (Sequence[Tuple[date, date]] | None, optional): Fixed
            (start, end) pairs in chronological order. Defaults to None.

    Returns:
        List[DateRange]: Sub-ranges indexed 1..count covering [start, end] exactly.

    Raises:
        InvalidRangeError: When count <= 0, start > end, the boundary list does not
            partition the span, or count exceeds the number of calendar years.
    """
    if count <= 0:
        raise InvalidRangeError(f"Number of sub-ranges must be > 0. Got {count}")
    if start > end:
        raise InvalidRangeError(f"Start date {start} is after end date {end}.")

    if boundaries:
        return _validate_boundaries(start, end, count, boundaries)

    years = np.arange(start.year, end.year + 1)

    if count > len(years):
        raise InvalidRangeError(
            f"Cannot split {len(years)} calendar year(s) into {count} year-aligned sub-ranges."
        )

    ranges = []
    for index, chunk in enumerate(np.array_split(years, count), start=1):
        range_start = max(date(int(chunk[0]), 1, 1), start)
        range_end = min(date(int(chunk[-1]), 12, 31), end)
        ranges.append(DateRange(index, range_start, range_end))

    return ranges


def merge_observations(frames: Sequence[pd.DataFrame]) -> pd.DataFrame:
    """Concatenate per sub-range observation tables in plan order.

    Only the RawObservation columns are retained. Duplicated
    (longitude, latitude, date) tuples are left in place; they are resolved by
    the daily aggregation.

    Args:
        frames (Sequence[pd.DataFrame]): Observation tables, one per sub-range.

    Returns:
        pd.DataFrame: Merged table with columns longitude, latitude, date,
            temperature and a fresh RangeIndex.

    Raises:
        EmptyResultError: When there is nothing to merge or the merged table is empty.
    """
    if not frames:
        raise EmptyResultError("Merge stage received no sub-range results.")

    data = pd.concat(
        [frame[OBSERVATION_COLUMNS] for frame in frames], axis=0, ignore_index=True
    )

    if data.empty:
        raise EmptyResultError("Merge stage produced zero valid observations.")

    return data


@dataclass
class ErddapClientConfig:
    """Configuration class for ERDDAP griddap client parameters.

    Manages the dataset, spatial box, vertical level, temporal span and sub-range
    plan of a retrieval, along with transport settings. It supports
    initialization from a JSON configuration file or from kwargs, with kwargs
    overriding file values when both are used.

    Configuration File Schema:
        {
            "server": "https://...",
            "dataset_id": str,
            "variable": str,
            "site": str,
            "start_date": "YYYY-MM-DD",
            "end_date": "YYYY-MM-DD",
            "bounding_box": {"north": float, "south": float, "west": float, "east": float},
            "zlev": float,
            "sub_ranges": [["YYYY-MM-DD", "YYYY-MM-DD"], ...] | null,
            "num_sub_ranges": int,
            "request_timeout": float,
            "retries": int,
            "backoff_factor": float,
            "cache_path": str | null,
            "output_dir": str
        }

    Attributes:
        server (str): ERDDAP base URL without a trailing slash.
        dataset_id (str): griddap dataset identifier.
        variable (str): Field selector, e.g. "sst".
        site (str): Site label carried into the aggregated tables.
        start_date (date): First date of the requested span.
        end_date (date): Last date of the requested span.
        bounding_box (Dict[str, float]): Keys north, south, west, east in degrees.
        zlev (float): Vertical level used for both ends of the level pair.
        sub_ranges (List[Tuple[date, date]] | None): Fixed sub-range boundaries.
        num_sub_ranges (int): Number of sub-ranges to plan.
        request_timeout (float): Per-request timeout in seconds.
        retries (int): Transport retries per request.
        backoff_factor (float): Exponential backoff factor between retries.
        cache_path (str | None): Path of an HTTP cache. None disables caching.
        output_dir (str): Directory for plots and session snapshots.

    Example:
        config = ErddapClientConfig(
            create_from_file=True,
            kwargs={"site": "Johor Strait"}
        )
    """

    server: str = field(init=False)
    dataset_id: str = field(init=False)
    variable: str = field(init=False, default="sst")
    site: str = field(init=False)
    start_date: date = field(init=False, metadata={"format": "YYYY-MM-DD"})
    end_date: date = field(init=False, metadata={"format": "YYYY-MM-DD"})
    bounding_box: Dict[str, float] = field(init=False)
    zlev: float = field(init=False, default=0.0)
    sub_ranges: List[Tuple[date, date]] | None = field(init=False, default=None)
    num_sub_ranges: int = field(init=False, default=5)
    request_timeout: float = field(init=False, default=600.0)
    retries: int = field(init=False, default=3)
    backoff_factor: float = field(init=False, default=2.0)
    cache_path: str | None = field(init=False, default=None)
    output_dir: str = field(init=False, default="output")
    create_from_file: InitVar[bool] = field(default=False)
    config_file: InitVar[str | None] = field(default=None)
    kwargs: InitVar[Dict[str, Any] | None] = field(default=None)

    def __post_init__(
        self,
        create_from_file: bool,
        config_file: str | None,
        kwargs: Dict[str, Any] | None,
    ):
        """Initialize ErddapClientConfig from file or kwargs with validation.

        Args:
            create_from_file (bool): Whether to load base configuration from file.
            config_file (str | None): Path to JSON configuration file. If None and
                create_from_file=True, uses {cwd}/config/{CONFIG_FILE env var or config.json}.
            kwargs (Dict[str, Any] | None): Direct parameter values or overrides.
                Required when create_from_file=False.

        Raises:
            ValueError: When create_from_file=False but kwargs is None.
            ValueError: When parameter validation fails.
        """
        if create_from_file:
            if not config_file:
                config_file = os.path.join(
                    os.getcwd(),
                    "config",
                    os.getenv("CONFIG_FILE", "config.json"),
                )

            config = self.__get_config(config_file)

            if kwargs:
                config.update(kwargs)

            self.__set_all(config)

        else:
            if kwargs:
                self.__set_all(kwargs)
            else:
                raise ValueError("Kwargs are required when create_from_file=False.")

    def __get_config(self, config_file: str) -> Dict[str, Any]:
        """Load and parse JSON configuration file."""
        with open(file=config_file, mode="r") as file:
            config = json.load(fp=file)

        return config

    def __set_all(self, config: Dict[str, Any]) -> None:
        self.__set_string("server", config.get("server"))
        self.server = self.server.rstrip("/")
        self.__set_string("dataset_id", config.get("dataset_id"))
        self.__set_string("variable", config.get("variable", "sst"))
        self.__set_string("site", config.get("site"))
        self.start_date = self.__to_date("start_date", config.get("start_date"))
        self.end_date = self.__to_date("end_date", config.get("end_date"))
        self.__set_bounding_box(config.get("bounding_box"))
        self.zlev = self.__to_float("zlev", config.get("zlev", 0.0))
        self.__set_sub_ranges(config.get("sub_ranges"))
        self.__set_num_sub_ranges(config.get("num_sub_ranges"))
        self.request_timeout = self.__to_float(
            "request_timeout", config.get("request_timeout", 600.0)
        )
        self.__set_retries(config.get("retries", 3))
        self.backoff_factor = self.__to_float(
            "backoff_factor", config.get("backoff_factor", 2.0)
        )
        self.cache_path = config.get("cache_path")
        self.__set_string("output_dir", config.get("output_dir", "output"))

    def __parse_date(self, date_string: str) -> date:
        """Parse a "YYYY-MM-DD" string into a datetime.date object."""
        return datetime.strptime(date_string, "%Y-%m-%d").date()

    def __to_date(self, name: str, value: Any) -> date:
        """Validate a date parameter given as string or date object.

        Args:
            name (str): Parameter name used in error messages.
            value (Any): "YYYY-MM-DD" string or datetime.date object.

        Returns:
            date: Parsed date.

        Raises:
            ValueError: When value is neither a string nor a date.
        """
        if isinstance(value, datetime):
            return value.date()
        elif isinstance(value, date):
            return value
        elif isinstance(value, str):
            return self.__parse_date(value)
        else:
            raise ValueError(
                f"Parameter {name} is required. Expected {date} or 'YYYY-MM-DD' Received {type(value)} instead."
            )

    def __to_float(self, name: str, value: Any) -> float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise ValueError(
            f"Parameter {name} must be a number. Received {type(value)} instead."
        )

    def __set_string(self, name: str, value: Any) -> None:
        if isinstance(value, str) and value:
            setattr(self, name, value)
        else:
            raise ValueError(
                f"Parameter {name} is required. Expected non-empty {str} Received {value!r} instead."
            )

    def __set_bounding_box(self, bounding_box: Any) -> None:
        """Validate and set the bounding box.

        Args:
            bounding_box (Any): Dictionary with keys north, south, west, east holding
                decimal degrees. Longitudes follow the dataset convention (-180..180
                for the LonPM180 OISST aggregation).

        Raises:
            ValueError: When the schema is wrong, a value is not numeric, or the box
                is inverted (south > north or west > east).
        """
        keys = ("north", "south", "west", "east")

        if not isinstance(bounding_box, dict) or not all(
            key in bounding_box
            and isinstance(bounding_box[key], (int, float))
            and not isinstance(bounding_box[key], bool)
            for key in keys
        ):
            raise ValueError(
                f"Parameter bounding_box is required. Expected {Dict[str, float]} with schema: {dict(north=float, south=float, west=float, east=float)} Instead received: {bounding_box}"
            )

        box = {key: float(bounding_box[key]) for key in keys}

        if box["south"] > box["north"]:
            raise ValueError(
                f"Bounding box south ({box['south']}) must not exceed north ({box['north']})."
            )
        if box["west"] > box["east"]:
            raise ValueError(
                f"Bounding box west ({box['west']}) must not exceed east ({box['east']})."
            )

        self.bounding_box = box

    def __set_sub_ranges(self, sub_ranges: Any) -> None:
        """Validate and set the optional fixed sub-range boundaries.

        Args:
            sub_ranges (Any): None, or a list of two-element [start, end] lists.
                Consistency with the requested span is checked by plan_date_ranges().

        Raises:
            ValueError: When sub_ranges is neither None nor a list of pairs.
        """
        if sub_ranges is None:
            self.sub_ranges = None
        elif isinstance(sub_ranges, list) and all(
            isinstance(pair, (list, tuple)) and len(pair) == 2 for pair in sub_ranges
        ):
            self.sub_ranges = [
                (
                    self.__to_date("sub_ranges", pair[0]),
                    self.__to_date("sub_ranges", pair[1]),
                )
                for pair in sub_ranges
            ]
        else:
            raise ValueError(
                f"Parameter sub_ranges must be null or a list of [start, end] pairs. Received {sub_ranges!r} instead."
            )

    def __set_num_sub_ranges(self, num_sub_ranges: Any) -> None:
        """Set the number of sub-ranges, defaulting to the fixed list length or 5."""
        if num_sub_ranges is None:
            self.num_sub_ranges = len(self.sub_ranges) if self.sub_ranges else 5
        elif isinstance(num_sub_ranges, int) and not isinstance(num_sub_ranges, bool):
            self.num_sub_ranges = num_sub_ranges
        else:
            raise ValueError(
                f"Parameter num_sub_ranges must be an integer. Received {type(num_sub_ranges)} instead."
            )

    def __set_retries(self, retries: Any) -> None:
        if isinstance(retries, int) and not isinstance(retries, bool):
            if retries >= 0:
                self.retries = retries
            else:
                raise ValueError(f"Parameter retries must be >=0. Got {retries}")
        else:
            raise ValueError(
                f"Parameter retries must be an integer. Received {type(retries)} instead."
            )

    def plan(self) -> List[DateRange]:
        """Sub-ranges for this configuration, see plan_date_ranges()."""
        return plan_date_ranges(
            start=self.start_date,
            end=self.end_date,
            count=self.num_sub_ranges,
            boundaries=self.sub_ranges,
        )


class ErddapClient(ABC):
    """Abstract base class for ERDDAP clients fetching a span in sub-ranges.

    Provides the HTTP session, the request wrapper translating every transport
    and HTTP failure into FetchError, and the sequential fetch-and-merge loop.
    Subclasses define how a sub-range is turned into a query and how a response
    is normalised into observations.

    Session Configuration:
    - Plain requests session, or a requests_cache session when cache_path is set
    - Bounded retry with exponential backoff on RETRY_STATUSES

    Abstract Methods:
        build_query(): griddap query string for one sub-range
        process_response(): Response text to RawObservation table

    Attributes:
        RETRY_STATUSES (Tuple[int, ...]): HTTP statuses retried by the session
        config: ErddapClientConfig instance
        session: Configured requests session
        logger: Configured logger for operation monitoring
    """

    RETRY_STATUSES = (429, 500, 502, 503, 504)

    def __init__(
        self, config: ErddapClientConfig, session: requests.Session | None = None
    ):
        """Initialize the client with configuration and an HTTP session.

        Args:
            config (ErddapClientConfig): Retrieval parameters.
            session (requests.Session | None, optional): Session to use instead of
                the one built from config. Defaults to None.
        """
        self.config = config

        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(levelname)s - %(message)s",
        )
        self.logger = logging.getLogger(name=self.__class__.__name__)

        self.session = session if session is not None else self.__build_session()

        self.logger.info(f"Setting up {self.__class__.__name__}")

    def __build_session(self) -> requests.Session:
        if self.config.cache_path:
            session = requests_cache.CachedSession(self.config.cache_path)
        else:
            session = requests.Session()

        return retry(
            session,
            retries=self.config.retries,
            backoff_factor=self.config.backoff_factor,
            status_to_retry=ErddapClient.RETRY_STATUSES,
        )

    @property
    def url(self) -> str:
        """griddap CSV endpoint of the configured dataset."""
        return f"{self.config.server}/griddap/{self.config.dataset_id}.csv"

    @abstractmethod
    def build_query(self, date_range: DateRange) -> str:
        """Build the unencoded griddap query for one sub-range."""
        pass

    @abstractmethod
    def process_response(self, text: str, date_range: DateRange) -> pd.DataFrame:
        """Convert a response body into a RawObservation table."""
        pass

    def request(self, url: str, date_range: DateRange) -> str:
        """Issue a GET request and return the response body.

        Args:
            url (str): Fully encoded request URL.
            date_range (DateRange): Sub-range being fetched, used for error reporting.

        Returns:
            str: Response body.

        Raises:
            FetchError: On connection failures, timeouts, exhausted retries and
                HTTP error statuses.
        """
        try:
            response = self.session.get(url, timeout=self.config.request_timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise FetchError(date_range, e) from e

        return response.text

    def get_data(self, date_range: DateRange) -> pd.DataFrame:
        """Retrieve and normalise the observations of one sub-range.

        Args:
            date_range (DateRange): Sub-range to fetch.

        Returns:
            pd.DataFrame: RawObservation table for the sub-range.

        Raises:
            FetchError: When the request fails or the payload is malformed.
            EmptyResultError: When the sub-range holds no valid observation.
        """
        url = f"{self.url}?{quote(self.build_query(date_range), safe=',')}"

        self.logger.info(f"Retrieving {date_range} from {url}")

        data = self.process_response(self.request(url, date_range), date_range)

        if data.empty:
            raise EmptyResultError(f"{date_range} returned zero valid observations.")

        self.logger.info(f"Retrieved {len(data)} observations for {date_range}")

        return data

    def _main(self) -> pd.DataFrame:
        """Plan the span, fetch every sub-range in order and merge the results.

        Returns:
            pd.DataFrame: Merged RawObservation table.

        Raises:
            InvalidRangeError: When the configured plan is invalid.
            FetchError: When any sub-range fails. The run is aborted.
            EmptyResultError: When any sub-range or the merged set is empty.
        """
        date_ranges = self.config.plan()

        self.logger.info(
            f"Processing {len(date_ranges)} requests covering {self.config.start_date} to {self.config.end_date}"
        )

        frames = [self.get_data(date_range) for date_range in date_ranges]

        data = merge_observations(frames)

        self.logger.info(
            f"{self.__class__.__name__} exited successfully with {len(data)} observations."
        )

        return data


class OisstGriddapClient(ErddapClient):
    """ERDDAP client for the NOAA OISST v2.1 daily sea surface temperature grid.

    The dataset is indexed by time, zlev, latitude and longitude. Time stamps are
    placed at 12:00 UTC, so sub-range bounds are requested at that time of day
    to keep adjacent sub-ranges from sharing a date.

    Data Processing:
    - The units row following the CSV header is skipped
    - Time stamps are truncated to calendar dates
    - time -> date and <variable> -> temperature
    - Rows with missing temperature (NaN over land or ice) are dropped

    Attributes:
        TIME_OF_DAY (str): Time-of-day suffix used for the query bounds

    Example:
        config = ErddapClientConfig(create_from_file=True)
        client = OisstGriddapClient(config)
        observations = client.main()
    """

    TIME_OF_DAY = "T12:00:00Z"

    def build_query(self, date_range: DateRange) -> str:
        box = self.config.bounding_box
        zlev = self.config.zlev

        return (
            f"{self.config.variable}"
            f"[({date_range.start.isoformat()}{OisstGriddapClient.TIME_OF_DAY})"
            f":1:({date_range.end.isoformat()}{OisstGriddapClient.TIME_OF_DAY})]"
            f"[({zlev}):1:({zlev})]"
            f"[({box['south']}):1:({box['north']})]"
            f"[({box['west']}):1:({box['east']})]"
        )

    def process_response(self, text: str, date_range: DateRange) -> pd.DataFrame:
        """Convert a griddap CSV response to a RawObservation table.

        Args:
            text (str): CSV body with a header row followed by a units row.
            date_range (DateRange): Sub-range being processed, for error reporting.

        Returns:
            pd.DataFrame: Columns longitude, latitude, date (datetime64, midnight)
                and temperature (float), without missing temperatures.

        Raises:
            FetchError: When the payload cannot be parsed or misses an expected field.
        """
        variable = self.config.variable

        try:
            data = pd.read_csv(io.StringIO(text), skiprows=[1])
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise FetchError(date_range, e) from e

        missing = {"time", "latitude", "longitude", variable} - set(data.columns)
        if missing:
            raise FetchError(
                date_range,
                ValueError(f"Response is missing expected fields {sorted(missing)}"),
            )

        data = data.rename(columns={"time": "date", variable: "temperature"})

        try:
            data["date"] = pd.to_datetime(
                data["date"].astype(str).str.split(r"[T ]", n=1, regex=True).str[0],
                format="%Y-%m-%d",
            )
            data["longitude"] = data["longitude"].astype(float)
            data["latitude"] = data["latitude"].astype(float)
            data["temperature"] = data["temperature"].astype(float)
        except (ValueError, TypeError) as e:
            raise FetchError(date_range, e) from e

        data = data.dropna(subset=["temperature"])

        return data[OBSERVATION_COLUMNS].reset_index(drop=True)

    def main(self) -> pd.DataFrame:
        """Main entry point for OISST retrieval.

        Returns:
            pd.DataFrame: Merged RawObservation table for the configured span.
        """
        data = self._main()

        return data

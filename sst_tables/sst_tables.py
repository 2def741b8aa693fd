"""Daily and Monthly SST Table Construction

This module turns the merged point observations of a site into the daily and
monthly series used for reporting. Aggregation happens in two explicit passes:
first the grouped means are built, then the finished table is centered.

Components:
- center_anomaly(): Within-site centering of a value column (center, do not scale)
- DailyTableConstructor: Spatial mean over all grid cells per calendar date
- MonthlyTableConstructor: Mean of the daily means per calendar month

Output Structure:
- Daily: date, longitude, latitude, site, mean_temperature, anomaly
- Monthly: date, month, year, longitude, latitude, site, mean_temperature, anomaly

Example:
    daily = DailyTableConstructor(site="Singapore Strait").main(observations)
    monthly = MonthlyTableConstructor().main(daily)
"""

import logging
from typing import List

import pandas as pd

from erddap_client import EmptyResultError

DAILY_COLUMNS = [
    "date",
    "longitude",
    "latitude",
    "site",
    "mean_temperature",
    "anomaly",
]

MONTHLY_COLUMNS = [
    "date",
    "month",
    "year",
    "longitude",
    "latitude",
    "site",
    "mean_temperature",
    "anomaly",
]


def _require_columns(data: pd.DataFrame, columns: List[str], stage: str) -> None:
    missing = [column for column in columns if column not in data.columns]
    if missing:
        raise ValueError(f"{stage} input is missing columns {missing}")


def center_anomaly(
    data: pd.DataFrame,
    value_column: str = "mean_temperature",
    group_column: str = "site",
) -> pd.DataFrame:
    """Subtract the group mean of value_column from every row.

    Centering runs within each group, so tables holding several sites are
    centered per site. The mean of the resulting anomaly column is zero within
    every group.

    Args:
        data (pd.DataFrame): Complete aggregated table. Must contain value_column
            and group_column.
        value_column (str, optional): Column to center. Defaults to "mean_temperature".
        group_column (str, optional): Grouping column. Defaults to "site".

    Returns:
        pd.DataFrame: Copy of data with an "anomaly" column.
    """
    data = data.copy()

    data["anomaly"] = data[value_column] - data.groupby(group_column)[
        value_column
    ].transform("mean")

    return data


class DailyTableConstructor:
    """Aggregate point observations into one record per site and calendar date.

    The mean of a date spans every grid cell of the bounding box on that date,
    so it is a spatial average. Each record keeps the first-seen grid cell of its
    date as representative location.

    Repeated (longitude, latitude, date) tuples, which can only appear when
    sub-ranges overlap or a sub-range was fetched twice, are dropped before the
    mean is taken.

    Attributes:
        site (str): Label written into the site column.
        logger: Configured logger

    Example:
        constructor = DailyTableConstructor(site="Singapore Strait")
        daily = constructor.main(observations)
    """

    def __init__(self, site: str) -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(levelname)s - %(message)s",
        )
        self.logger = logging.getLogger(name=self.__class__.__name__)
        self.site = site

    def __drop_duplicate_cells(self, data: pd.DataFrame) -> pd.DataFrame:
        deduplicated = data.drop_duplicates(
            subset=["longitude", "latitude", "date"], keep="first"
        )

        dropped = len(data) - len(deduplicated)
        if dropped:
            self.logger.warning(
                f"Dropped {dropped} repeated (longitude, latitude, date) observations"
            )

        return deduplicated

    def __aggregate_data(self, data: pd.DataFrame) -> pd.DataFrame:
        """Group observations by date and average temperature across grid cells.

        Args:
            data (pd.DataFrame): Observations with longitude, latitude, date and
                temperature columns.

        Returns:
            pd.DataFrame: One row per date in ascending order with the first-seen
                location and the mean temperature.
        """
        data = (
            data.groupby("date", sort=True)
            .aggregate(
                longitude=("longitude", "first"),
                latitude=("latitude", "first"),
                mean_temperature=("temperature", "mean"),
            )
            .reset_index()
        )

        data.insert(3, "site", self.site)

        return data

    def main(self, observations: pd.DataFrame) -> pd.DataFrame:
        """Build the centered daily table.

        Args:
            observations (pd.DataFrame): Merged RawObservation table.

        Returns:
            pd.DataFrame: Daily table with columns date, longitude, latitude, site,
                mean_temperature and anomaly.

        Raises:
            EmptyResultError: When observations is empty.
            ValueError: When a RawObservation column is missing.
        """
        if observations.empty:
            raise EmptyResultError("Daily aggregation received zero observations.")

        _require_columns(
            observations,
            ["longitude", "latitude", "date", "temperature"],
            "Daily aggregation",
        )

        data = observations.copy()
        data["date"] = pd.to_datetime(data["date"]).dt.normalize()
        data["temperature"] = data["temperature"].astype(float)
        data = data.dropna(subset=["temperature"])

        if data.empty:
            raise EmptyResultError("Daily aggregation received zero valid observations.")

        data = self.__drop_duplicate_cells(data)
        data = self.__aggregate_data(data)
        data = center_anomaly(data)

        self.logger.info(f"Built {len(data)} daily records for site {self.site}")

        return data[DAILY_COLUMNS]


class MonthlyTableConstructor:
    """Aggregate the daily table into one record per site and calendar month.

    The monthly value is the mean of the daily means of that month, not the mean
    over the raw observations, so every valid day weighs the same regardless of
    how many grid cells reported on it. Each record keeps the first date seen in
    its month and that date's location.

    Example:
        monthly = MonthlyTableConstructor().main(daily)
    """

    def __init__(self) -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(levelname)s - %(message)s",
        )
        self.logger = logging.getLogger(name=self.__class__.__name__)

    def __create_month_key(self, data: pd.DataFrame) -> pd.DataFrame:
        data["month"] = data["date"].dt.strftime("%Y-%m")
        data["year"] = data["date"].dt.year

        return data

    def __aggregate_data(self, data: pd.DataFrame) -> pd.DataFrame:
        data = (
            data.sort_values("date", kind="stable")
            .groupby(["site", "month"], sort=True)
            .aggregate(
                date=("date", "first"),
                year=("year", "first"),
                longitude=("longitude", "first"),
                latitude=("latitude", "first"),
                mean_temperature=("mean_temperature", "mean"),
            )
            .reset_index()
            .sort_values(["month", "site"], kind="stable")
            .reset_index(drop=True)
        )

        return data

    def main(self, daily_data: pd.DataFrame) -> pd.DataFrame:
        """Build the centered monthly table.

        Args:
            daily_data (pd.DataFrame): Daily table as produced by
                DailyTableConstructor. The anomaly column is ignored.

        Returns:
            pd.DataFrame: Monthly table with columns date, month, year, longitude,
                latitude, site, mean_temperature and anomaly, ascending by month
                and then by site.

        Raises:
            EmptyResultError: When daily_data is empty.
            ValueError: When a daily column is missing.
        """
        if daily_data.empty:
            raise EmptyResultError("Monthly aggregation received zero daily records.")

        _require_columns(
            daily_data,
            ["date", "longitude", "latitude", "site", "mean_temperature"],
            "Monthly aggregation",
        )

        data = daily_data.drop(columns="anomaly", errors="ignore")
        data["date"] = pd.to_datetime(data["date"])

        data = self.__create_month_key(data)
        data = self.__aggregate_data(data)
        data = center_anomaly(data)

        self.logger.info(f"Built {len(data)} monthly records")

        return data[MONTHLY_COLUMNS].reset_index(drop=True)

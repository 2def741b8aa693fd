"""Time Series Plots for SST Site Tables

Renders the two charts of a pipeline run, each a line plot overlaid with an
ordinary least squares linear trend:

- Daily anomaly over time ({site}_daily_anomaly.png)
- Monthly mean temperature over time ({site}_monthly_mean.png)

The trend is fitted with statsmodels on time expressed in years since the first
date, so the reported slope is in degrees Celsius per year.

Example:
    reporter = SstReporter(output_dir="output")
    daily_path, monthly_path = reporter.main(daily, monthly)
"""

import logging
import os
from typing import Tuple

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import statsmodels.api as sm

DAYS_PER_YEAR = 365.25


def fit_trend(dates: pd.Series, values: pd.Series) -> Tuple[np.ndarray, float]:
    """Fit values against time with OLS.

    Args:
        dates (pd.Series): Dates of the series.
        values (pd.Series): Values of the series.

    Returns:
        Tuple[np.ndarray, float]: Fitted trend values aligned with the input and
            the slope per year. Series with fewer than two points get a flat
            trend at their mean and a slope of 0.0.
    """
    dates = pd.to_datetime(pd.Series(dates)).reset_index(drop=True)
    y = np.asarray(values, dtype=float)

    if len(y) < 2:
        return np.full(len(y), y.mean() if len(y) else np.nan), 0.0

    x = ((dates - dates.min()).dt.days / DAYS_PER_YEAR).to_numpy(dtype=float)

    result = sm.OLS(y, sm.add_constant(x, has_constant="add")).fit()

    return np.asarray(result.fittedvalues), float(result.params[1])


class SstReporter:
    """Render the daily anomaly and monthly mean charts of a site.

    Attributes:
        output_dir (str): Directory the PNG files are written to.
        logger: Configured logger
    """

    def __init__(self, output_dir: str = "output") -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(levelname)s - %(message)s",
        )
        self.logger = logging.getLogger(name=self.__class__.__name__)
        self.output_dir = output_dir

    def __file_name(self, site: str, suffix: str) -> str:
        return f"{site.strip().replace(' ', '_')}_{suffix}.png"

    def plot_series(
        self,
        dates: pd.Series,
        values: pd.Series,
        title: str,
        ylabel: str,
        file_name: str,
        zero_line: bool = False,
    ) -> str:
        """Plot one series with its linear trend and save it as PNG.

        Args:
            dates (pd.Series): x values.
            values (pd.Series): y values.
            title (str): Chart title.
            ylabel (str): y axis label.
            file_name (str): Name of the PNG file inside output_dir.
            zero_line (bool, optional): Draw a horizontal line at 0. Defaults to False.

        Returns:
            str: Path of the written file.
        """
        os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, file_name)

        trend, slope = fit_trend(dates, values)

        fig, ax = plt.subplots(figsize=(12, 4))
        ax.plot(pd.to_datetime(dates), values, linewidth=0.8, color="tab:blue")
        ax.plot(
            pd.to_datetime(dates),
            trend,
            linestyle="--",
            color="tab:red",
            label=f"Linear trend ({slope:+.3f} °C/yr)",
        )
        if zero_line:
            ax.axhline(0.0, color="grey", linewidth=0.6)
        ax.set_title(title)
        ax.set_xlabel("Date")
        ax.set_ylabel(ylabel)
        ax.legend(loc="upper left")
        fig.tight_layout()
        fig.savefig(path, dpi=150)
        plt.close(fig)

        self.logger.info(f"Saved {title} to {path}")

        return path

    def plot_daily_anomaly(self, daily_data: pd.DataFrame) -> str:
        site = str(daily_data["site"].iloc[0])

        return self.plot_series(
            dates=daily_data["date"],
            values=daily_data["anomaly"],
            title=f"{site} daily SST anomaly",
            ylabel="SST anomaly (°C)",
            file_name=self.__file_name(site, "daily_anomaly"),
            zero_line=True,
        )

    def plot_monthly_mean(self, monthly_data: pd.DataFrame) -> str:
        site = str(monthly_data["site"].iloc[0])

        return self.plot_series(
            dates=monthly_data["date"],
            values=monthly_data["mean_temperature"],
            title=f"{site} monthly mean SST",
            ylabel="SST (°C)",
            file_name=self.__file_name(site, "monthly_mean"),
        )

    def main(
        self, daily_data: pd.DataFrame, monthly_data: pd.DataFrame
    ) -> Tuple[str, str]:
        """Render both charts.

        Args:
            daily_data (pd.DataFrame): Daily table with date, site and anomaly.
            monthly_data (pd.DataFrame): Monthly table with date, site and
                mean_temperature.

        Returns:
            Tuple[str, str]: Paths of the daily anomaly and monthly mean charts.
        """
        return (
            self.plot_daily_anomaly(daily_data),
            self.plot_monthly_mean(monthly_data),
        )

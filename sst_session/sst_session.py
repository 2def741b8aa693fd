"""Session Snapshot of an SST Pipeline Run

Holds the three tables of a run together with the sub-range plan that produced
them, and persists the whole session with joblib so it can be inspected later
without hitting the remote service again. Saving is an explicit, optional step
taken by the caller once the pipeline has finished.

Example:
    session = SstSession(site="Singapore Strait", raw=raw, daily=daily, monthly=monthly)
    path = session.save("output")
    restored = SstSession.from_file("output", site="Singapore Strait")
"""

import os
from dataclasses import dataclass, field
from typing import List, Type, TypeVar

import joblib
import pandas as pd

from erddap_client import DateRange

SstSessionType = TypeVar("SstSessionType", bound="SstSession")


@dataclass
class SstSession:
    """Tables and plan of one pipeline run.

    Attributes:
        site (str): Site label of the run.
        raw (pd.DataFrame): Merged RawObservation table.
        daily (pd.DataFrame): Centered daily table.
        monthly (pd.DataFrame): Centered monthly table.
        date_ranges (List[DateRange]): Sub-ranges that were fetched.
    """

    site: str
    raw: pd.DataFrame
    daily: pd.DataFrame
    monthly: pd.DataFrame
    date_ranges: List[DateRange] = field(default_factory=list)

    @staticmethod
    def default_file_name(site: str) -> str:
        return f"SstSession_{site.strip().replace(' ', '_')}.pkl"

    def save(self, directory: str, file_name: str | None = None) -> str:
        """Save the session to disk.

        Args:
            directory (str): Target directory. Created if it does not exist.
            file_name (str | None, optional): Custom file name. Defaults to
                'SstSession_{site}.pkl' with spaces replaced by underscores.

        Returns:
            str: Path of the saved file, suitable for from_file().

        Note:
            Existing files with the same name are overwritten.
        """
        if not file_name:
            file_name = self.default_file_name(self.site)

        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, file_name)

        joblib.dump(self, path)

        return path

    @classmethod
    def from_file(
        cls: Type[SstSessionType],
        directory: str,
        file_name: str | None = None,
        site: str | None = None,
    ) -> SstSessionType:
        """Load a saved session.

        Args:
            directory (str): Directory containing the saved session.
            file_name (str | None, optional): File name. Takes precedence over site.
            site (str | None, optional): Site used to build the default file name.

        Returns:
            SstSessionType: The restored session.

        Raises:
            ValueError: If neither file_name nor site is provided.
            FileNotFoundError: If the file does not exist.
        """
        if file_name:
            path = os.path.join(directory, file_name)
        elif site is not None:
            path = os.path.join(directory, cls.default_file_name(site))
        else:
            raise ValueError(
                "Either file_name or site must be provided to construct path."
            )

        return joblib.load(path)

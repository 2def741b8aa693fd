"""SST Site Pipeline Runner

This module runs the complete retrieval and aggregation routine for one site:

- Plans the configured span as sub-ranges and fetches them sequentially from ERDDAP
- Merges the sub-range results into the raw observation table
- Builds the centered daily table (spatial mean per date)
- Builds the centered monthly table (mean of daily means per month)
- Optionally saves the whole session with joblib for later inspection
- Renders the daily anomaly and monthly mean charts

Any failing sub-range or stage aborts the run. The error is logged with its
traceback and re-raised, so the process exits non-zero and names the sub-range
or stage that failed.

Configuration:
    Parameters are read from {cwd}/config/{CONFIG_FILE env var or config.json}.
    See ErddapClientConfig for the schema.

Example:
    python pipeline.py
"""

import logging

from erddap_client import ErddapClient, ErddapClientConfig, OisstGriddapClient
from sst_report import SstReporter
from sst_session import SstSession
from sst_tables import DailyTableConstructor, MonthlyTableConstructor


def run_pipeline(
    config: ErddapClientConfig,
    client: ErddapClient | None = None,
    reporter: SstReporter | None = None,
    snapshot: bool = True,
) -> SstSession:
    """Fetch, aggregate and report one site.

    Args:
        config (ErddapClientConfig): Retrieval and output parameters.
        client (ErddapClient | None, optional): Client to fetch with. Defaults to an
            OisstGriddapClient built from config.
        reporter (SstReporter | None, optional): Reporter to render with. Defaults
            to an SstReporter writing into config.output_dir.
        snapshot (bool, optional): Save the session into config.output_dir.
            Defaults to True.

    Returns:
        SstSession: Raw, daily and monthly tables of the run.

    Raises:
        InvalidRangeError: When the configured sub-range plan is invalid.
        FetchError: When a sub-range cannot be retrieved.
        EmptyResultError: When a sub-range or stage yields no valid observation.
    """
    logger = logging.getLogger(name="SST Pipeline")

    if client is None:
        client = OisstGriddapClient(config)
    if reporter is None:
        reporter = SstReporter(output_dir=config.output_dir)

    raw_data = client.main()

    daily_data = DailyTableConstructor(site=config.site).main(raw_data)
    monthly_data = MonthlyTableConstructor().main(daily_data)

    session = SstSession(
        site=config.site,
        raw=raw_data,
        daily=daily_data,
        monthly=monthly_data,
        date_ranges=config.plan(),
    )

    if snapshot:
        path = session.save(config.output_dir)
        logger.info(f"Saved session snapshot to {path}")

    reporter.main(daily_data, monthly_data)

    return session


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger(name="SST Pipeline")

    try:
        logger.info("Starting SST pipeline routine...")

        config = ErddapClientConfig(create_from_file=True)

        session = run_pipeline(config)

        logger.info(
            f"SST pipeline routine for {session.site} completed successfully! "
            f"{len(session.raw)} observations, {len(session.daily)} days, {len(session.monthly)} months."
        )
    except Exception:
        logger.exception("An error occurred during the SST pipeline routine: ")
        raise

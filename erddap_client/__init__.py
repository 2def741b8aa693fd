from .erddap_client import (
    OBSERVATION_COLUMNS,
    DateRange,
    EmptyResultError,
    ErddapClient,
    ErddapClientConfig,
    FetchError,
    InvalidRangeError,
    OisstGriddapClient,
    SstPipelineError,
    merge_observations,
    plan_date_ranges,
)

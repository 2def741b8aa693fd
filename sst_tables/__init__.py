from .sst_tables import (
    DAILY_COLUMNS,
    MONTHLY_COLUMNS,
    DailyTableConstructor,
    MonthlyTableConstructor,
    center_anomaly,
)

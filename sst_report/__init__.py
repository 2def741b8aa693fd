from .sst_report import SstReporter, fit_trend

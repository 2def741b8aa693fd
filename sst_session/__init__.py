from .sst_session import SstSession

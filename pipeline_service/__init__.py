from .pipeline import run_pipeline

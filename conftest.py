"""Test-session environment.

numba falls back to its OpenMP threading layer when TBB is absent. Once
UMAP has run in the pytest process, the fork-started worker tests leave
libgomp in a state that deadlocks interpreter shutdown after every test
has passed. The workqueue layer has no such fork hazard.
"""
import os

os.environ.setdefault("NUMBA_THREADING_LAYER", "workqueue")

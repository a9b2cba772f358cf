from __future__ import annotations
import os

# CLI defaults; explicit options win.
WORKERS = int(os.environ["MATRIXCI_WORKERS"]) if os.environ.get("MATRIXCI_WORKERS") else None
INFRA_RETRIES = int(os.environ.get("MATRIXCI_INFRA_RETRIES", "0"))
RETRY_DELAY = float(os.environ.get("MATRIXCI_RETRY_DELAY", "0"))
RUNNER_LABELS = [s.strip() for s in os.environ.get("MATRIXCI_RUNNER_LABELS", "").split(",") if s.strip()] or None
COMPARE_REF = os.environ.get("MATRIXCI_COMPARE_REF", "origin/master")

from __future__ import annotations
import os

REDIS_URL = os.environ.get("BARRIERCI_REDIS_URL")
TRIGGER_QUEUE = os.environ.get("BARRIERCI_TRIGGER_QUEUE", "barrierci:triggers")
DEFAULT_TIMEOUT_MINUTES = int(os.environ.get("BARRIERCI_DEFAULT_TIMEOUT_MINUTES", "60"))
OUTPUT_LIMIT = int(os.environ.get("BARRIERCI_OUTPUT_LIMIT", "4000"))
POLL_SECONDS = float(os.environ.get("BARRIERCI_POLL_SECONDS", "0.5"))

PIPELINE_CANDIDATES = (
    "pipeline.yml",
    ".barrierci/pipeline.yml",
    ".buildkite/pipeline.yml",
    "pipeline.py",
)

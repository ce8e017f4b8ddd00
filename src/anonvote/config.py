"""Settings for the voting core.

Each value can be overridden from the environment. Components take the same
values as constructor arguments, so these are only defaults.
"""

import logging
import os
from typing import Optional

# Anchor (ledger) client
ANCHOR_URL = os.environ.get("ANCHOR_URL", "http://127.0.0.1:5000")
ANCHOR_REQUEST_TIMEOUT = float(os.environ.get("ANCHOR_REQUEST_TIMEOUT", "2"))
CONFIRM_TIMEOUT = float(os.environ.get("CONFIRM_TIMEOUT", "30"))
CONFIRM_POLL_INTERVAL = float(os.environ.get("CONFIRM_POLL_INTERVAL", "0.5"))

# Signatures
RING_SIZE = int(os.environ.get("RING_SIZE", "8"))
MAX_RING_SIZE = int(os.environ.get("MAX_RING_SIZE", "256"))
MAX_SIGNATURE_BYTES = int(os.environ.get("MAX_SIGNATURE_BYTES", "65536"))

# Registration
REGISTRY_KEY = os.environ.get("REGISTRY_KEY", "anonvote-dev-registry").encode("utf-8")
ACCEPTED_OTP = os.environ.get("ACCEPTED_OTP", "123456")

# Logging
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(format=LOG_FORMAT, level=level or LOG_LEVEL)

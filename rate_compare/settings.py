"""
Settings for the rate_compare project.

Values can be overridden with environment variables.
"""

import os
from decimal import Decimal

# Logging
LOG_LEVEL = os.getenv("RATE_COMPARE_LOG_LEVEL", "WARNING").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
            "stream": "ext://sys.stderr",
        },
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "billing": {"level": LOG_LEVEL},
        "tariffs": {"level": LOG_LEVEL},
        "usage": {"level": LOG_LEVEL},
        "rate_compare": {"level": LOG_LEVEL},
    },
}

# Significant digits for all monetary and energy arithmetic
DECIMAL_PRECISION = int(os.getenv("RATE_COMPARE_DECIMAL_PRECISION", "34"))

# IANA timezone used to localize naive usage timestamps; empty means keep them naive
TIMEZONE = os.getenv("RATE_COMPARE_TIMEZONE", "") or None

# Rounding applied when rendering reports (never inside the engine)
CURRENCY_QUANTUM = Decimal(os.getenv("RATE_COMPARE_CURRENCY_QUANTUM", "0.01"))

import logging

import pytest

DAY_OF_HOURLY_USAGE = "\n".join(
    [
        "Name,Jane Doe",
        "Account Number,1234567",
        "",
        "TYPE,DATE,START TIME,END TIME,IMPORT (kWh),EXPORT (kWh),NOTES",
        *(f"Electric usage,2024-01-01,{h:02d}:00,{h:02d}:59,1.00,0.00," for h in range(24)),
    ]
)

SCHEDULES_YAML = """
schedules:
  - name: "Flat"
    windows:
      - id: "flat"
        price_per_kwh: 0.15
  - name: "Night saver"
    windows:
      - id: "night"
        price_per_kwh: 0.05
        rules:
          - time_of_day: {start: "00:00", end: "06:00"}
      - id: "day"
        price_per_kwh: 0.20
        rules:
          - time_of_day: {start: "06:00", end: "24:00"}
"""


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo the dictConfig applied by each CLI invocation."""
    names = ["billing", "tariffs", "usage", "rate_compare"]
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    levels = {name: logging.getLogger(name).level for name in names}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, saved in levels.items():
        logging.getLogger(name).setLevel(saved)


@pytest.fixture
def usage_csv(tmp_path):
    path = tmp_path / "usage.csv"
    path.write_text(DAY_OF_HOURLY_USAGE + "\n", encoding="utf-8")
    return path


@pytest.fixture
def schedules_yaml(tmp_path):
    path = tmp_path / "schedules.yaml"
    path.write_text(SCHEDULES_YAML, encoding="utf-8")
    return path

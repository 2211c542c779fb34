__version__ = "0.1.0"

from plenocal import meta
from plenocal.api import (
    CalibrationInit,
    initialize_calibration,
    load_calibration_init,
    load_checker_corners,
    save_calibration_init,
    save_checker_corners,
)

__all__ = [
    "__version__",
    "meta",
    "CalibrationInit",
    "initialize_calibration",
    "load_calibration_init",
    "load_checker_corners",
    "save_calibration_init",
    "save_checker_corners",
]

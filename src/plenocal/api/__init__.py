from plenocal.api.calibration_init import CalibrationInit, SkippedObservation, initialize_calibration
from plenocal.api.model_io import (
    load_calibration_init,
    load_checker_corners,
    save_calibration_init,
    save_checker_corners,
)

__all__ = [
    "CalibrationInit",
    "SkippedObservation",
    "initialize_calibration",
    "load_calibration_init",
    "load_checker_corners",
    "save_calibration_init",
    "save_checker_corners",
]

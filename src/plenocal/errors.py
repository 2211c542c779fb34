from __future__ import annotations


class CalibrationError(RuntimeError):
    pass


class GeometryError(CalibrationError):
    """A corner set cannot be brought into canonical top-left-major order."""


class DegenerateHomographyError(CalibrationError):
    pass


class PoseEstimationError(CalibrationError):
    pass


class InsufficientDataError(CalibrationError):
    """
    Not enough valid observations left for a global reduction (focal length,
    superposes, intrinsics). Fatal for the whole run.
    """


class OptionsValidationError(ValueError):
    pass

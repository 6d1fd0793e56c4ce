# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#
# License: MIT

import numpy as np
import pandas as pd

from .config import ConfigMixin
from ..errors import ConfigurationError

IC_CATEGORIES = (
    "brain",
    "muscle",
    "eye",
    "heart",
    "line_noise",
    "channel_noise",
    "other",
)


class ComponentRejectionPolicy(ConfigMixin):
    """Acceptance intervals used to decide which components are artifacts.

    Parameters
    ----------
    config_fname : pathlib.Path
        path to a config file. Any key of this policy present in the file
        overrides the keyword arguments below.
    muscle_threshold : float | None
        Components whose muscle probability lies in
        ``[muscle_threshold, 1]`` are rejected. ``None`` never rejects on
        muscle probability. Defaults to ``0.8``.
    eye_threshold : float | None
        Same as ``muscle_threshold``, for the eye category. Defaults to
        ``0.8``.
    intervals : dict | None
        Explicit ``{category: [min, max]}`` intervals. NaN (or ``None``)
        bounds mean "never reject on this category". When given, the
        intervals take precedence over the two thresholds for the
        categories they name.
    """

    def __init__(
        self,
        *,
        config_fname=None,
        muscle_threshold=0.8,
        eye_threshold=0.8,
        intervals=None,
    ):
        if config_fname is not None:
            config = ConfigMixin().read(config_fname)
            config = config.get("ica_rejection", config)
            muscle_threshold = config.get("muscle_threshold", muscle_threshold)
            eye_threshold = config.get("eye_threshold", eye_threshold)
            intervals = config.get("intervals", intervals)

        table = {cat: [np.nan, np.nan] for cat in IC_CATEGORIES}
        if muscle_threshold is not None:
            table["muscle"] = [muscle_threshold, 1.0]
        if eye_threshold is not None:
            table["eye"] = [eye_threshold, 1.0]
        for category, bounds in (intervals or {}).items():
            if category not in IC_CATEGORIES:
                raise ConfigurationError(
                    f"Unknown component category '{category}'. "
                    f"Must be one of {IC_CATEGORIES}."
                )
            table[category] = [np.nan if b is None else float(b) for b in bounds]

        super().__init__(
            config_fname=None if config_fname is None else str(config_fname),
            muscle_threshold=muscle_threshold,
            eye_threshold=eye_threshold,
            intervals={cat: [float(b) for b in bounds]
                       for cat, bounds in table.items()},
        )
        self._check_intervals()

    def __repr__(self):
        """Return a summary of the ComponentRejectionPolicy object."""
        rejected = [cat for cat, (low, high) in self["intervals"].items()
                    if not (np.isnan(low) or np.isnan(high))]
        return (
            f"ComponentRejectionPolicy: |\n"
            f"  config_fname: {self['config_fname']}\n"
            f"  muscle_threshold: {self['muscle_threshold']}\n"
            f"  eye_threshold: {self['eye_threshold']}\n"
            f"  rejected categories: {rejected}\n"
        )

    def _check_intervals(self):
        for category, bounds in self["intervals"].items():
            if len(bounds) != 2:
                raise ConfigurationError(
                    f"The interval for '{category}' must be [min, max]. Got {bounds}"
                )
            low, high = bounds
            if np.isnan(low) != np.isnan(high):
                raise ConfigurationError(
                    f"Both bounds of the '{category}' interval must be NaN "
                    "or neither."
                )
            if np.isnan(low):
                continue
            if not 0 <= low <= high <= 1:
                raise ConfigurationError(
                    f"The '{category}' interval must satisfy 0 <= min <= max "
                    f"<= 1. Got {bounds}"
                )

    def threshold_table(self):
        """Return the intervals as a DataFrame indexed by category."""
        return pd.DataFrame.from_dict(
            self["intervals"], orient="index", columns=["min", "max"]
        ).loc[list(IC_CATEGORIES)]

# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#          Tyler Collins <collins.tyler.k@gmail.com>
#
# License: MIT

import sys
from pathlib import Path
import yaml

from ..errors import ConfigurationError

REQUIRED_SECTIONS = ("epoching", "channels", "amplitude", "sequential")
_POSITIVE_SEQUENTIAL = (
    "extreme_threshold",
    "peak_to_peak_threshold",
    "peak_to_peak_window",
    "peak_to_peak_step",
    "step_threshold",
    "step_window",
    "step_step",
    "trend_min_slope",
)

# Required and optional keys of each section.
SECTION_KEYS = {
    "epoching": (("type_codes", "tmin", "tmax"), ("baseline",)),
    "channels": (("picks",), ("exclude", "bad_channels", "n_reference_pairs")),
    "amplitude": (("threshold",), ()),
    "sequential": (
        _POSITIVE_SEQUENTIAL + ("trend_min_r2", "flatline_tolerance"),
        ("flatline_window", "flatline_step"),
    ),
    "ica_rejection": ((), ("muscle_threshold", "eye_threshold", "intervals",
                           "fit_ica", "n_components", "random_state",
                           "max_iter")),
    "consensus": ((), ("base",)),
    "batch": ((), ("n_jobs",)),
}


class ConfigMixin(dict):
    """Base configuration file class for pipeline procedures."""

    DEFAULT_CONFIG_PATH = (
        Path(__file__).parent.parent / "assets"
    )

    def read(self, file_name):
        """Read a saved pyconsensus config YAML file."""
        file_name = Path(file_name)
        if not file_name.exists():
            raise FileExistsError(
                f"Configuration file {file_name.absolute()} " "does not exist"
            )

        with file_name.open("r") as init_variables_file:
            self.update(yaml.safe_load(init_variables_file))

        return self

    def save(self, file_name):
        """Save the current config object to disk as a YAML file.

        Parameters
        ----------
        file_name : str | pathlib.Path
            The file name to save the config object to.
        """
        file_name = Path(file_name)
        with file_name.open("w") as init_variables_file:
            yaml.dump(dict(self), init_variables_file, indent=4, sort_keys=True)

    def print(self):
        """Print the Config contents."""
        yaml.dump(dict(self), sys.stdout, indent=4, sort_keys=True)


class Config(ConfigMixin):
    """Representation of configuration file for running the pipeline."""

    def load_default(self):
        """Get the default pyconsensus config file."""
        path = Config.DEFAULT_CONFIG_PATH / "pc_default_config.yaml"
        self.read(path)
        return self

    @property
    def type_codes(self):
        """Stimulus type codes, as strings."""
        return [str(code) for code in self["epoching"]["type_codes"]]

    def validate(self):
        """Check the parameters before any recording is processed.

        Raises
        ------
        ConfigurationError
            If a section or a required key is missing, a key is unknown, a
            threshold or a window is not positive, or a moving-window step
            is larger than its window.
        """
        missing = [key for key in REQUIRED_SECTIONS if key not in self]
        if missing:
            raise ConfigurationError(f"Missing configuration sections: {missing}")
        for name, (required, optional) in SECTION_KEYS.items():
            if name in self:
                _check_keys(name, self[name], required, optional)

        epoching = self["epoching"]
        if not epoching.get("type_codes"):
            raise ConfigurationError("epoching.type_codes must list at least "
                                     "one stimulus type code.")
        if epoching["tmax"] <= epoching["tmin"]:
            raise ConfigurationError("epoching.tmax must be larger than "
                                     "epoching.tmin.")

        if self["channels"].get("picks") is None:
            raise ConfigurationError("channels.picks must be 'all' or an "
                                     "explicit list of channel names.")

        _check_positive("amplitude.threshold", self["amplitude"]["threshold"])

        sequential = self["sequential"]
        for key in _POSITIVE_SEQUENTIAL:
            _check_positive(f"sequential.{key}", sequential[key])
        if not 0 <= sequential["trend_min_r2"] <= 1:
            raise ConfigurationError("sequential.trend_min_r2 must be between "
                                     f"0 and 1. Got {sequential['trend_min_r2']}")
        if sequential["flatline_tolerance"] < 0:
            raise ConfigurationError("sequential.flatline_tolerance cannot be "
                                     "negative.")
        for kind in ("peak_to_peak", "step"):
            _check_step(kind, sequential[f"{kind}_window"], sequential[f"{kind}_step"])
        if sequential.get("flatline_window") is not None:
            _check_step("flatline", sequential["flatline_window"],
                        sequential.get("flatline_step") or sequential["flatline_window"])

        base = self.get("consensus", {}).get("base", "a")
        if base not in ("a", "b"):
            raise ConfigurationError(f"consensus.base must be 'a' or 'b'. Got {base}")
        return self


def _check_keys(name, section, required, optional):
    if not isinstance(section, dict):
        raise ConfigurationError(f"The '{name}' section must be a mapping. "
                                 f"Got {section!r}")
    missing = [key for key in required if key not in section]
    if missing:
        raise ConfigurationError(f"Missing keys in '{name}': {missing}")
    unknown = sorted(set(section) - set(required) - set(optional))
    if unknown:
        raise ConfigurationError(f"Unknown keys in '{name}': {unknown}")


def _check_positive(name, value):
    if (not isinstance(value, (int, float)) or isinstance(value, bool)
            or value <= 0):
        raise ConfigurationError(f"{name} must be positive. Got {value}")


def _check_step(kind, window, step):
    _check_positive(f"{kind} window", window)
    _check_positive(f"{kind} step", step)
    if step > window:
        raise ConfigurationError(
            f"The {kind} step ({step} ms) cannot be larger than its window "
            f"({window} ms)."
        )

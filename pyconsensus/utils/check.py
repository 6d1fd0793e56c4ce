import importlib
import importlib.util

from mne.utils import check_version

# Distribution name (on PyPI) of the optional dependencies, when it differs
# from their import name.
_INSTALL_MAPPING = {
    "mne_icalabel": "mne-icalabel",
    "pytest_cov": "pytest-cov",
}

_MIN_VERSIONS = {
    "mne_icalabel": "0.4",
}


def import_optional_dependency(name, extra=None, raise_error=True):
    """Import a module that pyconsensus can run without.

    Parameters
    ----------
    name : str
        The module name.
    extra : str | None
        Text appended to the error message, e.g. what the module is needed
        for.
    raise_error : bool
        If True, raise an ImportError when the module is missing or too old.
        If False, return None instead.

    Returns
    -------
    module : Module | None
        The imported module, or None when it is unavailable and
        ``raise_error`` is False.
    """
    package_name = _INSTALL_MAPPING.get(name, name)
    min_version = _MIN_VERSIONS.get(name)
    extra = f" {extra}" if extra else ""

    if importlib.util.find_spec(name) is None:
        problem = f"Missing optional dependency '{package_name}'."
    elif min_version is not None and not check_version(name, min_version):
        problem = (f"pyconsensus requires {package_name} >= {min_version}.")
    else:
        return importlib.import_module(name)

    if not raise_error:
        return None
    raise ImportError(f"{problem}{extra} Use pip or conda to install "
                      f"{package_name}.")

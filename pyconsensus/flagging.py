# Authors: Christian O'Reilly <christian.oreilly@sc.edu>
#          Scott Huberty <seh33@uw.edu>
#          James Desjardins <jim.a.desjardins@gmail.com>
#          Tyler Collins <collins.tyler.k@gmail.com>
#
# License: MIT

"""Classes to store reject decisions on epochs and components."""

import numpy as np
import pandas as pd

from mne.utils import logger

from .config.rejection import IC_CATEGORIES


class _Flagged(dict):

    def __init__(self, kind_str, *args, **kwargs):
        """Initialize class."""
        super().__init__(*args, **kwargs)
        self._kind_str = kind_str

    def __repr__(self):
        """Return a string representation."""
        ret_str = f"Flagged {self._kind_str}s: |\n"
        for key in self:
            ret_str += (f"  {key.title().replace('_', ' ')}: "
                        f"{int(np.sum(self[key]))} / {len(self[key])}\n")
        return ret_str

    def __eq__(self, other):
        if set(self) != set(other):
            return False
        for key in self:
            if not np.array_equal(self[key], other[key]):
                return False
        return True

    def __ne__(self, other):
        return not self == other


class RejectVectors(_Flagged):
    """Boolean reject vectors of an epoch store, keyed by detector name.

    Every vector has one entry per epoch. Vectors sharing a name are
    combined with a logical OR, and so is :meth:`combined`: an epoch is
    rejected as soon as one detector objects.

    Parameters
    ----------
    n_epochs : int
        Number of epochs of the store the vectors describe.

    Notes
    -----
    This class inherits from :class:`dict`, and can use any valid attributes
    and methods for python dictionaries.
    """

    def __init__(self, n_epochs, *args, **kwargs):
        """Initialize class."""
        super().__init__("epoch", *args, **kwargs)
        self.n_epochs = n_epochs
        for key in list(self):
            self[key] = self._check_vector(key, self[key])

    def _check_vector(self, kind, vector):
        vector = np.asarray(vector)
        if vector.dtype != bool:
            if vector.size and not np.isin(vector, [0, 1]).all():
                raise ValueError(f"The '{kind}' reject vector must be boolean.")
            vector = vector.astype(bool)
        if vector.shape != (self.n_epochs,):
            raise ValueError(
                f"The '{kind}' reject vector has shape {vector.shape} but the "
                f"store has {self.n_epochs} epochs."
            )
        return vector

    def add_flag_cat(self, kind, vector):
        """Store the reject vector of a detector.

        Parameters
        ----------
        kind : str
            Name of the detector, e.g. ``"amplitude"``.
        vector : array-like of bool
            One entry per epoch. If ``kind`` is already present, the two
            vectors are combined with a logical OR.
        """
        vector = self._check_vector(kind, vector)
        logger.debug(f"NEW REJECT VECTOR {kind}: {np.flatnonzero(vector)}")
        if kind in self:
            self[kind] = self[kind] | vector
        else:
            self[kind] = vector

    def combined(self):
        """Return the logical OR of every reject vector."""
        combined = np.zeros(self.n_epochs, dtype=bool)
        for vector in self.values():
            combined |= vector
        return combined

    def get_flagged(self):
        """Return the indices of the epochs flagged by any detector."""
        return np.flatnonzero(self.combined()).tolist()

    def copy(self):
        """Return a deep copy of the vectors."""
        return RejectVectors(self.n_epochs,
                             {key: vec.copy() for key, vec in self.items()})

    def keep(self, keep_mask):
        """Return the vectors restricted to the epochs in ``keep_mask``."""
        keep_mask = np.asarray(keep_mask, dtype=bool)
        return RejectVectors(int(keep_mask.sum()),
                             {key: vec[keep_mask] for key, vec in self.items()})

    def to_data_frame(self):
        """Return an epoch x detector DataFrame of the reject decisions."""
        df = pd.DataFrame({key: vec for key, vec in self.items()},
                          index=pd.RangeIndex(self.n_epochs, name="epoch"))
        return df.reset_index()

    def save_tsv(self, fname):
        """Save the reject vectors to a text file.

        Parameters
        ----------
        fname : str
            Filename that the reject vectors will be saved to.
        """
        self.to_data_frame().to_csv(fname, index=False, sep="\t")

    def load_tsv(self, fname):
        """Load reject vectors saved with :meth:`save_tsv`.

        Parameters
        ----------
        fname : str
            Filename of the tsv file with the reject vectors to be loaded.
        """
        out_df = pd.read_csv(fname, sep="\t")
        self.clear()
        self.n_epochs = len(out_df)
        for key in out_df.columns.drop("epoch"):
            self.add_flag_cat(key, out_df[key].to_numpy(dtype=bool))
        return self


class FlaggedICs(pd.DataFrame):
    """Object for handling the classification of decomposed components.

    One row per component with the probability of each category in
    ``IC_CATEGORIES``, the most likely category (``ic_type``), its
    ``confidence``, whether the component is rejected (``reject``) and the
    categories that triggered the rejection (``reason``).

    Methods
    -------
    save_tsv :
        Save the component labels to a tsv file.
    load_tsv :
        Load flagged components that were previously saved to a tsv file.
    """

    _metadata = ["fname"]

    def __init__(self, *args, **kwargs):
        """Initialize class.

        Parameters
        ----------
        args : list | tuple
            positional arguments accepted by `pandas.DataFrame`.
        kwargs : dict
            keyword arguments accepted by `pandas.DataFrame`.
        """
        super().__init__(*args, **kwargs)
        self.fname = None

    @property
    def _constructor(self):
        return FlaggedICs

    @property
    def rejected(self):
        """Return the indices of the rejected components."""
        if self.empty:
            return []
        return self.loc[self["reject"], "component"].astype(int).tolist()

    def summary(self):
        """Return the number of rejected components per triggering category."""
        counts = {category: 0 for category in IC_CATEGORIES}
        if self.empty:
            return counts
        for reason in self.loc[self["reject"], "reason"]:
            for category in str(reason).split(","):
                counts[category] += 1
        return counts

    def save_tsv(self, fname):
        """Save component labels.

        Parameters
        ----------
        fname : str | pathlib.Path
            The output filename.
        """
        self.fname = fname
        self.to_csv(fname, sep="\t", index=False, na_rep="n/a")

    def load_tsv(self, fname, data_frame=None):
        """Load flagged components from file.

        Parameters
        ----------
        fname : str | pathlib.Path
            The tsv file written by :meth:`save_tsv`.
        data_frame : pandas.DataFrame | None
            If given, used instead of reading ``fname``.
        """
        if data_frame is None:
            data_frame = pd.read_csv(fname, sep="\t", keep_default_na=False,
                                     na_values=["n/a"])
        flagged = FlaggedICs(data_frame)
        flagged["reject"] = flagged["reject"].astype(bool)
        flagged["reason"] = flagged["reason"].fillna("")
        flagged.fname = fname
        return flagged

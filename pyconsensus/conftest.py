"""Pytest fixtures that can be reused across our unit tests."""
# Author: Scott Huberty <seh33@uw.edu>
#         Christian O'Reilly <christian.oreilly@sc.edu>
#
# License: MIT

import numpy as np
import pandas as pd

import pyconsensus as pc
from pyconsensus.datasets import simulate_raw

import pytest


@pytest.fixture(scope="session")
def simulated_fixture():
    """Return a simulated recording and where its artifacts are."""
    return simulate_raw()


def simulated_config():
    """Return the default config, epoched for the simulated recording."""
    config = pc.config.Config().load_default()
    config["epoching"]["type_codes"] = ["11", "22"]
    config["epoching"]["tmax"] = 0.25
    return config


@pytest.fixture(scope="session")
def pipeline_fixture(simulated_fixture):
    """Return a ConsensusPipeline run on the simulated recording."""
    raw, _ = simulated_fixture
    pipeline = pc.ConsensusPipeline(config=simulated_config())
    pipeline.run_with_raw(raw)
    return pipeline


def make_store(data, event_ids=None, sfreq=100.0, types=None):
    """Build a store from an (n_epochs, n_channels, n_times) array in µV."""
    data = np.asarray(data, dtype=float)
    n_epochs = data.shape[0]
    if event_ids is None:
        event_ids = np.arange(1, n_epochs + 1)
    if types is None:
        types = ["11"] * n_epochs
    metadata = pd.DataFrame(dict(event_id=event_ids, type=types,
                                 sample=np.arange(n_epochs) * 100))
    return pc.EpochStore(data, sfreq=sfreq, metadata=metadata)


@pytest.fixture
def store_fixture():
    """Return a store of 6 epochs of low amplitude noise, 4 channels."""
    rng = np.random.RandomState(42)
    return make_store(rng.uniform(-5, 5, size=(6, 4, 50)))

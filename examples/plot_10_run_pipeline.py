"""

Run pyconsensus on a simulated recording.
=========================================

In this example, we will run both rejection pipelines on a simulated recording,
merge their decisions and recover the original trial number of every epoch left.
"""

# %%
# Imports
# -------
from pathlib import Path
import shutil
import pyconsensus as pc

# %%
# Get the data
# ------------
#
# :func:`~pyconsensus.datasets.simulate_raw` returns a recording with twelve events:
# ten stimuli (type codes ``"11"`` and ``"22"``) and two responses (``"99"``).
# Four stimulus epochs carry an artifact: a spike, a step, a drift and a flat
# segment.
raw, artifacts = pc.datasets.simulate_raw()
print(artifacts)

# %%
# Initialize the pipeline
# -----------------------
#
# The :class:`~pyconsensus.ConsensusPipeline` takes a path to a
# :class:`~pyconsensus.config.Config` file. We start from the default parameters
# and epoch around the simulated stimulus codes, which are shorter than the
# default ones, with a window that fits between two events.
config = pc.config.Config().load_default()
config["epoching"]["type_codes"] = ["11", "22"]
config["epoching"]["tmax"] = 0.25
config["amplitude"]["threshold"] = 100.0
config_path = Path("consensus_config.yaml")
config.save(config_path)
pipeline = pc.ConsensusPipeline(config_path)

# %%
# Run the pipeline
# ----------------
#
# :meth:`~pyconsensus.ConsensusPipeline.run_with_raw` runs the amplitude pipeline
# and the sequential pipeline side by side, then merges them.
pipeline.run_with_raw(raw)
print(pipeline.consensus)

# %%
# View the results
# ----------------
#
# Each detector keeps the report of its checks. The sequential detector has one
# reject vector per check:
print(pipeline.reports["sequential"])

# %%
# The surviving epochs keep the number of the stimulus they were cut around:
print(pipeline.identity)

# %%
# Save the outputs
# ----------------
out_dir = Path("derivatives")
pipeline.save(out_dir, "sub-01", overwrite=True)
payload = pipeline.export()
print(payload["data"].shape, payload["trials"])

config_path.unlink()
shutil.rmtree(out_dir)

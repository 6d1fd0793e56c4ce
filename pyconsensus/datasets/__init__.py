from .simulated import simulate_raw

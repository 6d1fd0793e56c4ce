"""Configuration of the consensus pipeline."""

from .config import ConfigMixin, Config
from .rejection import ComponentRejectionPolicy

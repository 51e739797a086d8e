"""Data subpackage: synthetic brain-volume generator and preprocessing."""

from .generators import (
    GeneratorError,
    SimulationConfig,
    SimulatedDataset,
    simulate_brain_volume,
    simulation_config_from_dict,
)
from .preprocess import (
    StandardizationConfig,
    StandardizationError,
    StandardizeResult,
    standardize,
    standardize_columns,
)

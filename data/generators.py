"""Synthetic brain-volume data generator for the shrinkage demonstration."""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

__all__ = [
    "GeneratorError",
    "Gaussian",
    "Uniform",
    "DiscreteUniform",
    "Categorical",
    "AgeBracket",
    "OutcomeEffects",
    "SimulationConfig",
    "SimulatedDataset",
    "OUTCOME",
    "CAUSAL_PREDICTORS",
    "simulate_brain_volume",
    "simulation_config_from_dict",
]

OUTCOME = "brain_volume"
CAUSAL_PREDICTORS = ("age", "sex", "depression", "sleep_hours")


class GeneratorError(ValueError):
    """Raised when an invalid simulation configuration is provided."""


def _check_finite(name: str, *values: float) -> None:
    for value in values:
        if not math.isfinite(float(value)):
            raise GeneratorError(f"{name}: parameters must be finite, got {value!r}.")


@dataclass(frozen=True)
class Gaussian:
    mean: float
    sd: float

    def __post_init__(self) -> None:
        _check_finite("Gaussian", self.mean, self.sd)
        if self.sd <= 0:
            raise GeneratorError(f"Gaussian sd must be positive, got {self.sd}.")

    def draw(self, rng: np.random.Generator, size: Optional[int] = None):
        return rng.normal(self.mean, self.sd, size=size)


@dataclass(frozen=True)
class Uniform:
    low: float
    high: float

    def __post_init__(self) -> None:
        _check_finite("Uniform", self.low, self.high)
        if not self.low < self.high:
            raise GeneratorError(f"Uniform requires low < high, got [{self.low}, {self.high}].")

    def draw(self, rng: np.random.Generator, size: Optional[int] = None):
        return rng.uniform(self.low, self.high, size=size)


@dataclass(frozen=True)
class DiscreteUniform:
    """Integers drawn uniformly from the closed range [low, high]."""

    low: int
    high: int

    def __post_init__(self) -> None:
        if int(self.low) != self.low or int(self.high) != self.high:
            raise GeneratorError("DiscreteUniform bounds must be integers.")
        if self.low > self.high:
            raise GeneratorError(f"DiscreteUniform requires low <= high, got [{self.low}, {self.high}].")

    def draw(self, rng: np.random.Generator, size: Optional[int] = None):
        return rng.integers(int(self.low), int(self.high) + 1, size=size)


@dataclass(frozen=True)
class Categorical:
    levels: Tuple[object, ...]
    probs: Tuple[float, ...]
    ordered: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "levels", tuple(self.levels))
        object.__setattr__(self, "probs", tuple(float(p) for p in self.probs))
        if len(self.levels) < 2:
            raise GeneratorError("Categorical requires at least two levels.")
        if len(set(self.levels)) != len(self.levels):
            raise GeneratorError(f"Categorical levels must be unique, got {list(self.levels)}.")
        if len(self.levels) != len(self.probs):
            raise GeneratorError(
                f"Categorical has {len(self.levels)} levels but {len(self.probs)} probabilities."
            )
        if any(p < 0 for p in self.probs):
            raise GeneratorError(f"Categorical probabilities must be non-negative, got {list(self.probs)}.")
        total = math.fsum(self.probs)
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise GeneratorError(f"Categorical probabilities must sum to one, got {total:.6g}.")

    def draw(self, rng: np.random.Generator, size: Optional[int] = None) -> pd.Categorical:
        codes = rng.choice(len(self.levels), size=size, p=np.asarray(self.probs))
        return pd.Categorical.from_codes(codes, categories=list(self.levels), ordered=self.ordered)


Distribution = Union[Gaussian, Uniform, DiscreteUniform, Categorical]

_DISTRIBUTIONS = {
    "gaussian": Gaussian,
    "normal": Gaussian,
    "uniform": Uniform,
    "discrete_uniform": DiscreteUniform,
    "categorical": Categorical,
}


@dataclass(frozen=True)
class AgeBracket:
    """Half-open age interval [lower, upper) sharing one broadcast offset."""

    label: str
    lower: float
    upper: Optional[float]
    offset: Gaussian

    def __post_init__(self) -> None:
        if self.upper is not None and not self.lower < self.upper:
            raise GeneratorError(f"Age bracket '{self.label}' requires lower < upper.")

    def mask(self, age: np.ndarray) -> np.ndarray:
        upper = math.inf if self.upper is None else self.upper
        return (age >= self.lower) & (age < upper)


def _default_brackets() -> Tuple[AgeBracket, ...]:
    return (
        AgeBracket("young", 0.0, 35.0, Gaussian(40.0, 10.0)),
        AgeBracket("middle", 35.0, 60.0, Gaussian(-10.0, 5.0)),
        AgeBracket("old", 60.0, None, Gaussian(-60.0, 10.0)),
    )


@dataclass(frozen=True)
class OutcomeEffects:
    """Causal structure of the outcome.

    Every offset is drawn once per dataset and broadcast to all qualifying rows;
    only the baseline is drawn per row.
    """

    baseline: Gaussian = Gaussian(1200.0, 50.0)
    age_brackets: Tuple[AgeBracket, ...] = field(default_factory=_default_brackets)
    male_offset: Gaussian = Gaussian(80.0, 10.0)
    depression_penalty: Gaussian = Gaussian(40.0, 10.0)
    sleep_bonus: Gaussian = Gaussian(30.0, 5.0)
    sleep_threshold: float = 8.0

    def __post_init__(self) -> None:
        brackets = sorted(self.age_brackets, key=lambda b: b.lower)
        for left, right in zip(brackets, brackets[1:]):
            if left.upper is None or left.upper > right.lower:
                raise GeneratorError(
                    f"Age brackets '{left.label}' and '{right.label}' overlap."
                )
        object.__setattr__(self, "age_brackets", tuple(brackets))


def _default_predictors() -> Dict[str, Distribution]:
    return {
        "age": Uniform(18.0, 90.0),
        "sleep_hours": Gaussian(7.0, 1.2),
        "education_years": DiscreteUniform(8, 20),
        "pets": DiscreteUniform(0, 4),
        "weekly_drinks": DiscreteUniform(0, 20),
        "daily_cigarettes": DiscreteUniform(0, 15),
        "weight": Gaussian(75.0, 12.0),
        "height": Gaussian(172.0, 9.0),
        "hours_seated": Uniform(2.0, 12.0),
        "test_score": Gaussian(100.0, 15.0),
        "sex": Categorical(("female", "male"), (0.5, 0.5)),
        "sport": Categorical(("no", "yes"), (0.6, 0.4)),
        "vegetarian": Categorical(("no", "yes"), (0.9, 0.1)),
        "employment": Categorical(
            ("employed", "unemployed", "student", "retired"), (0.6, 0.1, 0.15, 0.15)
        ),
        "instrument": Categorical(("no", "yes"), (0.8, 0.2)),
        "depression": Categorical(("no", "yes"), (0.85, 0.15)),
        "children": Categorical((0, 1, 2, 3), (0.3, 0.3, 0.25, 0.15), ordered=True),
    }


@dataclass(frozen=True)
class SimulationConfig:
    """Predictor distributions (drawn in insertion order) plus outcome effects."""

    predictors: Mapping[str, Distribution] = field(default_factory=_default_predictors)
    effects: OutcomeEffects = field(default_factory=OutcomeEffects)

    def __post_init__(self) -> None:
        if OUTCOME in self.predictors:
            raise GeneratorError(f"'{OUTCOME}' is the outcome and cannot be a predictor.")
        missing = [name for name in CAUSAL_PREDICTORS if name not in self.predictors]
        if missing:
            raise GeneratorError(f"Causal predictors missing from configuration: {missing}.")
        sex = self.predictors["sex"]
        depression = self.predictors["depression"]
        if not isinstance(sex, Categorical) or "male" not in sex.levels:
            raise GeneratorError("'sex' must be categorical with a 'male' level.")
        if not isinstance(depression, Categorical) or "yes" not in depression.levels:
            raise GeneratorError("'depression' must be categorical with a 'yes' level.")
        if isinstance(self.predictors["age"], Categorical):
            raise GeneratorError("'age' must be numeric.")
        if isinstance(self.predictors["sleep_hours"], Categorical):
            raise GeneratorError("'sleep_hours' must be numeric.")

    @property
    def continuous(self) -> List[str]:
        return [name for name, d in self.predictors.items() if not isinstance(d, Categorical)]

    @property
    def categorical(self) -> List[str]:
        return [name for name, d in self.predictors.items() if isinstance(d, Categorical)]


@dataclass
class SimulatedDataset:
    """Generated observation table together with the realised effect sizes."""

    frame: pd.DataFrame
    effects: Dict[str, float]
    config: SimulationConfig
    seed: Optional[int] = None

    @property
    def continuous_predictors(self) -> List[str]:
        return self.config.continuous

    @property
    def categorical_predictors(self) -> List[str]:
        return self.config.categorical

    @property
    def null_predictors(self) -> List[str]:
        """Predictors with no causal effect on the outcome."""
        return [name for name in self.config.predictors if name not in CAUSAL_PREDICTORS]


def simulate_brain_volume(
    n: int,
    seed: Optional[int] = None,
    *,
    rng: Optional[np.random.Generator] = None,
    config: Optional[SimulationConfig] = None,
) -> SimulatedDataset:
    """Simulate ``n`` subjects.

    Draws come from ``rng`` when given, otherwise from a fresh generator seeded
    with ``seed``. The draw order is fixed, so equal ``(n, seed)`` pairs yield
    identical tables.
    """

    if isinstance(n, bool) or int(n) != n or n < 1:
        raise GeneratorError(f"Row count must be a positive integer, got {n!r}.")
    n = int(n)
    cfg = config or SimulationConfig()
    local_rng = rng if rng is not None else np.random.default_rng(seed)

    columns: Dict[str, object] = {}
    for name, distribution in cfg.predictors.items():
        columns[name] = distribution.draw(local_rng, n)

    eff = cfg.effects
    volume = eff.baseline.draw(local_rng, n)
    age = np.asarray(columns["age"], dtype=float)
    realised: Dict[str, float] = {}

    for bracket in eff.age_brackets:
        offset = float(bracket.offset.draw(local_rng))
        volume = volume + np.where(bracket.mask(age), offset, 0.0)
        realised[f"age_{bracket.label}"] = offset

    male = float(eff.male_offset.draw(local_rng))
    volume = volume + np.where(np.asarray(columns["sex"]) == "male", male, 0.0)
    realised["sex_male"] = male

    penalty = -abs(float(eff.depression_penalty.draw(local_rng)))
    volume = volume + np.where(np.asarray(columns["depression"]) == "yes", penalty, 0.0)
    realised["depression_yes"] = penalty

    bonus = abs(float(eff.sleep_bonus.draw(local_rng)))
    sleep = np.asarray(columns["sleep_hours"], dtype=float)
    volume = volume + np.where(sleep > eff.sleep_threshold, bonus, 0.0)
    realised["sleep_bonus"] = bonus

    frame = pd.DataFrame({OUTCOME: volume, **columns})
    return SimulatedDataset(frame=frame, effects=realised, config=cfg, seed=seed)


def _distribution_from_dict(name: str, base: Optional[Distribution], spec: Mapping[str, object]) -> Distribution:
    params = dict(spec)
    kind = params.pop("kind", None)
    if kind is None:
        if base is None:
            raise GeneratorError(f"Predictor '{name}' is new and needs an explicit 'kind'.")
        cls = type(base)
        merged = {**base.__dict__, **params}
    else:
        key = str(kind).lower()
        if key not in _DISTRIBUTIONS:
            raise GeneratorError(f"Unsupported distribution kind '{kind}' for '{name}'.")
        cls = _DISTRIBUTIONS[key]
        merged = params
    try:
        return cls(**merged)
    except TypeError as exc:
        raise GeneratorError(f"Invalid parameters for '{name}': {exc}") from exc


def _gaussian_from(name: str, base: Gaussian, spec: object) -> Gaussian:
    if not isinstance(spec, Mapping):
        raise GeneratorError(f"Effect '{name}' must be a mapping with mean/sd.")
    unknown = set(spec) - {"mean", "sd"}
    if unknown:
        raise GeneratorError(f"Unknown keys for effect '{name}': {sorted(unknown)}.")
    return replace(base, **{k: float(v) for k, v in spec.items()})


def simulation_config_from_dict(cfg: Mapping[str, object]) -> SimulationConfig:
    """Build a :class:`SimulationConfig` from defaults overridden by a mapping.

    Recognised keys are ``predictors`` (name -> distribution parameters, with an
    optional ``kind``) and ``effects`` (baseline/male_offset/depression_penalty/
    sleep_bonus as mean/sd mappings, ``sleep_threshold``, ``age_brackets``).
    """

    unknown = set(cfg) - {"predictors", "effects"}
    if unknown:
        raise GeneratorError(f"Unknown simulation keys: {sorted(unknown)}.")

    predictors: Dict[str, Distribution] = dict(_default_predictors())
    for name, spec in dict(cfg.get("predictors") or {}).items():
        if not isinstance(spec, Mapping):
            raise GeneratorError(f"Predictor '{name}' must map to distribution parameters.")
        predictors[name] = _distribution_from_dict(name, predictors.get(name), spec)

    effects = OutcomeEffects()
    effects_cfg = dict(cfg.get("effects") or {})
    updates: Dict[str, object] = {}
    for key, value in effects_cfg.items():
        if key in {"baseline", "male_offset", "depression_penalty", "sleep_bonus"}:
            updates[key] = _gaussian_from(key, getattr(effects, key), value)
        elif key == "sleep_threshold":
            updates[key] = float(value)  # type: ignore[arg-type]
        elif key == "age_brackets":
            updates[key] = tuple(_bracket_from_dict(entry) for entry in _as_sequence(value))
        else:
            raise GeneratorError(f"Unknown effect '{key}'.")
    if updates:
        effects = replace(effects, **updates)
    return SimulationConfig(predictors=predictors, effects=effects)


def _as_sequence(value: object) -> Sequence[Mapping[str, object]]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise GeneratorError("age_brackets must be a list of mappings.")
    return value  # type: ignore[return-value]


def _bracket_from_dict(entry: Mapping[str, object]) -> AgeBracket:
    try:
        offset = entry["offset"]
        if not isinstance(offset, Mapping):
            raise GeneratorError("Age bracket offset must be a mapping with mean/sd.")
        upper = entry.get("upper")
        return AgeBracket(
            label=str(entry["label"]),
            lower=float(entry["lower"]),  # type: ignore[arg-type]
            upper=None if upper is None else float(upper),  # type: ignore[arg-type]
            offset=Gaussian(float(offset["mean"]), float(offset["sd"])),
        )
    except KeyError as exc:
        raise GeneratorError(f"Age bracket is missing key {exc}.") from exc

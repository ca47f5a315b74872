"""Risk condition table: typed per-condition constants loaded from YAML.

The risk trajectory engine runs one algorithm over every condition; what
differs between conditions (base risk, deficit weights, additive rules and
their driver text, ceilings, progression rates) lives in
``risk_conditions.yaml`` and is parsed here into frozen dataclasses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from biosignal.core.storage.models import IntakeProfile
from biosignal.domains.health.domain_logic.signal_models import (
    DEEP_SLEEP_TIERS,
    HRV_TIERS,
    RISK_LEVELS,
    RiskProjectionInput,
)

logger = logging.getLogger(__name__)

DEFAULT_CONDITIONS_PATH = Path(__file__).with_name("risk_conditions.yaml")

HORIZON_NAMES = ("six_months", "one_year", "five_years", "ten_years")
LEVEL_HORIZONS = ("current",) + HORIZON_NAMES
RISK_METRICS = ("hrv", "deep_sleep")
COMORBIDITY_FLAGS = ("has_heart_failure", "has_diabetes", "has_chronic_kidney_disease")
MAX_HORIZON_CEILING = 95.0

_PREDICATE_KEYS = frozenset(
    {
        "hrv_classification",
        "deep_sleep_classification",
        "hrv_below",
        "deep_sleep_below",
        "age_above",
        "sex",
        "comorbid",
        *COMORBIDITY_FLAGS,
    }
)


class ConditionConfigError(Exception):
    """Raised when the condition table is malformed."""


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Predicate:
    """Conjunction of simple tests over the projection input.

    Unset fields are ignored; an empty predicate always matches.
    """

    hrv_classification: tuple[str, ...] = ()
    deep_sleep_classification: tuple[str, ...] = ()
    hrv_below: float | None = None
    deep_sleep_below: float | None = None
    age_above: int | None = None
    sex: str | None = None
    comorbid: bool | None = None
    flags: tuple[tuple[str, bool], ...] = ()

    def matches(self, inp: RiskProjectionInput, intake: IntakeProfile, comorbid: bool) -> bool:
        if self.hrv_classification and inp.hrv_classification not in self.hrv_classification:
            return False
        if (
            self.deep_sleep_classification
            and inp.deep_sleep_classification not in self.deep_sleep_classification
        ):
            return False
        if self.hrv_below is not None and not inp.avg_hrv < self.hrv_below:
            return False
        if self.deep_sleep_below is not None and not inp.avg_deep_sleep < self.deep_sleep_below:
            return False
        if self.age_above is not None and not intake.age > self.age_above:
            return False
        if self.sex is not None and intake.sex != self.sex:
            return False
        if self.comorbid is not None and comorbid != self.comorbid:
            return False
        return all(getattr(intake, flag) == expected for flag, expected in self.flags)


@dataclass(frozen=True)
class DriverRule:
    """Adds ``add`` points and/or records ``driver`` when ``when`` matches."""

    when: Predicate
    add: float = 0.0
    driver: str | None = None


@dataclass(frozen=True)
class DeficitTerm:
    """Risk from falling short of the age target: shortfall / target * weight."""

    metric: str
    weight: float
    comorbid_weight: float | None = None

    def weight_for(self, comorbid: bool) -> float:
        if comorbid and self.comorbid_weight is not None:
            return self.comorbid_weight
        return self.weight


@dataclass(frozen=True)
class ProgressionFactor:
    """Metric-to-target ratio that slows progression, floored to bound the rate."""

    metric: str
    floor: float


@dataclass(frozen=True)
class ConditionProfile:
    """All constants for one condition."""

    key: str
    display_name: str
    base_risk: float
    ceiling: float
    age_reference: int
    age_rate: float
    progression_base: float
    progression_factors: tuple[ProgressionFactor, ...]
    deficits: tuple[DeficitTerm, ...] = ()
    rules: tuple[DriverRule, ...] = ()
    worsening_when: tuple[Predicate, ...] = ()
    comorbidity: str | None = None
    comorbid_base_risk: float | None = None
    comorbid_progression_base: float | None = None
    risk_level_horizon: str = "five_years"
    comorbid_risk_level_horizon: str | None = None

    def is_comorbid(self, intake: IntakeProfile) -> bool:
        """Whether the condition's own gating comorbidity is present."""
        return self.comorbidity is not None and bool(getattr(intake, self.comorbidity))

    def starting_risk(self, intake: IntakeProfile) -> float:
        if self.is_comorbid(intake) and self.comorbid_base_risk is not None:
            return self.comorbid_base_risk
        return self.base_risk

    def progression_rate(self, intake: IntakeProfile) -> float:
        if self.is_comorbid(intake) and self.comorbid_progression_base is not None:
            return self.comorbid_progression_base
        return self.progression_base

    def level_horizon(self, intake: IntakeProfile) -> str:
        if self.is_comorbid(intake) and self.comorbid_risk_level_horizon is not None:
            return self.comorbid_risk_level_horizon
        return self.risk_level_horizon


@dataclass(frozen=True)
class ConditionTable:
    """Shared projection settings plus the ordered condition profiles."""

    version: str
    horizon_ceiling: float
    horizon_multipliers: dict[str, float]
    acceleration_reference_age: int
    acceleration_per_year: float
    risk_bands: tuple[tuple[float | None, str], ...]
    conditions: tuple[ConditionProfile, ...] = field(default_factory=tuple)

    def get(self, key: str) -> ConditionProfile | None:
        for condition in self.conditions:
            if condition.key == key:
                return condition
        return None

    def keys(self) -> list[str]:
        return [c.key for c in self.conditions]

    def age_acceleration(self, age: int) -> float:
        return 1.0 + self.acceleration_per_year * max(0, age - self.acceleration_reference_age)

    def risk_level(self, value: float) -> str:
        for upper, level in self.risk_bands:
            if upper is None or value < upper:
                return level
        raise AssertionError("unreachable: last band is open-ended")


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _require(data: dict[str, Any], key: str, where: str) -> Any:
    if key not in data:
        raise ConditionConfigError(f"{where}: missing required field {key!r}")
    return data[key]


def _number(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConditionConfigError(f"{where}: expected a number, got {value!r}")
    return float(value)


def _tiers(value: Any, allowed: tuple[str, ...], where: str) -> tuple[str, ...]:
    items = (value,) if isinstance(value, str) else tuple(value or ())
    unknown = [v for v in items if v not in allowed]
    if unknown:
        raise ConditionConfigError(f"{where}: unknown tier(s) {unknown}; expected one of {allowed}")
    return items


def _parse_predicate(data: Any, where: str) -> Predicate:
    if not isinstance(data, dict):
        raise ConditionConfigError(f"{where}: predicate must be a mapping")
    unknown = set(data) - _PREDICATE_KEYS
    if unknown:
        raise ConditionConfigError(f"{where}: unknown predicate key(s) {sorted(unknown)}")

    def optional_number(key: str) -> float | None:
        return _number(data[key], f"{where}.{key}") if key in data else None

    age_above = optional_number("age_above")
    return Predicate(
        hrv_classification=_tiers(data.get("hrv_classification"), HRV_TIERS, f"{where}.hrv_classification"),
        deep_sleep_classification=_tiers(
            data.get("deep_sleep_classification"), DEEP_SLEEP_TIERS, f"{where}.deep_sleep_classification"
        ),
        hrv_below=optional_number("hrv_below"),
        deep_sleep_below=optional_number("deep_sleep_below"),
        age_above=int(age_above) if age_above is not None else None,
        sex=data.get("sex"),
        comorbid=bool(data["comorbid"]) if "comorbid" in data else None,
        flags=tuple((flag, bool(data[flag])) for flag in COMORBIDITY_FLAGS if flag in data),
    )


def _parse_metric(value: Any, where: str) -> str:
    if value not in RISK_METRICS:
        raise ConditionConfigError(f"{where}: unknown metric {value!r}; expected one of {RISK_METRICS}")
    return value


def _parse_horizon(value: Any, where: str) -> str:
    if value not in LEVEL_HORIZONS:
        raise ConditionConfigError(f"{where}: unknown horizon {value!r}; expected one of {LEVEL_HORIZONS}")
    return value


def _parse_condition(data: dict[str, Any], horizon_ceiling: float) -> ConditionProfile:
    key = _require(data, "key", "condition")
    where = f"condition {key!r}"

    comorbidity = data.get("comorbidity")
    if comorbidity is not None and comorbidity not in COMORBIDITY_FLAGS:
        raise ConditionConfigError(f"{where}: unknown comorbidity {comorbidity!r}")

    ceiling = _number(_require(data, "ceiling", where), f"{where}.ceiling")
    if not 0 <= ceiling <= horizon_ceiling:
        raise ConditionConfigError(f"{where}: ceiling {ceiling} must be within 0..{horizon_ceiling}")

    deficits = tuple(
        DeficitTerm(
            metric=_parse_metric(d.get("metric"), f"{where}.deficits"),
            weight=_number(_require(d, "weight", f"{where}.deficits"), f"{where}.deficits.weight"),
            comorbid_weight=(
                _number(d["comorbid_weight"], f"{where}.deficits.comorbid_weight")
                if "comorbid_weight" in d
                else None
            ),
        )
        for d in data.get("deficits", [])
    )

    rules = tuple(
        DriverRule(
            when=_parse_predicate(r.get("when", {}), f"{where}.rules[{i}]"),
            add=_number(r.get("add", 0), f"{where}.rules[{i}].add"),
            driver=r.get("driver"),
        )
        for i, r in enumerate(data.get("rules", []))
    )

    age = _require(data, "age", where)
    progression = _require(data, "progression", where)
    factors = tuple(
        ProgressionFactor(
            metric=_parse_metric(f.get("metric"), f"{where}.progression.factors"),
            floor=_number(_require(f, "floor", f"{where}.progression.factors"), f"{where}.progression.floor"),
        )
        for f in progression.get("factors", [])
    )
    if not factors:
        raise ConditionConfigError(f"{where}: progression needs at least one factor")
    for factor in factors:
        if not 0 < factor.floor <= 1:
            raise ConditionConfigError(f"{where}: progression floor must be within (0, 1]")

    progression_base = _number(_require(progression, "base", f"{where}.progression"), f"{where}.progression.base")
    comorbid_progression = progression.get("comorbid_base")
    if comorbid_progression is not None:
        comorbid_progression = _number(comorbid_progression, f"{where}.progression.comorbid_base")
    if progression_base < 0 or (comorbid_progression is not None and comorbid_progression < 0):
        raise ConditionConfigError(f"{where}: progression rates must be non-negative")

    comorbid_level = data.get("comorbid_risk_level_horizon")
    return ConditionProfile(
        key=key,
        display_name=_require(data, "display_name", where),
        base_risk=_number(_require(data, "base_risk", where), f"{where}.base_risk"),
        comorbid_base_risk=(
            _number(data["comorbid_base_risk"], f"{where}.comorbid_base_risk")
            if "comorbid_base_risk" in data
            else None
        ),
        ceiling=ceiling,
        age_reference=int(_number(_require(age, "reference", f"{where}.age"), f"{where}.age.reference")),
        age_rate=_number(_require(age, "rate", f"{where}.age"), f"{where}.age.rate"),
        progression_base=progression_base,
        comorbid_progression_base=comorbid_progression,
        progression_factors=factors,
        deficits=deficits,
        rules=rules,
        worsening_when=tuple(
            _parse_predicate(p, f"{where}.trend.worsening_when[{i}]")
            for i, p in enumerate(data.get("trend", {}).get("worsening_when", []))
        ),
        comorbidity=comorbidity,
        risk_level_horizon=_parse_horizon(data.get("risk_level_horizon", "five_years"), where),
        comorbid_risk_level_horizon=(
            _parse_horizon(comorbid_level, where) if comorbid_level is not None else None
        ),
    )


def _parse_risk_bands(data: list[dict[str, Any]]) -> tuple[tuple[float | None, str], ...]:
    bands: list[tuple[float | None, str]] = []
    previous = float("-inf")
    for i, band in enumerate(data):
        level = _require(band, "level", f"risk_levels[{i}]")
        if level not in RISK_LEVELS:
            raise ConditionConfigError(f"risk_levels[{i}]: unknown level {level!r}")
        upper = band.get("below")
        if upper is None:
            if i != len(data) - 1:
                raise ConditionConfigError("risk_levels: only the last band may be open-ended")
        else:
            upper = _number(upper, f"risk_levels[{i}].below")
            if upper <= previous:
                raise ConditionConfigError("risk_levels: bounds must be strictly increasing")
            previous = upper
        bands.append((upper, level))
    if not bands or bands[-1][0] is not None:
        raise ConditionConfigError("risk_levels: the last band must be open-ended")
    return tuple(bands)


def parse_condition_table(data: dict[str, Any]) -> ConditionTable:
    """Validate a decoded YAML document and build a ``ConditionTable``."""
    if not isinstance(data, dict):
        raise ConditionConfigError("condition table must be a mapping")

    projection = _require(data, "projection", "table")
    horizon_ceiling = _number(_require(projection, "horizon_ceiling", "projection"), "projection.horizon_ceiling")
    if not 0 < horizon_ceiling <= MAX_HORIZON_CEILING:
        raise ConditionConfigError(f"projection.horizon_ceiling must be within (0, {MAX_HORIZON_CEILING:g}]")

    raw_horizons = _require(projection, "horizons", "projection")
    multipliers: dict[str, float] = {}
    previous = 0.0
    for name in HORIZON_NAMES:
        value = _number(_require(raw_horizons, name, "projection.horizons"), f"projection.horizons.{name}")
        if value < previous:
            raise ConditionConfigError("projection.horizons must be non-negative and non-decreasing")
        multipliers[name] = value
        previous = value

    acceleration = projection.get("age_acceleration", {})
    conditions = tuple(_parse_condition(c, horizon_ceiling) for c in _require(data, "conditions", "table"))

    keys = [c.key for c in conditions]
    duplicates = sorted({k for k in keys if keys.count(k) > 1})
    if duplicates:
        raise ConditionConfigError(f"duplicate condition key(s): {duplicates}")

    return ConditionTable(
        version=str(data.get("version", "")),
        horizon_ceiling=horizon_ceiling,
        horizon_multipliers=multipliers,
        acceleration_reference_age=int(acceleration.get("reference_age", 40)),
        acceleration_per_year=_number(acceleration.get("per_year", 0.0), "projection.age_acceleration.per_year"),
        risk_bands=_parse_risk_bands(_require(data, "risk_levels", "table")),
        conditions=conditions,
    )


def load_condition_file(path: str | Path) -> ConditionTable:
    """Parse a YAML condition table from disk."""
    path = Path(path)
    try:
        with open(path) as f:
            data: dict[str, Any] = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConditionConfigError(f"Could not read condition table {path}: {exc}") from exc

    table = parse_condition_table(data)
    logger.info("Loaded %d risk conditions from %s (v%s)", len(table.conditions), path.name, table.version)
    return table


@lru_cache(maxsize=1)
def default_condition_table() -> ConditionTable:
    """The bundled condition table, parsed once per process."""
    return load_condition_file(DEFAULT_CONDITIONS_PATH)

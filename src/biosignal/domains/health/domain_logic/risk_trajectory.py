"""Risk trajectory engine.

Projects current and future risk (0-100) for each condition in the
condition table from the classified window averages and the intake profile.
Every condition runs through ``compute_trajectory``; only the constants in
``risk_conditions.yaml`` differ.
"""

from __future__ import annotations

import logging

from biosignal.core.storage.models import IntakeProfile
from biosignal.domains.health.domain_logic.reference_targets import target_for
from biosignal.domains.health.domain_logic.risk_conditions import (
    ConditionProfile,
    ConditionTable,
    default_condition_table,
)
from biosignal.domains.health.domain_logic.signal_models import (
    MissingIntakeDataError,
    RiskProjectionInput,
    RiskTrajectory,
)

logger = logging.getLogger(__name__)

MAX_DRIVERS = 3


def _current_risk(
    profile: ConditionProfile, inp: RiskProjectionInput, intake: IntakeProfile
) -> tuple[float, list[str]]:
    comorbid = profile.is_comorbid(intake)
    risk = profile.starting_risk(intake)
    drivers: list[str] = []

    for deficit in profile.deficits:
        target = target_for(deficit.metric, intake.age)
        shortfall = max(0.0, target - inp.value_of(deficit.metric))
        risk += shortfall / target * deficit.weight_for(comorbid)

    for rule in profile.rules:
        if rule.when.matches(inp, intake, comorbid):
            risk += rule.add
            if rule.driver:
                drivers.append(rule.driver)

    risk += max(0.0, (intake.age - profile.age_reference) * profile.age_rate)
    return min(profile.ceiling, max(0.0, risk)), drivers


def _annual_progression(
    profile: ConditionProfile, inp: RiskProjectionInput, intake: IntakeProfile, table: ConditionTable
) -> float:
    # Ratios below the floor are clamped so a near-zero metric cannot blow up the rate.
    ratios = [
        max(f.floor, inp.value_of(f.metric) / target_for(f.metric, intake.age))
        for f in profile.progression_factors
    ]
    factor = sum(ratios) / len(ratios)
    return profile.progression_rate(intake) / factor * table.age_acceleration(intake.age)


def compute_trajectory(
    profile: ConditionProfile,
    inp: RiskProjectionInput,
    table: ConditionTable | None = None,
) -> RiskTrajectory:
    """Project one condition.

    Horizons are non-decreasing: each is
    ``min(horizon_ceiling, current + annual * m)``, with the table-wide horizon
    ceiling (95) rather than the condition ceiling that bounds ``current``,
    and non-negative, non-decreasing multipliers ``m``.
    """
    table = table or default_condition_table()
    intake = inp.intake
    if intake is None:
        raise MissingIntakeDataError("An intake profile is required for risk projection")

    current, drivers = _current_risk(profile, inp, intake)
    annual = _annual_progression(profile, inp, intake, table)

    values = {"current": current}
    for name, multiplier in table.horizon_multipliers.items():
        values[name] = min(table.horizon_ceiling, current + annual * multiplier)

    comorbid = profile.is_comorbid(intake)
    worsening = any(p.matches(inp, intake, comorbid) for p in profile.worsening_when)

    return RiskTrajectory(
        current=values["current"],
        six_months=values["six_months"],
        one_year=values["one_year"],
        five_years=values["five_years"],
        ten_years=values["ten_years"],
        risk_level=table.risk_level(values[profile.level_horizon(intake)]),
        trend="worsening" if worsening else "stable",
        primary_drivers=drivers[:MAX_DRIVERS],
    )


def generate_all_risk_projections(
    inp: RiskProjectionInput,
    table: ConditionTable | None = None,
) -> dict[str, RiskTrajectory]:
    """Trajectory for every condition, keyed and ordered as in the table."""
    table = table or default_condition_table()
    if inp.intake is None:
        raise MissingIntakeDataError("An intake profile is required for risk projection")

    bundle = {c.key: compute_trajectory(c, inp, table) for c in table.conditions}
    logger.debug(
        "Projected %d conditions (hrv=%s, deep_sleep=%s)",
        len(bundle),
        inp.hrv_classification,
        inp.deep_sleep_classification,
    )
    return bundle


def worst_trajectories(
    bundle: dict[str, RiskTrajectory],
    limit: int = 2,
    table: ConditionTable | None = None,
) -> list[str]:
    """Display names of the ``limit`` conditions with the highest five-year risk.

    Ties keep bundle order.
    """
    table = table or default_condition_table()
    ranked = sorted(bundle.items(), key=lambda item: -item[1].five_years)
    names = []
    for key, _ in ranked[:limit]:
        profile = table.get(key)
        names.append(profile.display_name if profile else key)
    return names

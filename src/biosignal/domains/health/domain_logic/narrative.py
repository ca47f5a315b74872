"""Narrative generation contract.

Narrative text is produced outside this package. The engine assembles a
``NarrativeRequest`` from its derived outputs; any object implementing
``NarrativeGenerator`` can turn it into prose.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from biosignal.core.storage.models import IntakeProfile
from biosignal.domains.health.domain_logic.risk_trajectory import worst_trajectories
from biosignal.domains.health.domain_logic.signal_models import (
    PhysiologicalClassification,
    RiskTrajectory,
)


@dataclass
class NarrativeRequest:
    classification: PhysiologicalClassification
    avg_hrv: float
    avg_deep_sleep: float
    intake: IntakeProfile
    trajectories: dict[str, RiskTrajectory]
    highest_risks: list[str] = field(default_factory=list)
    reference_template: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "classification": self.classification.to_dict(),
            "avgHrv": round(self.avg_hrv, 2),
            "avgDeepSleep": round(self.avg_deep_sleep, 2),
            "intake": self.intake.to_dict(),
            "trajectories": {k: t.to_dict() for k, t in self.trajectories.items()},
            "highestRisks": list(self.highest_risks),
            "referenceTemplate": self.reference_template,
        }


class NarrativeGenerator(Protocol):
    async def generate(self, request: NarrativeRequest) -> str: ...


def build_narrative_request(
    classification: PhysiologicalClassification,
    intake: IntakeProfile,
    trajectories: dict[str, RiskTrajectory],
    reference_template: str | None = None,
) -> NarrativeRequest:
    """Bundle everything a narrative generator needs, including the two highest risks."""
    return NarrativeRequest(
        classification=classification,
        avg_hrv=classification.hrv.value,
        avg_deep_sleep=classification.deep_sleep.value,
        intake=intake,
        trajectories=trajectories,
        highest_risks=worst_trajectories(trajectories, limit=2),
        reference_template=reference_template,
    )

"""
Project repository: the engine's read interface.

``ProjectRepository.load`` reads everything the decision-support engine
needs for one project in a handful of queries and returns it as an
immutable ``ProjectWorkingSet``.  Aggregators and scorers only ever see the
working set, never the session, so every derived number is a pure function
of (working set, settings).

Soft-deleted activities and indicators are excluded at load time.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from functools import cached_property

from cdeboard.core.exceptions import NotFoundError
from cdeboard.models import db
from cdeboard.models.cde import (
    Activity,
    Channel,
    QualitativeOutcome,
    ResultAsset,
    StakeholderGroup,
    SurveyResponse,
)
from cdeboard.models.compliance import COMMON_PROFILE, ComplianceRule
from cdeboard.models.monitoring import EvidenceItem, EvidenceLink, Indicator, IndicatorValue
from cdeboard.models.objective import Objective
from cdeboard.models.project import Project
from cdeboard.models.uptake import Agreement, UptakeOpportunity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectWorkingSet:
    """Point-in-time snapshot of one project's CDE records."""

    project: Project
    activities: tuple[Activity, ...]
    channels: tuple[Channel, ...]
    stakeholder_groups: tuple[StakeholderGroup, ...]
    assets: tuple[ResultAsset, ...]
    indicators: tuple[Indicator, ...]
    indicator_values: tuple[IndicatorValue, ...]
    evidence_links: tuple[EvidenceLink, ...]
    objectives: tuple[Objective, ...]
    opportunities: tuple[UptakeOpportunity, ...]
    agreements: tuple[Agreement, ...]
    survey_responses: tuple[SurveyResponse, ...]
    qualitative_outcomes: tuple[QualitativeOutcome, ...]
    window: tuple[date | None, date | None] = (None, None)

    @property
    def project_id(self) -> int:
        return self.project.id

    # ── Lookups ──────────────────────────────────────────────────────────

    @cached_property
    def _evidence_index(self) -> dict[tuple[str, str], list[EvidenceItem]]:
        index: dict[tuple[str, str], list[EvidenceItem]] = defaultdict(list)
        for link in self.evidence_links:
            if link.evidence is not None:
                index[(link.entity_type, str(link.entity_id))].append(link.evidence)
        return index

    def evidence_for(self, entity_type: str, entity_id) -> list[EvidenceItem]:
        return self._evidence_index.get((entity_type, str(entity_id)), [])

    @cached_property
    def _values_by_indicator(self) -> dict[int, list[IndicatorValue]]:
        index: dict[int, list[IndicatorValue]] = defaultdict(list)
        for value in self.indicator_values:
            index[value.indicator_id].append(value)
        for values in index.values():
            values.sort(key=lambda v: (v.recorded_at, v.id))
        return index

    def values_for(self, indicator_id: int) -> list[IndicatorValue]:
        """Values of one indicator, oldest first."""
        return self._values_by_indicator.get(indicator_id, [])

    @cached_property
    def _signals_by_activity(self) -> dict[str, dict[int, int]]:
        counts: dict[str, dict[int, int]] = {
            "survey_responses": defaultdict(int),
            "qualitative_outcomes": defaultdict(int),
            "uptake_opportunities": defaultdict(int),
            "agreements": defaultdict(int),
        }
        for rows, key in (
            (self.survey_responses, "survey_responses"),
            (self.qualitative_outcomes, "qualitative_outcomes"),
            (self.opportunities, "uptake_opportunities"),
            (self.agreements, "agreements"),
        ):
            for row in rows:
                if row.activity_id is not None:
                    counts[key][row.activity_id] += 1
        return counts

    def signal_count(self, kind: str, activity_id: int) -> int:
        """Number of engagement signals of *kind* attributed to an activity."""
        return self._signals_by_activity[kind].get(activity_id, 0)


class ProjectRepository:
    """Loads ``ProjectWorkingSet`` instances from the shared database."""

    def load(
        self,
        project_id: int,
        *,
        start: date | None = None,
        end: date | None = None,
    ) -> ProjectWorkingSet:
        """
        Read one project's working set.

        When *start* / *end* are given, only activities whose ``end_date``
        falls inside ``[start, end]`` are kept; activities without an end
        date drop out of a windowed read.
        """
        project = db.session.get(Project, project_id)
        if project is None:
            raise NotFoundError(resource="Project", resource_id=project_id)

        activities_q = Activity.query.filter(
            Activity.project_id == project_id,
            Activity.deleted_at.is_(None),
        )
        if start is not None:
            activities_q = activities_q.filter(Activity.end_date >= start)
        if end is not None:
            activities_q = activities_q.filter(Activity.end_date <= end)
        activities = tuple(activities_q.order_by(Activity.id).all())

        indicators = tuple(
            Indicator.query.filter(
                Indicator.project_id == project_id,
                Indicator.deleted_at.is_(None),
            ).order_by(Indicator.id).all()
        )
        indicator_ids = [i.id for i in indicators]
        values = tuple(
            IndicatorValue.query.filter(IndicatorValue.indicator_id.in_(indicator_ids))
            .order_by(IndicatorValue.recorded_at, IndicatorValue.id).all()
        ) if indicator_ids else ()

        evidence_links = tuple(
            EvidenceLink.query.join(EvidenceItem)
            .filter(EvidenceItem.project_id == project_id)
            .order_by(EvidenceLink.id).all()
        )

        def _by_project(model):
            return tuple(model.query.filter_by(project_id=project_id).order_by(model.id).all())

        working_set = ProjectWorkingSet(
            project=project,
            activities=activities,
            channels=_by_project(Channel),
            stakeholder_groups=_by_project(StakeholderGroup),
            assets=_by_project(ResultAsset),
            indicators=indicators,
            indicator_values=values,
            evidence_links=evidence_links,
            objectives=_by_project(Objective),
            opportunities=_by_project(UptakeOpportunity),
            agreements=_by_project(Agreement),
            survey_responses=_by_project(SurveyResponse),
            qualitative_outcomes=_by_project(QualitativeOutcome),
            window=(start, end),
        )
        logger.debug(
            "Loaded working set: %d activities, %d channels, %d indicators",
            len(activities), len(working_set.channels), len(indicators),
            extra={"project_id": project_id},
        )
        return working_set

    def applicable_rules(self, project: Project) -> list[ComplianceRule]:
        """Active rules for the Common profile plus the project's own profile."""
        profiles = {COMMON_PROFILE, project.programme_profile}
        return (
            ComplianceRule.query.filter(
                ComplianceRule.active.is_(True),
                ComplianceRule.programme_profile.in_(profiles),
            )
            .order_by(ComplianceRule.code)
            .all()
        )

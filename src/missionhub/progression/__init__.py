"""Progression rule engine: achievements, ranks and competency points."""

from missionhub.progression.achievement_evaluator import AchievementEvaluator
from missionhub.progression.competency_ledger import CompetencyLedger
from missionhub.progression.orchestrator import ProgressionOrchestrator, get_progression_orchestrator
from missionhub.progression.rank_evaluator import RankEvaluator

__all__ = [
    "AchievementEvaluator",
    "CompetencyLedger",
    "ProgressionOrchestrator",
    "RankEvaluator",
    "get_progression_orchestrator",
]

from devteam.scheduling.dependency_graph import DependencyGraph, DependencyNode, WeightedPath
from devteam.scheduling.distribution_engine import TaskDistributionEngine, TaskProgressAnalysis
from devteam.scheduling.quality_gates import (
    QualityCheck,
    QualityCheckResult,
    QualityGateEvaluator,
    QualityGateResult,
)
from devteam.scheduling.strategies import STRATEGIES, TaskAssignment
from devteam.scheduling.workload import (
    ReassignmentSuggestion,
    WorkloadMetrics,
    WorkloadReport,
    WorkloadTracker,
)

__all__ = [
    "DependencyGraph",
    "DependencyNode",
    "QualityCheck",
    "QualityCheckResult",
    "QualityGateEvaluator",
    "QualityGateResult",
    "ReassignmentSuggestion",
    "STRATEGIES",
    "TaskAssignment",
    "TaskDistributionEngine",
    "TaskProgressAnalysis",
    "WeightedPath",
    "WorkloadMetrics",
    "WorkloadReport",
    "WorkloadTracker",
]

from topoevo.statistics.diversity import (
    DiversityStats,
    RunningStats,
    compute_diversity,
)
from topoevo.statistics.ordering import rank_by_score, sort_indices_desc, top_k
from topoevo.statistics.streaming import (
    DecisionRing,
    DecisionStats,
    RunningMoments,
    StatisticsConfig,
    StatisticsMode,
    StreamingStatistics,
    decision_stability,
    softmax_entropy,
)

__all__ = [
    "DiversityStats",
    "RunningStats",
    "compute_diversity",
    "rank_by_score",
    "sort_indices_desc",
    "top_k",
    "DecisionRing",
    "DecisionStats",
    "RunningMoments",
    "StatisticsConfig",
    "StatisticsMode",
    "StreamingStatistics",
    "decision_stability",
    "softmax_entropy",
]

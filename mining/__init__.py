"""
NIBBLEPOW Search Engine
"""

from .worker import CandidateResult, search_worker
from .pool import WorkerPool, SearchCycle
from .coordinator import Coordinator, MinerState, MinerStats, format_hashrate

__all__ = [
    'CandidateResult',
    'search_worker',
    'WorkerPool',
    'SearchCycle',
    'Coordinator',
    'MinerState',
    'MinerStats',
    'format_hashrate',
]

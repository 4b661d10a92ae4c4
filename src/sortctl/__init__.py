"""
sortctl - Benchmark sweep orchestrator for external-sort workloads.
"""

__version__ = "0.1.0"

from .core.config import load_config, get_sortctl_setting
from .core.executor import RunExecutor, RunResult, RunStatus

__all__ = [
    "load_config",
    "get_sortctl_setting",
    "RunExecutor",
    "RunResult",
    "RunStatus",
]

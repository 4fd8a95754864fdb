"""
NIBBLEPOW Network Module
HTTP client for the job coordinator.
"""

from .client import CoordinatorClient

__all__ = [
    'CoordinatorClient',
]

"""
Core module for the trust-check service: job state, stores, queue and read path
"""

__all__ = [
    'database',
    'gateway',
    'job_state',
    'queue',
    'results',
    'stores',
]

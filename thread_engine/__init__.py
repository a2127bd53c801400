"""
Thread Engine
=============

Server-side engine deciding which conversation threads exist, which a
user may see, which are open or subscribed for that user, and in what
order they are presented.

LAYERS:
=======
- contracts:     Immutable value types, schema, errors
- temporal:      Injectable clock, hash-chained transaction log
- storage:       Append-only, time-queryable fact store
- core:          Repository, visibility, subscriptions, recency
- ingestion:     Transaction builders for external producers
- observability: Audit trail, metrics, logging
- api:           FastAPI surface
"""

from .engine import EngineConfig, RecencyConfig, ThreadEngine

__version__ = "0.1.0"

__all__ = [
    'EngineConfig',
    'RecencyConfig',
    'ThreadEngine',
]

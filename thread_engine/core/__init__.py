"""
Thread & Subscription Core

RESPONSIBILITY: Thread aggregates, visibility, per-user open/subscribed
state, last-open watermarks, recency ranking
ALLOWED INPUTS: Snapshots and history reads from the fact store
OUTPUTS: Thread aggregates, booleans, timestamps, transaction batches

WHAT THIS LAYER MUST NOT DO:
============================
- Cache aggregates between calls
- Commit transactions (except the two-step last-open bump)
- Retry or swallow fact store errors
- Mutate group membership or tag ownership
"""

from .repository import ThreadRepository, pull_message, pull_thread
from .recency import RecencyCalculator
from .subscriptions import KeyedLocks, SubscriptionManager
from .tags import TagDirectory
from .visibility import VisibilityEvaluator

__all__ = [
    'ThreadRepository',
    'RecencyCalculator',
    'SubscriptionManager',
    'KeyedLocks',
    'TagDirectory',
    'VisibilityEvaluator',
    'pull_thread',
    'pull_message',
]

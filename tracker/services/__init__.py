"""
Services package for the match tracker.

Services compose repository calls into the audit, statistics and
subscription workflows used by the match state machine and admin tooling.
"""

from .base import BaseService
from .audit_trail import AuditTrail
from .stats_aggregator import StatsAggregator
from .subscriptions import SubscriptionManager, Subscription

__all__ = ['BaseService', 'AuditTrail', 'StatsAggregator', 'SubscriptionManager', 'Subscription']

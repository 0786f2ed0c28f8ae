"""
Services package for Timegate
"""

from services.state_store import StateStore
from services.ledger import Ledger
from services.quota_service import QuotaService
from services.timegate_service import TimegateService
from services.reconciliation import ReconciliationScheduler, SweepConfig
from services.config_service import Settings, GuildConfigService
from services.effects import EffectHandler, NullEffectHandler

__all__ = [
    "StateStore",
    "Ledger",
    "QuotaService",
    "TimegateService",
    "ReconciliationScheduler",
    "SweepConfig",
    "Settings",
    "GuildConfigService",
    "EffectHandler",
    "NullEffectHandler"
]

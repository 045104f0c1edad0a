from .base import BaseCollector, CollectionError, CollectorResult
from .principals import PrincipalInfo, PrincipalResolver
from .directory import DirectoryRoleSource
from .azure_ad import AzureADCollector
from .services import (
    DefenderCollector,
    DirectoryRoleCollector,
    PowerPlatformCollector,
    PurviewCollector,
    SharePointCollector,
    TeamsCollector,
)
from .exchange import ExchangeCollector
from .intune import IntuneCollector

# Results are concatenated in this order
ALL_COLLECTORS = [
    AzureADCollector,
    SharePointCollector,
    ExchangeCollector,
    PurviewCollector,
    TeamsCollector,
    DefenderCollector,
    IntuneCollector,
    PowerPlatformCollector,
]

__all__ = [
    "BaseCollector",
    "CollectionError",
    "CollectorResult",
    "PrincipalInfo",
    "PrincipalResolver",
    "DirectoryRoleSource",
    "DirectoryRoleCollector",
    "AzureADCollector",
    "SharePointCollector",
    "ExchangeCollector",
    "PurviewCollector",
    "TeamsCollector",
    "DefenderCollector",
    "IntuneCollector",
    "PowerPlatformCollector",
    "ALL_COLLECTORS",
]

from .base import (
    AnalyzerOutput,
    BaseAnalyzer,
    ComplianceCheck,
    ComplianceGap,
    Recommendation,
)
from .privilege_analyzer import PrivilegeAnalyzer
from .auth_analyzer import AuthenticationAnalyzer, effective_auth_types
from .exchange_analyzer import ExchangeAnalyzer
from .intune_analyzer import IntuneAnalyzer
from .power_platform_analyzer import PowerPlatformAnalyzer
from .runner import SecurityAnalysis, run_analysis

ALL_ANALYZERS = [
    PrivilegeAnalyzer,
    AuthenticationAnalyzer,
    ExchangeAnalyzer,
    IntuneAnalyzer,
    PowerPlatformAnalyzer,
]

__all__ = [
    "AnalyzerOutput",
    "BaseAnalyzer",
    "ComplianceCheck",
    "ComplianceGap",
    "Recommendation",
    "PrivilegeAnalyzer",
    "AuthenticationAnalyzer",
    "ExchangeAnalyzer",
    "IntuneAnalyzer",
    "PowerPlatformAnalyzer",
    "SecurityAnalysis",
    "effective_auth_types",
    "run_analysis",
    "ALL_ANALYZERS",
]

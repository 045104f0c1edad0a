"""
Azure AD / Entra ID Collector
Every directory role assignment: standing, PIM-eligible and PIM-activated.
"""

from __future__ import annotations

from ..models import Service
from .base import BaseCollector, CollectorResult


class AzureADCollector(BaseCollector):
    name = "azure_ad"
    service = Service.AZURE_AD
    service_key = "AzureAD"

    async def collect(self, result: CollectorResult):
        result.add_records(await self.directory_records(result))

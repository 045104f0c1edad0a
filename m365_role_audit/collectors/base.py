"""
Base collector class — Abstract interface for all service collectors.
Each collector produces AssignmentRecords for one M365 service.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING

from ..config import CollectionConfig
from ..graph.client import GraphClient, GraphAPIError
from ..models import AssignmentRecord, Service

if TYPE_CHECKING:
    from ..auth.authenticator import AuthContext
    from .directory import DirectoryRoleSource
    from .principals import PrincipalResolver

logger = logging.getLogger("m365_role_audit.collectors")


class CollectionError(Exception):
    """Recoverable failure of one collector."""
    pass


class CollectorResult:
    """Standardized result from a collector."""

    def __init__(self, collector_name: str, service: str):
        self.collector_name = collector_name
        self.service = service
        self.records: list[AssignmentRecord] = []
        self.metadata: dict[str, Any] = {
            "collector": collector_name,
            "service": service,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "items_collected": 0,
            "errors": [],
            "warnings": [],
            "endpoints_queried": 0,
        }

    def add_records(self, records: list[AssignmentRecord]):
        self.records.extend(records)
        self.metadata["items_collected"] += len(records)

    def add_error(self, error: str):
        self.metadata["errors"].append(error)
        logger.error(f"[{self.collector_name}] {error}")

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.collector_name}] {warning}")

    @property
    def returned_data(self) -> bool:
        return bool(self.records)

    def to_dict(self) -> dict:
        return {
            "records": [r.to_dict() for r in self.records],
            "metadata": self.metadata,
        }


class BaseCollector(ABC):
    """
    Abstract base class for all service collectors.

    Subclasses implement collect() to gather records from Graph API.
    The base class provides:
      - Timing and metadata
      - Error handling wrapper (a failing collector yields a partial result)
      - Authentication type stamping on every record
    """

    name: str = "base"
    service: Service = Service.AZURE_AD
    service_key: str = ""

    def __init__(
        self,
        graph: GraphClient,
        config: CollectionConfig,
        auth_context: "AuthContext",
        directory: "DirectoryRoleSource",
        resolver: "PrincipalResolver",
    ):
        self.graph = graph
        self.config = config
        self.auth_context = auth_context
        self.directory = directory
        self.resolver = resolver

    async def execute(self) -> CollectorResult:
        """
        Execute the collector with timing and error handling.
        """
        result = CollectorResult(self.name, self.service.value)
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Starting collection...")

        try:
            await self.collect(result)
        except Exception as e:
            result.add_error(f"Collection failed: {type(e).__name__}: {e}")
            logger.exception(f"[{self.name}] Collection failed")

        result.records = [
            dataclasses.replace(r, authentication_type=self.auth_context.auth_type)
            for r in result.records
        ]
        result.metadata["completed_at"] = time.time()
        result.metadata["duration_seconds"] = round(
            result.metadata["completed_at"] - result.metadata["started_at"], 2
        )
        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s — "
            f"{result.metadata['items_collected']} records"
        )
        return result

    @abstractmethod
    async def collect(self, result: CollectorResult):
        """
        Implement collection logic.
        Add records via result.add_records(records).
        """
        raise NotImplementedError

    async def directory_records(self, result: CollectorResult) -> list[AssignmentRecord]:
        """Directory role records shared across collectors, or [] on failure."""
        try:
            records = await self.directory.load()
        except Exception as e:
            raise CollectionError(f"Directory role assignments unavailable: {e}") from e
        for warning in self.directory.warnings:
            if warning not in result.metadata["warnings"]:
                result.add_warning(warning)
        return records

    async def safe_get_all(self, endpoint: str, result: CollectorResult, **kwargs) -> list:
        """Safely get all pages and record errors."""
        try:
            data = await self.graph.get_all_pages(endpoint, **kwargs)
            result.metadata["endpoints_queried"] += 1
            return data
        except GraphAPIError as e:
            if e.status_code == 403:
                result.add_warning(f"Permission denied: {endpoint} — {e}")
                result.metadata.setdefault("permission_gaps", []).append(endpoint)
            else:
                result.add_error(f"Failed to paginate {endpoint}: {e}")
            return []
        except Exception as e:
            result.add_error(f"Failed to paginate {endpoint}: {e}")
            return []

    def wants_overarching(self) -> bool:
        return self.config.include_overarching_roles

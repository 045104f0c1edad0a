"""
Principal resolver — turns principal object ids into display identities.

One resolver per audit. Ids are resolved through directoryObjects/getByIds
in chunks (run concurrently); users are then enriched through $batch with
account state, sync state and last sign-in.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from ..config import GET_BY_IDS_CHUNK
from ..graph.client import GraphClient
from ..models import PrincipalType, UNKNOWN_PRINCIPAL, parse_graph_datetime

logger = logging.getLogger("m365_role_audit.collectors.principals")

USER_ENRICHMENT_SELECT = "id,accountEnabled,onPremisesSyncEnabled,signInActivity"


@dataclass(frozen=True)
class PrincipalInfo:
    principal_id: str
    principal_type: str = PrincipalType.UNKNOWN.value
    user_principal_name: str = UNKNOWN_PRINCIPAL
    display_name: Optional[str] = None
    user_enabled: Optional[bool] = None
    on_premises_sync_enabled: Optional[bool] = None
    last_sign_in: Optional[datetime] = None


def principal_from_object(obj: dict) -> PrincipalInfo:
    """Build a PrincipalInfo from a directoryObject payload."""
    odata_type = (obj.get("@odata.type") or "").split(".")[-1].lower()
    object_id = obj.get("id", "")
    display_name = obj.get("displayName")

    if odata_type == "user" or "userPrincipalName" in obj:
        return PrincipalInfo(
            principal_id=object_id,
            principal_type=PrincipalType.USER.value,
            user_principal_name=obj.get("userPrincipalName") or UNKNOWN_PRINCIPAL,
            display_name=display_name,
            user_enabled=obj.get("accountEnabled"),
            on_premises_sync_enabled=obj.get("onPremisesSyncEnabled"),
        )
    if odata_type == "group":
        return PrincipalInfo(
            principal_id=object_id,
            principal_type=PrincipalType.GROUP.value,
            user_principal_name=obj.get("mail") or display_name or UNKNOWN_PRINCIPAL,
            display_name=f"{display_name} (Group)" if display_name else None,
            on_premises_sync_enabled=obj.get("onPremisesSyncEnabled"),
        )
    if odata_type == "serviceprincipal" or "appId" in obj:
        return PrincipalInfo(
            principal_id=object_id,
            principal_type=PrincipalType.SERVICE_PRINCIPAL.value,
            user_principal_name=obj.get("appId") or UNKNOWN_PRINCIPAL,
            display_name=f"{display_name} (Application)" if display_name else None,
            user_enabled=obj.get("accountEnabled"),
        )
    return PrincipalInfo(principal_id=object_id, display_name=display_name)


class PrincipalResolver:
    """Resolves and caches principals for the lifetime of one audit."""

    def __init__(self, graph: GraphClient, chunk_size: int = GET_BY_IDS_CHUNK):
        self.graph = graph
        self.chunk_size = chunk_size
        self._cache: dict[str, PrincipalInfo] = {}
        self._lock = asyncio.Lock()
        self.warnings: list[str] = []

    async def resolve(self, principal_ids: Iterable[Optional[str]]) -> dict[str, PrincipalInfo]:
        """
        Resolve ids to PrincipalInfo. Ids that cannot be resolved map to an
        Unknown principal rather than being dropped.
        """
        wanted = list(dict.fromkeys(pid for pid in principal_ids if pid))

        async with self._lock:
            missing = [pid for pid in wanted if pid not in self._cache]
            if missing:
                resolved = await self._fetch(missing)
                for pid in missing:
                    self._cache[pid] = resolved.get(pid) or PrincipalInfo(principal_id=pid)

        return {pid: self._cache[pid] for pid in wanted}

    async def _fetch(self, ids: list[str]) -> dict[str, PrincipalInfo]:
        chunks = [ids[i:i + self.chunk_size] for i in range(0, len(ids), self.chunk_size)]
        logger.debug(f"Resolving {len(ids)} principals in {len(chunks)} chunk(s)")

        responses = await asyncio.gather(
            *(self._get_by_ids(chunk) for chunk in chunks),
            return_exceptions=True,
        )

        resolved: dict[str, PrincipalInfo] = {}
        for chunk, response in zip(chunks, responses):
            if isinstance(response, Exception):
                msg = f"Principal resolution failed for {len(chunk)} ids: {response}"
                logger.warning(msg)
                self.warnings.append(msg)
                continue
            for obj in response:
                info = principal_from_object(obj)
                if info.principal_id:
                    resolved[info.principal_id] = info

        users = [info for info in resolved.values() if info.principal_type == PrincipalType.USER.value]
        if users:
            resolved.update(await self._enrich_users(users))
        return resolved

    async def _get_by_ids(self, chunk: list[str]) -> list[dict]:
        data = await self.graph.post_read(
            "directoryObjects/getByIds",
            {"ids": chunk, "types": ["user", "group", "servicePrincipal"]},
        )
        return data.get("value", [])

    async def _enrich_users(self, users: list[PrincipalInfo]) -> dict[str, PrincipalInfo]:
        """Look up accountEnabled, onPremisesSyncEnabled and signInActivity."""
        try:
            bodies = await self.graph.batch_get(
                [f"/users/{u.principal_id}?$select={USER_ENRICHMENT_SELECT}" for u in users]
            )
        except Exception as e:
            msg = f"User enrichment failed: {e}"
            logger.warning(msg)
            self.warnings.append(msg)
            return {}

        return {
            user.principal_id: _merge_user(user, body)
            for user, body in zip(users, bodies)
            if not body.get("_error")
        }


def _merge_user(base: PrincipalInfo, body: dict) -> PrincipalInfo:
    sign_in = (body.get("signInActivity") or {}).get("lastSignInDateTime")
    return PrincipalInfo(
        principal_id=base.principal_id,
        principal_type=PrincipalType.USER.value,
        user_principal_name=base.user_principal_name,
        display_name=base.display_name,
        user_enabled=body.get("accountEnabled", base.user_enabled),
        on_premises_sync_enabled=body.get("onPremisesSyncEnabled", base.on_premises_sync_enabled),
        last_sign_in=parse_graph_datetime(sign_in),
    )

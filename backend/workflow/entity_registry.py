"""Entity registry — the whitelist of tables and columns workflow steps may write.

Workflow authors (and, through templates, event payloads) choose the
entity name and field values. Only names registered here resolve to a
table, and only whitelisted columns survive ``pick_allowed_fields``.
Unknown names are rejected at lookup time; there is no reflective
fallback onto arbitrary tables.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Type
from uuid import uuid4

from sqlalchemy import insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NonRetryableStepError, StepExecutionError
from db.base import BaseModel
from db.models.messaging_request import MessagingRequest
from db.models.notification import Notification
from db.models.partner import PartnerContract, PartnerIncentiveApplication, PartnerSubmission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntitySpec:
    """Registry entry for one writable entity.

    Attributes:
        name: Logical entity name used in step configs
        model: SQLAlchemy model backing the table
        allowed_fields: Column names a step may set
        tenant_fields: {"district": column, "school": column} injected from the run scope
    """

    name: str
    model: Type[BaseModel]
    allowed_fields: frozenset[str]
    tenant_fields: dict[str, str] = field(default_factory=dict)

    @property
    def table(self):
        return self.model.__table__


ENTITY_REGISTRY: dict[str, EntitySpec] = {
    "notifications": EntitySpec(
        name="notifications",
        model=Notification,
        allowed_fields=frozenset({
            "user_id", "district_id", "school_id", "type", "severity", "title",
            "body", "entity_type", "entity_id", "metadata",
        }),
        tenant_fields={"district": "district_id", "school": "school_id"},
    ),
    "partner_submissions": EntitySpec(
        name="partner_submissions",
        model=PartnerSubmission,
        allowed_fields=frozenset({
            "district_id", "partner_id", "submitted_by", "title", "status",
            "notes", "reviewed_by", "metadata",
        }),
        tenant_fields={"district": "district_id"},
    ),
    "partner_incentive_applications": EntitySpec(
        name="partner_incentive_applications",
        model=PartnerIncentiveApplication,
        allowed_fields=frozenset({
            "district_id", "partner_id", "incentive_id", "status", "notes", "metadata",
        }),
        tenant_fields={"district": "district_id"},
    ),
    "partner_contracts": EntitySpec(
        name="partner_contracts",
        model=PartnerContract,
        allowed_fields=frozenset({
            "district_id", "partner_id", "status", "starts_on", "ends_on", "terms", "metadata",
        }),
        tenant_fields={"district": "district_id"},
    ),
    "messaging_requests": EntitySpec(
        name="messaging_requests",
        model=MessagingRequest,
        allowed_fields=frozenset({
            "district_id", "school_id", "requester_user_id", "target_user_id",
            "status", "reason", "decided_by",
        }),
        tenant_fields={"district": "district_id", "school": "school_id"},
    ),
}


def get_entity_spec(entity: Optional[str]) -> EntitySpec:
    """Look up a registered entity or fail closed."""
    spec = ENTITY_REGISTRY.get(str(entity or ""))
    if spec is None:
        raise NonRetryableStepError(f"unsupported entity: {entity}", {"entity": entity})
    return spec


def pick_allowed_fields(entity: str, raw_fields: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Drop every key not whitelisted for ``entity``."""
    spec = get_entity_spec(entity)
    if not isinstance(raw_fields, dict):
        return {}
    return {k: v for k, v in raw_fields.items() if k in spec.allowed_fields}


def inject_tenant_fields(
    spec: EntitySpec,
    fields: dict[str, Any],
    district_id: Optional[str],
    school_id: Optional[str],
) -> dict[str, Any]:
    """Overwrite the entity's tenant columns with the run's scope.

    Scope values that are not set are left alone, so a global run does
    not blank out tenant columns.
    """
    merged = dict(fields)
    scope = {"district": district_id, "school": school_id}
    for key, column in spec.tenant_fields.items():
        if scope.get(key) is not None:
            merged[column] = scope[key]
    return merged


def _tenant_predicates(spec: EntitySpec, district_id: Optional[str], school_id: Optional[str]) -> list:
    scope = {"district": district_id, "school": school_id}
    return [
        spec.table.c[column] == scope[key]
        for key, column in spec.tenant_fields.items()
        if scope.get(key) is not None
    ]


def prepare_fields(
    entity: str,
    raw_fields: Optional[dict[str, Any]],
    district_id: Optional[str] = None,
    school_id: Optional[str] = None,
) -> dict[str, Any]:
    """Tenant injection followed by whitelist filtering."""
    spec = get_entity_spec(entity)
    fields = raw_fields if isinstance(raw_fields, dict) else {}
    return pick_allowed_fields(spec.name, inject_tenant_fields(spec, fields, district_id, school_id))


class EntityStore:
    """Writes whitelisted entity rows through the run's database session.

    Each write runs inside a savepoint so a constraint violation fails
    the step without aborting the surrounding run transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_entity(
        self,
        entity: str,
        fields: Optional[dict[str, Any]],
        district_id: Optional[str] = None,
        school_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Insert one row; returns ``{"entity", "id", "fields"}``."""
        spec = get_entity_spec(entity)
        values = prepare_fields(spec.name, fields, district_id, school_id)
        row_id = str(uuid4())

        try:
            async with self.db.begin_nested():
                await self.db.execute(insert(spec.table).values({"id": row_id, **values}))
        except Exception as exc:
            raise StepExecutionError(f"create {spec.name} failed: {exc}") from exc

        logger.info("Entity created: entity=%s id=%s", spec.name, row_id)
        return {"entity": spec.name, "id": row_id, "fields": values}

    async def update_entity_by_pk(
        self,
        entity: str,
        pk: Optional[dict[str, Any]],
        fields: Optional[dict[str, Any]],
        district_id: Optional[str] = None,
        school_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Update one row identified by ``pk["id"]`` within the run's tenant scope.

        Rows whose tenant columns belong to another scope are treated as
        not found.
        """
        spec = get_entity_spec(entity)
        row_id = pk.get("id") if isinstance(pk, dict) else None
        if row_id in (None, ""):
            raise NonRetryableStepError("missing_pk", {"entity": spec.name})

        values = prepare_fields(spec.name, fields, district_id, school_id)
        if not values:
            return {"entity": spec.name, "id": row_id, "fields": {}, "updated": 0}

        try:
            async with self.db.begin_nested():
                result = await self.db.execute(
                    update(spec.table)
                    .where(spec.table.c.id == str(row_id), *_tenant_predicates(spec, district_id, school_id))
                    .values(values)
                )
        except Exception as exc:
            raise StepExecutionError(f"update {spec.name} failed: {exc}") from exc

        if not result.rowcount:
            raise StepExecutionError(f"{spec.name} {row_id} not found")

        logger.info("Entity updated: entity=%s id=%s fields=%s", spec.name, row_id, sorted(values))
        return {"entity": spec.name, "id": str(row_id), "fields": values, "updated": result.rowcount}

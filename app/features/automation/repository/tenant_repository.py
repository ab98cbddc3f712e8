"""
Read-only access to tenant state: status, feature flags, templates, landing
contact details.
"""

from app.db.helpers import fetch_one, fetch_val
from app.features.automation.domain import MessageTemplate, Tenant


class TenantRepository:
    @staticmethod
    async def get_tenant(tenant_id: str) -> Tenant | None:
        """Return the tenant including soft-deleted rows; callers decide eligibility."""
        row = await fetch_one(
            "SELECT id, name, status, deleted_at FROM tenants WHERE id = %s",
            (tenant_id,),
        )
        if not row:
            return None
        return Tenant(
            id=str(row["id"]),
            name=row.get("name"),
            status=row.get("status") or "",
            deleted_at=row.get("deleted_at"),
        )

    @staticmethod
    async def is_feature_enabled(tenant_id: str, feature_key: str) -> bool:
        enabled = await fetch_val(
            """
            SELECT enabled
            FROM tenant_features
            WHERE tenant_id = %s AND feature_key = %s
            """,
            (tenant_id, feature_key),
        )
        return bool(enabled)

    @staticmethod
    async def get_contact_phone(tenant_id: str) -> str | None:
        """Public contact number configured on the tenant's landing page."""
        return await fetch_val(
            "SELECT contact_phone FROM landing_settings WHERE tenant_id = %s",
            (tenant_id,),
        )

    @staticmethod
    async def get_active_template(
        tenant_id: str, key: str, channel: str
    ) -> MessageTemplate | None:
        row = await fetch_one(
            """
            SELECT key, channel, subject, body
            FROM message_templates
            WHERE tenant_id = %s
              AND key = %s
              AND channel = %s
              AND is_active = true
              AND deleted_at IS NULL
            """,
            (tenant_id, key, channel),
        )
        if not row:
            return None
        return MessageTemplate(
            key=row["key"], channel=row["channel"], subject=row.get("subject"), body=row["body"]
        )


tenant_repository = TenantRepository()

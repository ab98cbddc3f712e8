"""
Lead and contact lookups for the instant-message dispatcher.
"""

from app.db.helpers import fetch_one
from app.features.automation.domain import Contact, Lead


class LeadRepository:
    @staticmethod
    async def get_lead(lead_id: str) -> Lead | None:
        row = await fetch_one(
            "SELECT id, tenant_id, contact_id, source, campaign FROM leads WHERE id = %s",
            (lead_id,),
        )
        if not row:
            return None
        return Lead(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]) if row.get("tenant_id") else None,
            contact_id=str(row["contact_id"]) if row.get("contact_id") else None,
            source=row.get("source"),
            campaign=row.get("campaign"),
        )

    @staticmethod
    async def get_contact(tenant_id: str, contact_id: str) -> Contact | None:
        row = await fetch_one(
            """
            SELECT id, full_name, phone, email
            FROM contacts
            WHERE tenant_id = %s AND id = %s
            """,
            (tenant_id, contact_id),
        )
        if not row:
            return None
        return Contact(
            id=str(row["id"]),
            full_name=row.get("full_name"),
            phone=row.get("phone"),
            email=row.get("email"),
        )


lead_repository = LeadRepository()

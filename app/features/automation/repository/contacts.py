"""
Contact normalization for rows that LEFT JOIN contacts.

Joined columns arrive prefixed with ``contact_``; a row without a contact id
and without any contact fields means the relation is empty.
"""

from app.features.automation.domain import Contact

CONTACT_JOIN_COLUMNS = """
    c.id AS contact_ref,
    c.full_name AS contact_full_name,
    c.phone AS contact_phone,
    c.email AS contact_email
"""


def contact_from_row(row: dict) -> Contact | None:
    values = {
        "full_name": row.get("contact_full_name"),
        "phone": row.get("contact_phone"),
        "email": row.get("contact_email"),
    }
    ref = row.get("contact_ref")
    if ref is None and not any(values.values()):
        return None
    return Contact(id=str(ref) if ref is not None else None, **values)

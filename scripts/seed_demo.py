#!/usr/bin/env python3
"""Seed a demo organization with an owner account and a few contacts.

Usage:
    python scripts/seed_demo.py [tier]
"""

import asyncio
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from sqlalchemy import select

from orbit_crm.common.config import get_settings
from orbit_crm.common.database import DatabaseManager
from orbit_crm.contacts.service import ContactService
from orbit_crm.tenants.models import OrganizationModel
from orbit_crm.tenants.service import TenantService

DEMO_ORG = "Orbit Demo GmbH"
DEMO_CONTACTS = [
    {"first_name": "Anna", "last_name": "Meier", "email": "anna@example.com",
     "phone": "044 668 18 00", "status": "client", "tags": ["vip"]},
    {"is_company": True, "company_name": "Alpenblick AG", "email": "info@alpenblick.example",
     "status": "opportunity"},
    {"first_name": "Luca", "last_name": "Rossi", "email": "luca@example.com", "status": "lead"},
]


async def seed_demo(tier: str = "pro") -> None:
    db = DatabaseManager(get_settings())
    await db.init()
    await db.create_all()

    tenants = TenantService()
    contacts = ContactService()

    async with db.get_session() as session:
        existing = await session.execute(
            select(OrganizationModel).where(OrganizationModel.name == DEMO_ORG)
        )
        if existing.scalar_one_or_none():
            print(f"  [skip] {DEMO_ORG} already exists")
            await db.close()
            return

        org = await tenants.create_organization(session, name=DEMO_ORG, subscription_tier=tier)
        profile, raw_key = await tenants.create_profile(
            session, email="owner@orbit.example", tenant_id=org.id,
            full_name="Demo Owner", role="owner",
        )
        print(f"  [created] {org.name} ({tier}) id={org.id}")
        print(f"  [created] owner {profile.email}, API key: {raw_key}")

        for fields in DEMO_CONTACTS:
            contact = await contacts.create_contact(session, org.id, fields)
            print(f"  [created] contact {contact.name}")

    await db.close()
    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(seed_demo(sys.argv[1] if len(sys.argv) > 1 else "pro"))

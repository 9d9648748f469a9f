"""
Seed the local database with waste templates, one waste item per template and
a couple of lab users.

Usage:
  python -m scripts.seed_waste_templates

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (category for templates, name for items,
email for users). It prints a bearer token for the first user.
"""

import os
from datetime import datetime, timezone
from typing import Optional

from disposal_hub.config import settings
from disposal_hub.db import Base, engine, session_scope
from disposal_hub.models.models import User, WasteItem, WasteTemplate
from disposal_hub.auth.security import create_access_token


WASTE_TEMPLATES = [
    {
        "name": "Acetone",
        "category": "acetone",
        "icon": "🧪",
        "color": "#ef4444",
        "hazard_level": "high",
        "disposal_frequency_days": 14,
        "description": "Acetone-based solvents and residues",
        "safety_instructions": "Highly flammable. Keep sealed and away from ignition sources.",
    },
    {
        "name": "Heptane",
        "category": "heptane",
        "icon": "⚗️",
        "color": "#f59e0b",
        "hazard_level": "high",
        "disposal_frequency_days": 14,
        "description": "Heptane and heptane-containing solutions",
        "safety_instructions": "Flammable. Store only in approved containers.",
    },
    {
        "name": "Koenigwasser",
        "category": "koenigwasser",
        "icon": "⚠️",
        "color": "#dc2626",
        "hazard_level": "critical",
        "disposal_frequency_days": 7,
        "description": "Aqua regia (HCl + HNO3) and similar corrosive acid mixtures",
        "safety_instructions": "Extremely corrosive. Handle under the fume hood only. Dispose separately.",
    },
    {
        "name": "Eluate",
        "category": "eluate",
        "icon": "💧",
        "color": "#3b82f6",
        "hazard_level": "medium",
        "disposal_frequency_days": 30,
        "description": "Chromatography eluates and extraction solutions",
        "safety_instructions": "Document contents and check pH.",
    },
    {
        "name": "Kuehlcontainer",
        "category": "kuehlcontainer",
        "icon": "❄️",
        "color": "#06b6d4",
        "hazard_level": "medium",
        "disposal_frequency_days": 60,
        "description": "Cooling containers and temperature-sensitive samples",
        "safety_instructions": "Keep the cold chain. Document before disposal.",
    },
    {
        "name": "Wasserproben",
        "category": "wasserproben",
        "icon": "🌊",
        "color": "#0ea5e9",
        "hazard_level": "low",
        "disposal_frequency_days": 21,
        "description": "Water and environmental samples",
        "safety_instructions": "Check for contamination; dispose separately if anything looks off.",
    },
    {
        "name": "Quecksilber",
        "category": "quecksilber",
        "icon": "☢️",
        "color": "#71717a",
        "hazard_level": "critical",
        "disposal_frequency_days": 7,
        "description": "Mercury and mercury-containing waste",
        "safety_instructions": "Highly toxic. Seal immediately. Trained staff only.",
    },
    {
        "name": "Sonstiges",
        "category": "sonstiges",
        "icon": "📋",
        "color": "#64748b",
        "hazard_level": "low",
        "disposal_frequency_days": 30,
        "description": "Waste that fits no other category",
        "safety_instructions": "Document contents. Ask a supervisor when unsure.",
    },
]

USERS = [
    ("Lab Manager", "lab.manager@example.com"),
    ("Lab Technician", "lab.tech@example.com"),
]


def ensure_template(session, data: dict) -> WasteTemplate:
    template = session.query(WasteTemplate).filter(WasteTemplate.category == data["category"]).first()
    if template:
        for key, value in data.items():
            setattr(template, key, value)
        session.add(template)
        return template
    template = WasteTemplate(**data)
    session.add(template)
    session.flush()
    return template


def ensure_item(session, name: str, template: WasteTemplate, location: Optional[str] = None) -> WasteItem:
    item = session.query(WasteItem).filter(WasteItem.name == name).first()
    if item:
        item.template_id = template.id
        if location:
            item.location = location
        session.add(item)
        return item
    item = WasteItem(name=name, template_id=template.id, location=location)
    session.add(item)
    session.flush()
    return item


def ensure_user(session, name: str, email: str) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        user.name = name
        user.is_active = True
        session.add(user)
        return user
    user = User(name=name, email=email, is_active=True, created_at=datetime.now(timezone.utc))
    session.add(user)
    session.flush()
    return user


def main():
    # Ensure local SQLite directory and tables exist
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)

    with session_scope() as session:
        for data in WASTE_TEMPLATES:
            template = ensure_template(session, data)
            ensure_item(session, f"{data['name']} container", template, location="Lab 1")

        users = [ensure_user(session, name, email) for name, email in USERS]
        session.flush()
        token = create_access_token(str(users[0].id))
        email = users[0].email

    print(f"Seed completed: {len(WASTE_TEMPLATES)} templates, items and {len(users)} users upserted.")
    print(f"Bearer token for {email}: {token}")


if __name__ == "__main__":
    main()

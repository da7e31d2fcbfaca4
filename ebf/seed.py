"""
Demo data generator – fills an empty database with plausible EBF activity.
"""

import asyncio
import random
import uuid
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from faker import Faker

from ebf.database import SqlRemoteStore, init_engine
from ebf.models import Role, Site

SITES = (Site.ABIDJAN.value, Site.BOUAKE.value)
DOMAINS = ("Electricité", "Froid", "Bâtiment", "Plomberie")

# name, quantity, threshold, unit, site
STOCK_ITEMS = [
    ("Câble 2.5mm", 500, 100, "m", Site.ABIDJAN.value),
    ("Prises Legrand", 45, 50, "pcs", Site.ABIDJAN.value),
    ("Disjoncteur 20A", 60, 15, "pcs", Site.ABIDJAN.value),
    ("Tuyau PVC 40", 20, 30, "barres", Site.BOUAKE.value),
    ("Gaz R410A", 12, 5, "bouteilles", Site.BOUAKE.value),
]

MANUAL_TICKER = [
    ("Réunion générale Lundi à 08h00", "info"),
    ("Pensez à saisir vos rapports avant 18h.", "success"),
]

# one console account per role
ACCOUNTS = [
    ("admin@ebf.ci", Role.ADMIN.value, Site.GLOBAL.value),
    ("tech@ebf.ci", Role.TECHNICIAN.value, Site.ABIDJAN.value),
    ("secretariat@ebf.ci", Role.SECRETARY.value, Site.ABIDJAN.value),
    ("magasin@ebf.ci", Role.WAREHOUSE.value, Site.BOUAKE.value),
    ("visiteur@ebf.ci", Role.VISITOR.value, Site.GLOBAL.value),
]


def _id(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


# ── Generators ───────────────────────────────────────────────────────

def gen_profiles(fake: Faker, rng: random.Random) -> List[Dict[str, Any]]:
    return [
        {"id": _id(rng), "full_name": fake.name(), "email": email, "role": role, "site": site,
         "phone": fake.phone_number()}
        for email, role, site in ACCOUNTS
    ]


def gen_technicians(profiles: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Team rows for every non-visitor account, as sign-up would create them."""
    return [
        {"id": p["id"], "name": p["full_name"],
         "specialty": "Administration" if p["role"] == Role.ADMIN else p["role"],
         "site": p["site"] if p["site"] in SITES else Site.ABIDJAN.value, "status": "Available"}
        for p in profiles if p["role"] != Role.VISITOR
    ]


def gen_daily_stats(rng: random.Random, today: date, days: int) -> List[Dict[str, Any]]:
    rows = []
    for offset in range(days):
        day = today - timedelta(days=offset)
        if day.weekday() == 6:
            continue
        for site in SITES:
            revenue = rng.randrange(50_000, 450_000, 5_000)
            # roughly one bad day in six
            ratio = rng.uniform(1.02, 1.25) if rng.random() < 0.16 else rng.uniform(0.55, 0.85)
            expenses = int(round(revenue * ratio, -3))
            rows.append({
                "date": day.isoformat(), "site": site, "revenue": revenue,
                "expenses": expenses, "profit": revenue - expenses,
                "interventions": rng.randint(1, 12),
            })
    return rows


def gen_stocks(rng: random.Random) -> List[Dict[str, Any]]:
    return [
        {"id": _id(rng), "name": name, "quantity": qty, "threshold": threshold, "unit": unit, "site": site}
        for name, qty, threshold, unit, site in STOCK_ITEMS
    ]


def gen_clients(fake: Faker, rng: random.Random, n: int = 8) -> List[Dict[str, Any]]:
    rows = []
    for _ in range(n):
        company = rng.random() < 0.4
        rows.append({
            "id": _id(rng),
            "name": fake.company() if company else fake.name(),
            "phone": fake.phone_number(),
            "email": fake.email(),
            "address": fake.street_address(),
            "site": rng.choice(SITES),
            "type": "Entreprise" if company else "Particulier",
        })
    return rows


def gen_interventions(fake: Faker, rng: random.Random, clients, technicians,
                      today: date, days: int, n: int = 12) -> List[Dict[str, Any]]:
    rows = []
    for _ in range(n):
        client = rng.choice(clients)
        techs = [t for t in technicians if t["site"] == client["site"]] or technicians
        tech = rng.choice(techs)
        rows.append({
            "id": _id(rng),
            "site": client["site"],
            "client": client["name"],
            "clientPhone": client["phone"],
            "location": fake.street_name(),
            "description": fake.sentence(nb_words=6),
            "technicianId": tech["id"],
            "technicianName": tech["name"],
            "date": (today - timedelta(days=rng.randint(0, days - 1))).isoformat(),
            "status": rng.choice(("Pending", "In Progress", "Completed")),
        })
    return rows


def gen_reports(fake: Faker, rng: random.Random, technicians, today: date, n: int = 10) -> List[Dict[str, Any]]:
    rows = []
    for _ in range(n):
        tech = rng.choice(technicians)
        revenue = rng.randrange(10_000, 80_000, 1_000)
        rows.append({
            "id": _id(rng),
            "technicianName": tech["name"],
            "date": (today - timedelta(days=rng.randint(0, 6))).isoformat(),
            "content": fake.paragraph(nb_sentences=2),
            "method": rng.choice(("Form", "Text", "Voice")),
            "site": tech["site"],
            "domain": rng.choice(DOMAINS),
            "interventionType": rng.choice(("Dépannages", "Installation", "Maintenance")),
            "location": fake.street_name(),
            "revenue": revenue,
            "expenses": int(revenue * rng.uniform(0.2, 0.6)),
            "clientName": fake.name(),
            "rating": rng.choice((0, 3, 4, 4, 5, 5)),
        })
    return rows


def gen_ticker(rng: random.Random) -> List[Dict[str, Any]]:
    return [
        {"id": _id(rng), "text": text, "type": kind, "display_order": i}
        for i, (text, kind) in enumerate(MANUAL_TICKER, start=1)
    ]


def generate_demo_data(today: Optional[date] = None, days: int = 30, seed: int = 42) -> Dict[str, List[Dict[str, Any]]]:
    """Deterministic demo rows per table for a given seed and day."""
    today = today or date.today()
    fake = Faker("fr_FR")
    fake.seed_instance(seed)
    rng = random.Random(seed)

    profiles = gen_profiles(fake, rng)
    technicians = gen_technicians(profiles)
    clients = gen_clients(fake, rng)
    return {
        "profiles": profiles,
        "technicians": technicians,
        "daily_stats": gen_daily_stats(rng, today, days),
        "stocks": gen_stocks(rng),
        "clients": clients,
        "interventions": gen_interventions(fake, rng, clients, technicians, today, days),
        "reports": gen_reports(fake, rng, technicians, today),
        "ticker_messages": gen_ticker(rng),
    }


# ── Loading ──────────────────────────────────────────────────────────

async def seed_database(remote, data: Dict[str, List[Dict[str, Any]]]) -> Dict[str, int]:
    counts = {}
    for table, rows in data.items():
        for row in rows:
            await remote.insert(table, row)
        counts[table] = len(rows)
    return counts


def main():
    engine = init_engine()
    remote = SqlRemoteStore(engine)
    remote.create_all()
    counts = asyncio.run(seed_database(remote, generate_demo_data()))
    for table, n in counts.items():
        print(f"[seed] {table}: {n} rows")
    print("[seed] Done. Console accounts: " + ", ".join(email for email, _, _ in ACCOUNTS))


if __name__ == "__main__":
    main()

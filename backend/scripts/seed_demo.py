#!/usr/bin/env python3
"""
Seed a demo dataset: a few customers, two loads with per-city delivery dates,
packages received over the last days, some of them assigned and one
consolidation group.

Usage:
    python scripts/seed_demo.py --packages 12 --backend wide_column
"""
import argparse
import os
import sys
from datetime import date, timedelta

# allow running from repo/scripts
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from shipgraph.config import settings
from shipgraph.db import init_db
from shipgraph.repositories import build_store
from shipgraph.schemas.records import CustomerRecord
from shipgraph.services.load_service import LoadService
from shipgraph.services.package_service import PackageService

DEMO_CUSTOMERS = [
    {"name": "Amina Rahman", "email": "amina@example.com"},
    {"name": "Luis Ortega", "email": "luis@example.com"},
    {"name": "Mei Chen", "phone": "+1-555-0100"},
]

DEMO_CITIES = ["Toronto", "Montreal", "Ottawa"]


def seed(backend: str, n_packages: int, reset: bool):
    init_db(reset=reset)
    store = build_store(backend)
    packages = PackageService(store)
    loads = LoadService(store)

    customers = []
    for entry in DEMO_CUSTOMERS:
        customer = CustomerRecord(**entry)
        store.put(customer)
        customers.append(customer)

    today = date.today()
    demo_loads = [
        loads.create_load(
            departure_date=today + timedelta(days=offset),
            default_delivery_date=today + timedelta(days=offset + 5),
            delivery_cities=[
                {"city": city, "expected_delivery_date": today + timedelta(days=offset + 2 + i)}
                for i, city in enumerate(DEMO_CITIES)
            ],
            driver_name=driver,
        )
        for offset, driver in ((1, "R. Singh"), (3, "J. Moreau"))
    ]

    created = []
    for i in range(n_packages):
        customer = customers[i % len(customers)]
        created.append(
            packages.create_package(
                {
                    "customer_id": customer.id,
                    "received_date": today - timedelta(days=i % 3),
                    "weight": round(1.5 + i * 0.75, 2),
                    "description": f"Demo parcel {i + 1}",
                    "ship_to_name": customer.name,
                    "ship_to_city": DEMO_CITIES[i % len(DEMO_CITIES)],
                }
            )
        )

    # first half goes on the first load, a third of the rest on the second
    half = len(created) // 2
    packages.assign_packages([p.id for p in created[:half]], demo_loads[0].id)
    packages.assign_packages([p.id for p in created[half:half + half // 3]], demo_loads[1].id)

    if len(created) >= 3:
        parent = created[-1]
        for child in created[-3:-1]:
            packages.consolidate(child.id, parent.id)

    print(
        f"Seeded {len(customers)} customers, {len(demo_loads)} loads, "
        f"{len(created)} packages into {settings.DATABASE_URL} ({backend})"
    )
    print("Stats:", packages.package_stats())


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--packages", "-n", type=int, default=12, help="Number of packages to create")
    parser.add_argument("--backend", default=settings.STORE_BACKEND, help="relational or wide_column")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate tables first")
    args = parser.parse_args()
    seed(args.backend, args.packages, args.reset)

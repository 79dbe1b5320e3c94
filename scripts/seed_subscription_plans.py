"""Seed Supabase with the FoodyScan subscription plans.

Payments look plans up in the ``subscription_plans`` table by ``plan_type``.
This script upserts the default monthly and annual plans so a fresh project
can take payments immediately. It uses the Supabase service role key.

Usage:
    SUPABASE_URL=... SUPABASE_SERVICE_ROLE_KEY=... \
    python scripts/seed_subscription_plans.py
"""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Sequence

from dotenv import load_dotenv
from supabase import Client, create_client

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from foodyscan.services.storage_service import DEFAULT_PLANS  # noqa: E402


@dataclass
class SeedConfig:
    supabase_url: str
    supabase_key: str


def _resolve_supabase() -> SeedConfig:
    load_dotenv()
    supabase_url = os.getenv("SUPABASE_URL") or os.getenv("SUPABASE_PROJECT_URL")
    supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

    missing = [
        name
        for name, value in (
            ("SUPABASE_URL", supabase_url),
            ("SUPABASE_SERVICE_ROLE_KEY", supabase_key),
        )
        if not value
    ]
    if missing:
        raise SystemExit(f"Missing required environment variables: {', '.join(missing)}")

    return SeedConfig(supabase_url=supabase_url, supabase_key=supabase_key)


def plan_rows(plans: Sequence[Dict[str, Any]] = DEFAULT_PLANS) -> List[Dict[str, Any]]:
    rows = []
    for plan in plans:
        rows.append({
            "plan_type": plan["plan_type"],
            "name": plan["name"],
            "price": plan["price"],
            "duration_days": plan["duration_days"],
            "is_active": plan.get("is_active", True),
        })
    return rows


def seed_plans(client: Client, plans: Sequence[Dict[str, Any]] = DEFAULT_PLANS) -> int:
    rows = plan_rows(plans)
    client.table("subscription_plans").upsert(rows, on_conflict="plan_type").execute()
    return len(rows)


def main() -> None:
    config = _resolve_supabase()
    client = create_client(config.supabase_url, config.supabase_key)
    count = seed_plans(client)
    print(f"Upserted {count} subscription plans.")


if __name__ == "__main__":
    main()

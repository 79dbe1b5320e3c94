from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from unittest import TestCase
from unittest.mock import MagicMock

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "seed_subscription_plans.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("seed_subscription_plans", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


class SeedPlansTests(TestCase):
    def test_default_plans_are_upserted_by_plan_type(self) -> None:
        seed = _load_script()
        client = MagicMock()

        count = seed.seed_plans(client)

        self.assertEqual(2, count)
        client.table.assert_called_once_with("subscription_plans")
        rows = client.table.return_value.upsert.call_args.args[0]
        self.assertEqual(["monthly", "annual"], [row["plan_type"] for row in rows])
        self.assertEqual({"on_conflict": "plan_type"}, client.table.return_value.upsert.call_args.kwargs)
        client.table.return_value.upsert.return_value.execute.assert_called_once()

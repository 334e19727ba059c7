"""
Deterministic test fixtures.

Seeds live in ``seeds.yaml``: global numpy/random seeds plus one seed per
generated fixture so each dataset can be reproduced on its own.
"""

from pathlib import Path
from typing import Any, Dict

import yaml

FIXTURES_DIR = Path(__file__).parent


def load_seeds() -> Dict[str, Any]:
    """Load random seeds from seeds.yaml."""
    with open(FIXTURES_DIR / "seeds.yaml") as f:
        return yaml.safe_load(f)


def fixture_seed(name: str) -> int:
    """Seed for a named fixture, e.g. ``fixture_seed("factor_panel")``."""
    return int(load_seeds()["fixture_seeds"][name])


__all__ = ["FIXTURES_DIR", "load_seeds", "fixture_seed"]

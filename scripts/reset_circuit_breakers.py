#!/usr/bin/env python3
"""
Inspect or reset circuit breakers persisted in the shared state table.

Usage:
    # Show every breaker known to the database
    python scripts/reset_circuit_breakers.py

    # Reset one breaker
    python scripts/reset_circuit_breakers.py --reset dataforseo-api

    # Reset all of them and purge expired state rows
    python scripts/reset_circuit_breakers.py --reset-all --purge
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from opportunity_engine.core.circuit_breaker import CircuitBreakerRegistry
from opportunity_engine.core.config import settings
from opportunity_engine.core.state_store import SqlStateStore
from opportunity_engine.db import create_db_and_tables, engine


def print_status(registry: CircuitBreakerRegistry):
    statuses = registry.status_dicts(include_shared=True)
    if not statuses:
        print("No circuit breaker state stored.")
        return
    for name, status in sorted(statuses.items()):
        metrics = status["metrics"]
        print(
            f"  {name:<24} {status['state']:<10} "
            f"failures={metrics['failures']} successes={metrics['successes']}"
        )


def main():
    parser = argparse.ArgumentParser(description="Inspect or reset shared circuit breaker state")
    parser.add_argument("--reset", action="append", default=[], metavar="NAME", help="Reset a breaker by name")
    parser.add_argument("--reset-all", action="store_true", help="Reset every stored breaker")
    parser.add_argument("--purge", action="store_true", help="Delete expired state rows")
    args = parser.parse_args()

    create_db_and_tables()
    store = SqlStateStore(engine)
    registry = CircuitBreakerRegistry(store=store, state_ttl_seconds=settings.BREAKER_STATE_TTL_SECONDS)

    print("Circuit breakers (before):")
    print_status(registry)

    names = list(args.reset)
    if args.reset_all:
        names.extend(registry.get_all_status(include_shared=True))
    for name in dict.fromkeys(names):
        registry.reset_shared(name)
        print(f"Reset {name}")

    if args.purge:
        print(f"Purged {store.purge_expired()} expired rows")

    if names:
        print("\nCircuit breakers (after):")
        print_status(registry)


if __name__ == "__main__":
    main()

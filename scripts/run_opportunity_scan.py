#!/usr/bin/env python3
"""
Run an optimized opportunity scan and store the results.

Usage:
    # Exploratory scan, 5 iterations
    python scripts/run_opportunity_scan.py

    # Seeded scan from an inventory analysis export
    python scripts/run_opportunity_scan.py --seeds seeds.json --landscape landscape.json

    # Quick preview without touching the database
    python scripts/run_opportunity_scan.py --iterations 2 --initial 20 --dry-run --output result.json

Ctrl-C stops the scan between iterations; everything validated so far is
still ranked and stored.
"""

import argparse
import json
import signal
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from opportunity_engine.core.cancellation import CancellationToken
from opportunity_engine.core.circuit_breaker import CircuitBreakerRegistry
from opportunity_engine.core.config import settings
from opportunity_engine.core.errors import ConfigurationError, init_sentry
from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.core.state_store import SqlStateStore
from opportunity_engine.db import create_db_and_tables, engine
from opportunity_engine.integrations.domains import DomainChecker
from opportunity_engine.integrations.holibob import HolibobClient
from opportunity_engine.schemas import InventoryLandscape, OpportunitySeed
from opportunity_engine.services.keyword_research import KeywordResearchService
from opportunity_engine.services.opportunity_store import SqlOpportunityStore
from opportunity_engine.services.optimizer import OpportunityOptimizer, OptimizationConfig
from opportunity_engine.services.suggestion_generator import get_suggestion_generator

logger = get_logger(__name__)


def load_seeds(path: Optional[str]) -> Optional[List[OpportunitySeed]]:
    if not path:
        return None
    data = json.loads(Path(path).read_text())
    return [OpportunitySeed.model_validate(item) for item in data]


def load_landscape(path: Optional[str]) -> Optional[InventoryLandscape]:
    if not path:
        return None
    return InventoryLandscape.model_validate_json(Path(path).read_text())


def build_inventory_gateway() -> Optional[HolibobClient]:
    try:
        return HolibobClient()
    except ConfigurationError as e:
        logger.warning("Inventory checks disabled", reason=str(e))
        return None


def main():
    parser = argparse.ArgumentParser(description="Iterative SEO opportunity scan")
    parser.add_argument("--iterations", type=int, default=5, help="Maximum iterations (default: 5)")
    parser.add_argument("--initial", type=int, default=60, help="Suggestions requested in iteration 1")
    parser.add_argument("--narrowing", type=float, default=0.7, help="Per-iteration narrowing factor")
    parser.add_argument("--seeds", help="JSON file with opportunity seeds")
    parser.add_argument("--landscape", help="JSON file with the inventory landscape")
    parser.add_argument("--site-id", help="Attach stored opportunities to a site")
    parser.add_argument("--integrated", action="store_true", help="Tag stored rows as integrated_scan")
    parser.add_argument("--no-domain-check", action="store_true", help="Skip domain availability checks")
    parser.add_argument("--inventory-workers", type=int, default=1, help="Parallel inventory lookups")
    parser.add_argument("--dry-run", action="store_true", help="Do not store results")
    parser.add_argument("--output", help="Write the full result as JSON to this file")
    args = parser.parse_args()

    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    generator = get_suggestion_generator()
    if generator is None:
        print("OPENROUTER_API_KEY is not set, cannot generate suggestions.")
        sys.exit(1)

    create_db_and_tables()
    store = SqlOpportunityStore(engine)
    registry = CircuitBreakerRegistry(
        store=SqlStateStore(engine) if settings.SHARED_BREAKER_STATE else None,
        state_ttl_seconds=settings.BREAKER_STATE_TTL_SECONDS,
    )

    token = CancellationToken()
    signal.signal(signal.SIGINT, lambda *_: token.cancel("interrupted"))

    config = OptimizationConfig(
        max_iterations=args.iterations,
        initial_suggestions_count=args.initial,
        narrowing_factor=args.narrowing,
        seeds=load_seeds(args.seeds),
        inventory_landscape=load_landscape(args.landscape),
        check_domains=not args.no_domain_check,
        inventory_workers=args.inventory_workers,
    )

    domain_checker = None if args.no_domain_check else DomainChecker()
    inventory = build_inventory_gateway()
    try:
        optimizer = OpportunityOptimizer(
            generator=generator,
            keyword_gateway=KeywordResearchService(),
            inventory_gateway=inventory,
            registry=registry,
            opportunity_store=store,
            domain_checker=domain_checker,
        )
        result = optimizer.run(config, cancel_token=token)
    finally:
        if domain_checker is not None:
            domain_checker.close()
        if inventory is not None:
            inventory.close()

    print(f"\n{result.summary}")
    print("-" * 60)
    for ranked in result.final_opportunities[:20]:
        opp = ranked.opportunity
        print(f"{ranked.rank:>3}. [{opp.priority_score:>3}] {opp.suggestion.keyword} ({opp.effective_volume:,}/mo)")

    if args.output:
        Path(args.output).write_text(result.model_dump_json(by_alias=True, indent=2))
        print(f"\nFull result written to {args.output}")

    if args.dry_run:
        print("\nDRY RUN: nothing stored")
    else:
        source = "integrated_scan" if args.integrated else "optimized_scan"
        stored = optimizer.persist(result, store, source=source, site_id=args.site_id)
        print(f"\nStored {stored}/{len(result.final_opportunities)} opportunities")

    breakers = registry.status_dicts()
    open_breakers = [name for name, status in breakers.items() if status["state"] != "CLOSED"]
    if open_breakers:
        print(f"Circuit breakers not closed: {', '.join(open_breakers)}")

    sys.exit(0 if result.success else 2)


if __name__ == "__main__":
    main()

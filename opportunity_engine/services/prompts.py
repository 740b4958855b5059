"""
Prompt builders for the suggestion generator.

Four shapes, picked by iteration:
    seeds        iteration 1 with seeds: evaluate, select, enrich, fill gaps
    exploratory  iteration 1 without seeds (or no learnings yet)
    refinement   middle iterations: learn from the previous round
    final        last configured iteration: precision over novelty
"""

import json
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from opportunity_engine.schemas import (
    InventoryLandscape,
    IterationLearnings,
    OpportunitySeed,
    ValidatedOpportunity,
)

SEEDS_PER_MODE = 8
PROMPT_TOP_N = 5
LANDSCAPE_TOP_N = 15

EXAMPLE_ITEM = {
    "destination": "London, UK",
    "category": "food tours",
    "niche": "family-friendly food tours",
    "keyword": "london family food tours",
    "clusterKeywords": [
        "family food tours london",
        "kids food tour london",
        "london food tours for families",
        "family cooking class london",
        "child friendly restaurants london",
    ],
    "rationale": "Families look for kid-friendly culinary experiences",
    "suggestedDomain": "london-family-food-tours.com",
    "alternativeDomains": ["familyfoodtourslondon.com", "london-family-foodie.com"],
    "confidenceScore": 75,
}

CLUSTER_NOTE = "Give every item 5-8 clusterKeywords: related searches the same niche site could also rank for."


def issue_label(opp: ValidatedOpportunity) -> str:
    """Why a low scorer lost."""
    if opp.data_for_seo.difficulty > 70:
        return "Too competitive"
    if opp.data_for_seo.search_volume < 500:
        return "Low volume"
    return "Poor commercial fit"


def _landscape_block(landscape: Optional[InventoryLandscape]) -> str:
    if landscape is None:
        return ""
    destinations = ", ".join(f"{d.name} ({d.product_count})" for d in landscape.top_destinations[:10])
    categories = ", ".join(f"{c.name} ({c.product_count})" for c in landscape.categories[:10])
    return "\n".join(
        [
            "## Inventory Available",
            f"- {landscape.total_cities} cities in {landscape.total_countries} countries",
            f"- {landscape.total_categories} active categories",
            f"- Leading destinations: {destinations}",
            f"- Leading categories: {categories}",
        ]
    )


def _landscape_json(landscape: Optional[InventoryLandscape]) -> str:
    if landscape is None:
        return ""
    trimmed = landscape.model_copy(
        update={
            "top_destinations": landscape.top_destinations[:LANDSCAPE_TOP_N],
            "categories": landscape.categories[:LANDSCAPE_TOP_N],
        }
    )
    return "## Available Inventory\n" + json.dumps(trimmed.model_dump(by_alias=True), indent=2)


def _output_block(count: int) -> str:
    return "\n".join(
        [
            "## Output",
            f"Return exactly {count} items as a JSON array, for example:",
            json.dumps([EXAMPLE_ITEM], indent=2),
            CLUSTER_NOTE,
            "",
            "Return ONLY the JSON array, with no markdown fences or commentary.",
        ]
    )


def build_seed_prompt(
    seeds: Sequence[OpportunitySeed],
    count: int,
    landscape: Optional[InventoryLandscape] = None,
) -> str:
    by_mode: Dict[str, List[OpportunitySeed]] = OrderedDict()
    for seed in seeds:
        by_mode.setdefault(seed.scan_mode.value, []).append(seed)

    mode_blocks = []
    for mode, mode_seeds in by_mode.items():
        lines = [f"### {mode} ({len(mode_seeds)} seeds)"]
        for seed in mode_seeds[:SEEDS_PER_MODE]:
            lines.append(f'- "{seed.keyword}" [{seed.destination or "Global"}] - {seed.rationale}')
        if len(mode_seeds) > SEEDS_PER_MODE:
            lines.append(f"... plus {len(mode_seeds) - SEEDS_PER_MODE} more")
        mode_blocks.append("\n".join(lines))

    sections = [
        "You are an SEO strategist reviewing candidate niches for a travel experience marketplace.",
        "",
        "## Context",
        f"A broad discovery pass produced {len(seeds)} seed opportunities. For this round:",
        "1. EVALUATE each seed: do real people search this phrase, and can a niche site win it?",
        f"2. SELECT the strongest {count}",
        "3. ENRICH every selected item with domain name ideas",
        "4. FILL GAPS with new niches where the seeds leave promising areas uncovered",
        "",
        "## Seeds by Scan Mode",
        "\n\n".join(mode_blocks),
        "",
        _landscape_block(landscape),
        "",
        "## Selection Criteria",
        "- Prefer phrases users actually type into Google over invented compounds",
        "- Favor strong commercial intent and weak competition",
        "- Spread picks across geographies, audiences, occasions and price points",
        "- Keep domains short and memorable, .com where possible",
        "- Give each item a confidenceScore (0-100) for its SEO viability",
        "",
        _output_block(count),
    ]
    return "\n".join(sections)


def build_exploratory_prompt(count: int, landscape: Optional[InventoryLandscape] = None) -> str:
    sections = [
        "You advise an experience marketplace that grows through many small niche sites, each owning one micro-segment.",
        "",
        "## Task",
        f"Propose {count} niche site opportunities. Be broad and exploratory.",
        "",
        _landscape_json(landscape),
        "",
        "## Guidelines",
        "- Aim at micro-segments: audiences, interests, places",
        "- One niche per site",
        '- Use short searchable keywords ("london food tours", not "culinary experiences in the london area")',
        "- Give each item a confidenceScore (0-100)",
        "- Suggest a domain name for each item",
        "",
        _output_block(count),
    ]
    return "\n".join(sections)


def _top_performer_lines(learnings: IterationLearnings) -> List[str]:
    lines = []
    for t in learnings.top_performers[:PROMPT_TOP_N]:
        m = t.data_for_seo
        lines.extend(
            [
                f'- "{t.suggestion.keyword}" (score {t.priority_score})',
                f"  - Volume: {m.search_volume}/mo | Difficulty: {m.difficulty}/100 | CPC: ${m.cpc:.2f} | Trend: {m.trend}",
                f"  - Why it worked: {t.suggestion.rationale}",
            ]
        )
    return lines or ["- (none reached the target score)"]


def _bottom_performer_lines(learnings: IterationLearnings) -> List[str]:
    lines = []
    for b in learnings.bottom_performers[:PROMPT_TOP_N]:
        m = b.data_for_seo
        lines.extend(
            [
                f'- "{b.suggestion.keyword}" (score {b.priority_score})',
                f"  - Volume: {m.search_volume}/mo | Difficulty: {m.difficulty} | Issue: {issue_label(b)}",
            ]
        )
    return lines or ["- (none fell below the minimum score)"]


def build_refinement_prompt(learnings: IterationLearnings, iteration: int, max_iterations: int, count: int) -> str:
    p = learnings.patterns
    sections = [
        "You are refining niche opportunity suggestions using real keyword metrics from the last round.",
        "",
        f"## Iteration {iteration}/{max_iterations}",
        "",
        "### TOP PERFORMERS (repeat what made these work)",
        *_top_performer_lines(learnings),
        "",
        "### BOTTOM PERFORMERS (steer away from these)",
        *_bottom_performer_lines(learnings),
        "",
        "### PATTERNS",
        f"- High-scoring: {', '.join(p.high_score_patterns) or 'none yet'}",
        f"- Low-scoring: {', '.join(p.low_score_patterns) or 'none yet'}",
        f"- Optimal difficulty: {p.optimal_difficulty_range.min:.0f}-{p.optimal_difficulty_range.max:.0f}",
        f"- Optimal volume: {p.optimal_volume_range.min:.0f}+/month",
        f"- Best destinations: {', '.join(p.best_destinations)}",
        f"- Best categories: {', '.join(p.best_categories)}",
        "",
        "### RECOMMENDATIONS",
        *[f"{i}. {r}" for i, r in enumerate(learnings.recommendations, start=1)],
        "",
        "## Task",
        f"Produce {count} REFINED suggestions that:",
        "1. Extend the patterns behind the top performers",
        "2. Avoid the patterns behind the bottom performers",
        "3. Try close variations of the highest-scoring niches",
        "4. Stay inside the optimal difficulty and volume ranges",
        "",
        "Quality over novelty: deepen what works.",
        "",
        _output_block(count),
    ]
    return "\n".join(sections)


def build_final_prompt(learnings: IterationLearnings, count: int) -> str:
    p = learnings.patterns
    sections = [
        "This is the FINAL optimization round. Propose only the strongest opportunities.",
        "",
        "## Results So Far",
        learnings.metrics_summary.strip(),
        "",
        "## Top Performers",
        *_top_performer_lines(learnings),
        "",
        "## Successful Patterns",
        *(p.high_score_patterns or ["- none recorded"]),
        "",
        "## Best Performing",
        f"- Destinations: {', '.join(p.best_destinations)}",
        f"- Categories: {', '.join(p.best_categories)}",
        "",
        "## Task",
        f"Produce {count} FINAL high-confidence suggestions that:",
        "1. Build on the most successful patterns",
        f"2. Target difficulty {p.optimal_difficulty_range.min:.0f}-{p.optimal_difficulty_range.max:.0f} "
        f"and volume {p.optimal_volume_range.min:.0f}+",
        "3. Name EXACT domains that are likely unregistered",
        "4. Explain the projected value in each rationale",
        "",
        "Use the same JSON structure as before, with confidence scores of 80 or more.",
        "",
        _output_block(count),
    ]
    return "\n".join(sections)


def build_iteration_prompt(
    iteration: int,
    max_iterations: int,
    previous_learnings: Optional[IterationLearnings],
    count: int,
    landscape: Optional[InventoryLandscape] = None,
    seeds: Optional[Sequence[OpportunitySeed]] = None,
) -> str:
    if iteration == 1 or previous_learnings is None:
        if seeds:
            return build_seed_prompt(seeds, count, landscape)
        return build_exploratory_prompt(count, landscape)
    if iteration == max_iterations:
        return build_final_prompt(previous_learnings, count)
    return build_refinement_prompt(previous_learnings, iteration, max_iterations, count)


def build_explanation_prompt(opp: ValidatedOpportunity) -> str:
    m = opp.data_for_seo
    return (
        f'In 2-3 sentences, explain why "{opp.suggestion.keyword}" is a valuable opportunity for an '
        f"experience marketplace. Metrics: {m.search_volume}/mo searches, {m.difficulty} difficulty, "
        f"${m.cpc:.2f} CPC, {m.trend} trend, {opp.holibob_inventory.product_count} available products. "
        "Focus on commercial potential and competitive position."
    )

"""
Synthetic traffic simulator.

Drives a running experiment through the service the way production callers
would: assign each synthetic participant, then draw dropout, conversion and
an optional continuous engagement metric per arm.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from .service import ExperimentationService

logger = logging.getLogger(__name__)

SIMULATOR_SEED = 42


def simulate_traffic(
    service: ExperimentationService,
    experiment_id: str,
    n_users: int = 1000,
    conversion_rates: Optional[Dict[str, float]] = None,
    dropout_rates: Optional[Dict[str, float]] = None,
    cultures: Optional[Sequence[str]] = None,
    culture_weights: Optional[Sequence[float]] = None,
    engagement_metric: Optional[str] = None,
    engagement_mean: float = 1.0,
    engagement_std: float = 0.25,
    default_conversion_rate: float = 0.1,
    user_prefix: str = "user",
    random_seed: int = SIMULATOR_SEED,
) -> Dict:
    """
    Simulate participant traffic against a running experiment.

    Args:
        service: Service owning the experiment
        experiment_id: Experiment to drive (must be running)
        n_users: Number of synthetic participants
        conversion_rates: Per-variant conversion probability
        dropout_rates: Per-variant dropout probability (dropped users never convert)
        cultures: Cultural backgrounds to draw participants from
        culture_weights: Sampling weights for cultures (uniform if None)
        engagement_metric: Optional continuous metric to track for converters and non-converters
        engagement_mean: Mean of the engagement metric
        engagement_std: Std of the engagement metric
        default_conversion_rate: Rate for variants missing from conversion_rates
        user_prefix: Prefix for synthetic user ids
        random_seed: Random seed for reproducibility

    Returns:
        Dict with n_users, n_assigned, n_skipped and per-variant assigned,
        conversions and dropouts
    """
    rng = np.random.default_rng(random_seed)
    config = service.get_experiment_config(experiment_id)
    primary = config.primary_metric.metric_id
    conversion_rates = conversion_rates or {}
    dropout_rates = dropout_rates or {}

    probs = None
    if cultures and culture_weights is not None:
        weights = np.asarray(culture_weights, dtype=float)
        probs = weights / weights.sum()

    variant_ids: List[str] = config.variant_ids()
    assigned = {vid: 0 for vid in variant_ids}
    conversions = {vid: 0 for vid in variant_ids}
    dropouts = {vid: 0 for vid in variant_ids}
    skipped = 0

    for i in range(n_users):
        user_id = f"{user_prefix}_{i:05d}"
        context = {}
        if cultures:
            context["cultural_background"] = str(rng.choice(list(cultures), p=probs))

        variant_id = service.assign_user_to_variant(experiment_id, user_id, context)
        if variant_id is None:
            skipped += 1
            continue
        assigned[variant_id] += 1

        if rng.random() < dropout_rates.get(variant_id, 0.0):
            service.track_dropout(experiment_id, user_id)
            dropouts[variant_id] += 1
            continue

        if rng.random() < conversion_rates.get(variant_id, default_conversion_rate):
            service.track_conversion(experiment_id, user_id, primary, 1.0)
            conversions[variant_id] += 1

        if engagement_metric:
            value = float(rng.normal(engagement_mean, engagement_std))
            service.track_conversion(experiment_id, user_id, engagement_metric, value)

    logger.info(
        f"Simulated {n_users} users on {experiment_id}: assigned={assigned}, "
        f"conversions={conversions}, skipped={skipped}"
    )
    return {
        "n_users": n_users,
        "n_assigned": n_users - skipped,
        "n_skipped": skipped,
        "assigned": assigned,
        "conversions": conversions,
        "dropouts": dropouts,
    }

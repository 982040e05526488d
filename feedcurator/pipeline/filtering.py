from __future__ import annotations

import logging
from collections.abc import Collection

from feedcurator.models.types import RawCluster

logger = logging.getLogger(__name__)

MIN_MEMBERS = 2
# size * 10 >= largest * 7, kept in integers
RELATIVE_NUMERATOR = 7
RELATIVE_DENOMINATOR = 10
ABSOLUTE_FLOOR = 3


def filter_clusters(
    clusters: list[RawCluster], known_source_ids: Collection[str]
) -> list[RawCluster]:
    """Narrow a batch of raw clusters down to those worth analysing.

    Pure and order-preserving. A cluster survives when it has at least two
    articles, none of its articles is already known, and its size is either
    within 70% of the largest surviving cluster or above three articles.
    """
    known = set(known_source_ids)

    corroborated = [cluster for cluster in clusters if len(cluster) >= MIN_MEMBERS]
    unseen = [
        cluster
        for cluster in corroborated
        if not any(article_id in known for article_id in cluster.article_ids)
    ]
    if not unseen:
        return []

    largest = max(len(cluster) for cluster in unseen)
    kept = [
        cluster
        for cluster in unseen
        if len(cluster) * RELATIVE_DENOMINATOR >= largest * RELATIVE_NUMERATOR
        or len(cluster) > ABSOLUTE_FLOOR
    ]

    logger.debug(
        "Cluster filter: %d in, %d corroborated, %d unseen, %d kept (largest %d)",
        len(clusters),
        len(corroborated),
        len(unseen),
        len(kept),
        largest,
    )
    return kept

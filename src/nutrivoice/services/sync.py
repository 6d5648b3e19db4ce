"""One-shot import of the local cache into the hosted backend."""

import logging
from uuid import UUID

from nutrivoice.adapters.local_nutrition_repository import LocalNutritionRepository
from nutrivoice.services.reconciler import NutritionRepository

logger = logging.getLogger(__name__)


def import_local_snapshot_once(
    local: LocalNutritionRepository, remote: NutritionRepository, user_id: UUID
) -> bool:
    """Copy cached data to the remote store once; returns True if it imported.

    Runs only for an unmarked, non-empty cache when the remote store has
    nothing for the user yet. Afterwards the remote store is authoritative.
    """
    if local.is_imported():
        return False
    snapshot = local.load_initial_data(user_id)
    if snapshot.is_empty() and snapshot.goals.is_empty():
        return False
    if remote.has_any_data(user_id):
        logger.info("Remote store already has data, skipping cache import")
        local.mark_imported()
        return False
    remote.import_snapshot(user_id, snapshot)
    local.mark_imported()
    logger.info(
        "Imported local cache",
        extra={"items": len(snapshot.items), "meals": len(snapshot.meals)},
    )
    return True

"""Client side of the claim protocol: optimistic updates and the live feed."""

from occupy.client.reconciler import ClientReconciler, SyncState

__all__ = ["ClientReconciler", "SyncState"]

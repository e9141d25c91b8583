"""Route reconciliation."""

from flannelregistrar.routes.backup import RouteBackupStore
from flannelregistrar.routes.reconciler import RouteReconciler

__all__ = ["RouteBackupStore", "RouteReconciler"]

"""Kernel networking adapters and topology classification."""

from flannelregistrar.network.fdb import FdbSynchronizer, FdbSyncResult
from flannelregistrar.network.route_table import IPRouteTable, RouteTable
from flannelregistrar.network.topology import TopologyProber

__all__ = [
    "FdbSyncResult",
    "FdbSynchronizer",
    "IPRouteTable",
    "RouteTable",
    "TopologyProber",
]

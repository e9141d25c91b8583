"""Etcd registry access."""

from flannelregistrar.registry.etcd import EtcdClient, KeyValueStore
from flannelregistrar.registry.subnets import SubnetListing, SubnetRegistry

__all__ = ["EtcdClient", "KeyValueStore", "SubnetListing", "SubnetRegistry"]

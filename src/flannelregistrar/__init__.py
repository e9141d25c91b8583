"""
flannel-registrar: route reconciliation and self-healing for flannel VXLAN hosts.

The registrar keeps the kernel routing table and VXLAN forwarding entries of a
host consistent with the subnet leases published in etcd, and walks an
escalating recovery ladder (interface, container, host service) when the
overlay becomes unhealthy.
"""

__version__ = "1.1.0"

"""Escalating self-healing: state, actions and the controller."""

from flannelregistrar.recovery.actions import RecoveryActions
from flannelregistrar.recovery.controller import EscalationController, minimal_level
from flannelregistrar.recovery.host import HostDelegate, is_running_in_container
from flannelregistrar.recovery.state import RecoveryStateStore

__all__ = [
    "EscalationController",
    "HostDelegate",
    "RecoveryActions",
    "RecoveryStateStore",
    "is_running_in_container",
    "minimal_level",
]

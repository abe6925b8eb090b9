"""
Node-RED transport: admin API client and comms channel listener.
"""

from .client import FlowsTransport, NodeRedClient
from .comms import DEPLOY_TOPIC, FlowsChangeListener, ReconnectBackoff

__all__ = [
    "FlowsTransport",
    "NodeRedClient",
    "FlowsChangeListener",
    "ReconnectBackoff",
    "DEPLOY_TOPIC"
]

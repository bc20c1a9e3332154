"""
Tracking clients: the explicit TrackingClient and the module level fluent API.
"""

from .client import TrackingClient
from .registry import (get_tracking_store, get_tracking_uri, register_tracking_store,
                       set_tracking_uri)

__all__ = [
    'TrackingClient',
    'get_tracking_store',
    'get_tracking_uri',
    'register_tracking_store',
    'set_tracking_uri',
]

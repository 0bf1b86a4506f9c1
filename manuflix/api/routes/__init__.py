"""
API Routes Package
"""
from . import (
    health,
    plans,
    checkout,
    webhooks,
    subscriptions,
)

"""Routers package."""

from . import (
    health,
    accounts,
    billing,
    ai,
    admin,
)

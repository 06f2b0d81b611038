"""
API Routes Package
"""
from . import (
    health,
    auth,
    public,
    customer,
    vendor,
    admin,
    payments,
    cron,
)

"""API routers."""

from . import bulk_registrations
from . import health
from . import ios_versions
from . import plans
from . import revenuecat

__all__ = ['bulk_registrations', 'health', 'ios_versions', 'plans', 'revenuecat']

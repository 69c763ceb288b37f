"""Router package exports."""
from . import auth, clients, commission, dashboard, locations, package_types, payments, profiles, sessions

__all__ = [
    "auth",
    "clients",
    "commission",
    "dashboard",
    "locations",
    "package_types",
    "payments",
    "profiles",
    "sessions",
]

# barbershop/data.py

from .schemas import ServiceType

SERVICES = {
    ServiceType.haircut: "Haircut",
    ServiceType.beard: "Beard trim",
    ServiceType.both: "Haircut + Beard",
}

# seeded into an empty staff table on startup
DEFAULT_STAFF = [
    {"id": "barber_carlos", "alias": "carlos", "name": "Carlos Mendoza"},
    {"id": "barber_miguel", "alias": "miguel", "name": "Miguel Angel"},
    {"id": "barber_david", "alias": "david", "name": "David Restrepo"},
    {"id": "barber_andres", "alias": "andres", "name": "Andres Martinez"},
    {"id": "barber_juan", "alias": "juan", "name": "Juan Pablo"},
]

DEFAULT_HOURS = {"start_hour": 9, "end_hour": 19}

STATUS_ICONS = {
    "pending": "⏳",
    "confirmed": "✓",
    "completed": "✅",
    "cancelled": "❌",
}


def service_label(service: str) -> str:
    try:
        return SERVICES[ServiceType(service)]
    except ValueError:
        return service

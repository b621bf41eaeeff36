# Exportar todos los routers
from . import (
    fires,
    health,
    incidents,
)

__all__ = [
    "fires",
    "health",
    "incidents",
]

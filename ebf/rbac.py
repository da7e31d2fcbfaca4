"""
Role-Based Access Control – section routes and write permissions.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from ebf.models import Notification, Role, TickerMessage


@dataclass(frozen=True)
class Route:
    """A list view: the table it shows and which filters apply to it."""
    path: str
    table: str
    title: str
    site_filter: bool = False
    period_filter: bool = False
    locked: bool = False        # read-only for every role, admins included


# Sections in which a non-admin role may write.
WRITABLE_SECTIONS: Dict[str, str] = {
    Role.TECHNICIAN.value: "/techniciens",
    Role.WAREHOUSE.value: "/quincaillerie",
    Role.SECRETARY.value: "/secretariat",
}

SECTIONS = ("/techniciens", "/comptabilite", "/secretariat", "/quincaillerie", "/equipe")

ROUTES: Dict[str, Route] = {r.path: r for r in (
    Route("/techniciens/interventions", "interventions", "Interventions", site_filter=True, period_filter=True),
    Route("/techniciens/rapports", "reports", "Rapports Journaliers"),
    Route("/techniciens/materiel", "stocks", "Matériel"),
    Route("/techniciens/chantiers", "chantiers", "Chantiers", site_filter=True),
    Route("/comptabilite/bilan", "transactions", "Bilan Financier", site_filter=True, period_filter=True),
    Route("/comptabilite/rh", "employees", "Ressources Humaines", site_filter=True),
    Route("/comptabilite/paie", "payrolls", "Paie & Salaires", period_filter=True),
    Route("/secretariat/planning", "interventions", "Planning Équipe", site_filter=True, period_filter=True, locked=True),
    Route("/secretariat/clients", "clients", "Gestion Clients", site_filter=True),
    Route("/secretariat/caisse", "caisse", "Petite Caisse", period_filter=True),
    Route("/quincaillerie/stocks", "stocks", "Stocks Quincaillerie", site_filter=True),
    Route("/quincaillerie/fournisseurs", "suppliers", "Fournisseurs", site_filter=True),
    Route("/quincaillerie/achats", "purchases", "Bons d'achat", site_filter=True, period_filter=True),
    Route("/equipe", "technicians", "Notre Équipe", site_filter=True),
)}


def can_write(path: str, role: str) -> bool:
    """
    Whether *role* may create or delete records while on *path*.

    Anything not explicitly granted is read-only; there is no separate
    "denied" outcome.
    """
    role = getattr(role, "value", role)
    if role == Role.ADMIN:
        return True
    if role == Role.VISITOR:
        return False
    section = WRITABLE_SECTIONS.get(role)
    if section is None or not path:
        return False
    return path.startswith(section)


def can_edit_flash_info(role: str) -> bool:
    """Manual ticker messages are managed by administrators only."""
    return role == Role.ADMIN


def get_route(path: str) -> Optional[Route]:
    return ROUTES.get(path)


def section_of(path: str) -> str:
    """Root section of a path: '/secretariat/clients' -> '/secretariat'."""
    parts = [p for p in (path or "").split("/") if p]
    return f"/{parts[0]}" if parts else "/"


def can_write_table(path: str, role: str, table: str) -> bool:
    """Write check used by the entity store before any mutation is sent."""
    if table == TickerMessage.TABLE:
        return can_edit_flash_info(role)
    if table == Notification.TABLE:
        # marking as read is open to every signed-in role
        return bool(role)
    route = get_route(path)
    if route is not None and route.locked:
        return False
    if getattr(role, "value", role) == Role.ADMIN:
        return True
    if not can_write(path, role) or route is None:
        return False
    return route.table == table

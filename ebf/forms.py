"""
CRUD form definitions and validation of user input before dispatch.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional, Tuple

from ebf.config import DEFAULT_SITE
from ebf.errors import ValidationFailure
from ebf.models import Site, to_number

SITE_OPTIONS = (Site.ABIDJAN.value, Site.BOUAKE.value)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class FormField:
    name: str
    label: str
    type: str = "text"          # text | number | date | select | email
    options: Tuple[str, ...] = ()
    required: bool = False


@dataclass(frozen=True)
class FormConfig:
    title: str
    fields: Tuple[FormField, ...]


def _f(name, label, type="text", options=(), required=False):
    return FormField(name, label, type, tuple(options), required)


FORM_CONFIGS: Dict[str, FormConfig] = {
    "interventions": FormConfig("Nouvelle Intervention", (
        _f("client", "Client", required=True),
        _f("clientPhone", "Tél Client"),
        _f("location", "Lieu / Quartier", required=True),
        _f("description", "Description Panne", required=True),
        _f("technicianId", "ID Technicien"),
        _f("date", "Date Prévue", "date", required=True),
        _f("status", "Statut", "select", ("Pending", "In Progress", "Completed")),
    )),
    "stocks": FormConfig("Ajouter au Stock", (
        _f("name", "Nom Article", required=True),
        _f("quantity", "Quantité", "number", required=True),
        _f("unit", "Unité (ex: pcs, m)"),
        _f("threshold", "Seuil Alerte", "number", required=True),
        _f("site", "Site", "select", SITE_OPTIONS),
    )),
    "technicians": FormConfig("Nouveau Membre Équipe", (
        _f("name", "Nom & Prénom", required=True),
        _f("specialty", "Rôle / Spécialité"),
        _f("site", "Site", "select", SITE_OPTIONS),
        _f("status", "Statut", "select", ("Available", "Busy", "Off")),
    )),
    "reports": FormConfig("Nouveau Rapport (Formulaire)", (
        _f("technicianName", "Nom Technicien", required=True),
        _f("date", "Date", "date", required=True),
        _f("content", "Détails Intervention"),
        _f("domain", "Domaine", "select", ("Electricité", "Froid", "Bâtiment", "Plomberie")),
        _f("revenue", "Recette (FCFA)", "number"),
        _f("expenses", "Dépenses (FCFA)", "number"),
        _f("rating", "Note Satisfaction (1-5)", "number"),
        _f("method", "Méthode", "select", ("Form",)),
    )),
    "chantiers": FormConfig("Nouveau Chantier", (
        _f("name", "Nom du Chantier", required=True),
        _f("location", "Lieu"),
        _f("client", "Client"),
        _f("site", "Site (Ville)", "select", SITE_OPTIONS),
        _f("status", "État", "select", ("En cours", "Terminé", "Suspendu")),
        _f("date", "Date de début", "date"),
    )),
    "transactions": FormConfig("Écriture Comptable", (
        _f("label", "Libellé", required=True),
        _f("amount", "Montant (FCFA)", "number", required=True),
        _f("type", "Type", "select", ("Recette", "Dépense"), required=True),
        _f("category", "Catégorie", "select", ("Vente", "Achat", "Salaire", "Loyer", "Autre")),
        _f("date", "Date", "date", required=True),
        _f("site", "Site", "select", SITE_OPTIONS),
    )),
    "employees": FormConfig("Dossier RH", (
        _f("full_name", "Nom Complet", required=True),
        _f("role", "Poste"),
        _f("phone", "Téléphone"),
        _f("email", "Email", "email"),
        _f("site", "Site", "select", SITE_OPTIONS),
        _f("salary", "Salaire Base (FCFA)", "number"),
        _f("date_hired", "Date Embauche", "date"),
    )),
    "payrolls": FormConfig("Bulletin de Paie", (
        _f("employee_name", "Employé", required=True),
        _f("amount", "Montant Net (FCFA)", "number", required=True),
        _f("period", "Mois concerné"),
        _f("date", "Date paiement", "date"),
        _f("status", "Statut", "select", ("Payé", "En attente")),
    )),
    "clients": FormConfig("Nouveau Client", (
        _f("name", "Nom Client / Entreprise", required=True),
        _f("phone", "Téléphone"),
        _f("email", "Email", "email"),
        _f("address", "Adresse"),
        _f("site", "Ville", "select", SITE_OPTIONS),
        _f("type", "Type", "select", ("Particulier", "Entreprise")),
    )),
    "caisse": FormConfig("Mouvement Caisse", (
        _f("label", "Motif", required=True),
        _f("amount", "Montant (FCFA)", "number", required=True),
        _f("type", "Flux", "select", ("Entrée", "Sortie"), required=True),
        _f("date", "Date", "date", required=True),
        _f("operator", "Opérateur"),
    )),
    "suppliers": FormConfig("Nouveau Fournisseur", (
        _f("name", "Nom Entreprise", required=True),
        _f("contact", "Contact Principal"),
        _f("phone", "Téléphone"),
        _f("category", "Spécialité", "select", ("Électricité", "Plomberie", "Froid", "Matériaux", "Divers")),
        _f("site", "Zone", "select", SITE_OPTIONS + (Site.GLOBAL.value,)),
    )),
    "purchases": FormConfig("Bon d'Achat", (
        _f("item_name", "Article / Service", required=True),
        _f("supplier", "Fournisseur"),
        _f("quantity", "Quantité", "number"),
        _f("cost", "Coût Total (FCFA)", "number", required=True),
        _f("date", "Date", "date"),
        _f("status", "Statut", "select", ("Commandé", "Reçu", "Annulé")),
    )),
}


def get_form(table: str) -> FormConfig:
    try:
        return FORM_CONFIGS[table]
    except KeyError:
        raise ValidationFailure(f"Aucun formulaire pour la table '{table}'.") from None


def _clean_value(fld: FormField, raw: Any) -> Any:
    value = raw.strip() if isinstance(raw, str) else raw
    if value in (None, ""):
        return None

    if fld.type == "number":
        number = to_number(value, None)
        if number is None:
            raise ValidationFailure(f"{fld.label} : nombre attendu, reçu {raw!r}.", fld.name)
        return number
    if fld.type == "date":
        try:
            return date.fromisoformat(str(value)[:10]).isoformat()
        except ValueError:
            raise ValidationFailure(f"{fld.label} : date invalide {raw!r} (AAAA-MM-JJ).", fld.name) from None
    if fld.type == "select" and fld.options and value not in fld.options:
        raise ValidationFailure(
            f"{fld.label} : valeur {raw!r} hors liste ({', '.join(fld.options)}).", fld.name
        )
    if fld.type == "email" and not _EMAIL_RE.match(str(value)):
        raise ValidationFailure(f"{fld.label} : adresse email invalide.", fld.name)
    return value


def prepare_record(table: str, data: Dict[str, Any],
                   current_site: Optional[str] = None) -> Dict[str, Any]:
    """
    Validate and coerce raw form input into a row ready for insertion.

    Only fields declared by the form are kept. A missing site defaults to the
    selected site, or to the main site when the global view is selected.
    """
    config = get_form(table)
    row: Dict[str, Any] = {}
    for fld in config.fields:
        value = _clean_value(fld, data.get(fld.name))
        if value is None:
            if fld.required:
                raise ValidationFailure(f"Le champ « {fld.label} » est obligatoire.", fld.name)
            continue
        row[fld.name] = value

    if not row.get("site"):
        site = getattr(current_site, "value", current_site)
        row["site"] = site if site and site != Site.GLOBAL else DEFAULT_SITE
    return row

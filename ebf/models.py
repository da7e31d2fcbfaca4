"""
Domain dataclasses used across the application.

One record type per remote table. Attributes are snake_case; the persisted
column name is kept in the field metadata when it differs (``clientPhone``...).
Every field has a default so partial change-feed payloads still build a record.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Type


class Site(str, Enum):
    ABIDJAN = "Abidjan"
    BOUAKE = "Bouaké"
    GLOBAL = "Global"


class Period(str, Enum):
    DAY = "Jour"
    WEEK = "Semaine"
    MONTH = "Mois"
    YEAR = "Année"


class Role(str, Enum):
    ADMIN = "Admin"
    TECHNICIAN = "Technicien"
    SECRETARY = "Secretaire"
    WAREHOUSE = "Magasinier"
    VISITOR = "Visiteur"


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


Key = Tuple[Any, ...]


def column(default: Any = None, name: Optional[str] = None, number: bool = False,
           flag: bool = False, persist: bool = True):
    """Declare a record field with its remote column name and coercion rule."""
    return field(default=default, metadata={
        "column": name, "number": number, "flag": flag, "persist": persist,
    })


def to_number(value: Any, default: Any) -> Any:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip().replace(" ", "")
        for cast in (int, float):
            try:
                return cast(text)
            except ValueError:
                continue
    return default


@dataclass
class Record:
    """Base of every table record."""

    TABLE: ClassVar[str] = ""
    KEY: ClassVar[Tuple[str, ...]] = ("id",)
    LABEL: ClassVar[str] = "id"
    DETAIL: ClassVar[Optional[str]] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Record":
        """Build a record from a (possibly partial) row; unknown keys are ignored."""
        values = {}
        for f in fields(cls):
            col = f.metadata.get("column") or f.name
            if col in row:
                raw = row[col]
            elif f.name in row:
                raw = row[f.name]
            else:
                continue
            if f.metadata.get("number"):
                raw = to_number(raw, f.default)
            elif f.metadata.get("flag"):
                raw = f.default if raw is None else bool(raw)
            values[f.name] = raw
        return cls(**values)

    def to_row(self) -> Dict[str, Any]:
        """Persisted columns of this record, keyed by remote column name."""
        return {
            (f.metadata.get("column") or f.name): getattr(self, f.name)
            for f in fields(self)
            if f.metadata.get("persist", True)
        }

    @property
    def key(self) -> Key:
        values = (getattr(self, name) for name in self.KEY)
        return tuple(v.value if isinstance(v, Enum) else v for v in values)

    @property
    def label(self) -> str:
        return str(getattr(self, self.LABEL) or "Sans Nom")

    @property
    def detail(self) -> str:
        value = getattr(self, self.DETAIL) if self.DETAIL else None
        return str(value) if value not in (None, "") else "-"


@dataclass
class Intervention(Record):
    TABLE: ClassVar[str] = "interventions"
    LABEL: ClassVar[str] = "client"
    DETAIL: ClassVar[Optional[str]] = "description"

    id: Optional[str] = column()
    site: Optional[str] = column()
    client: str = column("")
    client_phone: Optional[str] = column(name="clientPhone")
    location: str = column("")
    description: str = column("")
    technician_id: Optional[str] = column(name="technicianId")
    technician_name: Optional[str] = column(name="technicianName")
    date: Optional[str] = column()
    status: str = column("Pending")


@dataclass
class StockItem(Record):
    TABLE: ClassVar[str] = "stocks"
    LABEL: ClassVar[str] = "name"
    DETAIL: ClassVar[Optional[str]] = "unit"

    id: Optional[str] = column()
    name: str = column("")
    quantity: float = column(0, number=True)
    threshold: float = column(0, number=True)
    unit: str = column("")
    site: Optional[str] = column()

    @property
    def is_low(self) -> bool:
        return self.quantity <= self.threshold


@dataclass
class Technician(Record):
    TABLE: ClassVar[str] = "technicians"
    LABEL: ClassVar[str] = "name"
    DETAIL: ClassVar[Optional[str]] = "specialty"

    id: Optional[str] = column()
    name: str = column("")
    specialty: str = column("")
    status: str = column("Available")
    site: Optional[str] = column()


@dataclass
class DailyReport(Record):
    TABLE: ClassVar[str] = "reports"
    LABEL: ClassVar[str] = "technician_name"
    DETAIL: ClassVar[Optional[str]] = "content"

    id: Optional[str] = column()
    technician_name: str = column("", name="technicianName")
    date: Optional[str] = column()
    content: Optional[str] = column()
    method: str = column("Form")
    site: Optional[str] = column()
    domain: Optional[str] = column()
    intervention_type: Optional[str] = column(name="interventionType")
    location: Optional[str] = column()
    expenses: Optional[float] = column(number=True)
    revenue: Optional[float] = column(number=True)
    client_name: Optional[str] = column(name="clientName")
    client_phone: Optional[str] = column(name="clientPhone")
    audio_url: Optional[str] = column(name="audioUrl")
    rating: Optional[float] = column(number=True)


@dataclass
class DailyStat(Record):
    """Aggregated figures for one site on one day, keyed by (date, site)."""

    TABLE: ClassVar[str] = "daily_stats"
    KEY: ClassVar[Tuple[str, ...]] = ("date", "site")
    LABEL: ClassVar[str] = "date"

    date: Optional[str] = column()
    site: Optional[str] = column()
    revenue: float = column(0, number=True)
    interventions: int = column(0, number=True)
    profit: float = column(0, number=True)
    expenses: float = column(0, number=True)


@dataclass
class TickerMessage(Record):
    TABLE: ClassVar[str] = "ticker_messages"
    LABEL: ClassVar[str] = "text"

    id: Optional[str] = column()
    text: str = column("")
    type: str = column("info")
    display_order: int = column(0, number=True)
    is_manual: bool = column(False, persist=False)


@dataclass
class Notification(Record):
    TABLE: ClassVar[str] = "notifications"
    LABEL: ClassVar[str] = "title"
    DETAIL: ClassVar[Optional[str]] = "message"

    id: Optional[str] = column()
    title: str = column("")
    message: str = column("")
    created_at: Optional[str] = column()
    type: str = column("info")
    read: bool = column(False, flag=True)
    path: Optional[str] = column()
    site: Optional[str] = column()


@dataclass
class Chantier(Record):
    TABLE: ClassVar[str] = "chantiers"
    LABEL: ClassVar[str] = "name"
    DETAIL: ClassVar[Optional[str]] = "location"

    id: Optional[str] = column()
    name: str = column("")
    location: str = column("")
    client: str = column("")
    site: Optional[str] = column()
    status: str = column("En cours")
    date: Optional[str] = column()


@dataclass
class Transaction(Record):
    TABLE: ClassVar[str] = "transactions"
    LABEL: ClassVar[str] = "label"
    DETAIL: ClassVar[Optional[str]] = "category"

    id: Optional[str] = column()
    type: str = column("Recette")
    amount: float = column(0, number=True)
    label: str = column("")
    category: str = column("Autre")
    date: Optional[str] = column()
    site: Optional[str] = column()


@dataclass
class Employee(Record):
    TABLE: ClassVar[str] = "employees"
    LABEL: ClassVar[str] = "full_name"
    DETAIL: ClassVar[Optional[str]] = "role"

    id: Optional[str] = column()
    full_name: str = column("")
    role: str = column("")
    phone: Optional[str] = column()
    email: Optional[str] = column()
    site: Optional[str] = column()
    salary: float = column(0, number=True)
    date_hired: Optional[str] = column()


@dataclass
class Payroll(Record):
    TABLE: ClassVar[str] = "payrolls"
    LABEL: ClassVar[str] = "employee_name"
    DETAIL: ClassVar[Optional[str]] = "period"

    id: Optional[str] = column()
    employee_name: str = column("")
    amount: float = column(0, number=True)
    period: str = column("")
    date: Optional[str] = column()
    status: str = column("En attente")
    site: Optional[str] = column()


@dataclass
class Client(Record):
    TABLE: ClassVar[str] = "clients"
    LABEL: ClassVar[str] = "name"
    DETAIL: ClassVar[Optional[str]] = "address"

    id: Optional[str] = column()
    name: str = column("")
    phone: Optional[str] = column()
    email: Optional[str] = column()
    address: Optional[str] = column()
    site: Optional[str] = column()
    type: str = column("Particulier")


@dataclass
class CashMovement(Record):
    TABLE: ClassVar[str] = "caisse"
    LABEL: ClassVar[str] = "label"
    DETAIL: ClassVar[Optional[str]] = "operator"

    id: Optional[str] = column()
    label: str = column("")
    amount: float = column(0, number=True)
    type: str = column("Entrée")
    date: Optional[str] = column()
    operator: Optional[str] = column()
    site: Optional[str] = column()


@dataclass
class Supplier(Record):
    TABLE: ClassVar[str] = "suppliers"
    LABEL: ClassVar[str] = "name"
    DETAIL: ClassVar[Optional[str]] = "category"

    id: Optional[str] = column()
    name: str = column("")
    contact: Optional[str] = column()
    phone: Optional[str] = column()
    category: str = column("Divers")
    site: Optional[str] = column()


@dataclass
class Purchase(Record):
    TABLE: ClassVar[str] = "purchases"
    LABEL: ClassVar[str] = "item_name"
    DETAIL: ClassVar[Optional[str]] = "supplier"

    id: Optional[str] = column()
    item_name: str = column("")
    supplier: str = column("")
    quantity: float = column(0, number=True)
    cost: float = column(0, number=True)
    date: Optional[str] = column()
    status: str = column("Commandé")
    site: Optional[str] = column()


@dataclass
class Profile(Record):
    """Signed-in user's identity, role and home site."""

    TABLE: ClassVar[str] = "profiles"
    LABEL: ClassVar[str] = "full_name"
    DETAIL: ClassVar[Optional[str]] = "role"

    id: Optional[str] = column()
    full_name: str = column("Utilisateur")
    email: Optional[str] = column()
    role: str = column(Role.VISITOR.value)
    site: Optional[str] = column(Site.GLOBAL.value)
    phone: Optional[str] = column()


RECORD_TYPES: Dict[str, Type[Record]] = {
    cls.TABLE: cls
    for cls in (
        Intervention, StockItem, Technician, DailyReport, DailyStat,
        TickerMessage, Notification, Chantier, Transaction, Employee,
        Payroll, Client, CashMovement, Supplier, Purchase, Profile,
    )
}

# Tables kept in memory by the dashboard (profiles are looked up per user).
SYNCED_TABLES = tuple(t for t in RECORD_TYPES if t != Profile.TABLE)

# Bulk-read ordering: table -> (column, descending)
ORDERING: Dict[str, Tuple[str, bool]] = {
    Notification.TABLE: ("created_at", True),
    TickerMessage.TABLE: ("display_order", False),
}


def record_type(table: str) -> Type[Record]:
    try:
        return RECORD_TYPES[table]
    except KeyError:
        raise ValueError(f"Unknown table '{table}'.") from None


def record_from_row(table: str, row: Dict[str, Any]) -> Record:
    return record_type(table).from_row(row)


def key_columns(table: str) -> Tuple[str, ...]:
    return record_type(table).KEY


def as_key(table: str, key: Any) -> Key:
    """Normalise an id, a key tuple or a row dict into the table's key tuple."""
    names = key_columns(table)
    if isinstance(key, dict):
        values = tuple(key.get(name) for name in names)
    elif isinstance(key, tuple):
        if len(key) != len(names):
            raise ValueError(f"Table '{table}' is keyed by {names}, got {key!r}.")
        values = key
    elif len(names) != 1:
        raise ValueError(f"Table '{table}' is keyed by {names}, got {key!r}.")
    else:
        values = (key,)
    # Enum members hash by name, keys must compare and hash like plain strings.
    return tuple(v.value if isinstance(v, Enum) else v for v in values)


def key_to_row(table: str, key: Key) -> Dict[str, Any]:
    return dict(zip(key_columns(table), key))

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field

HEADER_STRIP_RE = re.compile(r"[\s\-_./]")


@dataclass(frozen=True)
class FieldSpec:
    name: str
    keywords: tuple[str, ...]
    fallback: int | None
    exact: bool = False


# Column order of the reference export is used for the positional fallbacks:
# Fecha;Cliente;Departamento;Solicitante;Horas;Tipo de Registro;ID Ticket Interno;
# ID Ticket Cliente;Tarea;...;Consultor;Observaciones
RECORD_FIELDS = (
    FieldSpec("date", ("fecha", "date"), 0),
    FieldSpec("client", ("cliente", "customer", "client"), 1, exact=True),
    FieldSpec("department", ("departamento", "department", "sector", "area"), 2),
    FieldSpec("hours", ("cantidaddehoras", "horas", "hours", "tiempo"), 4),
    FieldSpec("record_type", ("tipoderegistro", "tiporegistro", "recordtype", "entrytype", "tipo"), 5),
    FieldSpec("internal_ticket_id", ("idticketinterno", "internalticket", "idinterno"), 6),
    FieldSpec("ticket_id", ("idticketcliente", "ticket", "idticket", "ticketid", "clientticket"), 7, exact=True),
    FieldSpec("project", ("tarea", "actividad", "project", "task"), 8),
    FieldSpec(
        "consultant",
        ("consultor", "recurso", "nombre", "empleado", "consultant", "employee", "resource", "name"),
        10,
        exact=True,
    ),
    FieldSpec(
        "description",
        ("observaciones", "observacion", "descripcion", "description", "comentarios", "comments", "notes"),
        11,
    ),
    FieldSpec(
        "consultant_type",
        ("tipodeconsultor", "tipoconsultor", "consultanttype", "modalidad", "modalidadcontratacion", "seniority"),
        None,
    ),
)

TEAM_NAME_FIELD = FieldSpec(
    "name",
    (
        "consultor", "nombre", "recurso", "empleado", "persona", "usuario",
        "colaborador", "collaborador", "consultant", "employee", "name",
    ),
    0,
)
TEAM_CATEGORY_FIELD = FieldSpec(
    "category",
    (
        "tipodeconsultor", "tipoconsultor", "modalidad", "clasificacion", "rol",
        "perfil", "seniority", "categoria", "category", "status", "type", "tipo",
    ),
    1,
)


def normalize_header(value: str | None) -> str:
    """Lowercase, strip accents, drop whitespace and ``- _ . /``."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value.strip().lower())
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return HEADER_STRIP_RE.sub("", without_marks)


def find_header_index(headers: list[str], spec: FieldSpec) -> int | None:
    for idx, header in enumerate(headers):
        if spec.exact:
            if any(header == keyword for keyword in spec.keywords):
                return idx
        elif any(keyword in header for keyword in spec.keywords):
            return idx
    return None


@dataclass
class ColumnMap:
    """Resolved column positions for one sheet.

    ``matched`` only holds fields found by header text. Fields without a
    header match fall back to their fixed position when values are read,
    unless that position already belongs to a matched field.
    """

    width: int
    specs: dict[str, FieldSpec]
    matched: dict[str, int] = field(default_factory=dict)

    def _free_fallback(self, name: str) -> int | None:
        fallback = self.specs[name].fallback
        if fallback is None or fallback in self.matched.values():
            return None
        return fallback

    def index_for(self, name: str) -> int | None:
        if name in self.matched:
            return self.matched[name]
        return self._free_fallback(name)

    def source_of(self, name: str) -> str:
        if name in self.matched:
            return "header"
        fallback = self._free_fallback(name)
        if fallback is not None and fallback < self.width:
            return "position"
        return "absent"

    def describe(self) -> dict[str, dict[str, object]]:
        return {
            name: {"index": self.index_for(name) if self.source_of(name) != "absent" else None,
                   "source": self.source_of(name)}
            for name in self.specs
        }


def resolve_columns(header_tokens: list[str], specs: tuple[FieldSpec, ...] = RECORD_FIELDS) -> ColumnMap:
    headers = [normalize_header(token) for token in header_tokens]
    column_map = ColumnMap(width=len(headers), specs={spec.name: spec for spec in specs})
    for spec in specs:
        idx = find_header_index(headers, spec)
        if idx is not None:
            column_map.matched[spec.name] = idx
    return column_map

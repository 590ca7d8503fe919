#!/usr/bin/env python3
"""
generate_timesheet_mess.py

Generates sample-data/timesheet_mess.csv, a comma-separated timesheet export
from a Spanish-locale sheet, and sample-data/team_config.csv, the matching
semicolon-separated team sheet.

The export exercises: UTF-8 BOM, accented headers, unquoted decimal commas
that split the hours field, an exact duplicate row, quoted fields with
doubled quotes, ISO datetimes and dates with a time part, unreadable and
negative hours, weekend work, a day over 12 hours, a blank line, a
one-field line, and consultants whose category only comes from the team
sheet (including excluded and inactive categories).

Run: python sample-data/generate_timesheet_mess.py
"""

from pathlib import Path

HERE = Path(__file__).parent
OUT = HERE / "timesheet_mess.csv"
TEAM_OUT = HERE / "team_config.csv"

BOM = b"\xef\xbb\xbf"

HEADER = (
    "Fecha,Cliente,Departamento,Solicitante,Horas,Tipo de Registro,ID Ticket Interno,"
    "ID Ticket Cliente,Tarea,Estado,Consultor,Observaciones,Tipo de Consultor"
)

ROWS = [
    # Baseline full-time row
    "01/03/2024,Acme,IT,Juan,8,Proyecto,INT-1,ACM-10,Migración,Cerrado,Ana Pérez,Kickoff,Full Time",
    # 7,5 exported without quotes: the hours field splits in two
    "04/03/2024,Acme,IT,Juan,7,5,Proyecto,INT-2,ACM-11,Migración,Cerrado,Ana Pérez,Decimal partido,Full Time",
    # Exact duplicate of the row above
    "04/03/2024,Acme,IT,Juan,7,5,Proyecto,INT-2,ACM-11,Migración,Cerrado,Ana Pérez,Decimal partido,Full Time",
    # Fully quoted, with a doubled quote inside the task
    '"05/03/2024","Globex","Finanzas","Marta","6","Mantenimiento","INT-3","GLX-1","Soporte ""urgente""","Abierto","Bruno Díaz","Con comillas","Part Time"',
    # Saturday
    "09/03/2024,Globex,Finanzas,Marta,4,Mantenimiento,INT-4,GLX-2,Soporte,Cerrado,Bruno Díaz,Sábado,Part Time",
    # ISO datetime, part of a 15 hour day; category left blank
    "2024-03-11T09:00:00,Initech,IT,Pedro,13,Proyecto,INT-5,INI-7,Deploy,Cerrado,Carla Gómez,Jornada larga,",
    "11/03/2024,Initech,IT,Pedro,2h,Proyecto,INT-6,INI-8,Deploy,Cerrado,Carla Gómez,Guardia nocturna,",
    # Date with a time part and unreadable hours
    "12/03/2024 08:30,Acme,IT,Juan,abc,Reunión,,,Daily,Cerrado,Ana Pérez,Horas ilegibles,Full Time",
    # Negative hours
    "13/03/2024,Acme,IT,Juan,-3,Reunión,,,Daily,Cerrado,Ana Pérez,Negativo,Full Time",
    # External consultant: excluded once the team sheet is applied
    "14/03/2024,Hooli,Ventas,Luis,8,Proyecto,INT-7,HOO-1,Onboarding,Cerrado,Diego Ruiz,Externo,",
    # Inactive consultant: hidden unless the category is selected
    "15/03/2024,Hooli,Ventas,Luis,8,Proyecto,INT-8,HOO-2,Onboarding,Cerrado,Elena Sosa,Baja,",
    # Blank line
    "",
    # Not a row
    '"solo una columna"',
    "02/04/2024,Acme,IT,Juan,8,Proyecto,INT-9,ACM-12,Migración,Cerrado,Ana Pérez,Abril,full time",
    "03/04/2024,Globex,Finanzas,Marta,4,Mantenimiento,INT-10,GLX-3,Soporte,Cerrado,Bruno Díaz,Abril,part time",
    "02/04/2024,Initech,IT,Pedro,8,Proyecto,INT-11,INI-9,Deploy,Cerrado,Carla Gómez,Abril,",
]

TEAM_ROWS = [
    "Nombre;Modalidad",
    "Ana Pérez;Full Time",
    "Bruno Díaz;Part Time",
    'Carla Gómez;"Full Time"',
    "Diego Ruiz;Externo",
    "Elena Sosa;Baja",
]


def main() -> None:
    text = "\n".join([HEADER, *ROWS]) + "\n"
    OUT.write_bytes(BOM + text.encode("utf-8"))
    TEAM_OUT.write_bytes(("\n".join(TEAM_ROWS) + "\n").encode("utf-8"))
    print(f"Wrote {OUT}")
    print(f"Wrote {TEAM_OUT}")


if __name__ == "__main__":
    main()

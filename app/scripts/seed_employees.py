from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import DEFAULT_SHIFT, Employee, EmployeeStation, SessionLocal, init_database  # noqa: E402
from stations import MANUAL_STATION, canonical_station  # noqa: E402


def normalize_stations(stations: List[str], employee_name: str) -> List[str]:
    cleaned: List[str] = []
    missing: List[str] = []
    for station in stations:
        name = canonical_station(station)
        if name and name != MANUAL_STATION:
            if name not in cleaned:
                cleaned.append(name)
        else:
            missing.append(station)
    if missing:
        print(f"[seed] Skipping unknown stations for {employee_name}: {', '.join(missing)}")
    return cleaned


SAMPLE_EMPLOYEES: List[Dict] = [
    # Packing line
    {"name": "Anna Berg", "stations": ["Pack", "Auto Pack", "Plock"]},
    {"name": "Erik Lund", "stations": ["Pack", "KM"]},
    {"name": "Sara Nilsson", "stations": ["Pack"]},
    {"name": "Johan Ek", "stations": ["Pack", "Auto Pack"]},
    {"name": "Maria Holm", "stations": ["Auto Pack", "Auto Plock"]},
    # Picking
    {"name": "Karin Sjöberg", "stations": ["Plock", "Auto Plock"]},
    {"name": "Lars Wikström", "stations": ["Plock"]},
    {"name": "Emma Lindqvist", "stations": ["Plock", "Pack", "In/Ut"]},
    {"name": "Oskar Dahl", "stations": ["Auto Plock"]},
    # Decating and rework
    {"name": "Nils Forsberg", "stations": ["Decating", "Rework"]},
    {"name": "Ida Sandberg", "stations": ["Decating"]},
    {"name": "Henrik Strand", "stations": ["Rework", "Rep"]},
    # Goods in/out and repairs
    {"name": "Linnea Ström", "stations": ["In/Ut", "KM"]},
    {"name": "Gustav Björk", "stations": ["In/Ut"]},
    {"name": "Elin Åberg", "stations": ["Rep", "KM", "Decating"]},
    # Evening shift
    {"name": "Viktor Hed", "stations": ["Pack", "Plock"], "shift": "Skift 2"},
    {"name": "Frida Norén", "stations": ["KM"], "shift": "Skift 2"},
    {"name": "Axel Lind", "stations": [], "shift": "Skift 2"},
    {"name": "Moa Persson", "stations": ["Pack", "Decating"], "shift": "Skift 2", "active": False},
]


def seed_employees() -> None:
    init_database()
    created = 0
    refreshed = 0
    with SessionLocal() as session:
        for entry in SAMPLE_EMPLOYEES:
            stations = normalize_stations(entry.get("stations", []), entry["name"])
            shift = entry.get("shift", DEFAULT_SHIFT)
            active = entry.get("active", True)

            stmt = select(Employee).where(Employee.name == entry["name"])
            employee = session.scalars(stmt).first()
            if not employee:
                employee = Employee(name=entry["name"], shift=shift, is_active=active)
                session.add(employee)
                session.flush()
                created += 1
            else:
                employee.shift = shift
                employee.is_active = active
                refreshed += 1
            granted = {item.station for item in employee.stations}
            for station in stations:
                if station not in granted:
                    session.add(EmployeeStation(employee_id=employee.id, station=station))
        session.commit()
    print(f"[seed] Seed complete. Created {created} employees, refreshed {refreshed} profiles.")


if __name__ == "__main__":
    seed_employees()

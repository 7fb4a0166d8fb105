"""
Seed the local database with sample crews, jobs and vehicles.

Usage:
  python scripts/seed_fleet_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (name for crews, title for jobs,
license_plate for vehicles).
"""

import os
import sys
from datetime import date, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fieldops.db import SessionLocal, Base, engine
from fieldops.models.models import Crew, Job, Vehicle


def ensure_crew(session, name: str, capacity: int = 2) -> Crew:
    crew = session.query(Crew).filter(Crew.name == name).first()
    if crew:
        if crew.capacity != capacity:
            crew.capacity = capacity
            session.add(crew)
        return crew
    crew = Crew(name=name, capacity=capacity, is_available=True)
    session.add(crew)
    session.flush()
    return crew


def ensure_job(session, title: str, customer_name: str, address: str, days_ahead: int, estimate: float) -> Job:
    job = session.query(Job).filter(Job.title == title).first()
    if job:
        job.customer_name = customer_name
        job.address = address
        session.add(job)
        return job
    job = Job(
        title=title,
        customer_name=customer_name,
        address=address,
        scheduled_date=date.today() + timedelta(days=days_ahead),
        total_estimate=estimate,
        status="scheduled",
    )
    session.add(job)
    session.flush()
    return job


def ensure_vehicle(session, name: str, license_plate: str, make: str, model: str, year: int, vehicle_type: str = "truck") -> Vehicle:
    vehicle = session.query(Vehicle).filter(Vehicle.license_plate == license_plate).first()
    if vehicle:
        vehicle.name = name
        vehicle.make = make
        vehicle.model = model
        vehicle.year = year
        session.add(vehicle)
        return vehicle
    vehicle = Vehicle(
        name=name,
        license_plate=license_plate,
        make=make,
        model=model,
        year=year,
        vehicle_type=vehicle_type,
        status="available",
    )
    session.add(vehicle)
    session.flush()
    return vehicle


def main():
    # Ensure tables exist
    if engine.url.drivername.startswith("sqlite"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        crews = [
            ensure_crew(session, "North Crew", capacity=3),
            ensure_crew(session, "South Crew", capacity=2),
            ensure_crew(session, "Install Crew", capacity=4),
        ]

        jobs = [
            ensure_job(session, "Roof inspection - Maple St", "Jane Doe", "12 Maple St", 1, 450),
            ensure_job(session, "Gutter replacement - Oak Ave", "Acme Property Mgmt", "300 Oak Ave", 3, 2800),
            ensure_job(session, "Shingle repair - Pine Rd", "Bob Smith", "7 Pine Rd", 5, 1200),
        ]

        vehicles = [
            ensure_vehicle(session, "Truck 01", "FLD-001", "Ford", "F-250", 2021),
            ensure_vehicle(session, "Truck 02", "FLD-002", "Ram", "2500", 2020),
            ensure_vehicle(session, "Van 01", "FLD-101", "Ford", "Transit", 2022, vehicle_type="van"),
            ensure_vehicle(session, "Trailer 01", "FLD-T01", "Big Tex", "14LP", 2019, vehicle_type="trailer"),
        ]

        session.commit()
        print(f"Seed completed: {len(crews)} crews, {len(jobs)} jobs, {len(vehicles)} vehicles")
    except Exception as e:
        session.rollback()
        print("Seed failed:", e)
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()

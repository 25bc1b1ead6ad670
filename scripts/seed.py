"""
Teemplot Billing - Demo Seeder
================================
Creates one demo company on trial with an owner and an employee, then prints
a bearer token for the owner so the /subscription API can be tried at once.

Usage:
    python scripts/seed.py          # Seed (skips rows that already exist)
    python scripts/seed.py --reset  # Drop all data and reseed
"""

import sys
import os
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.database import SessionLocal, Base, engine
from common.helpers import now_utc
from common.security import create_token
from modules.company.models import Company, SubscriptionStatus
from modules.user.models import User, UserRole
from modules.payment.models import PaymentIntent  # noqa: F401

DEMO_COMPANY = "Teemplot Demo Ltd"
DEMO_USERS = [
    ("owner@teemplot.test", "Ada", "Okafor", UserRole.OWNER),
    ("staff@teemplot.test", "Tunde", "Bello", UserRole.EMPLOYEE),
]
TRIAL_DAYS = 14


def seed(reset=False):
    if reset:
        print("Dropping all tables...")
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        company = db.query(Company).filter(Company.name == DEMO_COMPANY).first()
        if not company:
            company = Company(
                name=DEMO_COMPANY,
                subscription_status=SubscriptionStatus.TRIAL.value,
                trial_end_date=now_utc() + timedelta(days=TRIAL_DAYS),
                employee_limit=len(DEMO_USERS),
            )
            db.add(company)
            db.flush()
            print(f"  + company {company.name} ({company.id})")

        owner = None
        for email, first, last, role in DEMO_USERS:
            user = db.query(User).filter(User.email == email).first()
            if not user:
                user = User(
                    company_id=company.id, email=email,
                    first_name=first, last_name=last, role=role.value,
                )
                db.add(user)
                db.flush()
                print(f"  + user {email} [{role.value}]")
            if role == UserRole.OWNER:
                owner = user

        db.commit()
        print("\nSeed complete.")
        print(f"Owner bearer token:\n{create_token({'sub': owner.id})}")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed(reset="--reset" in sys.argv)

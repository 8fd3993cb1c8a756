#!/usr/bin/env python3
"""
Marketplace Initialization Script

Creates the database tables, stores the default reservation rules and
creates the first admin user.

Usage:
    python utility_scripts/init_marketplace.py --admin-email admin@example.com

Environment Variables (from .env file):
    - DATABASE_URL: Database connection string
    - INITIAL_ADMIN_EMAIL: Email for the admin (optional, will prompt)
    - INITIAL_ADMIN_NAME: Display name for the admin (optional)
"""

import os
import re
import sys
from pathlib import Path
from typing import Optional

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from app.core.database import SessionLocal, engine
from app.models import Base
from app.models.user import User
from app.services.rule_service import RuleService
from app.utils.audit import AuditLogger

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


class MarketplaceInitializer:
    """Handles first-run setup"""

    def __init__(self):
        self.db: Optional[Session] = None

    def __enter__(self):
        self.db = SessionLocal()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.db:
            self.db.close()

    def create_database_tables(self):
        print("🔧 Creating database tables...")
        Base.metadata.create_all(bind=engine)
        print("✅ Database tables ready")

    def seed_rules(self) -> int:
        print("🔧 Storing default reservation rules...")
        created = RuleService.ensure_default_rules(self.db)
        if created:
            print(f"✅ Created {created} default rules")
        else:
            print("⚠️  Rules already present, nothing to do")
        return created

    def create_admin(self, email: str, name: str) -> User:
        print("🔧 Creating admin user...")

        existing = self.db.query(User).filter(User.email == email).first()
        if existing:
            if existing.role == "admin":
                print(f"⚠️  Admin {email} already exists")
                return existing
            raise ValueError(f"User {email} already exists with role '{existing.role}'")

        try:
            admin = User(email=email, name=name, role="admin", is_active=True)
            self.db.add(admin)
            self.db.flush()

            AuditLogger().log_business_event(
                db=self.db,
                action="USER_CREATED",
                user_id=admin.id,
                resource_type="user",
                resource_id=admin.id,
                new_values={"email": email, "role": "admin", "source": "init_marketplace"}
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise

        print(f"✅ Admin created: {email} ({admin.id})")
        return admin

    def run(self, email: str, name: str) -> bool:
        try:
            print("🚀 Starting marketplace initialization\n")
            self.create_database_tables()
            self.seed_rules()
            self.create_admin(email, name)
            print("\n🎉 Initialization completed")
            return True
        except Exception as e:
            self.db.rollback()
            print(f"\n❌ Initialization failed: {e}")
            return False


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Initialize the property marketplace database")
    parser.add_argument("--admin-email", default=os.getenv("INITIAL_ADMIN_EMAIL"))
    parser.add_argument("--admin-name", default=os.getenv("INITIAL_ADMIN_NAME", "Admin"))
    args = parser.parse_args()

    email = args.admin_email
    while not email or not re.match(EMAIL_PATTERN, email):
        email = input("Admin Email: ").strip()

    with MarketplaceInitializer() as initializer:
        success = initializer.run(email.lower(), args.admin_name)
        sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()

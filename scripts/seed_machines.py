"""
Seed the remote store with demo users and machines.

Usage:
  python scripts/seed_machines.py

Idempotent: users are matched by email, machines by serial number.
Runs through the same sync path the API uses, so the local cache is
refreshed as well.
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
from dotenv import load_dotenv
load_dotenv()

from machinehub.db import SessionLocal, Base, engine
from machinehub.models.models import User
from machinehub.auth.security import get_password_hash
from machinehub.schemas.auth import AccessSession, Role
from machinehub.services import machines as machine_service
from machinehub.services.sync import SyncManager
from machinehub.storage.local_provider import LocalCacheProvider
from machinehub.storage.remote_provider import SqlRemoteStore
from machinehub.store import EntityStore


DEMO_USERS = [
    ("admin@machinehub.dev", "Admin", Role.admin),
    ("mechanic@machinehub.dev", "Maria Mechanic", Role.mechanic),
    ("driver@machinehub.dev", "Dan Driver", Role.driver),
    ("viewer@machinehub.dev", "Vera Viewer", Role.viewer),
]

DEMO_MACHINES = [
    {
        "name": "Hiab 1",
        "model": "X-HiPro 232",
        "serialNumber": "HB-232-0001",
        "brand": "Hiab",
        "year": "2019",
        "location": "Yard A",
        "equipment": [{"type": "truck", "brand": "Volvo", "model": "FH16"}, {"type": "crane", "brand": "Hiab", "model": "X-HiPro 232"}],
    },
    {
        "name": "Hooklift 2",
        "model": "Multilift XR21",
        "serialNumber": "ML-XR21-0042",
        "brand": "Multilift",
        "year": "2021",
        "location": "Yard B",
        "equipment": [{"type": "truck", "brand": "Scania", "model": "R500"}, {"type": "hooklift"}, {"type": "winch"}],
    },
]


def ensure_user(session, email: str, name: str, role: Role, password: str) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        if user.role != role.value:
            user.role = role.value
            session.add(user)
        return user
    user = User(email=email, name=name, role=role.value, password_hash=get_password_hash(password))
    session.add(user)
    return user


def main() -> int:
    password = os.getenv("SEED_PASSWORD", "password123")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        for email, name, role in DEMO_USERS:
            ensure_user(db, email, name, role, password)
        db.commit()
        print(f"✓ {len(DEMO_USERS)} users ready (password: {password})")
    finally:
        db.close()

    sync = SyncManager(LocalCacheProvider(), SqlRemoteStore(SessionLocal), background=False)
    store = EntityStore.bootstrap(sync)
    admin = AccessSession.authenticated("seed", "Seed script", Role.admin)
    existing = {m.serial_number for m in store.machines}
    created = 0
    for data in DEMO_MACHINES:
        if data["serialNumber"] in existing:
            continue
        machine_service.add_machine(store, data, session=admin)
        created += 1
    sync.drain()
    print(f"✓ {created} machines created, {len(store.machines)} total")
    for warning in sync.warnings:
        print(f"✗ {warning.message}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

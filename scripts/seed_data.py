import asyncio
import os
import sys

# Add the parent directory to the path so we can import our models
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from eng_portal.core.roles import Role, UserStatus
from eng_portal.db.firestore import FirestoreStore
from eng_portal.services.entitlements import EntitlementManager


async def seed_platform(admin_uid: str, admin_email: str):
    print("Seeding Engineering Portal...")
    entitlements = EntitlementManager(FirestoreStore())

    # 1. First administrator. The uid must match the Firebase Auth uid
    # of an account that has already signed up once.
    entitlements.store.set("users", admin_uid, {
        "email": admin_email,
        "role": Role.ADMIN.value,
        "status": UserStatus.ACTIVE.value,
        "roleExpiresAt": None,
    }, merge=True)
    print(f"Admin ready: {admin_email}")

    # 2. A sample promo code
    code = await entitlements.create_code(Role.E_MASTER, duration_days=7, uses=1, code="MASTER-PROMO")
    print(f"Bonus code created: {code.code} ({code.role.value}, {code.duration_days} days, {code.uses_left} use)")


if __name__ == "__main__":
    if len(sys.argv) != 3:
        sys.exit("usage: seed_data.py <admin_uid> <admin_email>")
    asyncio.run(seed_platform(sys.argv[1], sys.argv[2]))

"""
Database initialization script - ShiftConfirm collections

Run once to create indexes (and optionally a demo placement):
    python scripts/init_db.py
    python scripts/init_db.py --seed +13035550100
"""

import asyncio
import sys
from datetime import timedelta
from pathlib import Path
from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment variables
load_dotenv()

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.db.indexes import create_indexes
from app.db.mongo import (
    connect_to_mongo,
    close_mongo_connection,
    get_assignments_collection,
    get_associates_collection,
    get_jobs_collection,
    get_messages_collection
)
from utils.phone_utils import normalize_phone
from utils.time_utils import local_date, utc_now

setup_logging()
logger = get_logger(__name__)


async def seed_demo_placement(phone: str):
    """Creates a demo associate with a 09:00 shift tomorrow (local time)"""
    logger.info("\n🧪 Seeding demo placement...")

    phone_number = normalize_phone(phone)
    if not phone_number:
        raise ValueError(f"❌ Not a valid phone number: {phone}")

    tomorrow = local_date(utc_now(), settings.REMINDER_TIMEZONE) + timedelta(days=1)

    await get_associates_collection().update_one(
        {"id": "demo-associate"},
        {"$set": {"id": "demo-associate", "first_name": "Demo", "phone_number": phone_number, "opted_out": False}},
        upsert=True
    )
    await get_jobs_collection().update_one(
        {"id": "demo-job"},
        {"$set": {"id": "demo-job", "title": "Warehouse Associate", "customer_name": "Demo Customer"}},
        upsert=True
    )
    result = await get_assignments_collection().update_one(
        {"job_id": "demo-job", "associate_id": "demo-associate"},
        {"$set": {
            "work_date": tomorrow.isoformat(),
            "start_time": "09:00",
            "confirmation_status": "UNCONFIRMED",
            "night_before_sent": False,
            "day_of_sent": False,
            "reminder_claims": {},
            "reminder_unconfirmed": {},
            "version": 0
        }},
        upsert=True
    )

    if result.upserted_id:
        logger.info(f"✅ Demo placement created for {tomorrow.isoformat()} 09:00")
    else:
        logger.info(f"ℹ️  Demo placement reset for {tomorrow.isoformat()} 09:00")


async def main():
    """Main initialization"""
    logger.info("=" * 60)
    logger.info("  ShiftConfirm Database Setup")
    logger.info("=" * 60 + "\n")

    await connect_to_mongo()

    try:
        await create_indexes()

        if len(sys.argv) == 3 and sys.argv[1] == "--seed":
            await seed_demo_placement(sys.argv[2])

        stats = {
            "assignments": await get_assignments_collection().count_documents({}),
            "associates": await get_associates_collection().count_documents({}),
            "messages": await get_messages_collection().count_documents({})
        }

        logger.info(f"\n📊 Current documents:")
        logger.info(f"  Assignments: {stats['assignments']}")
        logger.info(f"  Associates: {stats['associates']}")
        logger.info(f"  Logged messages: {stats['messages']}")

        logger.info("\n✅ Database initialization complete!")

    except Exception as e:
        logger.error(f"\n❌ Error: {e}")
        raise

    finally:
        await close_mongo_connection()

    logger.info("\n" + "=" * 60)


if __name__ == "__main__":
    asyncio.run(main())

"""
app/db/indexes.py

Purpose: Database index management

- Creates unique and performance indexes
- Ensures fast lookups and data integrity
- TTL index for outbound message log cleanup
"""

from app.db.mongo import (
    get_assignments_collection,
    get_associates_collection,
    get_jobs_collection,
    get_messages_collection
)
from app.core.logging import get_logger

logger = get_logger(__name__)


async def create_indexes():
    """
    Creates all necessary database indexes for optimal performance.
    This function is idempotent - safe to run multiple times.
    """
    try:
        assignments = get_assignments_collection()
        associates = get_associates_collection()
        jobs = get_jobs_collection()
        messages = get_messages_collection()

        logger.info("Creating database indexes...")

        # ==============================================
        # ASSIGNMENTS COLLECTION INDEXES
        # ==============================================

        # One placement per associate per job
        await assignments.create_index(
            [("job_id", 1), ("associate_id", 1)],
            unique=True,
            name="placement_unique"
        )
        logger.debug("Created unique index on assignments.job_id + associate_id")

        # Due-reminder scan: non-terminal placements by work date
        await assignments.create_index(
            [("confirmation_status", 1), ("work_date", 1)],
            name="due_reminders_idx"
        )
        logger.debug("Created compound index on assignments.confirmation_status + work_date")

        # Active placement lookup for inbound replies
        await assignments.create_index(
            [("associate_id", 1), ("work_date", 1)],
            name="associate_schedule_idx"
        )
        logger.debug("Created compound index on assignments.associate_id + work_date")

        # ==============================================
        # ASSOCIATES COLLECTION INDEXES
        # ==============================================

        await associates.create_index("id", unique=True, name="associate_id_unique")
        logger.debug("Created unique index on associates.id")

        # Inbound replies resolve associates by phone
        await associates.create_index("phone_number", name="phone_idx")
        logger.debug("Created index on associates.phone_number")

        # ==============================================
        # JOBS COLLECTION INDEXES
        # ==============================================

        await jobs.create_index("id", unique=True, name="job_id_unique")
        logger.debug("Created unique index on jobs.id")

        # ==============================================
        # MESSAGES COLLECTION INDEXES
        # ==============================================

        # Status callbacks look messages up by gateway sid
        await messages.create_index("sid", unique=True, name="message_sid_unique")
        logger.debug("Created unique index on messages.sid")

        # Drop delivery log entries after 90 days
        await messages.create_index(
            "created_at",
            expireAfterSeconds=7776000,  # 90 days
            name="message_ttl_idx"
        )
        logger.debug("Created TTL index on messages.created_at")

        logger.info("✅ All database indexes created successfully")

        assignment_indexes = await assignments.index_information()
        associate_indexes = await associates.index_information()
        message_indexes = await messages.index_information()

        logger.info(
            f"Index summary: Assignments={len(assignment_indexes)}, "
            f"Associates={len(associate_indexes)}, "
            f"Messages={len(message_indexes)}"
        )

    except Exception as e:
        logger.error(f"Failed to create indexes: {str(e)}", exc_info=True)
        raise


if __name__ == "__main__":
    """
    Run this script directly to create indexes manually.
    """
    import asyncio
    from app.db.mongo import connect_to_mongo, close_mongo_connection

    async def main():
        await connect_to_mongo()
        await create_indexes()
        await close_mongo_connection()

    asyncio.run(main())

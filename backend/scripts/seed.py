"""Database seed script — creates demo actors and a published sample workflow.

Run: python -m scripts.seed
"""

import asyncio
import sys
import os

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

DISTRICT_ID = "demo-district"
SCHOOL_ID = "demo-school"

DEMO_ACTORS = [
    ("demo-parent", "parent", "Demo Parent"),
    ("demo-teacher", "teacher", "Demo Teacher"),
    ("demo-school-admin", "school_admin", "Demo School Admin"),
    ("demo-district-admin", "district_admin", "Demo District Admin"),
]

ATTENDANCE_WORKFLOW = {
    "start": "check_tier",
    "steps": [
        {
            "id": "check_tier",
            "type": "condition",
            "config": {"left": "{{ event_metadata.tier }}", "op": "eq", "right": "high"},
            "on_true": "notify_teacher",
            "on_false": "done",
        },
        {
            "id": "notify_teacher",
            "type": "notify",
            "config": {
                "title": "Attendance alert",
                "body": "Student {{ event_metadata.studentId }} missed class",
                "severity": "warning",
                "retry": {"max_attempts": 3, "backoff_ms": 250},
            },
            "next": None,
        },
        {"id": "done", "type": "noop"},
    ],
}


async def seed():
    """Seed the database with demo data."""
    from db.database import init_db
    from db.database import AsyncSessionLocal
    from db.models.actor_profile import ActorProfile
    from db.models.workflow_definition import WorkflowDefinition
    from services.workflow_service import WorkflowService
    from sqlalchemy import select

    # Initialize DB tables
    await init_db()

    async with AsyncSessionLocal() as db:
        # 1. Demo actors
        for user_id, role, full_name in DEMO_ACTORS:
            result = await db.execute(select(ActorProfile).where(ActorProfile.user_id == user_id))
            if result.scalar_one_or_none():
                print(f"[seed] Actor exists: {user_id}")
                continue
            db.add(ActorProfile(
                user_id=user_id,
                role=role,
                district_id=DISTRICT_ID,
                school_id=SCHOOL_ID,
                full_name=full_name,
            ))
            print(f"[seed] Created actor: {user_id} ({role})")
        await db.flush()

        # 2. Sample workflow, published at v1
        result = await db.execute(
            select(WorkflowDefinition).where(WorkflowDefinition.name == "Attendance escalation")
        )
        if result.scalar_one_or_none():
            print("[seed] Sample workflow exists")
        else:
            svc = WorkflowService(db)
            workflow = await svc.create_workflow(
                name="Attendance escalation",
                description="Notify the reporting teacher about high-tier absences",
                trigger={"type": "event", "event_name": "attendance.missed"},
                definition=ATTENDANCE_WORKFLOW,
                district_id=DISTRICT_ID,
                created_by="demo-district-admin",
            )
            await svc.publish(workflow)
            print(f"[seed] Created workflow: {workflow.name} ({workflow.id})")

        await db.commit()

    print("[seed] Done")


if __name__ == "__main__":
    asyncio.run(seed())

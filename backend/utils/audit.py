import logging
from datetime import datetime

logger = logging.getLogger(__name__)


async def log_audit(
    db,
    actor_id,
    actor_role: str,
    action: str,
    metadata: dict | None = None
):
    await db.audit_logs.insert_one({
        "actor_id": str(actor_id),
        "actor_role": actor_role,
        "action": action,
        "metadata": metadata or {},
        "created_at": datetime.utcnow()
    })
    logger.info("AUDIT %s by %s:%s", action, actor_role, actor_id)

import logging

from .models import AuditLog

logger = logging.getLogger(__name__)


def record_audit(school_id, actor_id, action, resource_type, resource_id, changes=None):
    """
    Write one audit row. Runs inside the caller's transaction so the record
    commits (or rolls back) together with the change it describes.
    """
    entry = AuditLog.objects.create(
        school_id=school_id,
        user_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id),
        changes=changes or {},
    )
    logger.info(
        f"Audit {action} on {resource_type}:{resource_id} "
        f"by user {actor_id} (school {school_id})"
    )
    return entry

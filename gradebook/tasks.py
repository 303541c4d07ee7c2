"""
Celery tasks for gradebook app.
Handles background report card generation for a whole class.
"""
import logging
import uuid

from celery import shared_task
from django.contrib.auth import get_user_model

from . import config
from .exceptions import ConcurrencyConflict, PersistenceError

logger = logging.getLogger(__name__)

# Transient errors that should trigger retry
RETRYABLE_EXCEPTIONS = (ConcurrencyConflict, PersistenceError)


@shared_task(
    bind=True,
    max_retries=config.TASK_MAX_RETRIES,
    default_retry_delay=config.TASK_RETRY_DELAY,
    soft_time_limit=config.TASK_SOFT_TIME_LIMIT,
    time_limit=config.TASK_TIME_LIMIT,
)
def generate_class_report_cards(self, term_id, class_id, actor_id, batch_id=None):
    """
    Generate report cards for every student in a class.

    Args:
        term_id: ID of the Term
        class_id: ID of the Class
        actor_id: ID of the user who requested the run
        batch_id: generation batch; a retry with the same batch skips
            students that were already generated

    Retries with exponential backoff on version races and store errors.
    """
    from academics.models import Class
    from accounts.permissions import Actor
    from core.models import Term
    from .snapshots import ReportCardBuilder

    User = get_user_model()
    batch_id = uuid.UUID(str(batch_id)) if batch_id else uuid.uuid4()

    try:
        term = Term.objects.select_related('academic_year__school').get(pk=term_id)
        class_obj = Class.objects.get(pk=class_id)
        user = User.objects.get(pk=actor_id)
    except (Term.DoesNotExist, Class.DoesNotExist, User.DoesNotExist) as e:
        # Non-retryable
        logger.error(f"Report card generation aborted: {e}")
        return {'success': False, 'error': str(e)}

    builder = ReportCardBuilder(term.academic_year.school, term, Actor.from_user(user))
    try:
        result = builder.generate_for_class(class_obj, batch_id=batch_id)
    except RETRYABLE_EXCEPTIONS as e:
        logger.warning(
            f"Retryable error generating report cards for class {class_id} term {term_id}: {e}"
        )
        raise self.retry(
            exc=e,
            countdown=config.TASK_RETRY_DELAY * (2 ** self.request.retries),
            args=(),
            kwargs={
                'term_id': term_id,
                'class_id': class_id,
                'actor_id': actor_id,
                'batch_id': str(batch_id),
            },
        )

    return {
        'success': True,
        'batch_id': str(batch_id),
        'generated': len(result.created),
        'skipped': len(result.skipped),
        'version_ids': [str(version.pk) for version in result.created],
    }

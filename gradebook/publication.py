"""
Report card publication: DRAFT -> RELEASED.

Released versions are never changed again. Regenerating after release
appends a new draft version and leaves the released one as it was.
"""
import logging
from dataclasses import dataclass, field

from django.core.exceptions import PermissionDenied
from django.db import DatabaseError, transaction
from django.utils import timezone

from accounts.permissions import require_report_manager
from core.audit import record_audit

from .exceptions import GradebookError, InvalidTransition
from .models import ReportCardVersion

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    published: list = field(default_factory=list)
    failed: list = field(default_factory=list)   # [(version_id, message)]


def can_regenerate(version):
    """Drafts may be superseded. Released versions are left untouched either way."""
    return version.status == ReportCardVersion.Status.DRAFT


def _release(version_id, actor):
    with transaction.atomic():
        version = ReportCardVersion.objects.select_for_update().get(pk=version_id)
        if version.status != ReportCardVersion.Status.DRAFT:
            raise InvalidTransition(
                f"Report card version {version.pk} is already {version.status}",
                student_id=version.student_id, term_id=version.term_id, stage='publish',
            )
        version.status = ReportCardVersion.Status.RELEASED
        version.released_at = timezone.now()
        version.released_by_id = actor.user_id
        version.save(update_fields=['status', 'released_at', 'released_by'])

        record_audit(
            school_id=version.school_id,
            actor_id=actor.user_id,
            action='report_card:publish',
            resource_type='report_card_version',
            resource_id=version.pk,
            changes={
                'student_id': version.student_id,
                'term_id': version.term_id,
                'version_number': version.version_number,
                'status': {'from': ReportCardVersion.Status.DRAFT, 'to': ReportCardVersion.Status.RELEASED},
            },
        )
    logger.info(f"Released report card v{version.version_number} for student {version.student_id}")
    return version


def publish(version, actor):
    """Release one draft version. Raises InvalidTransition if it is not a draft."""
    require_report_manager(actor, version.school_id)
    released = _release(version.pk, actor)
    version.status = released.status
    version.released_at = released.released_at
    version.released_by_id = released.released_by_id
    return released


def publish_bulk(term, class_obj, actor):
    """
    Release every draft of the class's students for the term. Each version
    is released in its own transaction; a failure is recorded and the rest
    carry on.
    """
    require_report_manager(actor, class_obj.school_id)
    if term.academic_year.school_id != class_obj.school_id:
        raise PermissionDenied('Class and term must belong to the same school.')

    result = PublishResult()
    drafts = ReportCardVersion.objects.for_term(term).for_class(class_obj).drafts().order_by(
        'student__admission_number', 'version_number'
    ).values_list('pk', flat=True)
    for version_id in list(drafts):
        try:
            result.published.append(_release(version_id, actor))
        except (GradebookError, ReportCardVersion.DoesNotExist, DatabaseError) as exc:
            logger.warning(f"Could not release report card {version_id}: {exc}")
            result.failed.append((version_id, str(exc)))

    logger.info(
        f"Bulk publish for class {class_obj.pk} term {term.pk}: "
        f"{len(result.published)} released, {len(result.failed)} failed"
    )
    return result

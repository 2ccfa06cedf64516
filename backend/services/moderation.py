"""Reports against reviews and court photos, and the admin actions that resolve them."""

from flask import current_app

from backend.app import db
from backend.errors import ConflictError, NotFoundError, ValidationError
from backend.log_utils import get_logger
from backend.models import Court, CourtPhoto, PhotoModeration, Report, Review
from backend.services.court_cache import invalidate_court
from backend.services.reviews import unreferenced_photo_urls
from backend.services.storage import delete_best_effort
from backend.services.workflow import clamp_limit, commit_or_conflict, update_if_pending
from backend.time_utils import utcnow_naive

logger = get_logger(__name__)

REPORT_TARGET_TYPES = ('review', 'photo')
REPORT_STATUSES = ('pending', 'dismissed', 'resolved')
REPORT_ACTIONS = ('dismiss', 'resolve', 'delete_review', 'delete_photo')
MAX_REPORT_REASON_LENGTH = 500
MAX_RESOLUTION_NOTE_LENGTH = 500

DUPLICATE_REPORT_MESSAGE = 'You have already reported this content'
DEFAULT_PHOTO_DELETION_REASON = 'Reported content'
DEFAULT_REVIEW_PHOTO_DELETION_REASON = 'Photo deleted by admin due to report'


def _storage():
    return current_app.extensions['storage']


def _clean_note(raw):
    note = str(raw or '').strip()[:MAX_RESOLUTION_NOTE_LENGTH]
    return note or None


def _load_target(target_type, target_id, court_id=None):
    if target_type == 'review':
        target = db.session.get(Review, target_id)
        if not target or target.is_deleted:
            return None
    else:
        target = db.session.get(CourtPhoto, target_id)
        if not target or target.is_deleted:
            return None
    if court_id is not None and target.court_id != court_id:
        return None
    return target


def create_report(target_type, target_id, identity, reason, court_id=None):
    if target_type not in REPORT_TARGET_TYPES:
        raise ValidationError('Invalid report target')

    reason = str(reason or '').strip()
    if not reason:
        raise ValidationError('Reason is required')
    if len(reason) > MAX_REPORT_REASON_LENGTH:
        raise ValidationError(f'Reason must be {MAX_REPORT_REASON_LENGTH} characters or less')

    target = _load_target(target_type, target_id, court_id)
    if target is None:
        raise NotFoundError('Review not found' if target_type == 'review' else 'Photo not found')

    existing = Report.query.filter_by(
        target_type=target_type, target_id=target.id,
        reported_by=identity.id, status='pending',
    ).first()
    if existing:
        raise ConflictError(DUPLICATE_REPORT_MESSAGE)

    report = Report(
        target_type=target_type,
        target_id=target.id,
        court_id=target.court_id,
        reported_by=identity.id,
        reported_by_user_name=identity.display_name,
        reason=reason,
        status='pending',
    )
    db.session.add(report)
    commit_or_conflict(DUPLICATE_REPORT_MESSAGE)
    logger.info(
        'content_reported', report_id=report.id, target_type=target_type,
        target_id=target.id, reported_by=identity.id,
    )
    return report


def _target_summary(report):
    if report.target_type == 'review':
        review = db.session.get(Review, report.target_id)
        if not review:
            return None
        return {
            'id': review.id, 'rating': review.rating, 'text': review.text,
            'photos': review.photo_urls, 'user_id': review.user_id,
            'user_name': review.user_name, 'is_deleted': review.is_deleted,
        }
    photo = db.session.get(CourtPhoto, report.target_id)
    if not photo:
        return None
    return {
        'id': photo.id, 'photo_url': photo.photo_url, 'caption': photo.caption,
        'uploaded_by': photo.uploaded_by,
        'uploaded_by_user_name': photo.uploaded_by_user_name,
        'is_deleted': photo.is_deleted,
    }


def serialize_report(report):
    payload = report.to_dict()
    payload['target'] = _target_summary(report)
    court = db.session.get(Court, report.court_id) if report.court_id else None
    payload['court'] = {
        'id': court.id, 'name': court.name, 'address': court.address,
    } if court else None
    return payload


def list_reports(target_type=None, status='pending', limit=50):
    status = str(status or 'pending').strip().lower()
    if status not in REPORT_STATUSES + ('all',):
        raise ValidationError('Invalid status filter')
    query = Report.query
    if target_type:
        if target_type not in REPORT_TARGET_TYPES:
            raise ValidationError('Invalid report target')
        query = query.filter_by(target_type=target_type)
    if status != 'all':
        query = query.filter_by(status=status)
    reports = query.order_by(Report.created_at.desc(), Report.id.desc()).limit(
        clamp_limit(limit)
    ).all()
    return [serialize_report(report) for report in reports]


def _resolve_other_pending(target_type, target_id, resolver, note, exclude_id=None):
    query = Report.query.filter(
        Report.target_type == target_type,
        Report.target_id == target_id,
        Report.status == 'pending',
    )
    if exclude_id is not None:
        query = query.filter(Report.id != exclude_id)
    now = utcnow_naive()
    return query.update({
        'status': 'resolved',
        'resolved_by': resolver.id,
        'resolution_note': note,
        'resolved_at': now,
        'updated_at': now,
    }, synchronize_session=False)


def _remove_review(review, admin, reason):
    """Hard-delete a review. Its photo moderation rows stay as the audit trail."""
    delete_best_effort(_storage(), unreferenced_photo_urls(review.photo_urls, review_id=review.id))
    now = utcnow_naive()
    PhotoModeration.query.filter(
        PhotoModeration.review_id == review.id,
        PhotoModeration.is_deleted.is_(False),
    ).update({
        'is_deleted': True,
        'deleted_by': admin.id,
        'deletion_reason': reason,
        'deleted_at': now,
    }, synchronize_session=False)
    court_id = review.court_id
    db.session.delete(review)
    return court_id


def _remove_court_photo(photo, admin, reason):
    delete_best_effort(_storage(), unreferenced_photo_urls([photo.photo_url], photo_id=photo.id))
    photo.is_deleted = True
    photo.deleted_by = admin.id
    photo.deletion_reason = reason or DEFAULT_PHOTO_DELETION_REASON
    photo.deleted_at = utcnow_naive()


def resolve_report(report_id, action, resolver, note=None, reason=None):
    """Dismiss or resolve a pending report, optionally removing the content."""
    report = db.session.get(Report, report_id)
    if not report:
        raise NotFoundError('Report not found')

    action = str(action or '').strip().lower()
    if action not in REPORT_ACTIONS:
        raise ValidationError(f'Action must be one of: {", ".join(REPORT_ACTIONS)}')
    if action == 'delete_review' and report.target_type != 'review':
        raise ValidationError('delete_review only applies to review reports')
    if action == 'delete_photo' and report.target_type != 'photo':
        raise ValidationError('delete_photo only applies to photo reports')
    if report.status != 'pending':
        raise ValidationError('Report has already been handled')

    note = _clean_note(note)
    now = utcnow_naive()
    won = update_if_pending(
        Report, report.id,
        status='dismissed' if action == 'dismiss' else 'resolved',
        resolved_by=resolver.id,
        resolution_note=note,
        resolved_at=now,
        updated_at=now,
    )
    if not won:
        db.session.rollback()
        raise ValidationError('Report has already been handled')

    touched_court = None
    if action == 'delete_review':
        review = db.session.get(Review, report.target_id)
        if review:
            touched_court = _remove_review(
                review, resolver, _clean_note(reason) or 'Review deleted by admin due to report',
            )
        _resolve_other_pending('review', report.target_id, resolver, note, exclude_id=report.id)
    elif action == 'delete_photo':
        photo = db.session.get(CourtPhoto, report.target_id)
        if photo and not photo.is_deleted:
            _remove_court_photo(photo, resolver, _clean_note(reason))
        _resolve_other_pending('photo', report.target_id, resolver, note, exclude_id=report.id)

    db.session.commit()
    db.session.refresh(report)
    if touched_court is not None:
        invalidate_court(touched_court)
    logger.info(
        'report_resolved', report_id=report.id, action=action,
        status=report.status, resolved_by=resolver.id,
    )
    return report


def delete_court_photo_as_admin(photo_id, admin, reason=None):
    """Remove a court photo and close every pending report against it."""
    photo = db.session.get(CourtPhoto, photo_id)
    if not photo:
        raise NotFoundError('Photo not found')
    if photo.is_deleted:
        raise ValidationError('Photo already deleted')

    _remove_court_photo(photo, admin, _clean_note(reason))
    resolved = _resolve_other_pending('photo', photo.id, admin, 'Photo deleted by admin')
    db.session.commit()
    logger.info('court_photo_removed', photo_id=photo.id, deleted_by=admin.id, reports_resolved=resolved)
    return photo, resolved


def delete_review_photo(moderation_id, admin, reason=None):
    """Remove one photo from a review via its moderation row."""
    row = db.session.get(PhotoModeration, moderation_id)
    if not row:
        raise NotFoundError('Photo not found')
    if row.is_deleted:
        raise ValidationError('Photo already deleted')

    delete_best_effort(_storage(), unreferenced_photo_urls([row.photo_url], moderation_id=row.id))
    row.is_deleted = True
    row.deleted_by = admin.id
    row.deletion_reason = _clean_note(reason) or DEFAULT_REVIEW_PHOTO_DELETION_REASON
    row.deleted_at = utcnow_naive()
    row.updated_at = row.deleted_at
    db.session.commit()
    invalidate_court(row.court_id)
    logger.info('review_photo_removed', moderation_id=row.id, review_id=row.review_id, deleted_by=admin.id)
    return row


def list_reported_review_photos():
    """Visible review photos whose review has at least one pending report."""
    pending = Report.query.filter_by(target_type='review', status='pending').all()
    reports_by_review = {}
    for report in pending:
        reports_by_review.setdefault(report.target_id, []).append(report)
    if not reports_by_review:
        return []

    rows = PhotoModeration.query.filter(
        PhotoModeration.review_id.in_(list(reports_by_review)),
        PhotoModeration.is_deleted.is_(False),
    ).order_by(PhotoModeration.created_at.desc(), PhotoModeration.id.desc()).all()

    results = []
    for row in rows:
        review = db.session.get(Review, row.review_id)
        payload = row.to_dict()
        payload['review'] = {
            'id': review.id, 'text': review.text, 'rating': review.rating,
            'user_name': review.user_name,
        } if review else None
        payload['reports'] = [report.to_dict() for report in reports_by_review[row.review_id]]
        results.append(payload)
    return results


def clear_reports():
    count = Report.query.delete(synchronize_session=False)
    db.session.commit()
    logger.warning('reports_cleared', count=count)
    return count

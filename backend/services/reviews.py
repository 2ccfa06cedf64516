"""Court reviews, their embedded photos, and photos posted directly to a court."""

from flask import current_app
from sqlalchemy import func

from backend.app import db
from backend.errors import AuthorizationError, NotFoundError, ValidationError
from backend.log_utils import get_logger
from backend.models import Court, CourtPhoto, PhotoModeration, Review
from backend.services.court_cache import invalidate_court
from backend.services.storage import StorageError, delete_best_effort
from backend.time_utils import utcnow_naive

logger = get_logger(__name__)

MAX_REVIEW_TEXT_LENGTH = 2000
MAX_PHOTOS_PER_REVIEW = 10
MAX_PHOTO_URL_LENGTH = 500
MAX_CAPTION_LENGTH = 500


def _storage():
    return current_app.extensions['storage']


def _get_court(court_id):
    court = db.session.get(Court, court_id)
    if not court:
        raise NotFoundError('Court not found')
    return court


def _parse_rating(raw):
    if isinstance(raw, bool):
        raise ValidationError('Rating must be an integer between 1 and 5')
    try:
        rating = int(raw)
    except (TypeError, ValueError):
        raise ValidationError('Rating must be an integer between 1 and 5') from None
    if str(raw).strip() != str(rating) and not isinstance(raw, int):
        raise ValidationError('Rating must be an integer between 1 and 5')
    if rating < 1 or rating > 5:
        raise ValidationError('Rating must be an integer between 1 and 5')
    return rating


def _parse_text(raw):
    text = str(raw or '').strip()
    if len(text) > MAX_REVIEW_TEXT_LENGTH:
        raise ValidationError(f'Review text must be {MAX_REVIEW_TEXT_LENGTH} characters or less')
    return text


def _parse_photo_list(raw):
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError('photos must be a list of URLs')
    urls = []
    for item in raw:
        if not isinstance(item, str) or not item.strip():
            raise ValidationError('photos must be a list of URLs')
        url = item.strip()
        if len(url) > MAX_PHOTO_URL_LENGTH:
            raise ValidationError('Photo URL is too long')
        if url not in urls:
            urls.append(url)
    if len(urls) > MAX_PHOTOS_PER_REVIEW:
        raise ValidationError(f'A review can include at most {MAX_PHOTOS_PER_REVIEW} photos')
    return urls


def _urls_claimed_by_others(urls, user_id):
    """URLs from ``urls`` that a live photo row attributes to another user."""
    if not urls:
        return set()
    claimed = {
        url for (url,) in db.session.query(CourtPhoto.photo_url).filter(
            CourtPhoto.photo_url.in_(urls),
            CourtPhoto.is_deleted.is_(False),
            CourtPhoto.uploaded_by != user_id,
        )
    }
    claimed.update(
        url for (url,) in db.session.query(PhotoModeration.photo_url).filter(
            PhotoModeration.photo_url.in_(urls),
            PhotoModeration.is_deleted.is_(False),
            PhotoModeration.uploaded_by != user_id,
        )
    )
    return claimed


def _check_photos_unclaimed(urls, user_id):
    if _urls_claimed_by_others(urls, user_id):
        raise AuthorizationError('Photo belongs to another user')


def unreferenced_photo_urls(urls, review_id=None, photo_id=None, moderation_id=None):
    """URLs no live photo row references, ignoring the rows being removed."""
    if not urls:
        return []
    photos = db.session.query(CourtPhoto.photo_url).filter(
        CourtPhoto.photo_url.in_(urls),
        CourtPhoto.is_deleted.is_(False),
    )
    if photo_id is not None:
        photos = photos.filter(CourtPhoto.id != photo_id)
    tracked = db.session.query(PhotoModeration.photo_url).filter(
        PhotoModeration.photo_url.in_(urls),
        PhotoModeration.is_deleted.is_(False),
    )
    if review_id is not None:
        tracked = tracked.filter(PhotoModeration.review_id != review_id)
    if moderation_id is not None:
        tracked = tracked.filter(PhotoModeration.id != moderation_id)
    referenced = {url for (url,) in photos} | {url for (url,) in tracked}
    return [url for url in urls if url not in referenced]


def court_rating_stats(court_ids):
    """Map court id -> (average_rating, review_count) over visible reviews."""
    if not court_ids:
        return {}
    rows = db.session.query(
        Review.court_id, func.avg(Review.rating), func.count(Review.id)
    ).filter(
        Review.court_id.in_(list(court_ids)),
        Review.is_deleted.is_(False),
    ).group_by(Review.court_id).all()
    return {
        court_id: (round(float(avg), 2) if avg is not None else None, count)
        for court_id, avg, count in rows
    }


# ── Reviews ──────────────────────────────────────────────────────────────

def visible_photos(review, tracked_rows):
    """Photos of ``review`` that moderation has not removed."""
    tracked = {row.photo_url: row for row in tracked_rows}
    if not tracked:
        return review.photo_urls
    return [
        url for url in review.photo_urls
        if url not in tracked or not tracked[url].is_deleted
    ]


def list_reviews(court_id):
    court = _get_court(court_id)
    reviews = Review.query.filter_by(court_id=court.id, is_deleted=False).order_by(
        Review.created_at.desc(), Review.id.desc()
    ).all()

    rows_by_review = {}
    if reviews:
        rows = PhotoModeration.query.filter(
            PhotoModeration.review_id.in_([review.id for review in reviews])
        ).all()
        for row in rows:
            rows_by_review.setdefault(row.review_id, []).append(row)

    return [
        review.to_dict(photos=visible_photos(review, rows_by_review.get(review.id, [])))
        for review in reviews
    ]


def _track_photos(review, urls):
    for url in urls:
        db.session.add(PhotoModeration(
            photo_url=url,
            review_id=review.id,
            court_id=review.court_id,
            uploaded_by=review.user_id,
        ))


def create_review(court_id, identity, data):
    court = _get_court(court_id)
    if not isinstance(data, dict):
        raise ValidationError('Invalid JSON payload')
    rating = _parse_rating(data.get('rating'))
    text = _parse_text(data.get('text'))
    photos = _parse_photo_list(data.get('photos'))
    _check_photos_unclaimed(photos, identity.id)

    review = Review(
        court_id=court.id,
        user_id=identity.id,
        user_name=identity.display_name,
        rating=rating,
        text=text,
    )
    review.photo_urls = photos
    db.session.add(review)
    db.session.flush()
    _track_photos(review, photos)
    db.session.commit()
    invalidate_court(court.id)
    logger.info(
        'review_created', review_id=review.id, court_id=court.id,
        user_id=identity.id, photos=len(photos),
    )
    return review


def _get_own_review(court_id, review_id, identity):
    review = db.session.get(Review, review_id)
    if not review or review.court_id != court_id or review.is_deleted:
        raise NotFoundError('Review not found')
    if review.user_id != identity.id:
        raise AuthorizationError('You can only modify your own reviews')
    return review


def update_review(court_id, review_id, identity, data):
    review = _get_own_review(court_id, review_id, identity)
    if not isinstance(data, dict):
        raise ValidationError('Invalid JSON payload')

    if 'rating' in data:
        review.rating = _parse_rating(data.get('rating'))
    if 'text' in data:
        review.text = _parse_text(data.get('text'))
    if 'photos' in data:
        old_photos = review.photo_urls
        new_photos = _parse_photo_list(data.get('photos'))
        removed = [url for url in old_photos if url not in new_photos]
        added = [url for url in new_photos if url not in old_photos]
        _check_photos_unclaimed(added, identity.id)

        delete_best_effort(_storage(), unreferenced_photo_urls(removed, review_id=review.id))
        if removed:
            PhotoModeration.query.filter(
                PhotoModeration.review_id == review.id,
                PhotoModeration.photo_url.in_(removed),
            ).delete(synchronize_session=False)
        _track_photos(review, added)
        review.photo_urls = new_photos

    review.updated_at = utcnow_naive()
    db.session.commit()
    invalidate_court(review.court_id)
    logger.info('review_updated', review_id=review.id, user_id=identity.id)
    return review


def delete_own_review(court_id, review_id, identity):
    review = _get_own_review(court_id, review_id, identity)
    delete_best_effort(_storage(), unreferenced_photo_urls(review.photo_urls, review_id=review.id))

    now = utcnow_naive()
    review.is_deleted = True
    review.deleted_by = identity.id
    review.deletion_reason = 'Deleted by author'
    review.deleted_at = now
    PhotoModeration.query.filter(
        PhotoModeration.review_id == review.id,
        PhotoModeration.is_deleted.is_(False),
    ).update({
        'is_deleted': True,
        'deleted_by': identity.id,
        'deletion_reason': 'Review deleted by author',
        'deleted_at': now,
    }, synchronize_session=False)
    db.session.commit()
    invalidate_court(review.court_id)
    logger.info('review_deleted', review_id=review.id, user_id=identity.id)


# ── Court photos ─────────────────────────────────────────────────────────

def list_court_photos(court_id):
    court = _get_court(court_id)
    return CourtPhoto.query.filter_by(court_id=court.id, is_deleted=False).order_by(
        CourtPhoto.created_at.desc(), CourtPhoto.id.desc()
    ).all()


def _clean_caption(raw):
    caption = str(raw or '').strip()
    if len(caption) > MAX_CAPTION_LENGTH:
        raise ValidationError(f'Caption must be {MAX_CAPTION_LENGTH} characters or less')
    return caption or None


def add_court_photo(court_id, identity, data):
    court = _get_court(court_id)
    if not isinstance(data, dict):
        raise ValidationError('Invalid JSON payload')
    photo_url = str(data.get('photo_url') or data.get('photoUrl') or '').strip()
    if not photo_url:
        raise ValidationError('photo_url is required')
    if len(photo_url) > MAX_PHOTO_URL_LENGTH:
        raise ValidationError('Photo URL is too long')
    _check_photos_unclaimed([photo_url], identity.id)

    photo = CourtPhoto(
        court_id=court.id,
        photo_url=photo_url,
        uploaded_by=identity.id,
        uploaded_by_user_name=identity.display_name,
        caption=_clean_caption(data.get('caption')),
    )
    db.session.add(photo)
    db.session.commit()
    logger.info('court_photo_added', photo_id=photo.id, court_id=court.id, user_id=identity.id)
    return photo


def get_court_photo(court_id, photo_id):
    photo = db.session.get(CourtPhoto, photo_id)
    if not photo or photo.court_id != court_id or photo.is_deleted:
        raise NotFoundError('Photo not found')
    return photo


def _check_photo_owner(photo, identity, is_admin):
    if photo.uploaded_by != identity.id and not is_admin:
        raise AuthorizationError('You can only modify photos you uploaded')


def update_court_photo_caption(court_id, photo_id, identity, data, is_admin=False):
    photo = get_court_photo(court_id, photo_id)
    _check_photo_owner(photo, identity, is_admin)
    photo.caption = _clean_caption((data or {}).get('caption'))
    photo.updated_at = utcnow_naive()
    db.session.commit()
    return photo


def delete_court_photo(court_id, photo_id, identity, is_admin=False):
    photo = get_court_photo(court_id, photo_id)
    _check_photo_owner(photo, identity, is_admin)

    delete_best_effort(_storage(), unreferenced_photo_urls([photo.photo_url], photo_id=photo.id))
    photo.is_deleted = True
    photo.deleted_by = identity.id
    photo.deletion_reason = (
        'Deleted by uploader' if photo.uploaded_by == identity.id else 'Deleted by admin'
    )
    photo.deleted_at = utcnow_naive()
    db.session.commit()
    logger.info('court_photo_deleted', photo_id=photo.id, deleted_by=identity.id)


# ── Uploads ──────────────────────────────────────────────────────────────

def store_uploaded_images(files):
    """Persist uploaded image files and return their public URLs."""
    cfg = current_app.config
    max_files = cfg.get('UPLOAD_MAX_FILES', 5)
    max_bytes = cfg.get('UPLOAD_MAX_BYTES', 5 * 1024 * 1024)

    files = [f for f in files if f and f.filename]
    if not files:
        raise ValidationError('No files uploaded')
    if len(files) > max_files:
        raise ValidationError(f'You can upload at most {max_files} files at once')

    prepared = []
    for upload in files:
        content_type = str(upload.mimetype or '').lower()
        if not content_type.startswith('image/'):
            raise ValidationError(f'{upload.filename} is not an image')
        data = upload.read()
        if len(data) > max_bytes:
            raise ValidationError(
                f'{upload.filename} is larger than {max_bytes // (1024 * 1024)}MB'
            )
        prepared.append((data, content_type))

    storage = _storage()
    urls = []
    for data, content_type in prepared:
        try:
            urls.append(storage.store(data, cfg.get('UPLOAD_FOLDER', 'tennis-courts'), content_type))
        except StorageError as exc:
            logger.error('storage_upload_failed', error=str(exc), stored=len(urls))
            delete_best_effort(storage, urls)
            raise
    return urls

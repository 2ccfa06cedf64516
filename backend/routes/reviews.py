from flask import Blueprint, request, jsonify
from backend.auth_utils import ban_check, is_admin, login_required
from backend.services.moderation import create_report
from backend.services.reviews import (
    add_court_photo, create_review, delete_court_photo, delete_own_review,
    list_court_photos, list_reviews, store_uploaded_images,
    update_court_photo_caption, update_review,
)

reviews_bp = Blueprint('reviews', __name__)
uploads_bp = Blueprint('uploads', __name__)


# ── Reviews ──────────────────────────────────────────────────────────────

@reviews_bp.route('/<int:court_id>/reviews', methods=['GET'])
def get_reviews(court_id):
    return jsonify({'reviews': list_reviews(court_id)})


@reviews_bp.route('/<int:court_id>/reviews', methods=['POST'])
@ban_check('reviews')
def post_review(court_id):
    data = request.get_json(silent=True) or {}
    review = create_review(court_id, request.current_identity, data)
    return jsonify({'review': review.to_dict()}), 201


@reviews_bp.route('/<int:court_id>/reviews/<int:review_id>', methods=['PUT'])
@ban_check('reviews')
def put_review(court_id, review_id):
    data = request.get_json(silent=True) or {}
    review = update_review(court_id, review_id, request.current_identity, data)
    return jsonify({'review': review.to_dict()})


@reviews_bp.route('/<int:court_id>/reviews/<int:review_id>', methods=['DELETE'])
@login_required
def remove_review(court_id, review_id):
    delete_own_review(court_id, review_id, request.current_identity)
    return jsonify({'message': 'Review deleted'})


@reviews_bp.route('/<int:court_id>/reviews/<int:review_id>/report', methods=['POST'])
@login_required
def report_review(court_id, review_id):
    data = request.get_json(silent=True) or {}
    report = create_report(
        'review', review_id, request.current_identity, data.get('reason'), court_id=court_id,
    )
    return jsonify({'message': 'Report submitted', 'report': report.to_dict()}), 201


# ── Court photos ─────────────────────────────────────────────────────────

@reviews_bp.route('/<int:court_id>/photos', methods=['GET'])
def get_court_photos(court_id):
    photos = list_court_photos(court_id)
    return jsonify({'photos': [photo.to_dict() for photo in photos]})


@reviews_bp.route('/<int:court_id>/photos', methods=['POST'])
@ban_check('photos')
def post_court_photo(court_id):
    data = request.get_json(silent=True) or {}
    photo = add_court_photo(court_id, request.current_identity, data)
    return jsonify({'photo': photo.to_dict()}), 201


@reviews_bp.route('/<int:court_id>/photos/<int:photo_id>', methods=['PUT'])
@login_required
def put_court_photo(court_id, photo_id):
    identity = request.current_identity
    photo = update_court_photo_caption(
        court_id, photo_id, identity,
        request.get_json(silent=True) or {},
        is_admin=is_admin(identity),
    )
    return jsonify({'photo': photo.to_dict()})


@reviews_bp.route('/<int:court_id>/photos/<int:photo_id>', methods=['DELETE'])
@login_required
def remove_court_photo(court_id, photo_id):
    identity = request.current_identity
    delete_court_photo(court_id, photo_id, identity, is_admin=is_admin(identity))
    return jsonify({'message': 'Photo deleted'})


@reviews_bp.route('/<int:court_id>/photos/<int:photo_id>/report', methods=['POST'])
@login_required
def report_court_photo(court_id, photo_id):
    data = request.get_json(silent=True) or {}
    report = create_report(
        'photo', photo_id, request.current_identity, data.get('reason'), court_id=court_id,
    )
    return jsonify({'message': 'Report submitted', 'report': report.to_dict()}), 201


# ── Uploads ──────────────────────────────────────────────────────────────

@uploads_bp.route('', methods=['POST'])
@ban_check('photos')
def upload_images():
    urls = store_uploaded_images(request.files.getlist('files'))
    return jsonify({'urls': urls}), 201

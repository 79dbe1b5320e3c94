from __future__ import annotations

import logging
import math
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List

from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from .services.ai_service import MEDICAL_DISCLAIMER
from .services.storage_service import DEFAULT_GOALS
from .services.translation_service import LANGUAGE_NAMES
from .utils.auth import AuthError, require_auth
from .utils.errors import ApiError, NotFoundError, ValidationError
from .utils.validation import (
    MAX_CHAT_MESSAGE_LENGTH,
    MAX_CONDITION_LENGTH,
    MAX_FOOD_NAME_LENGTH,
    MAX_TRANSLATE_BATCH,
    MAX_TRANSLATE_LENGTH,
    check_image_size,
    json_body,
    optional_number,
    optional_text,
    require_email,
    require_image,
    require_text,
    string_list,
)

api_bp = Blueprint('api', __name__, url_prefix='/api')

logger = logging.getLogger(__name__)

# Request field -> user_goals column.
GOAL_FIELDS = {
    'dailyCalorieGoal': 'daily_calorie_goal',
    'dailyProteinGoal': 'daily_protein_goal',
    'dailyCarbsGoal': 'daily_carbs_goal',
    'dailyFatGoal': 'daily_fat_goal',
}
# Goal column -> scan_history column it is measured against.
_GOAL_TARGETS = {
    'daily_calorie_goal': 'calories',
    'daily_protein_goal': 'protein',
    'daily_carbs_goal': 'carbs',
    'daily_fat_goal': 'fat',
}
STORY_MACROS = ('calories', 'protein', 'carbs', 'fat')
WEEKLY_DAYS = 7


# --- Error handling --------------------------------------------------------


@api_bp.errorhandler(ApiError)
def handle_api_error(error: ApiError):
    if error.status_code >= 500:
        logger.error('api.error', extra={'path': request.path, 'error': error.message})
    return jsonify({'error': error.message}), error.status_code


@api_bp.errorhandler(AuthError)
def handle_auth_error(error: AuthError):
    return jsonify({'error': error.message}), error.status_code


@api_bp.errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return jsonify({'error': error.description}), error.code
    logger.exception('api.unhandled_error', extra={'path': request.path})
    return jsonify({'error': str(error) or 'Internal server error'}), 500


def _payload() -> Dict[str, Any]:
    return json_body(request.get_json(silent=True))


# --- Liveness --------------------------------------------------------------


@api_bp.route('/health')
def health():
    return jsonify({'status': 'ok'})


# --- Food scanning ---------------------------------------------------------


@api_bp.route('/analyze-food', methods=['POST'])
@require_auth
def analyze_food():
    image = require_image(_payload())
    result = current_app.food_analysis_service.analyze(image, g.user_id)
    return jsonify(result)


def _limit_arg(default: int) -> int:
    try:
        limit = int(request.args.get('limit', default))
    except ValueError as exc:
        raise ValidationError("Invalid limit") from exc
    return max(1, min(limit, 100))


@api_bp.route('/scans')
@require_auth
def list_scans():
    return jsonify({'scans': current_app.storage_service.list_scans(g.user_id, limit=_limit_arg(50))})


@api_bp.route('/scans/<scan_id>', methods=['DELETE'])
@require_auth
def delete_scan(scan_id: str):
    if not current_app.storage_service.delete_scan(g.user_id, scan_id):
        raise NotFoundError("Scan not found")
    return jsonify({'success': True})


# --- Goals -----------------------------------------------------------------


def _goals_response(user_id: str) -> Dict[str, Any]:
    storage = current_app.storage_service
    stored = storage.fetch_goals(user_id) or {}
    goals = {key: stored.get(key) or default for key, default in DEFAULT_GOALS.items()}

    today_scans = storage.fetch_today_scans(user_id)
    today = {
        column: round(sum(float(scan.get(column) or 0) for scan in today_scans), 1)
        for column in _GOAL_TARGETS.values()
    }
    today['calories'] = int(round(today['calories']))
    today['scans'] = len(today_scans)

    progress = {}
    for goal_key, column in _GOAL_TARGETS.items():
        target = float(goals[goal_key])
        progress[column] = int(round(today[column] / target * 100)) if target > 0 else 0

    return {
        'goals': {field: goals[column] for field, column in GOAL_FIELDS.items()},
        'today': today,
        'progress': progress,
        'weekly': _weekly_calories(user_id),
    }


def _weekly_calories(user_id: str) -> List[Dict[str, Any]]:
    """Calories per UTC day for the last seven days, oldest first."""

    today = datetime.now(timezone.utc).date()
    days = [today - timedelta(days=offset) for offset in range(WEEKLY_DAYS - 1, -1, -1)]
    start = datetime.combine(days[0], time.min, tzinfo=timezone.utc)

    totals = {day.isoformat(): 0.0 for day in days}
    for scan in current_app.storage_service.fetch_scans_since(user_id, start):
        day = str(scan.get('scanned_at') or '')[:10]
        if day in totals:
            totals[day] += float(scan.get('calories') or 0)
    return [{'date': day, 'calories': int(round(total))} for day, total in totals.items()]


@api_bp.route('/goals', methods=['GET'])
@require_auth
def get_goals():
    return jsonify(_goals_response(g.user_id))


@api_bp.route('/goals', methods=['PUT'])
@require_auth
def update_goals():
    payload = _payload()
    storage = current_app.storage_service
    current = {**DEFAULT_GOALS, **{
        key: value for key, value in (storage.fetch_goals(g.user_id) or {}).items() if key in DEFAULT_GOALS and value
    }}

    for field, column in GOAL_FIELDS.items():
        if field not in payload:
            continue
        value = payload[field]
        # Goals are whole units; anything that would round down to zero is rejected.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"Invalid {field} value")
        if not math.isfinite(value) or value < 1:
            raise ValidationError(f"Invalid {field} value")
        current[column] = int(value)

    storage.save_goals(g.user_id, current)
    logger.info('goals.updated', extra={'user_id': g.user_id})
    return jsonify(_goals_response(g.user_id))


# --- Profile ---------------------------------------------------------------


@api_bp.route('/profile', methods=['GET'])
@require_auth
def get_profile():
    profile = current_app.storage_service.fetch_profile(g.user_id) or {'id': g.user_id}
    profile.setdefault('preferred_language', 'en')
    return jsonify({'profile': profile})


@api_bp.route('/profile', methods=['PUT'])
@require_auth
def update_profile():
    payload = _payload()
    storage = current_app.storage_service
    profile = dict(storage.fetch_profile(g.user_id) or {'id': g.user_id})

    if 'fullName' in payload:
        profile['full_name'] = optional_text(payload['fullName'], 'fullName', MAX_FOOD_NAME_LENGTH)
    if 'preferredLanguage' in payload:
        language = payload['preferredLanguage']
        if language not in LANGUAGE_NAMES:
            raise ValidationError("Unsupported language")
        profile['preferred_language'] = language

    saved = storage.save_profile(profile)
    return jsonify({'profile': saved})


# --- Medical ---------------------------------------------------------------


@api_bp.route('/analyze-medical-report', methods=['POST'])
@require_auth
def analyze_medical_report():
    image = require_image(_payload())
    analysis = current_app.ai_service.analyze_medical_report(image)

    extracted = analysis.get('extracted') or {}
    abnormal = analysis.get('abnormal') or []
    recommendations = analysis.get('recommendations') or {}
    report_type = analysis.get('reportType') or 'Lab Report'
    conditions = [item for item in analysis.get('conditions') or [] if isinstance(item, dict)]

    storage = current_app.storage_service
    storage.save_medical_report(
        g.user_id,
        {
            'report_type': report_type,
            'extracted_data': {'extracted': extracted, 'abnormal': abnormal, 'critical': analysis.get('critical') or []},
            'recommendations': recommendations,
        },
    )
    if conditions:
        storage.replace_health_conditions(g.user_id, conditions)

    logger.info('medical_report.analyzed', extra={'user_id': g.user_id, 'conditions': len(conditions)})
    return jsonify({
        'reportType': report_type,
        'extracted': extracted,
        'abnormal': abnormal,
        'critical': analysis.get('critical') or [],
        'conditions': conditions,
        'recommendations': recommendations,
        'disclaimer': MEDICAL_DISCLAIMER,
    })


@api_bp.route('/medical-reports', methods=['GET'])
@require_auth
def list_medical_reports():
    reports = current_app.storage_service.list_medical_reports(g.user_id, limit=_limit_arg(50))
    return jsonify({'reports': reports})


@api_bp.route('/medical-reports/<report_id>', methods=['DELETE'])
@require_auth
def delete_medical_report(report_id: str):
    if not current_app.storage_service.delete_medical_report(g.user_id, report_id):
        raise NotFoundError("Report not found")
    return jsonify({'success': True})


@api_bp.route('/health-conditions', methods=['GET'])
@require_auth
def list_health_conditions():
    return jsonify({'conditions': current_app.storage_service.fetch_health_conditions(g.user_id)})


@api_bp.route('/condition-advice', methods=['POST'])
@require_auth
def condition_advice():
    payload = _payload()
    condition = require_text(
        payload.get('condition'), 'condition', MAX_CONDITION_LENGTH, message="Valid condition is required"
    )
    return jsonify(current_app.ai_service.condition_advice(condition.strip()))


@api_bp.route('/parse-meal-schedule', methods=['POST'])
@require_auth
def parse_meal_schedule():
    image = require_image(_payload())
    meals = current_app.ai_service.parse_meal_schedule(image)
    current_app.storage_service.save_meal_schedule(g.user_id, meals)
    return jsonify({'success': True, 'meals': meals})


@api_bp.route('/meal-schedules', methods=['GET'])
@require_auth
def list_meal_schedules():
    return jsonify({'meals': current_app.storage_service.list_meal_schedules(g.user_id)})


# --- Chat ------------------------------------------------------------------


@api_bp.route('/health-chat', methods=['POST'])
@require_auth
def health_chat():
    payload = _payload()

    claimed = payload.get('userId')
    if claimed and claimed != g.user_id:
        logger.warning('health_chat.user_mismatch', extra={'user_id': g.user_id})
        raise ApiError("Forbidden", 403)

    message = optional_text(payload.get('message'), 'message', MAX_CHAT_MESSAGE_LENGTH)
    image = payload.get('image') or None
    if image is not None:
        if not isinstance(image, str):
            raise ValidationError("Invalid image data")
        check_image_size(image)
    if not (message and message.strip()) and not image:
        raise ValidationError("Message or image is required")

    reply = current_app.chat_service.reply(g.user_id, message, image)
    return jsonify({'reply': reply})


@api_bp.route('/chat-history', methods=['GET'])
@require_auth
def chat_history():
    messages = current_app.storage_service.fetch_chat_history(g.user_id, limit=_limit_arg(50))
    return jsonify({'messages': messages})


@api_bp.route('/chat-history', methods=['DELETE'])
@require_auth
def clear_chat_history():
    current_app.storage_service.clear_chat_history(g.user_id)
    logger.info('chat_history.cleared', extra={'user_id': g.user_id})
    return jsonify({'success': True})


# --- Translation -----------------------------------------------------------


@api_bp.route('/translate-text', methods=['POST'])
@require_auth
def translate_text():
    payload = _payload()
    target = payload.get('targetLanguage') or 'en'
    if target not in LANGUAGE_NAMES:
        raise ValidationError("Unsupported language")

    translator = current_app.translation_service
    if 'texts' in payload:
        texts = payload['texts']
        if not isinstance(texts, list) or not all(isinstance(item, str) for item in texts):
            raise ValidationError("Invalid input format")
        if len(texts) > MAX_TRANSLATE_BATCH:
            raise ValidationError(f"Too many texts. Maximum {MAX_TRANSLATE_BATCH} allowed.")
        for item in texts:
            optional_text(item, 'text', MAX_TRANSLATE_LENGTH)
        return jsonify({'translatedTexts': translator.translate_many(texts, target)})

    text = require_text(payload.get('text'), 'text', MAX_TRANSLATE_LENGTH, message="Text is required")
    return jsonify({'translatedText': translator.translate(text, target)})


# --- Recommendations -------------------------------------------------------


@api_bp.route('/get-food-recommendations', methods=['POST'])
@require_auth
def food_recommendations():
    payload = _payload()
    food_name = require_text(
        payload.get('foodName'), 'food name', MAX_FOOD_NAME_LENGTH, message="Valid food name is required"
    )
    language = payload.get('language') or current_app.storage_service.fetch_preferred_language(g.user_id)
    items = current_app.recommendation_service.for_food(food_name.strip(), language)
    return jsonify({'recommendations': items})


@api_bp.route('/get-medical-food-recommendations', methods=['POST'])
@require_auth
def medical_food_recommendations():
    payload = _payload()
    foods_to_eat = string_list(payload.get('foodsToEat'), 'foodsToEat')
    foods_to_avoid = string_list(payload.get('foodsToAvoid'), 'foodsToAvoid')
    if not foods_to_eat:
        raise ValidationError("Foods to eat are required")
    items = current_app.recommendation_service.for_medical_plan(foods_to_eat, foods_to_avoid)
    return jsonify({'recommendations': items})


# --- Payments --------------------------------------------------------------


@api_bp.route('/create-razorpay-order', methods=['POST'])
@require_auth
def create_razorpay_order():
    payload = _payload()
    plan_type = require_text(payload.get('planType'), 'planType', 32, message="Plan type is required")
    return jsonify(current_app.payment_service.create_order(g.user_id, plan_type))


@api_bp.route('/verify-razorpay-payment', methods=['POST'])
@require_auth
def verify_razorpay_payment():
    payload = _payload()
    fields = ('razorpay_order_id', 'razorpay_payment_id', 'razorpay_signature', 'planType')
    values: List[str] = []
    for field in fields:
        value = payload.get(field)
        if not value or not isinstance(value, str):
            raise ValidationError("Missing payment details")
        values.append(value)

    order_id, payment_id, signature, plan_type = values
    result = current_app.payment_service.verify_and_activate(g.user_id, order_id, payment_id, signature, plan_type)
    return jsonify(result)


@api_bp.route('/subscription')
@require_auth
def subscription():
    status = current_app.payment_service.subscription_status(g.user_id)
    status['plans'] = current_app.storage_service.list_plans()
    return jsonify(status)


# --- Password reset (unauthenticated) --------------------------------------


@api_bp.route('/send-password-reset', methods=['POST'])
def send_password_reset():
    payload = _payload()
    email = require_email(payload.get('email'))
    return jsonify(current_app.password_reset_service.request_reset(email, _reset_link_base()))


def _reset_link_base() -> str:
    origin = (request.headers.get('Origin') or '').rstrip('/')
    if origin and origin in current_app.config['PASSWORD_RESET_ORIGINS']:
        return origin
    if origin:
        logger.warning('password_reset.origin_rejected', extra={'origin': origin})
    return current_app.config['PASSWORD_RESET_URL']


@api_bp.route('/verify-reset-token', methods=['POST'])
def verify_reset_token():
    payload = _payload()
    return jsonify(current_app.password_reset_service.verify(payload.get('token')))


@api_bp.route('/reset-password-with-token', methods=['POST'])
def reset_password_with_token():
    payload = _payload()
    password = payload.get('newPassword', payload.get('password'))
    return jsonify(current_app.password_reset_service.reset(payload.get('token'), password))


# --- Food stories ----------------------------------------------------------


@api_bp.route('/stories', methods=['GET'])
@require_auth
def list_stories():
    return jsonify({'stories': current_app.storage_service.list_stories(g.user_id)})


@api_bp.route('/stories', methods=['POST'])
@require_auth
def create_story():
    payload = _payload()
    food_name = require_text(
        payload.get('foodName'), 'food name', MAX_FOOD_NAME_LENGTH, message="Valid food name is required"
    )
    image_url = payload.get('imageUrl')
    if image_url is not None:
        if not isinstance(image_url, str):
            raise ValidationError("Invalid image data")
        check_image_size(image_url)

    story = {
        'food_name': food_name.strip(),
        **{field: optional_number(payload.get(field), field) for field in STORY_MACROS},
        'image_url': image_url,
        'caption': optional_text(payload.get('caption'), 'caption', MAX_CHAT_MESSAGE_LENGTH),
        'template_style': payload.get('templateStyle') or 'classic',
    }
    saved = current_app.storage_service.save_story(g.user_id, story)
    return jsonify({'story': saved}), 201


@api_bp.route('/stories/<story_id>', methods=['DELETE'])
@require_auth
def delete_story(story_id: str):
    if not current_app.storage_service.delete_story(g.user_id, story_id):
        raise NotFoundError("Story not found")
    return jsonify({'success': True})

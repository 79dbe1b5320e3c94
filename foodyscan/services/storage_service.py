from __future__ import annotations

import json
import logging
import os
from datetime import datetime, time, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

import redis
from supabase import Client as SupabaseClient, create_client
from upstash_redis import Redis as UpstashRedis

logger = logging.getLogger(__name__)


DEFAULT_GOALS = {
    'daily_calorie_goal': 2000,
    'daily_protein_goal': 50,
    'daily_carbs_goal': 250,
    'daily_fat_goal': 70,
}

# Used when the subscription_plans table is unavailable (local development).
DEFAULT_PLANS = [
    {'plan_type': 'monthly', 'name': 'Premium Monthly', 'price': 199, 'duration_days': 30, 'is_active': True},
    {'plan_type': 'annual', 'name': 'Premium Annual', 'price': 1999, 'duration_days': 365, 'is_active': True},
]

# Page size for the Supabase admin user listing.
USER_PAGE_SIZE = 1000


class StorageService:
    """Persistence layer backed by Supabase.

    When Supabase is not configured (local development, tests) every table is
    mirrored as JSON documents on the filesystem, or in Redis when Upstash
    credentials are present.
    """

    def __init__(self) -> None:
        self._supabase: Optional[SupabaseClient] = self._init_supabase()
        self._redis: Optional[Any] = self._init_redis()

        data_dir = Path(os.getenv('STORAGE_DATA_DIR', '/tmp/foodyscan-data')).expanduser()
        data_dir.mkdir(parents=True, exist_ok=True)
        self._data_dir = data_dir.resolve()

    @property
    def supabase_enabled(self) -> bool:
        return self._supabase is not None

    # --- Auth ------------------------------------------------------------

    def get_user_for_token(self, token: str) -> Optional[str]:
        """Return the user id for a Supabase access token, if valid."""

        if not self._supabase:
            return None
        try:
            response = self._supabase.auth.get_user(token)
        except Exception:
            logger.info('auth.get_user_failed', exc_info=True)
            return None
        user = getattr(response, 'user', None)
        return getattr(user, 'id', None)

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        target = email.strip().lower()
        if self._supabase:
            page = 1
            while True:
                users = self._supabase.auth.admin.list_users(page=page, per_page=USER_PAGE_SIZE) or []
                for user in users:
                    user_email = (getattr(user, 'email', None) or '').lower()
                    if user_email == target:
                        return {'id': user.id, 'email': user.email}
                if len(users) < USER_PAGE_SIZE:
                    return None
                page += 1

        for profile in self._read_rows(self._table_path('profiles')):
            if (profile.get('email') or '').lower() == target:
                return {'id': profile['id'], 'email': profile['email']}
        return None

    def update_user_password(self, user_id: str, password: str) -> None:
        if self._supabase:
            self._supabase.auth.admin.update_user_by_id(user_id, {'password': password})
            return

        rows = self._read_rows(self._table_path('profiles'))
        for row in rows:
            if row.get('id') == user_id:
                # Local development only; real credentials live in Supabase auth.
                row['password_updated_at'] = self._now()
        self._write_json(self._table_path('profiles'), rows)

    # --- Profiles --------------------------------------------------------

    def save_profile(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        record = {**profile, 'updated_at': self._now()}
        if self._supabase:
            try:
                self._supabase.table('profiles').upsert(record).execute()
                return record
            except Exception:
                logger.warning('Supabase profile save failed; using fallback', exc_info=True)

        rows = [row for row in self._read_rows(self._table_path('profiles')) if row.get('id') != record['id']]
        rows.append(record)
        self._write_json(self._table_path('profiles'), rows)
        return record

    def fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        if self._supabase:
            try:
                response = self._supabase.table('profiles').select('*').eq('id', user_id).limit(1).execute()
                return response.data[0] if response.data else None
            except Exception:
                logger.warning('Supabase profile fetch failed; using fallback', exc_info=True)

        for row in self._read_rows(self._table_path('profiles')):
            if row.get('id') == user_id:
                return row
        return None

    def fetch_preferred_language(self, user_id: str) -> str:
        profile = self.fetch_profile(user_id) or {}
        return profile.get('preferred_language') or 'en'

    # --- Scan history ----------------------------------------------------

    def record_scan(self, user_id: str, scan: Dict[str, Any]) -> Dict[str, Any]:
        record = {
            'id': str(uuid4()),
            'user_id': user_id,
            'scanned_at': self._now(),
            **scan,
        }
        return self._insert_user_row('scan_history', user_id, record)

    def list_scans(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return self._select_user_rows('scan_history', user_id, order_by='scanned_at', limit=limit)

    def fetch_today_scans(self, user_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Return scans recorded since midnight UTC."""

        now = now or datetime.now(timezone.utc)
        return self.fetch_scans_since(user_id, datetime.combine(now.date(), time.min, tzinfo=timezone.utc))

    def fetch_scans_since(self, user_id: str, since: datetime) -> List[Dict[str, Any]]:
        start = since.isoformat()

        if self._supabase:
            try:
                response = (
                    self._supabase.table('scan_history')
                    .select('*')
                    .eq('user_id', user_id)
                    .gte('scanned_at', start)
                    .execute()
                )
                return list(response.data or [])
            except Exception:
                logger.warning('Supabase scans fetch failed; using fallback', exc_info=True)

        return [
            row for row in self._read_rows(self._table_path('scan_history', user_id))
            if (row.get('scanned_at') or '') >= start
        ]

    def delete_scan(self, user_id: str, scan_id: str) -> bool:
        return self._delete_user_row('scan_history', user_id, scan_id)

    # --- Goals -----------------------------------------------------------

    def fetch_goals(self, user_id: str) -> Optional[Dict[str, Any]]:
        if self._supabase:
            try:
                response = self._supabase.table('user_goals').select('*').eq('user_id', user_id).limit(1).execute()
                return response.data[0] if response.data else None
            except Exception:
                logger.warning('Supabase goals fetch failed; using fallback', exc_info=True)

        data = self._read_json(self._table_path('user_goals', user_id))
        return data if isinstance(data, dict) else None

    def save_goals(self, user_id: str, goals: Dict[str, Any]) -> Dict[str, Any]:
        record = {'user_id': user_id, **goals, 'updated_at': self._now()}
        if self._supabase:
            try:
                self._supabase.table('user_goals').upsert(record, on_conflict='user_id').execute()
                return record
            except Exception:
                logger.warning('Supabase goals save failed; using fallback', exc_info=True)

        self._write_json(self._table_path('user_goals', user_id), record)
        return record

    # --- Chat history ----------------------------------------------------

    def fetch_chat_history(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Return the latest ``limit`` messages, oldest first."""

        rows = self._select_user_rows('chat_history', user_id, order_by='created_at', limit=limit)
        return list(reversed(rows))

    def append_chat_messages(self, user_id: str, messages: Iterable[Dict[str, str]]) -> None:
        records = []
        for message in messages:
            records.append({
                'id': str(uuid4()),
                'user_id': user_id,
                'role': message['role'],
                'content': message['content'],
                'created_at': self._now(),
            })
        if not records:
            return

        if self._supabase:
            try:
                self._supabase.table('chat_history').insert(records).execute()
                return
            except Exception:
                logger.warning('Supabase chat history save failed; using fallback', exc_info=True)

        path = self._table_path('chat_history', user_id)
        rows = self._read_rows(path)
        rows.extend(records)
        self._write_json(path, rows)

    def clear_chat_history(self, user_id: str) -> None:
        if self._supabase:
            try:
                self._supabase.table('chat_history').delete().eq('user_id', user_id).execute()
                return
            except Exception:
                logger.warning('Supabase chat history delete failed; using fallback', exc_info=True)

        self._write_json(self._table_path('chat_history', user_id), [])

    # --- Medical reports & conditions -----------------------------------

    def save_medical_report(self, user_id: str, report: Dict[str, Any]) -> Dict[str, Any]:
        record = {
            'id': str(uuid4()),
            'user_id': user_id,
            'uploaded_at': self._now(),
            **report,
        }
        return self._insert_user_row('medical_reports', user_id, record)

    def list_medical_reports(self, user_id: str, limit: int = 3) -> List[Dict[str, Any]]:
        return self._select_user_rows('medical_reports', user_id, order_by='uploaded_at', limit=limit)

    def delete_medical_report(self, user_id: str, report_id: str) -> bool:
        return self._delete_user_row('medical_reports', user_id, report_id)

    def fetch_health_conditions(self, user_id: str) -> List[Dict[str, Any]]:
        """Return the user's active health conditions, newest first."""

        if self._supabase:
            try:
                response = (
                    self._supabase.table('user_health_conditions')
                    .select('*')
                    .eq('user_id', user_id)
                    .eq('is_active', True)
                    .order('detected_at', desc=True)
                    .execute()
                )
                return list(response.data or [])
            except Exception:
                logger.warning('Supabase health conditions fetch failed; using fallback', exc_info=True)

        rows = [
            row for row in self._read_rows(self._table_path('user_health_conditions', user_id))
            if row.get('is_active', True)
        ]
        rows.sort(key=lambda row: row.get('detected_at', ''), reverse=True)
        return rows

    def replace_health_conditions(self, user_id: str, conditions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Deactivate existing conditions and store the newly detected ones."""

        now = self._now()
        records = [
            {
                'id': str(uuid4()),
                'user_id': user_id,
                'condition_name': item['condition_name'],
                'severity': item.get('severity'),
                'notes': item.get('notes'),
                'is_active': True,
                'detected_at': now,
            }
            for item in conditions
            if item.get('condition_name')
        ]

        if self._supabase:
            try:
                self._supabase.table('user_health_conditions').update({'is_active': False}).eq('user_id', user_id).execute()
                if records:
                    self._supabase.table('user_health_conditions').insert(records).execute()
                return records
            except Exception:
                logger.warning('Supabase health conditions save failed; using fallback', exc_info=True)

        path = self._table_path('user_health_conditions', user_id)
        rows = self._read_rows(path)
        for row in rows:
            row['is_active'] = False
        rows.extend(records)
        self._write_json(path, rows)
        return records

    # --- Meal schedules --------------------------------------------------

    def save_meal_schedule(self, user_id: str, meals: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        records = [
            {
                'id': str(uuid4()),
                'user_id': user_id,
                'meal_name': meal.get('name'),
                'meal_time': meal.get('time'),
                'meal_instructions': meal.get('instructions'),
                'reminder_enabled': True,
                'created_at': self._now(),
            }
            for meal in meals
        ]

        if self._supabase:
            try:
                self._supabase.table('meal_schedules').delete().eq('user_id', user_id).execute()
                if records:
                    self._supabase.table('meal_schedules').insert(records).execute()
                return records
            except Exception:
                logger.warning('Supabase meal schedule save failed; using fallback', exc_info=True)

        self._write_json(self._table_path('meal_schedules', user_id), records)
        return records

    def list_meal_schedules(self, user_id: str) -> List[Dict[str, Any]]:
        """Return the saved meal schedule ordered by meal time."""

        if self._supabase:
            try:
                response = (
                    self._supabase.table('meal_schedules')
                    .select('*')
                    .eq('user_id', user_id)
                    .order('meal_time')
                    .execute()
                )
                return list(response.data or [])
            except Exception:
                logger.warning('Supabase meal schedule fetch failed; using fallback', exc_info=True)

        rows = self._read_rows(self._table_path('meal_schedules', user_id))
        rows.sort(key=lambda row: row.get('meal_time') or '')
        return rows

    # --- Food stories ----------------------------------------------------

    def save_story(self, user_id: str, story: Dict[str, Any]) -> Dict[str, Any]:
        record = {
            'id': str(uuid4()),
            'user_id': user_id,
            'created_at': self._now(),
            **story,
        }
        return self._insert_user_row('food_stories', user_id, record)

    def list_stories(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return self._select_user_rows('food_stories', user_id, order_by='created_at', limit=limit)

    def delete_story(self, user_id: str, story_id: str) -> bool:
        return self._delete_user_row('food_stories', user_id, story_id)

    # --- Subscriptions ---------------------------------------------------

    def fetch_plan(self, plan_type: str) -> Optional[Dict[str, Any]]:
        if self._supabase:
            response = self._supabase.table('subscription_plans').select('*').eq('plan_type', plan_type).limit(1).execute()
            return response.data[0] if response.data else None

        for plan in self._local_plans():
            if plan.get('plan_type') == plan_type:
                return plan
        return None

    def list_plans(self) -> List[Dict[str, Any]]:
        if self._supabase:
            response = self._supabase.table('subscription_plans').select('*').eq('is_active', True).order('price').execute()
            return list(response.data or [])
        return sorted(self._local_plans(), key=lambda plan: plan.get('price', 0))

    def fetch_subscription(self, user_id: str) -> Optional[Dict[str, Any]]:
        if self._supabase:
            response = self._supabase.table('user_subscriptions').select('*').eq('user_id', user_id).limit(1).execute()
            return response.data[0] if response.data else None

        data = self._read_json(self._table_path('user_subscriptions', user_id))
        return data if isinstance(data, dict) else None

    def upsert_subscription(self, user_id: str, subscription: Dict[str, Any]) -> Dict[str, Any]:
        """Create or replace the user's subscription row.

        Unlike the other writes this does not fall back silently: a payment
        that cannot be recorded must surface as an error.
        """

        record = {'user_id': user_id, **subscription, 'updated_at': self._now()}
        if self._supabase:
            self._supabase.table('user_subscriptions').upsert(record, on_conflict='user_id').execute()
            return record

        self._write_json(self._table_path('user_subscriptions', user_id), record)
        return record

    # --- Password reset tokens -------------------------------------------

    def save_reset_token(self, record: Dict[str, Any]) -> None:
        if self._supabase:
            self._supabase.table('password_reset_tokens').insert(record).execute()
            return

        path = self._table_path('password_reset_tokens')
        rows = self._read_rows(path)
        rows.append(record)
        self._write_json(path, rows)

    def fetch_reset_token(self, token: str) -> Optional[Dict[str, Any]]:
        if self._supabase:
            response = (
                self._supabase.table('password_reset_tokens')
                .select('email, expires_at, used')
                .eq('token', token)
                .limit(1)
                .execute()
            )
            return response.data[0] if response.data else None

        for row in self._read_rows(self._table_path('password_reset_tokens')):
            if row.get('token') == token:
                return row
        return None

    def mark_reset_token_used(self, token: str) -> None:
        """Consume a reset token. Failures propagate so the token is never left reusable."""

        if self._supabase:
            self._supabase.table('password_reset_tokens').update({'used': True}).eq('token', token).execute()
            return

        path = self._table_path('password_reset_tokens')
        rows = self._read_rows(path)
        for row in rows:
            if row.get('token') == token:
                row['used'] = True
        self._write_json(path, rows)

    # --- Private helpers -------------------------------------------------

    def _insert_user_row(self, table: str, user_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        if self._supabase:
            try:
                response = self._supabase.table(table).insert(record).execute()
                if response.data:
                    return response.data[0]
                return record
            except Exception:
                logger.warning('Supabase %s insert failed; using fallback', table, exc_info=True)

        path = self._table_path(table, user_id)
        rows = self._read_rows(path)
        rows.append(record)
        self._write_json(path, rows)
        return record

    def _select_user_rows(self, table: str, user_id: str, order_by: str, limit: int) -> List[Dict[str, Any]]:
        """Return the user's rows for ``table``, newest first."""

        if self._supabase:
            try:
                response = (
                    self._supabase.table(table)
                    .select('*')
                    .eq('user_id', user_id)
                    .order(order_by, desc=True)
                    .limit(limit)
                    .execute()
                )
                return list(response.data or [])
            except Exception:
                logger.warning('Supabase %s fetch failed; using fallback', table, exc_info=True)

        rows = self._read_rows(self._table_path(table, user_id))
        # Stable sort keeps insertion order for rows written in the same instant.
        indexed = list(enumerate(rows))
        indexed.sort(key=lambda pair: (pair[1].get(order_by, ''), pair[0]), reverse=True)
        return [row for _, row in indexed][:limit]

    def _delete_user_row(self, table: str, user_id: str, row_id: str) -> bool:
        """Delete one of the user's rows. Returns False when no such row exists."""

        if self._supabase:
            try:
                response = self._supabase.table(table).delete().eq('id', row_id).eq('user_id', user_id).execute()
                return bool(response.data)
            except Exception:
                logger.warning('Supabase %s delete failed; using fallback', table, exc_info=True)

        path = self._table_path(table, user_id)
        rows = self._read_rows(path)
        kept = [row for row in rows if row.get('id') != row_id]
        if len(kept) == len(rows):
            return False
        self._write_json(path, kept)
        return True

    def _local_plans(self) -> List[Dict[str, Any]]:
        data = self._read_json(self._table_path('subscription_plans'))
        if isinstance(data, list) and data:
            return [plan for plan in data if isinstance(plan, dict)]
        return [dict(plan) for plan in DEFAULT_PLANS]

    def _init_supabase(self) -> Optional[SupabaseClient]:
        url = self._get_env_value(
            'SUPABASE_URL',
            'SUPABASE_PROJECT_URL',
        )
        key = self._get_env_value(
            'SUPABASE_SERVICE_ROLE_KEY',
            'SUPABASE_ANON_KEY',
        )
        if not url or not key:
            logger.info("Supabase disabled (missing env)")
            return None
        try:
            return create_client(url, key)
        except Exception as exc:
            logger.warning("Supabase init failed: %s", exc)
            return None

    def _init_redis(self) -> Optional[Any]:
        """Initialise a Redis client when Upstash credentials are available."""

        redis_url = os.getenv('UPSTASH_REDIS_URL')
        if redis_url:
            try:
                return redis.from_url(redis_url, decode_responses=True)
            except Exception:  # pragma: no cover - network dependent
                logger.warning('Redis init failed', exc_info=True)

        rest_url = os.getenv('UPSTASH_REDIS_REST_URL')
        rest_token = os.getenv('UPSTASH_REDIS_REST_TOKEN')
        if rest_url and rest_token:
            try:
                return UpstashRedis(url=rest_url, token=rest_token)
            except Exception:  # pragma: no cover - network dependent
                logger.warning('Upstash REST client init failed', exc_info=True)

        return None

    def _read_rows(self, path: Path) -> List[Dict[str, Any]]:
        data = self._read_json(path)
        if isinstance(data, list):
            return [row for row in data if isinstance(row, dict)]
        return []

    def _write_json(self, path: Path, data) -> None:
        if self._redis is not None:
            try:
                self._redis.set(self._redis_key(path), json.dumps(data))
                return
            except Exception:
                logger.warning('Redis write failed; using filesystem fallback', exc_info=True)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))

    def _read_json(self, path: Path):
        if self._redis is not None:
            try:
                raw = self._redis.get(self._redis_key(path))
            except Exception:
                logger.warning('Redis read failed; using filesystem fallback', exc_info=True)
            else:
                if raw is not None:
                    if isinstance(raw, bytes):
                        raw = raw.decode('utf-8')
                    try:
                        return json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning('Redis value was not valid JSON for %s', path.name)

        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError:
            return None

    def _redis_key(self, path: Path) -> str:
        return f'foodyscan:{path.name}'

    def _table_path(self, table: str, user_id: Optional[str] = None) -> Path:
        if user_id:
            return self._data_dir / f'{user_id}_{table}.json'
        return self._data_dir / f'{table}.json'

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _get_env_value(*names: str) -> Optional[str]:
        for name in names:
            value = os.getenv(name)
            if value:
                return value
        return None

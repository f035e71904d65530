from typing import Dict, Any, Optional, List
import json
import logging
import threading
from datetime import datetime, timedelta

from core.session import ScenarioSession
from .backend import connect_redis

logger = logging.getLogger(__name__)


class SessionStore:
    """Stores scenario sessions in Redis (with TTL) or in memory"""

    def __init__(self, use_redis: bool = False, redis_host: str = 'localhost',
                 redis_port: int = 6379, redis_db: int = 0,
                 session_ttl: int = 3600):  # 1 hour TTL
        self.session_ttl = session_ttl
        self.redis_client = connect_redis(redis_host, redis_port, redis_db) if use_redis else None
        self.use_redis = self.redis_client is not None

        self.memory_store: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        if not self.use_redis:
            logger.info("Using in-memory storage for sessions")

    @staticmethod
    def _key(session_id: str) -> str:
        return f"session:{session_id}"

    def save_state(self, session: ScenarioSession) -> bool:
        try:
            state_data = session.to_dict()
            if self.use_redis:
                self.redis_client.setex(
                    self._key(session.session_id),
                    self.session_ttl,
                    json.dumps(state_data, ensure_ascii=False)
                )
            else:
                with self._lock:
                    self.memory_store[session.session_id] = {
                        'data': state_data,
                        'expires_at': datetime.now() + timedelta(seconds=self.session_ttl)
                    }
            logger.debug(f"Saved state for session: {session.session_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to save state for session {session.session_id}: {e}")
            return False

    def load_state(self, session_id: str) -> Optional[ScenarioSession]:
        try:
            if self.use_redis:
                data = self.redis_client.get(self._key(session_id))
                if data:
                    return ScenarioSession.model_validate(json.loads(data))
                return None

            with self._lock:
                entry = self.memory_store.get(session_id)
                if entry is None:
                    return None
                if datetime.now() >= entry['expires_at']:
                    del self.memory_store[session_id]
                    logger.debug(f"Session {session_id} expired and removed")
                    return None
                return ScenarioSession.model_validate(entry['data'])
        except Exception as e:
            logger.error(f"Failed to load state for session {session_id}: {e}")
            return None

    def delete_state(self, session_id: str) -> bool:
        try:
            if self.use_redis:
                existed = bool(self.redis_client.delete(self._key(session_id)))
            else:
                with self._lock:
                    existed = self.memory_store.pop(session_id, None) is not None
            logger.debug(f"Deleted state for session: {session_id}")
            return existed
        except Exception as e:
            logger.error(f"Failed to delete state for session {session_id}: {e}")
            return False

    def list_sessions(self) -> List[str]:
        try:
            if self.use_redis:
                return [key.replace("session:", "", 1) for key in self.redis_client.keys("session:*")]
            self.cleanup_expired()
            with self._lock:
                return list(self.memory_store)
        except Exception as e:
            logger.error(f"Failed to list sessions: {e}")
            return []

    def cleanup_expired(self) -> int:
        """Drop expired in-memory sessions; Redis expires keys itself"""
        if self.use_redis:
            return 0
        now = datetime.now()
        with self._lock:
            expired = [sid for sid, entry in self.memory_store.items() if now >= entry['expires_at']]
            for sid in expired:
                del self.memory_store[sid]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired sessions")
        return len(expired)

"""
Suivi de l'utilisation des applications

Les sessions d'utilisation sont écrites dans une base SQLite par un
service de surveillance externe. L'agent lit les sessions non encore
transmises, puis les purge en deux phases après un envoi réussi :

1. suppression des lignes déjà marquées comme transmises (cycle précédent)
2. marquage des lignes lues pendant ce cycle

Un arrêt entre deux phases ne perd ni ne duplique de données : le
cycle suivant rejoue simplement les phases manquantes.
"""

import os
import sqlite3
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import psutil

logger = logging.getLogger("ReportMateAgent")

DEFAULT_USAGE_DB_PATH = "/Library/Managed Reports/appusage.sqlite"

# Durée inconnue (session interrompue sans fin enregistrée)
UNKNOWN_DURATION = -1

WATCHER_MISSING_WARNING = (
    "Watcher daemon not running. Install reportmate-appusage for accurate usage tracking."
)


def ensure_usage_tables(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS app_sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_name TEXT NOT NULL,
            path TEXT NOT NULL,
            user TEXT NOT NULL DEFAULT '',
            pid INTEGER NOT NULL DEFAULT 0,
            start_time TEXT NOT NULL,
            end_time TEXT,
            duration_seconds INTEGER NOT NULL DEFAULT 0,
            transmitted INTEGER NOT NULL DEFAULT 0
        )
        """
    )

    cur.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_app_sessions_transmitted
        ON app_sessions(transmitted, start_time)
        """
    )

    conn.commit()


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _isoformat(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class UsageSession:
    """Session d'utilisation d'une application"""

    def __init__(self, name: str, path: str, process_id: int = 0, user: str = "",
                 start_time: Optional[datetime] = None, end_time: Optional[datetime] = None,
                 duration_seconds: float = 0.0, is_active: bool = False):
        self.name = name
        self.path = path
        self.process_id = process_id
        self.user = user
        self.start_time = start_time or datetime.now(timezone.utc)
        self.end_time = end_time
        self.duration_seconds = duration_seconds
        self.is_active = is_active

    @property
    def session_id(self) -> str:
        return f"{self.process_id}-{int(self.start_time.timestamp())}"

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'sessionId': self.session_id,
            'name': self.name,
            'path': self.path,
            'processId': self.process_id,
            'user': self.user,
            'startTime': _isoformat(self.start_time),
            'durationSeconds': int(self.duration_seconds),
            'isActive': self.is_active
        }
        if self.end_time:
            result['endTime'] = _isoformat(self.end_time)
        return result


class UsageSnapshot:
    """Résultat d'une lecture de l'utilisation des applications"""

    def __init__(self, window_hours: int = 4):
        now = datetime.now(timezone.utc)
        self.is_capture_enabled = False
        self.status = "uninitialized"
        self.capture_method = "None"
        self.generated_at = now
        self.window_start = now - timedelta(hours=window_hours)
        self.window_end = now
        self.total_launches = 0
        self.total_usage_seconds = 0.0
        self.active_sessions: List[UsageSession] = []
        self.warnings: List[str] = []
        # Lignes lues dans la base, à confirmer après envoi de ce snapshot
        self.session_ids: List[int] = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'isCaptureEnabled': self.is_capture_enabled,
            'status': self.status,
            'captureMethod': self.capture_method,
            'generatedAt': _isoformat(self.generated_at),
            'windowStart': _isoformat(self.window_start),
            'windowEnd': _isoformat(self.window_end),
            'totalLaunches': self.total_launches,
            'totalUsageSeconds': round(self.total_usage_seconds, 1),
            'activeSessions': [session.to_dict() for session in self.active_sessions],
            'warnings': list(self.warnings)
        }


class UsageSessionStore:
    """
    Accès à la table app_sessions

    Chaque opération ouvre sa propre connexion : le service de surveillance
    écrit dans la même base en parallèle.
    """

    def __init__(self, db_path: str = DEFAULT_USAGE_DB_PATH):
        self.db_path = db_path

    def exists(self) -> bool:
        return os.path.exists(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self):
        conn = self._connect()
        try:
            ensure_usage_tables(conn)
        finally:
            conn.close()

    def add_session(self, app_name: str, path: str, start_time: str, user: str = "",
                    pid: int = 0, end_time: Optional[str] = None,
                    duration_seconds: int = 0, transmitted: bool = False) -> int:
        """
        Enregistre une session (utilisé par le service de surveillance et les tests)

        Returns:
            int: Identifiant de la ligne créée
        """
        conn = self._connect()
        try:
            cur = conn.execute(
                """
                INSERT INTO app_sessions
                    (app_name, path, user, pid, start_time, end_time, duration_seconds, transmitted)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (app_name, path, user, pid, start_time, end_time, duration_seconds, int(transmitted))
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def fetch_untransmitted(self) -> List[sqlite3.Row]:
        """Retourne les sessions non transmises, les plus récentes d'abord"""
        conn = self._connect()
        try:
            return conn.execute(
                """
                SELECT id, app_name, path, user, pid, start_time, end_time, duration_seconds
                FROM app_sessions
                WHERE transmitted = 0
                ORDER BY start_time DESC
                """
            ).fetchall()
        finally:
            conn.close()

    def mark_transmitted(self, session_ids: Sequence[int]) -> int:
        """
        Marque des sessions comme transmises

        Returns:
            int: Nombre de lignes modifiées
        """
        if not session_ids:
            return 0

        placeholders = ",".join("?" for _ in session_ids)
        conn = self._connect()
        try:
            cur = conn.execute(
                f"UPDATE app_sessions SET transmitted = 1 WHERE id IN ({placeholders})",
                list(session_ids)
            )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    def delete_transmitted(self) -> int:
        """
        Supprime les sessions marquées transmises lors d'un cycle précédent

        Returns:
            int: Nombre de lignes supprimées
        """
        conn = self._connect()
        try:
            cur = conn.execute("DELETE FROM app_sessions WHERE transmitted = 1")
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    def count(self, transmitted: Optional[bool] = None) -> int:
        conn = self._connect()
        try:
            if transmitted is None:
                row = conn.execute("SELECT COUNT(*) FROM app_sessions").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM app_sessions WHERE transmitted = ?", (int(transmitted),)
                ).fetchone()
            return row[0]
        finally:
            conn.close()


class ApplicationUsageService:
    """
    Service de lecture de l'utilisation des applications

    Source principale : la base SQLite du service de surveillance.
    Repli : instantané des processus d'applications en cours (psutil).
    """

    def __init__(self, db_path: str = DEFAULT_USAGE_DB_PATH, lookback_hours: int = 4,
                 store: Optional[UsageSessionStore] = None):
        self.store = store or UsageSessionStore(db_path)
        self.lookback_hours = lookback_hours

    async def collect_usage_data(self, installed_apps: Optional[List[Dict[str, Any]]] = None) -> UsageSnapshot:
        """
        Lit l'utilisation des applications pour ce cycle

        Args:
            installed_apps: Applications installées, pour filtrer le repli par processus

        Returns:
            UsageSnapshot: Sessions et totaux
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._collect, installed_apps or [])

    def _collect(self, installed_apps: List[Dict[str, Any]]) -> UsageSnapshot:
        snapshot = UsageSnapshot(self.lookback_hours)

        if self.store.exists():
            try:
                self._collect_from_database(snapshot)
                return snapshot
            except sqlite3.Error as e:
                logger.warning(f"Base d'utilisation illisible ({self.store.db_path}): {e}")
                snapshot.warnings.append(f"Database error: {e}, falling back to polling")

        snapshot.capture_method = "ProcessPolling"
        snapshot.is_capture_enabled = True

        try:
            sessions = self._collect_running_sessions(installed_apps)
        except psutil.Error as e:
            snapshot.status = "error"
            snapshot.warnings.append(str(e))
            return snapshot

        snapshot.status = "complete"
        snapshot.active_sessions = sessions
        snapshot.total_launches = len(sessions)
        snapshot.total_usage_seconds = sum(session.duration_seconds for session in sessions)

        if not self.store.exists():
            logger.warning("Service de surveillance absent, utilisation estimée par les processus en cours")
            snapshot.warnings.append(WATCHER_MISSING_WARNING)

        return snapshot

    def _collect_from_database(self, snapshot: UsageSnapshot):
        now = datetime.now(timezone.utc)
        session_ids = []

        for row in self.store.fetch_untransmitted():
            start = _parse_timestamp(row["start_time"]) or now
            end = _parse_timestamp(row["end_time"])
            is_active = row["end_time"] is None
            duration = float(row["duration_seconds"])

            if is_active:
                duration = (now - start).total_seconds()
            if row["duration_seconds"] != UNKNOWN_DURATION or is_active:
                snapshot.total_usage_seconds += duration

            snapshot.active_sessions.append(UsageSession(
                name=row["app_name"],
                path=row["path"],
                process_id=row["pid"],
                user=row["user"],
                start_time=start,
                end_time=end,
                duration_seconds=max(duration, 0.0),
                is_active=is_active
            ))
            session_ids.append(row["id"])

        snapshot.is_capture_enabled = True
        snapshot.capture_method = "SQLiteWatcher"
        snapshot.status = "complete"
        snapshot.total_launches = len(session_ids)
        snapshot.session_ids = session_ids

    def _collect_running_sessions(self, installed_apps: List[Dict[str, Any]]) -> List[UsageSession]:
        now = datetime.now(timezone.utc)
        sessions = []

        for process in psutil.process_iter(['pid', 'name', 'exe', 'username', 'create_time']):
            info = process.info
            path = info.get('exe') or ""
            if ".app/" not in path:
                continue
            if installed_apps and match_installed_app(path, installed_apps) is None:
                continue

            start = datetime.fromtimestamp(info.get('create_time') or now.timestamp(), tz=timezone.utc)
            sessions.append(UsageSession(
                name=info.get('name') or os.path.basename(path),
                path=path,
                process_id=info.get('pid') or 0,
                user=info.get('username') or "",
                start_time=start,
                duration_seconds=max((now - start).total_seconds(), 0.0),
                is_active=True
            ))

        return sessions

    def confirm_transmission(self, session_ids: Sequence[int]) -> Dict[str, int]:
        """
        Purge en deux phases après un envoi réussi

        Seules les sessions du payload effectivement envoyé sont marquées :
        une collecte concurrente ne peut pas en ajouter.

        Args:
            session_ids: Identifiants portés par le snapshot transmis

        Returns:
            dict: Nombre de lignes supprimées et marquées
        """
        result = {'deleted': 0, 'marked': 0}
        if not self.store.exists():
            return result

        try:
            result['deleted'] = self.store.delete_transmitted()
            result['marked'] = self.store.mark_transmitted(session_ids)
        except sqlite3.Error as e:
            logger.warning(f"Impossible de confirmer la transmission des sessions: {e}")
            return result

        logger.debug(f"Sessions d'utilisation: {result['deleted']} supprimée(s), {result['marked']} marquée(s)")
        return result


def match_installed_app(path: str, installed_apps: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Associe un chemin d'exécutable à une application installée

    Returns:
        dict: Application correspondante, ou None
    """
    lower_path = path.lower()

    for app in installed_apps:
        location = (app.get('path') or "").lower()
        if location and lower_path.startswith(location):
            return app

        bundle_id = (app.get('bundleIdentifier') or "").lower()
        if bundle_id and bundle_id in lower_path:
            return app

        name = (app.get('name') or "").lower()
        if name and lower_path.startswith(f"/applications/{name}.app"):
            return app

    return None

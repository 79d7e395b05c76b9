"""
JSON-file user directory.

File layout::

    {
      "users": [
        {
          "userId": "u1",
          "nickname": "paperhands",
          "prefs": {"showLeaderboard": true},
          "wallets": ["0xabc...", "0xdef..."]
        }
      ]
    }

A bare top-level list of user objects is accepted as well.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from ..config import JeetConfig
from .errors import UpstreamUnavailable
from .models import UserPreferences, UserProfile
from .sources import UserDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserRecord:
    profile: UserProfile
    preferences: UserPreferences
    wallets: Tuple[str, ...] = field(default_factory=tuple)


def parse_user_record(raw: Dict[str, Any]) -> Optional[UserRecord]:
    """Build a UserRecord from one JSON object; None when it has no userId or is malformed."""
    user_id = raw.get("userId") or raw.get("user_id")
    if not user_id:
        return None
    prefs = raw.get("prefs") or raw.get("preferences") or {}
    raw_wallets = raw.get("wallets") or []
    if not isinstance(prefs, dict) or not isinstance(raw_wallets, list):
        return None
    wallets: List[str] = []
    for wallet in raw_wallets:
        # Accept {"address": ...} objects as stored by the wallet API
        address = wallet.get("address") if isinstance(wallet, dict) else wallet
        if isinstance(address, str) and address and address not in wallets:
            wallets.append(address)
    return UserRecord(
        profile=UserProfile(user_id=str(user_id), nickname=raw.get("nickname") or None),
        preferences=UserPreferences(show_leaderboard=bool(prefs.get("showLeaderboard", False))),
        wallets=tuple(wallets),
    )


class FileUserDirectory(UserDirectory):
    """UserDirectory backed by a JSON file, reloaded on demand."""

    name = "users"

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path or JeetConfig.get_users_file())
        self._records: Dict[str, UserRecord] = {}
        self._loaded = False
        self._lock = threading.Lock()

    def reload(self) -> Dict[str, UserRecord]:
        """
        Re-read the users file.

        Raises:
            UpstreamUnavailable: file missing or not valid JSON
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise UpstreamUnavailable(self.name, f"users file not found: {self.path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise UpstreamUnavailable(self.name, f"cannot read {self.path}: {e}") from e

        raw_users = data.get("users", []) if isinstance(data, dict) else data
        if not isinstance(raw_users, list):
            raise UpstreamUnavailable(self.name, f"'users' must be a list in {self.path}")

        records: Dict[str, UserRecord] = {}
        for raw in raw_users:
            record = parse_user_record(raw) if isinstance(raw, dict) else None
            if record is None:
                logger.warning(f"Skipping malformed user entry in {self.path}")
                continue
            records[record.profile.user_id] = record

        with self._lock:
            self._records = records
            self._loaded = True
        logger.info(f"Loaded {len(records)} users from {self.path}")
        return records

    def _ensure_loaded(self) -> Dict[str, UserRecord]:
        if not self._loaded:
            return self.reload()
        with self._lock:
            return self._records

    def wallet_sets(self) -> Dict[str, Set[str]]:
        """user_id -> set of wallet addresses (lowercased) from the last load."""
        return {uid: {w.lower() for w in r.wallets} for uid, r in self._ensure_loaded().items()}

    async def list_users(self) -> List[UserProfile]:
        return [r.profile for r in self._ensure_loaded().values()]

    async def fetch_user_preferences(self, user_id: str) -> UserPreferences:
        record = self._ensure_loaded().get(user_id)
        return record.preferences if record else UserPreferences()

    async def fetch_user_wallets(self, user_id: str) -> List[str]:
        record = self._ensure_loaded().get(user_id)
        return list(record.wallets) if record else []

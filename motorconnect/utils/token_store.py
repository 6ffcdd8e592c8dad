# motorconnect/utils/token_store.py

import json
import logging
import os
from typing import Optional

from motorconnect.core.config import settings

logger = logging.getLogger(__name__)


class TokenStore:
    """
    File-backed store for the marketplace auth token.
    The token is the only piece of client state that survives a restart.
    """

    def __init__(self, token_file: Optional[str] = None):
        self.token_file = token_file or settings.TOKEN_FILE
        self._token: Optional[str] = None

    def _load_token_file(self) -> Optional[str]:
        """Load token from file cache"""
        try:
            if os.path.exists(self.token_file):
                with open(self.token_file, "r") as f:
                    data = json.load(f)
                    return data.get("token")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load token file: {e}")
        return None

    def _save_token_file(self, token: str) -> None:
        """Save token to file cache"""
        try:
            directory = os.path.dirname(self.token_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.token_file, "w") as f:
                json.dump({"token": token}, f)
        except OSError as e:
            logger.warning(f"Failed to save token file: {e}")

    def get_token(self) -> Optional[str]:
        if self._token is None:
            self._token = self._load_token_file()
        return self._token

    def set_token(self, token: str) -> None:
        self._token = token
        self._save_token_file(token)

    def remove_token(self) -> None:
        self._token = None
        try:
            if os.path.exists(self.token_file):
                os.remove(self.token_file)
        except OSError as e:
            logger.warning(f"Failed to remove token file: {e}")

"""
Async HTTP client for the usage-tracking backend.
"""

import logging
import os
import random
import re
import string
import time
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

USER_ID_PATTERN = re.compile(r"^[A-Za-z]\d{8}$")
_BASE36 = string.digits + string.ascii_lowercase


def default_base_url() -> str:
    """Resolve the backend URL from the environment, falling back to localhost."""
    return os.getenv("API_BASE_URL", "http://localhost:3001")


def generate_session_id() -> str:
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"session-{int(time.time() * 1000)}-{suffix}"


def is_valid_user_id(value: str) -> bool:
    """Client-side A-number check: one letter followed by eight digits."""
    return bool(USER_ID_PATTERN.match(value.strip()))


class APIError(Exception):
    """Non-2xx response from the backend."""

    def __init__(self, status: int, detail: str):
        super().__init__(f"Error {status}: {detail}")
        self.status = status
        self.detail = detail


class APIClient:
    def __init__(
        self,
        base_url: str = None,
        session_id: str = None,
        timeout: float = 120.0,
    ):
        self.base_url = (base_url or default_base_url()).rstrip("/")
        self.session_id = session_id or generate_session_id()
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        await self.open()
        async with self.session.post(f"{self.base_url}{path}", json=payload) as response:
            try:
                data = await response.json()
            except (aiohttp.ContentTypeError, ValueError):
                data = {"detail": await response.text()}
            if response.status >= 400:
                raise APIError(response.status, data.get("detail", "Request failed"))
            return data

    async def check_user(self, user_id: str) -> Dict[str, Any]:
        return await self._post("/api/check-user", {"userID": user_id})

    async def submit_prompt(self, user_id: str, prompt: str) -> Dict[str, Any]:
        return await self._post(
            "/api/submit",
            {"userID": user_id, "prompt": prompt, "sessionId": self.session_id},
        )

    async def reset_context(self, user_id: str) -> Dict[str, Any]:
        return await self._post("/api/reset", {"userID": user_id, "sessionId": self.session_id})

    async def log_event(self, user_id: str, event_type: str, data: Dict[str, Any]) -> bool:
        """Send one telemetry event. Failures are logged and never raised."""
        try:
            await self._post(
                "/api/log-event",
                {
                    "userID": user_id,
                    "sessionId": self.session_id,
                    "eventType": event_type,
                    "data": data,
                },
            )
            return True
        except Exception as e:
            logger.warning(f"Failed to log event {event_type}: {e}")
            return False

    async def health_check(self) -> Dict[str, Any]:
        """Ping backend health endpoint."""
        try:
            await self.open()
            async with self.session.get(f"{self.base_url}/health") as response:
                text = await response.text()
                return {"status": response.status, "body": text}
        except aiohttp.ClientError as e:
            return {"status": None, "error": str(e)}

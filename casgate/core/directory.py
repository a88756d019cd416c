"""
Client for the internal user directory: roles, permissions and user details
for a principal that CAS has already authenticated. Plain JSON over HTTP.
"""
import logging
from typing import Any, List, Optional

import httpx

from ..models import Permission, Role, UserInfo
from .errors import DirectoryError

log = logging.getLogger(__name__)


class DirectoryClient:
    def __init__(self, base_url: str, http_client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self.http_client = http_client
        self.timeout = timeout

    def __repr__(self):
        return 'DirectoryClient(base_url=%s)' % self.base_url

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        url = f"{self.base_url}/{path}"
        try:
            if self.http_client is not None:
                response = await self.http_client.get(url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, params=params, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise DirectoryError(f"directory: GET {url}: {e}") from e

        if not 200 <= response.status_code < 300:
            log.warning('directory GET %s returned HTTP %s', url, response.status_code)
            raise DirectoryError(f"directory: GET {url}: HTTP {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError as e:
            raise DirectoryError(f"directory: GET {url}: invalid JSON") from e

    async def role_list(self, user: str) -> List[Role]:
        data = await self._get_json('roles', {'user': user})
        return [Role.model_validate(item) for item in data]

    async def permission_list(self, user: str, role_id: int) -> List[Permission]:
        data = await self._get_json('permissions', {'user': user, 'role_id': role_id})
        return [Permission.model_validate(item) for item in data]

    async def user_info(self, user_id: int) -> UserInfo:
        data = await self._get_json(f'users/{user_id}')
        return UserInfo.model_validate(data)

"""
Avatar hosting

Avatars live on Cloudinary; accounts only keep the {public_id, url}
descriptor and hand the public_id back when the image has to go.
"""
import hashlib
import logging
import time
from typing import Any, Dict, Optional, Protocol

import httpx

import config
from schemas import Avatar

logger = logging.getLogger(__name__)

AVATAR_FOLDER = "avatars"
AVATAR_WIDTH = 150
AVATAR_CROP = "scale"

# Placeholder avatars of social-login accounts are not hosted by us
SOCIAL_PREFIXES = ("google_", "facebook_")


class AvatarUploadError(Exception):
    pass


class AvatarHost(Protocol):
    async def upload(self, image: str, folder: str = AVATAR_FOLDER, width: int = AVATAR_WIDTH,
                     crop: str = AVATAR_CROP) -> Avatar:
        ...

    async def destroy(self, public_id: str) -> bool:
        ...


def is_hosted(avatar: Optional[Dict[str, Any]]) -> bool:
    if not avatar or not avatar.get("public_id"):
        return False
    return not avatar["public_id"].startswith(SOCIAL_PREFIXES)


def sign_params(params: Dict[str, Any], api_secret: str) -> str:
    """Cloudinary request signature: sha1 of the sorted params joined with the secret."""
    payload = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] not in (None, ""))
    return hashlib.sha1((payload + api_secret).encode("utf-8")).hexdigest()


class CloudinaryAvatarHost:
    """Talks to the Cloudinary upload API directly over HTTPS."""

    def __init__(
        self,
        cloud_name: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.cloud_name = cloud_name or config.CLOUDINARY_CLOUD_NAME
        self.api_key = api_key or config.CLOUDINARY_API_KEY
        self.api_secret = api_secret or config.CLOUDINARY_API_SECRET
        self.base_url = f"https://api.cloudinary.com/v1_1/{self.cloud_name}/image"
        self.timeout = httpx.Timeout(30.0)
        self._transport = transport

    def _signed(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params = {**params, "timestamp": int(time.time())}
        params["signature"] = sign_params(params, self.api_secret)
        params["api_key"] = self.api_key
        return params

    async def _post(self, path: str, data: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                     transport=self._transport) as client:
            response = await client.post(path, data=data)
            response.raise_for_status()
            return response.json()

    async def upload(self, image: str, folder: str = AVATAR_FOLDER, width: int = AVATAR_WIDTH,
                     crop: str = AVATAR_CROP) -> Avatar:
        params = self._signed({"folder": folder, "transformation": f"w_{width},c_{crop}"})
        params["file"] = image
        try:
            result = await self._post("/upload", params)
        except httpx.HTTPError as e:
            logger.error("Avatar upload failed: %s", e)
            raise AvatarUploadError("Avatar upload failed") from e
        logger.info("Avatar uploaded: %s", result.get("public_id"))
        return Avatar(public_id=result["public_id"], url=result["secure_url"])

    async def destroy(self, public_id: str) -> bool:
        result = await self._post("/destroy", self._signed({"public_id": public_id}))
        deleted = result.get("result") == "ok"
        if not deleted:
            logger.warning("Avatar %s was not deleted: %s", public_id, result.get("result"))
        return deleted

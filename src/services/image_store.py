"""Participant image storage (S3-compatible object store)."""

from __future__ import annotations

import asyncio
import base64
import logging

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from src.config import Settings, get_settings

logger = logging.getLogger("fieldsync.images")

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class ImageStore:
    """Read participant images captured by field devices.

    Images live at ``{prefix}/{owner_device}/{participant_uuid}.jpeg``.
    """

    def __init__(self, settings: Settings | None = None, client=None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    def _get_client(self):
        if self._client is not None:
            return self._client

        s = self._settings
        self._client = boto3.client(
            "s3",
            endpoint_url=s.image_endpoint_url or None,
            aws_access_key_id=s.image_access_key_id or None,
            aws_secret_access_key=s.image_secret_access_key or None,
            config=BotoConfig(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "standard"},
            ),
            region_name=s.image_region,
        )
        return self._client

    def image_key(self, owner_device: str, participant_uuid: str) -> str:
        return f"{self._settings.image_prefix}/{owner_device}/{participant_uuid}.jpeg"

    def _read_object(self, client, key: str) -> bytes:
        response = client.get_object(Bucket=self._settings.image_bucket_name, Key=key)
        return response["Body"].read()

    async def fetch_participant_image(
        self, owner_device: str | None, participant_uuid: str
    ) -> str | None:
        """Return the base64-encoded image, or None if it is not stored.

        The boto3 call and the body read run in a worker thread so a page of
        image rows is fetched concurrently.
        """
        if not owner_device:
            logger.warning("Image for participant %s has no capturing device", participant_uuid)
            return None

        key = self.image_key(owner_device, participant_uuid)
        try:
            data = await asyncio.to_thread(self._read_object, self._get_client(), key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                logger.warning("Image not found for participant %s at key=%s", participant_uuid, key)
                return None
            raise

        return base64.b64encode(data).decode("ascii")

"""
S3 storage service for the course-material PDFs.
Objects are addressed by their storage path, which doubles as the S3 key.
"""
from functools import lru_cache
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.obs.errors import StorageError
from app.obs.logging import get_logger

logger = get_logger(__name__)


class StorageService:
    """
    S3 (or S3-compatible) object store client.

    Key layout:
    {bucket}/{COURSE_CODE}/{COURSE_NUMBER}/{Professor-Name}/{timestamp}-{filename}
    """

    def __init__(self, client=None, bucket: Optional[str] = None):
        self.bucket = bucket or settings.S3_BUCKET
        if client is not None:
            self.s3_client = client
            return

        if not settings.is_storage_configured():
            logger.warning("S3 storage not fully configured, service may not work")
            self.s3_client = None
            return

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                region_name=settings.AWS_REGION,
                endpoint_url=settings.S3_ENDPOINT_URL,
            )
            logger.info(f"S3 storage service initialized: bucket={self.bucket}, region={settings.AWS_REGION}")
        except (BotoCoreError, ValueError) as e:
            logger.error(f"Failed to initialize S3 client: {str(e)}")
            self.s3_client = None

    @property
    def is_configured(self) -> bool:
        return self.s3_client is not None

    def _check_initialized(self):
        """Verify S3 client is initialized."""
        if not self.s3_client:
            raise StorageError("S3 storage not configured. Set AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, and S3_BUCKET.")

    async def upload_file(self, path: str, data: bytes, content_type: str = "application/pdf") -> str:
        """
        Upload an object under the given storage path.

        Returns the path. Raises StorageError carrying the S3 message on failure.
        """
        self._check_initialized()

        try:
            await run_in_threadpool(
                self.s3_client.put_object,
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed: {str(e)}", extra={"storage_path": path})
            raise StorageError(f"Failed to upload file: {str(e)}")

        logger.info("File uploaded successfully", extra={"storage_path": path})
        return path

    async def delete_file(self, path: str) -> bool:
        self._check_initialized()

        try:
            await run_in_threadpool(self.s3_client.delete_object, Bucket=self.bucket, Key=path)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 deletion failed: {str(e)}", extra={"storage_path": path})
            raise StorageError(f"Failed to delete file: {str(e)}")

        logger.info("File deleted successfully", extra={"storage_path": path})
        return True

    async def generate_presigned_url(
        self,
        path: str,
        expires_in: int = 60,
        download_name: Optional[str] = None,
    ) -> str:
        """
        Generate a short-lived GET URL for an object.

        When download_name is given the URL asks the store to serve the object
        as an attachment with that filename.
        """
        self._check_initialized()

        params = {'Bucket': self.bucket, 'Key': path}
        if download_name:
            safe_name = download_name.replace('"', '')
            params['ResponseContentDisposition'] = f'attachment; filename="{safe_name}"'

        try:
            return await run_in_threadpool(
                self.s3_client.generate_presigned_url,
                'get_object',
                Params=params,
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to generate presigned URL: {str(e)}", extra={"storage_path": path})
            raise StorageError(f"Presigned URL generation failed: {str(e)}")

    async def file_exists(self, path: str) -> bool:
        self._check_initialized()

        try:
            await run_in_threadpool(self.s3_client.head_object, Bucket=self.bucket, Key=path)
            return True
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise StorageError(f"Error checking file existence: {str(e)}")


@lru_cache()
def get_storage_service() -> StorageService:
    """Process-wide storage service; tests override this dependency."""
    return StorageService()

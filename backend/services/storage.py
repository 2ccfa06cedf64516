"""Object storage for uploaded photos.

``LocalStorage`` keeps files on disk (development and tests). ``S3Storage``
talks to any S3-compatible service such as DigitalOcean Spaces.
"""

import os
import secrets
import time
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from backend.log_utils import get_logger

logger = get_logger(__name__)

_EXTENSIONS = {
    'image/jpeg': 'jpg',
    'image/jpg': 'jpg',
    'image/png': 'png',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'image/heic': 'heic',
}


class StorageError(Exception):
    pass


def build_object_key(folder, content_type=None):
    extension = _EXTENSIONS.get(str(content_type or '').lower(), 'jpg')
    timestamp = int(time.time() * 1000)
    token = secrets.token_hex(6)
    folder = str(folder or '').strip('/')
    name = f'{timestamp}-{token}.{extension}'
    return f'{folder}/{name}' if folder else name


class LocalStorage:
    def __init__(self, root, public_url='/uploads'):
        self.root = os.path.abspath(root)
        self.public_url = public_url.rstrip('/')

    def _path_for_key(self, key):
        path = os.path.abspath(os.path.join(self.root, key))
        if os.path.commonpath([path, self.root]) != self.root:
            raise StorageError(f'Refusing path outside storage root: {key}')
        return path

    def key_from_url(self, url):
        prefix = self.public_url + '/'
        if not url or not url.startswith(prefix):
            raise StorageError(f'URL is not managed by this storage: {url}')
        return url[len(prefix):]

    def store(self, data, folder, content_type=None):
        key = build_object_key(folder, content_type)
        path = self._path_for_key(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'wb') as fh:
                fh.write(data)
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        return f'{self.public_url}/{key}'

    def delete(self, url):
        path = self._path_for_key(self.key_from_url(url))
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(str(exc)) from exc


class S3Storage:
    def __init__(self, bucket, endpoint='', region='us-east-1',
                 access_key='', secret_key='', client=None):
        if not bucket:
            raise RuntimeError('S3_BUCKET must be set when STORAGE_TYPE is s3')
        self.bucket = bucket
        self.endpoint = (endpoint or f'https://s3.{region}.amazonaws.com').rstrip('/')
        self.client = client or boto3.client(
            's3',
            endpoint_url=endpoint or None,
            region_name=region,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
        )

    def public_url_for(self, key):
        return f'{self.endpoint}/{self.bucket}/{key}'

    def key_from_url(self, url):
        prefix = f'{self.endpoint}/{self.bucket}/'
        if url and url.startswith(prefix):
            return url[len(prefix):]
        # virtual-host style URLs: https://<bucket>.<endpoint host>/<key>
        parsed = urlparse(url or '')
        endpoint = urlparse(self.endpoint)
        path = parsed.path.lstrip('/')
        if (parsed.scheme == endpoint.scheme and path
                and parsed.netloc.lower() == f'{self.bucket}.{endpoint.netloc}'.lower()):
            return path
        raise StorageError(f'URL is not managed by this storage: {url}')

    def store(self, data, folder, content_type=None):
        key = build_object_key(folder, content_type)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or 'image/jpeg',
                ACL='public-read',
                CacheControl='max-age=31536000',
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        return self.public_url_for(key)

    def delete(self, url):
        key = self.key_from_url(url)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc


def delete_best_effort(storage, urls):
    """Delete each URL, logging and skipping failures. Returns the failure count."""
    failures = 0
    for url in urls or []:
        if not url:
            continue
        try:
            storage.delete(url)
        except StorageError as exc:
            failures += 1
            logger.warning('storage_delete_failed', url=url, error=str(exc))
    return failures


def build_storage(app_config):
    storage_type = str(app_config.get('STORAGE_TYPE') or 'local').strip().lower()
    if storage_type == 's3':
        return S3Storage(
            bucket=app_config.get('S3_BUCKET'),
            endpoint=app_config.get('S3_ENDPOINT'),
            region=app_config.get('S3_REGION') or 'us-east-1',
            access_key=app_config.get('S3_ACCESS_KEY'),
            secret_key=app_config.get('S3_SECRET_KEY'),
        )
    if storage_type != 'local':
        raise RuntimeError(f'Unknown STORAGE_TYPE: {storage_type}')
    return LocalStorage(
        app_config.get('STORAGE_PATH'),
        public_url=app_config.get('STORAGE_PUBLIC_URL') or '/uploads',
    )

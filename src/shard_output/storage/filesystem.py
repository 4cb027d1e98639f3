"""
Shared storage used to stage index templates in and finished shards out.

Two stores are supported, picked by the scheme of the path:
- plain paths and file:// URIs map to LocalFileSystem, a checksummed local
  directory store;
- s3:// (and s3a://) URIs map to S3FileSystem, backed by boto3.

Both expose the same three operations: copy_to_local, copy_from_local and
exists. copy_from_local is the only way a directory appears in the store and
it always appears whole.
"""
import logging
import os
import shutil
import traceback
import uuid
import zlib

import boto3
from botocore.exceptions import ClientError

from shard_output.common.config import (
    AWS_ENDPOINT_URL_KEY, AWS_REGION, AWS_REGION_KEY, SUCCESS_MARKER
)
from shard_output.common.utils import (
    checksum_file_name, get_scheme, is_checksum_file, parse_s3_uri, to_local_path
)

logger = logging.getLogger("storage")

CHUNK_SIZE = 1024 * 1024
DELETE_BATCH_SIZE = 1000  # S3 DeleteObjects limit


class ChecksumError(IOError):
    """A file disagrees with its checksum sidecar, or a sidecar would be clobbered."""


def _crc32(path):
    crc = 0
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            crc = zlib.crc32(chunk, crc)
    return crc


class LocalFileSystem:
    """
    Local directory store that keeps a CRC-32 sidecar (.<name>.crc) next to
    every file it ingests and verifies sidecars when files are copied out.
    """
    def exists(self, path):
        return os.path.exists(to_local_path(path))

    def copy_to_local(self, src, dst):
        """Copy the directory tree at src to dst, verifying and dropping sidecars."""
        src = to_local_path(src)
        dst = to_local_path(dst)
        if not os.path.isdir(src):
            raise FileNotFoundError(f"No such directory: {src}")
        if os.path.exists(dst):
            raise FileExistsError(f"Local destination already exists: {dst}")

        logger.debug(f"Copying {src} to local {dst}")
        for dirpath, dirnames, filenames in os.walk(src):
            target_dir = os.path.normpath(os.path.join(dst, os.path.relpath(dirpath, src)))
            os.makedirs(target_dir, exist_ok=True)
            names = set(filenames)
            for name in filenames:
                if is_checksum_file(name):
                    continue
                source_file = os.path.join(dirpath, name)
                sidecar = checksum_file_name(name)
                if sidecar in names:
                    self._verify(source_file, os.path.join(dirpath, sidecar))
                shutil.copy2(source_file, os.path.join(target_dir, name))

    def copy_from_local(self, src, dst, delete_source=False):
        """
        Copy the local directory src into the store at dst.

        The tree is written to a hidden sibling of dst and renamed into place,
        so dst either does not exist or is complete.
        """
        src = to_local_path(src)
        dst = to_local_path(dst)
        if not os.path.isdir(src):
            raise FileNotFoundError(f"No such directory: {src}")
        if os.path.exists(dst):
            raise FileExistsError(f"Destination already exists: {dst}")
        self._check_sidecar_collisions(src)

        parent = os.path.dirname(os.path.abspath(dst))
        os.makedirs(parent, exist_ok=True)
        tmp_dst = os.path.join(parent, f".{os.path.basename(dst)}.{uuid.uuid4().hex}.tmp")
        try:
            self._copy_tree_with_checksums(src, tmp_dst)
            os.rename(tmp_dst, dst)
        except Exception:
            shutil.rmtree(tmp_dst, ignore_errors=True)
            raise
        logger.debug(f"Committed {dst}")

        if delete_source:
            shutil.rmtree(src)

    def _check_sidecar_collisions(self, src):
        for dirpath, dirnames, filenames in os.walk(src):
            names = set(filenames)
            for name in filenames:
                if is_checksum_file(name):
                    continue
                sidecar = checksum_file_name(name)
                if sidecar in names:
                    raise ChecksumError(
                        f"Checksum file {os.path.join(dirpath, sidecar)} collides with "
                        f"the checksum computed for {name}"
                    )

    def _copy_tree_with_checksums(self, src, dst):
        for dirpath, dirnames, filenames in os.walk(src):
            target_dir = os.path.normpath(os.path.join(dst, os.path.relpath(dirpath, src)))
            os.makedirs(target_dir, exist_ok=True)
            for name in filenames:
                target_file = os.path.join(target_dir, name)
                shutil.copy2(os.path.join(dirpath, name), target_file)
                with open(os.path.join(target_dir, checksum_file_name(name)), 'w') as f:
                    f.write(f"{_crc32(target_file):08x}\n")

    def _verify(self, path, sidecar_path):
        with open(sidecar_path) as f:
            expected = f.read().strip()
        actual = f"{_crc32(path):08x}"
        if actual != expected:
            raise ChecksumError(f"Checksum mismatch for {path}: expected {expected}, got {actual}")


class S3FileSystem:
    """
    S3 store. A prefix is read as a directory, and a directory written by
    copy_from_local only becomes visible once its _SUCCESS marker exists.
    """
    def __init__(self, s3_client=None, region_name=AWS_REGION, endpoint_url=None):
        self.s3 = s3_client or boto3.client('s3', region_name=region_name, endpoint_url=endpoint_url)

    def exists(self, path):
        """True for an object at path, or a committed directory under it."""
        bucket, key = parse_s3_uri(path)
        if key and self._object_exists(bucket, key):
            return True
        return self._object_exists(bucket, self._marker_key(key))

    def copy_to_local(self, src, dst):
        """Download every object under the src prefix into the local directory dst."""
        bucket, prefix = parse_s3_uri(src)
        dst = os.path.abspath(to_local_path(dst))
        dir_prefix = f"{prefix}/" if prefix else ''

        logger.debug(f"Downloading {src} to local {dst}")
        count = 0
        for key in self._list_keys(bucket, dir_prefix):
            relative = key[len(dir_prefix):]
            if not relative or relative.endswith('/') or relative == SUCCESS_MARKER:
                continue
            target = os.path.normpath(os.path.join(dst, *relative.split('/')))
            if not target.startswith(dst + os.sep):
                raise ValueError(f"Object key {key} escapes the destination directory")
            os.makedirs(os.path.dirname(target), exist_ok=True)
            self.s3.download_file(bucket, key, target)
            count += 1

        if count == 0:
            raise FileNotFoundError(f"No objects found under {src}")
        logger.debug(f"Downloaded {count} objects from {src}")

    def copy_from_local(self, src, dst, delete_source=False):
        """
        Upload the local directory src under the dst prefix, then write the
        _SUCCESS marker. A failed upload removes what it already wrote.

        Objects found under an uncommitted prefix are deleted first, so a
        retried task never publishes files of an earlier attempt.
        """
        src = to_local_path(src)
        if not os.path.isdir(src):
            raise FileNotFoundError(f"No such directory: {src}")
        bucket, prefix = parse_s3_uri(dst)
        if not prefix:
            raise ValueError(f"Refusing to write a directory at the root of bucket {bucket}")
        marker_key = self._marker_key(prefix)
        if self._object_exists(bucket, marker_key):
            raise FileExistsError(f"Destination already exists: {dst}")

        # Objects without a marker are leftovers of an attempt that died mid-upload
        stale = list(self._list_keys(bucket, f"{prefix}/"))
        if stale:
            logger.warning(f"Removing {len(stale)} uncommitted objects under {dst}")
            self._remove_keys(bucket, stale)

        uploaded = []
        try:
            for dirpath, dirnames, filenames in os.walk(src):
                for name in sorted(filenames):
                    local_file = os.path.join(dirpath, name)
                    relative = os.path.relpath(local_file, src).replace(os.sep, '/')
                    key = f"{prefix}/{relative}"
                    self.s3.upload_file(local_file, bucket, key)
                    uploaded.append(key)
            self.s3.put_object(Bucket=bucket, Key=marker_key, Body=b'')
        except Exception as e:
            logger.error(f"Error uploading {src} to {dst}: {e}")
            self._delete_keys(bucket, uploaded)
            raise

        logger.info(f"Uploaded {len(uploaded)} objects to {dst}")
        if delete_source:
            shutil.rmtree(src)

    def _marker_key(self, prefix):
        return f"{prefix}/{SUCCESS_MARKER}" if prefix else SUCCESS_MARKER

    def _object_exists(self, bucket, key):
        try:
            self.s3.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise

    def _list_keys(self, bucket, prefix):
        paginator = self.s3.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for obj in page.get('Contents', []):
                yield obj['Key']

    def _remove_keys(self, bucket, keys):
        for i in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[i:i + DELETE_BATCH_SIZE]
            response = self.s3.delete_objects(
                Bucket=bucket,
                Delete={'Objects': [{'Key': key} for key in batch]}
            )
            errors = response.get('Errors', [])
            if errors:
                raise IOError(f"Could not delete {len(errors)} objects from {bucket}: {errors[0]}")

    def _delete_keys(self, bucket, keys):
        """Best-effort removal of partially uploaded objects."""
        try:
            self._remove_keys(bucket, keys)
        except Exception as e:
            logger.error(f"Error removing partial upload from {bucket}: {e}")
            logger.error(traceback.format_exc())


def get_filesystem(path, conf=None):
    """Return the store that serves path."""
    scheme = get_scheme(path)
    if scheme in ('', 'file'):
        return LocalFileSystem()
    if scheme in ('s3', 's3a'):
        region_name = AWS_REGION
        endpoint_url = None
        if conf is not None:
            region_name = conf.get(AWS_REGION_KEY, AWS_REGION)
            endpoint_url = conf.get(AWS_ENDPOINT_URL_KEY)
        return S3FileSystem(region_name=region_name, endpoint_url=endpoint_url)
    raise ValueError(f"Unsupported filesystem scheme '{scheme}' for path {path}")

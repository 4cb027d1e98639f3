"""
Utility functions for the staged index shard output.
"""
from urllib.parse import urlparse
import logging
import os

from shard_output.common.config import CHECKSUM_SUFFIX

logger = logging.getLogger("storage")


def get_scheme(path):
    """Return the lower-cased URI scheme of a path ('' for plain local paths)."""
    return urlparse(path).scheme.lower()

def parse_s3_uri(uri):
    """Split s3://bucket/some/key into ('bucket', 'some/key')."""
    parsed = urlparse(uri)
    if parsed.scheme.lower() not in ('s3', 's3a'):
        raise ValueError(f"Not an S3 URI: {uri}")
    if not parsed.netloc:
        raise ValueError(f"S3 URI has no bucket: {uri}")
    return parsed.netloc, parsed.path.lstrip('/').rstrip('/')

def to_local_path(path):
    """Strip a file:// scheme, leaving plain local paths untouched."""
    parsed = urlparse(path)
    if parsed.scheme.lower() == 'file':
        return parsed.path
    return path

def join_path(base, *parts):
    """
    Join path components for both local and URI-style paths.

    URI paths are joined with '/' since os.path would mangle the scheme.
    """
    if get_scheme(base) in ('', 'file'):
        return os.path.join(base, *parts)
    result = base.rstrip('/')
    for part in parts:
        result = f"{result}/{part.strip('/')}"
    return result

def path_name(path):
    """Return the last component of a local or URI path."""
    return path.rstrip('/').split('/')[-1]

def size_of_directory(directory):
    """Total size in bytes of all files below a directory."""
    total_size = 0
    for dirpath, dirnames, filenames in os.walk(directory):
        for f in filenames:
            fp = os.path.join(dirpath, f)
            total_size += os.path.getsize(fp)
    return total_size

def checksum_file_name(file_name):
    """Name of the checksum sidecar that covers file_name."""
    return f".{file_name}{CHECKSUM_SUFFIX}"

def is_checksum_file(file_name):
    return file_name.endswith(CHECKSUM_SUFFIX)

def remove_checksum_files(directory):
    """
    Delete every checksum sidecar directly inside directory (one level).

    Returns the list of removed file names.
    """
    removed = []
    if not os.path.isdir(directory):
        return removed
    for name in os.listdir(directory):
        path = os.path.join(directory, name)
        if is_checksum_file(name) and os.path.isfile(path):
            os.remove(path)
            removed.append(name)
    if removed:
        logger.warning(f"Removed {len(removed)} checksum files from {directory}: {removed}")
    return removed

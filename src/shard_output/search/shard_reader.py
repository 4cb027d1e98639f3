"""
Read-back of finished index shards for verification.
"""
import logging
import os
import tempfile

from whoosh.index import open_dir
from whoosh.qparser import QueryParser

from shard_output.storage.filesystem import get_filesystem

logger = logging.getLogger("search")


def open_shard(path, conf=None, local_dir=None):
    """
    Stage the shard at path (local or s3://) into local_dir and open it.

    A shard that was never committed is reported as missing.
    """
    fs = get_filesystem(path, conf)
    if not fs.exists(path):
        raise FileNotFoundError(f"No committed index shard at {path}")

    local_dir = local_dir or os.path.join(tempfile.mkdtemp(prefix='shard_output-read-'), 'index')
    logger.info(f"Loading index shard {path} into {local_dir}")
    fs.copy_to_local(path, local_dir)
    return open_dir(local_dir)

def find_documents(ix, field, text, limit=10):
    """Stored fields of the documents matching text in field."""
    with ix.searcher() as searcher:
        query = QueryParser(field, ix.schema).parse(text)
        logger.debug(f"Parsed query: {query}")
        results = searcher.search(query, limit=limit)
        return [hit.fields() for hit in results]

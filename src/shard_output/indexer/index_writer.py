"""
Local Whoosh index build for one task.

The writer opens the schema of a staged template core, creates a fresh index
in the build's data directory and adds one record at a time. cleanup()
commits and compacts the build down to a bounded number of segments.
"""
from collections.abc import Mapping
import json
import logging
import os
import string
import time

from whoosh.fields import ID, KEYWORD, TEXT
from whoosh.index import EmptyIndexError, create_in, open_dir
from whoosh.reading import SegmentReader

from shard_output.common.config import (
    CORE_CONFIG_NAME, DEFAULT_COMMIT_INTERVAL, DEFAULT_MAX_SEGMENTS,
    INDEX_DIR_NAME, SCHEMA_DIR_NAME, WRITE_LOCK_SUFFIX
)
from shard_output.indexer.keep_alive import send_keep_alive

logger = logging.getLogger("indexer")

_TEXT_LIKE_FIELDS = (TEXT, ID, KEYWORD)


class _PropertyTemplate(string.Template):
    # Property names are dotted, e.g. ${index.data.dir}
    idpattern = r'(?a:[_a-z][_a-z0-9.\-]*)'


def merge_to_limit(max_segments, keep_alive_hook=None):
    """
    Whoosh merge policy that leaves at most max_segments segments.

    The segment being committed takes one slot, so the max_segments - 1
    largest existing segments are kept and the rest are merged into it.
    """
    def policy(writer, segments):
        if len(segments) < max_segments:
            return segments

        by_size = sorted(segments, key=lambda s: s.doc_count_all(), reverse=True)
        keep = by_size[:max_segments - 1]
        merge = by_size[max_segments - 1:]
        logger.info(f"Merging {len(merge)} of {len(segments)} segments")
        for segment in merge:
            reader = SegmentReader(writer.storage, writer.schema, segment)
            try:
                writer.add_reader(reader)
            finally:
                reader.close()
            if keep_alive_hook is not None:
                send_keep_alive(keep_alive_hook)
        return keep
    return policy


class IndexWriter:
    """
    Builds a Whoosh index from records whose values line up with sink_fields.

    Args:
        keep_alive_hook: called during long commits and merges.
        sink_fields: names of the record fields to index, in record order.
        data_dir_property_name: property substituted into the core's dataDir.
        data_dir: local data directory; segments go to <data dir>/index.
        core_dir: local copy of the template core.
        max_segments: upper bound on segments after cleanup().
        commit_interval: documents between intermediate commits (0 disables).
    """
    def __init__(self, keep_alive_hook, sink_fields, data_dir_property_name, data_dir, core_dir,
                 max_segments=DEFAULT_MAX_SEGMENTS, commit_interval=DEFAULT_COMMIT_INTERVAL):
        if max_segments < 1:
            raise ValueError(f"max_segments must be at least 1, got {max_segments}")
        if commit_interval < 0:
            raise ValueError(f"commit_interval must not be negative, got {commit_interval}")

        self._keep_alive_hook = keep_alive_hook
        self._sink_fields = tuple(sink_fields)
        self._max_segments = max_segments
        self._commit_interval = commit_interval
        self.properties = {data_dir_property_name: data_dir} if data_dir_property_name else {}
        self.data_dir = self._resolve_data_dir(core_dir, data_dir)
        self.index_dir = os.path.join(self.data_dir, INDEX_DIR_NAME)
        self.document_count = 0
        self._closed = False

        self._schema = self._load_schema(core_dir)
        missing = [name for name in self._sink_fields if name not in self._schema]
        if missing:
            raise ValueError(f"Sink fields {missing} are not defined in the schema of {core_dir}")

        os.makedirs(self.index_dir, exist_ok=True)
        self._ix = create_in(self.index_dir, self._schema)
        self._writer = self._ix.writer()
        logger.info(f"Index writer ready at {self.index_dir} for fields {list(self._sink_fields)}")

    def _resolve_data_dir(self, core_dir, data_dir):
        config_path = os.path.join(core_dir, CORE_CONFIG_NAME)
        if not os.path.exists(config_path):
            return data_dir
        with open(config_path) as f:
            core_config = json.load(f)

        raw = core_config.get('dataDir')
        if not raw:
            return data_dir
        try:
            resolved = _PropertyTemplate(raw).substitute(self.properties)
        except KeyError as e:
            raise ValueError(f"Cannot resolve dataDir '{raw}' in {config_path}: property {e} is not set") from e
        except ValueError as e:
            raise ValueError(f"Malformed dataDir '{raw}' in {config_path}: {e}") from e

        if not os.path.isabs(resolved):
            resolved = os.path.join(core_dir, resolved)
        logger.debug(f"Resolved dataDir '{raw}' to {resolved}")
        return resolved

    def _load_schema(self, core_dir):
        schema_dir = os.path.join(core_dir, SCHEMA_DIR_NAME)
        if not os.path.isdir(schema_dir):
            raise ValueError(f"Template core {core_dir} has no schema index under {SCHEMA_DIR_NAME}/")
        try:
            template = open_dir(schema_dir)
        except EmptyIndexError as e:
            raise ValueError(f"Template core {core_dir} has no schema index under {SCHEMA_DIR_NAME}/") from e
        try:
            return template.schema
        finally:
            template.close()

    def _to_document(self, record):
        if isinstance(record, (str, bytes)):
            raise ValueError(f"Record must be a sequence or mapping of field values, got {record!r}")
        if isinstance(record, Mapping):
            items = [(name, record.get(name)) for name in self._sink_fields]
        else:
            values = tuple(record)
            if len(values) != len(self._sink_fields):
                raise ValueError(
                    f"Record has {len(values)} values but there are "
                    f"{len(self._sink_fields)} sink fields {list(self._sink_fields)}"
                )
            items = zip(self._sink_fields, values)
        return {name: self._to_field_value(name, value) for name, value in items if value is not None}

    def _to_field_value(self, name, value):
        field = self._schema[name]
        if isinstance(field, _TEXT_LIKE_FIELDS) and not isinstance(value, str):
            if isinstance(value, (list, tuple, set)):
                return ' '.join(str(item) for item in value if item is not None)
            return str(value)
        return value

    def add(self, record):
        """Add one record to the build. Errors propagate to the caller."""
        if self._closed:
            raise RuntimeError(f"Index writer for {self.index_dir} has already been cleaned up")
        self._writer.add_document(**self._to_document(record))
        self.document_count += 1

        if self._commit_interval and self.document_count % self._commit_interval == 0:
            self._commit_pending()

    def _commit_pending(self):
        logger.debug(f"Committing segment after {self.document_count} documents")
        self._writer.commit()
        self._writer = self._ix.writer()
        send_keep_alive(self._keep_alive_hook)

    def cleanup(self, commit=True):
        """
        Finalize the build and release it.

        With commit=True the pending documents are committed and the index is
        compacted to at most max_segments segments. With commit=False pending
        work is discarded. Calling cleanup() again does nothing.
        """
        if self._closed:
            logger.debug(f"Index writer for {self.index_dir} already cleaned up")
            return
        self._closed = True

        try:
            if commit:
                logger.info(f"Finalizing index at {self.index_dir}: {self.document_count} documents, "
                            f"at most {self._max_segments} segments")
                start_time = time.time()
                self._writer.commit(mergetype=merge_to_limit(self._max_segments, self._keep_alive_hook))
                send_keep_alive(self._keep_alive_hook)
                logger.info(f"Index finalized with {self.segment_count()} segments "
                            f"in {time.time() - start_time:.2f} seconds")
            else:
                logger.info(f"Discarding pending work for index at {self.index_dir}")
                self._writer.cancel()
        finally:
            self._ix.close()
            self._remove_lock_files()

    def _remove_lock_files(self):
        # The lock is released by now but its file stays behind
        for name in os.listdir(self.index_dir):
            if name.endswith(WRITE_LOCK_SUFFIX):
                os.remove(os.path.join(self.index_dir, name))
                logger.debug(f"Removed lock file {name} from {self.index_dir}")

    @property
    def closed(self):
        return self._closed

    def segment_count(self):
        """Number of committed segments in the build."""
        ix = open_dir(self.index_dir)
        try:
            return len(ix._segments())
        finally:
            ix.close()

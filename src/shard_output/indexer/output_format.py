"""
Output format that builds an index shard locally inside a task and then moves
the finished index into shared storage.

Per task:
1. stage the template core from shared storage into a uuid-named local
   workspace;
2. forward every record to a local IndexWriter;
3. on close, finalize the build, purge checksum sidecars, and copy the index
   to <task output path>/index while a heartbeat keeps the task alive.
"""
import enum
import logging
import os
import shutil
import tempfile
import traceback
import uuid

from shard_output.common.config import (
    COMMIT_INTERVAL_KEY, CORE_PATH_KEY, DATA_DIR_NAME, DATA_DIR_PROPERTY_NAME_KEY,
    DEFAULT_COMMIT_INTERVAL, DEFAULT_DATA_DIR_PROPERTY_NAME, DEFAULT_MAX_SEGMENTS,
    HEARTBEAT_INTERVAL, HEARTBEAT_INTERVAL_KEY, INDEX_DIR_NAME, KEEP_WORKSPACE_KEY,
    LOCAL_TMP_DIR_KEY, MAX_SEGMENTS_KEY, SINK_FIELDS_KEY, WORKSPACE_PREFIX
)
from shard_output.common.serialization import deserialize_fields, serialize_fields
from shard_output.common.utils import (
    join_path, path_name, remove_checksum_files, size_of_directory
)
from shard_output.indexer.index_writer import IndexWriter
from shard_output.indexer.keep_alive import Heartbeat, ProgressKeepAliveHook
from shard_output.storage.filesystem import get_filesystem

logger = logging.getLogger("indexer")


class WriterStateError(RuntimeError):
    """A record writer was used outside the state that allows the call."""


class WriterState(enum.Enum):
    WRITING = 'writing'
    CLOSING = 'closing'
    CLOSED = 'closed'
    FAILED = 'failed'


class IndexRecordWriter:
    """
    Record writer for one task. Use it as a context manager so the local
    build is released on every exit path:

        with output_format.get_record_writer(conf, 'part-00000', reporter.progress) as writer:
            for key, value in records:
                writer.write(key, value)

    A clean exit closes the writer (publishing the index); an exception
    abandons the build and publishes nothing.
    """
    def __init__(self, conf, name, progress, fields_codec=deserialize_fields):
        source_path = conf.get(CORE_PATH_KEY)
        if not source_path:
            raise ValueError(f"Template core path is not set ({CORE_PATH_KEY})")

        self.name = name
        self._keep_workspace = conf.get_bool(KEEP_WORKSPACE_KEY, False)
        self._index_writer = None
        tmp_root = conf.get(LOCAL_TMP_DIR_KEY) or tempfile.gettempdir()
        self.workspace = os.path.join(tmp_root, f"{WORKSPACE_PREFIX}{uuid.uuid4()}")

        try:
            # Copy the template core from shared storage to the local workspace
            local_core = os.path.join(self.workspace, path_name(source_path))
            logger.info(f"[{name}] Staging template core {source_path} to {local_core}")
            source_fs = get_filesystem(source_path, conf)
            source_fs.copy_to_local(source_path, local_core)

            # Figure out where the results ultimately need to wind up
            self.output_path = join_path(conf.get_task_output_path(name), INDEX_DIR_NAME)
            self._output_fs = get_filesystem(self.output_path, conf)

            # The set of fields we're indexing
            sink_fields = fields_codec(conf.get(SINK_FIELDS_KEY))

            max_segments = conf.get_int(MAX_SEGMENTS_KEY, DEFAULT_MAX_SEGMENTS)
            data_dir_property_name = conf.get(DATA_DIR_PROPERTY_NAME_KEY, DEFAULT_DATA_DIR_PROPERTY_NAME)
            commit_interval = conf.get_int(COMMIT_INTERVAL_KEY, DEFAULT_COMMIT_INTERVAL)
            self._heartbeat_interval = conf.get_float(HEARTBEAT_INTERVAL_KEY, HEARTBEAT_INTERVAL)
            if self._heartbeat_interval <= 0:
                raise ValueError(f"{HEARTBEAT_INTERVAL_KEY} must be positive, got {self._heartbeat_interval}")

            # Segments are built inside <workspace>/data/index
            self.local_data_dir = os.path.join(self.workspace, DATA_DIR_NAME)

            self._keep_alive_hook = ProgressKeepAliveHook(progress)
            self._index_writer = IndexWriter(
                self._keep_alive_hook, sink_fields, data_dir_property_name,
                self.local_data_dir, local_core, max_segments, commit_interval
            )
        except Exception:
            logger.error(f"[{name}] Failed to set up record writer, removing {self.workspace}")
            self._remove_workspace(force=True)
            raise

        self.state = WriterState.WRITING

    def write(self, key, value):
        """Add value to the index. key carries nothing the index needs."""
        if self.state is not WriterState.WRITING:
            raise WriterStateError(f"[{self.name}] Cannot write to a record writer that is {self.state.value}")
        try:
            self._index_writer.add(value)
        except Exception:
            self.state = WriterState.FAILED
            self._abandon()
            raise

    def close(self):
        """
        Finalize the local build and move it to the output location.

        May only be called once; a second call raises WriterStateError rather
        than finalizing the build again.
        """
        if self.state is not WriterState.WRITING:
            raise WriterStateError(f"[{self.name}] Cannot close a record writer that is {self.state.value}")
        self.state = WriterState.CLOSING

        try:
            self._index_writer.cleanup()

            # Finally we can copy the resulting index up to the target location
            self._copy_to_output()
        except Exception:
            self.state = WriterState.FAILED
            logger.error(f"[{self.name}] Failed to publish index to {self.output_path}")
            raise
        finally:
            self._remove_workspace()

        self.state = WriterState.CLOSED
        logger.info(f"[{self.name}] Index published to {self.output_path}")

    def abort(self):
        """Abandon the build without publishing anything. Safe on any state."""
        if self.state in (WriterState.CLOSED, WriterState.FAILED):
            return
        self.state = WriterState.FAILED
        self._abandon()

    def _copy_to_output(self):
        index_dir = self._index_writer.index_dir

        # Leftover local checksum files would collide with the checksums the
        # shared store computes on ingest, so they must go before the copy.
        remove_checksum_files(index_dir)

        # Nothing is written record by record during the copy, so tell the
        # job framework we're not hung.
        with Heartbeat(self._keep_alive_hook, self._heartbeat_interval, name=f"keep-alive-{self.name}"):
            index_size = size_of_directory(index_dir)
            logger.info(f"[{self.name}] Copying {index_size} bytes of index from {self.local_data_dir} "
                        f"to {self.output_path}")
            self._output_fs.copy_from_local(index_dir, self.output_path, delete_source=True)

    def _abandon(self):
        """Release the local build after a failure. Never raises."""
        try:
            if self._index_writer is not None:
                self._index_writer.cleanup(commit=False)
        except Exception as e:
            logger.error(f"[{self.name}] Error releasing index writer: {e}")
            logger.error(traceback.format_exc())
        self._remove_workspace()

    def _remove_workspace(self, force=False):
        if self._keep_workspace and not force:
            logger.info(f"[{self.name}] Keeping local workspace {self.workspace}")
            return
        try:
            shutil.rmtree(self.workspace)
            logger.debug(f"[{self.name}] Removed local workspace {self.workspace}")
        except FileNotFoundError:
            pass
        except Exception as e:
            logger.error(f"[{self.name}] Error removing local workspace {self.workspace}: {e}")
            logger.error(traceback.format_exc())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            if self.state is WriterState.WRITING:
                self.close()
        else:
            self.abort()
        return False


class IndexOutputFormat:
    """Creates one IndexRecordWriter per task and validates job settings."""
    def __init__(self, fields_codec=deserialize_fields):
        self._fields_codec = fields_codec

    @staticmethod
    def configure(conf, core_path, sink_fields, max_segments=DEFAULT_MAX_SEGMENTS,
                  data_dir_property_name=DEFAULT_DATA_DIR_PROPERTY_NAME):
        """Store the settings record writers read from the job configuration."""
        conf.set(CORE_PATH_KEY, core_path)
        conf.set(SINK_FIELDS_KEY, serialize_fields(sink_fields))
        conf.set(MAX_SEGMENTS_KEY, max_segments)
        conf.set(DATA_DIR_PROPERTY_NAME_KEY, data_dir_property_name)
        return conf

    def check_output_specs(self, conf):
        """Fail fast on settings every task would trip over."""
        if not conf.get(CORE_PATH_KEY):
            raise ValueError(f"Template core path is not set ({CORE_PATH_KEY})")
        self._fields_codec(conf.get(SINK_FIELDS_KEY))
        max_segments = conf.get_int(MAX_SEGMENTS_KEY, DEFAULT_MAX_SEGMENTS)
        if max_segments < 1:
            raise ValueError(f"{MAX_SEGMENTS_KEY} must be at least 1, got {max_segments}")
        if conf.get_float(HEARTBEAT_INTERVAL_KEY, HEARTBEAT_INTERVAL) <= 0:
            raise ValueError(f"{HEARTBEAT_INTERVAL_KEY} must be positive")
        conf.get_output_path()

    def get_record_writer(self, conf, name, progress):
        return IndexRecordWriter(conf, name, progress, fields_codec=self._fields_codec)

"""
Local job runner: drives one or more index-building tasks through an output
format in this process, the way a batch framework would on its workers.
"""
from concurrent.futures import ThreadPoolExecutor
import argparse
import json
import logging
import threading
import time

from shard_output.common.config import (
    DEFAULT_MAX_SEGMENTS, HEARTBEAT_INTERVAL_KEY, LOCAL_TMP_DIR_KEY, OUTPUT_DIR_KEY
)
from shard_output.indexer.output_format import IndexOutputFormat
from shard_output.job.job_conf import JobConf

logger = logging.getLogger("job")


def configure_logging(level=logging.INFO):
    """Configure logging for scripts that run jobs."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] [%(name)s] %(message)s'
    )

def task_name(partition):
    """Output name of the task for a partition, e.g. part-00003."""
    return f"part-{partition:05d}"


class TaskReporter:
    """Liveness callback handed to a task; counts progress reports."""
    def __init__(self, name):
        self.name = name
        self.progress_count = 0
        self.last_progress = time.time()
        self._lock = threading.Lock()

    def progress(self):
        with self._lock:
            self.progress_count += 1
            self.last_progress = time.time()
        logger.debug(f"[{self.name}] progress reported ({self.progress_count})")

    def seconds_since_progress(self):
        return time.time() - self.last_progress


def run_task(output_format, conf, name, records, reporter=None):
    """
    Run one task: write every (key, value) pair in records and publish the
    index. Returns the task's output location.
    """
    reporter = reporter or TaskReporter(name)
    start_time = time.time()
    count = 0

    with output_format.get_record_writer(conf, name, reporter.progress) as writer:
        for key, value in records:
            writer.write(key, value)
            count += 1
            reporter.progress()

    logger.info(f"[{name}] Task completed: {count} records in {time.time() - start_time:.2f} seconds")
    return writer.output_path

def run_job(conf, partitions, output_format=None, max_workers=None):
    """
    Run one task per partition concurrently.

    partitions is a list of iterables of (key, value) pairs; partition i is
    written by task part-0000i. Returns the output locations in partition
    order. Any task failure fails the job.
    """
    output_format = output_format or IndexOutputFormat()
    output_format.check_output_specs(conf)

    logger.info(f"Starting job with {len(partitions)} tasks, output to {conf.get_output_path()}")
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(run_task, output_format, conf, task_name(i), records)
            for i, records in enumerate(partitions)
        ]
        output_paths = [future.result() for future in futures]

    logger.info(f"Job completed: {len(output_paths)} index shards written")
    return output_paths

def read_json_lines(path):
    """Yield (line number, record) for a file with one JSON object per line."""
    with open(path) as f:
        for line_number, line in enumerate(f, 1):
            line = line.strip()
            if line:
                yield line_number, json.loads(line)

def main(argv=None):
    """Build one index shard per JSON-lines input file."""
    parser = argparse.ArgumentParser(description='Build index shards from JSON-lines files')
    parser.add_argument('inputs', nargs='+', help='JSON-lines files, one task per file')
    parser.add_argument('--core', required=True, help='Template core path (local or s3://)')
    parser.add_argument('--output', required=True, help='Job output directory (local or s3://)')
    parser.add_argument('--fields', nargs='+', required=True, help='Record fields to index')
    parser.add_argument('--max-segments', type=int, default=DEFAULT_MAX_SEGMENTS,
                        help='Segments per shard after finalizing')
    parser.add_argument('--heartbeat-interval', type=float, help='Seconds between keep-alive calls')
    parser.add_argument('--tmp-dir', help='Root of local staging workspaces')
    parser.add_argument('--workers', type=int, help='Tasks run at once')
    parser.add_argument('--log-level', default='INFO', help='Logging level')
    args = parser.parse_args(argv)

    configure_logging(getattr(logging, args.log_level.upper(), logging.INFO))

    conf = JobConf({OUTPUT_DIR_KEY: args.output})
    if args.heartbeat_interval is not None:
        conf.set(HEARTBEAT_INTERVAL_KEY, args.heartbeat_interval)
    if args.tmp_dir:
        conf.set(LOCAL_TMP_DIR_KEY, args.tmp_dir)
    IndexOutputFormat.configure(conf, args.core, args.fields, args.max_segments)

    partitions = [read_json_lines(path) for path in args.inputs]
    output_paths = run_job(conf, partitions, max_workers=args.workers)
    for path in output_paths:
        print(path)
    return output_paths

if __name__ == "__main__":
    main()

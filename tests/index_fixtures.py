"""
Shared fixtures for the index shard tests.
"""
import os
import threading
import time

from shard_output.common.config import (
    COMMIT_INTERVAL_KEY, HEARTBEAT_INTERVAL_KEY, LOCAL_TMP_DIR_KEY, OUTPUT_DIR_KEY
)
from shard_output.indexer.keep_alive import KeepAliveHook
from shard_output.indexer.output_format import IndexOutputFormat
from shard_output.indexer.template import create_template_core
from shard_output.job.job_conf import JobConf

SINK_FIELDS = ('url', 'title', 'content')

TEST_DOCUMENTS = [
    ('https://example.com/python', 'Python Programming',
     'Python is a high-level programming language used for distributed systems.'),
    ('https://example.com/java', 'Java Programming',
     'Java is a class-based language that runs on billions of devices.'),
    ('https://example.com/crawler', 'Web Crawler',
     'A distributed crawler fetches pages and hands them to the indexer.'),
    ('https://example.com/search', 'Search Engines',
     'Search engines rank documents with BM25 scoring over an inverted index.'),
]

FAUX_AWS_ENV = {
    'AWS_ACCESS_KEY_ID': 'testing',
    'AWS_SECRET_ACCESS_KEY': 'testing',
    'AWS_SECURITY_TOKEN': 'testing',
    'AWS_SESSION_TOKEN': 'testing',
    'AWS_DEFAULT_REGION': 'us-east-1',
}


def make_documents(prefix, count):
    """count distinct (url, title, content) records tagged with prefix."""
    return [
        (f"https://{prefix}.example.com/{i}", f"{prefix} page {i}", f"{prefix} body text number {i}")
        for i in range(count)
    ]

def make_core(root, name='documents', **kwargs):
    """Create a template core under root/cores and return its path."""
    return create_template_core(os.path.join(root, 'cores', name), **kwargs)

def make_job_conf(root, core_path, output_dir=None, heartbeat_interval=0.05, extra=None):
    """Job configuration with local staging under root/local."""
    conf = JobConf({
        OUTPUT_DIR_KEY: output_dir or os.path.join(root, 'shared', 'output'),
        LOCAL_TMP_DIR_KEY: os.path.join(root, 'local'),
        HEARTBEAT_INTERVAL_KEY: heartbeat_interval,
        COMMIT_INTERVAL_KEY: 1000,
    })
    os.makedirs(conf.get(LOCAL_TMP_DIR_KEY), exist_ok=True)
    IndexOutputFormat.configure(conf, core_path, SINK_FIELDS)
    for key, value in (extra or {}).items():
        conf.set(key, value)
    return conf


class RecordingProgress:
    """Progress callback that remembers when it was called."""
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls.append(time.monotonic())

    @property
    def count(self):
        with self._lock:
            return len(self.calls)

    def calls_between(self, start, end):
        with self._lock:
            return [t for t in self.calls if start <= t <= end]


class RecordingHook(KeepAliveHook):
    """Keep-alive hook that counts calls and can be told to fail."""
    def __init__(self, fail=False):
        self.progress = RecordingProgress()
        self.fail = fail

    def keep_alive(self):
        self.progress()
        if self.fail:
            raise RuntimeError("job framework unavailable")

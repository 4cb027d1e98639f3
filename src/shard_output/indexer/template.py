"""
Template cores: the schema-only index structure every task starts its build from.

A core is a directory holding an empty Whoosh index under conf/ (its schema
is the build schema) and an optional core.json whose "dataDir" entry names
the build's data directory through a ${property} placeholder.
"""
import json
import logging
import os

from whoosh.analysis import StemmingAnalyzer
from whoosh.fields import DATETIME, ID, KEYWORD, STORED, TEXT, Schema
from whoosh.index import create_in

from shard_output.common.config import (
    CORE_CONFIG_NAME, DEFAULT_DATA_DIR_PROPERTY_NAME, SCHEMA_DIR_NAME
)

logger = logging.getLogger("indexer")


def default_schema():
    """Schema for crawled web documents."""
    return Schema(
        url=ID(stored=True, unique=True),
        title=TEXT(stored=True, analyzer=StemmingAnalyzer()),
        description=TEXT(stored=True, analyzer=StemmingAnalyzer()),
        content=TEXT(analyzer=StemmingAnalyzer(), stored=True),
        keywords=KEYWORD(stored=True, commas=False, lowercase=True),
        domain=STORED,
        crawl_time=DATETIME(stored=True),
    )

def create_template_core(core_dir, schema=None, data_dir_property_name=DEFAULT_DATA_DIR_PROPERTY_NAME):
    """
    Write a template core to the local directory core_dir.

    Passing data_dir_property_name=None leaves out core.json, in which case
    builds use the data directory they are given as-is.
    """
    schema = schema or default_schema()
    schema_dir = os.path.join(core_dir, SCHEMA_DIR_NAME)
    os.makedirs(schema_dir, exist_ok=True)
    create_in(schema_dir, schema).close()

    if data_dir_property_name:
        with open(os.path.join(core_dir, CORE_CONFIG_NAME), 'w') as f:
            json.dump({'dataDir': f"${{{data_dir_property_name}}}"}, f, indent=2)

    logger.info(f"Created template core at {core_dir} with fields {schema.names()}")
    return core_dir

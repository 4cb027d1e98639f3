"""
Codec for the sink-fields descriptor carried in the job configuration.

The descriptor travels as a base64 string holding a JSON list of field names,
so it survives any string-valued configuration store.
"""
import base64
import binascii
import json


def serialize_fields(fields):
    """Encode a sequence of field names for the job configuration."""
    if isinstance(fields, str):
        raise ValueError(f"Expected a sequence of field names, got the string {fields!r}")
    names = list(fields)
    for name in names:
        if not isinstance(name, str) or not name:
            raise ValueError(f"Field names must be non-empty strings, got {name!r}")
    payload = json.dumps(names).encode('utf-8')
    return base64.b64encode(payload).decode('ascii')

def deserialize_fields(blob):
    """Decode a descriptor produced by serialize_fields into a tuple of names."""
    if not blob:
        raise ValueError("Sink fields descriptor is empty")
    try:
        names = json.loads(base64.b64decode(blob, validate=True).decode('utf-8'))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Could not decode sink fields descriptor: {e}") from e

    if not isinstance(names, list) or not names:
        raise ValueError(f"Sink fields descriptor must be a non-empty list, got {names!r}")
    if not all(isinstance(name, str) and name for name in names):
        raise ValueError(f"Sink fields must be non-empty strings, got {names!r}")
    if len(set(names)) != len(names):
        raise ValueError(f"Sink fields contain duplicates: {names!r}")
    return tuple(names)

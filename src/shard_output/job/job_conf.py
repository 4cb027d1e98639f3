"""
Key/value job configuration shared by every task of a job.
"""
from shard_output.common.config import OUTPUT_DIR_KEY
from shard_output.common.utils import join_path

_TRUE_VALUES = ('1', 'true', 'yes', 'on')
_FALSE_VALUES = ('0', 'false', 'no', 'off')


class JobConf:
    """
    String-keyed job configuration.

    Values are set while the job is being set up and only read once tasks run.
    """
    def __init__(self, values=None):
        self._values = dict(values or {})

    def __contains__(self, key):
        return key in self._values

    def __repr__(self):
        return f"JobConf({self._values!r})"

    def set(self, key, value):
        self._values[key] = value

    def get(self, key, default=None):
        value = self._values.get(key)
        return default if value is None else value

    def get_int(self, key, default=None):
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Configuration value for {key} is not an integer: {value!r}") from e

    def get_float(self, key, default=None):
        value = self.get(key)
        if value is None:
            return default
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Configuration value for {key} is not a number: {value!r}") from e

    def get_bool(self, key, default=False):
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ValueError(f"Configuration value for {key} is not a boolean: {value!r}")

    def get_output_path(self):
        """The job's output directory."""
        output_path = self.get(OUTPUT_DIR_KEY)
        if not output_path:
            raise ValueError(f"Job output directory is not set ({OUTPUT_DIR_KEY})")
        return output_path

    def get_task_output_path(self, name):
        """Where the task called name writes its output."""
        return join_path(self.get_output_path(), name)

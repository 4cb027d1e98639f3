"""
Tests for the job configuration and the sink-fields codec.
"""
import unittest

from shard_output.common.config import MAX_SEGMENTS_KEY, OUTPUT_DIR_KEY
from shard_output.common.serialization import deserialize_fields, serialize_fields
from shard_output.job.job_conf import JobConf


class TestJobConf(unittest.TestCase):
    def test_typed_getters(self):
        conf = JobConf({MAX_SEGMENTS_KEY: '4', 'interval': '2.5', 'flag': 'yes'})
        self.assertEqual(conf.get_int(MAX_SEGMENTS_KEY, 10), 4)
        self.assertEqual(conf.get_float('interval'), 2.5)
        self.assertTrue(conf.get_bool('flag'))

    def test_defaults_for_missing_keys(self):
        conf = JobConf()
        self.assertEqual(conf.get_int(MAX_SEGMENTS_KEY, 10), 10)
        self.assertIsNone(conf.get('missing'))
        self.assertFalse(conf.get_bool('missing'))

    def test_invalid_values_raise(self):
        conf = JobConf({MAX_SEGMENTS_KEY: 'ten', 'flag': 'maybe'})
        with self.assertRaises(ValueError):
            conf.get_int(MAX_SEGMENTS_KEY)
        with self.assertRaises(ValueError):
            conf.get_bool('flag')

    def test_task_output_path_local(self):
        conf = JobConf({OUTPUT_DIR_KEY: '/data/job'})
        self.assertEqual(conf.get_task_output_path('part-00001'), '/data/job/part-00001')

    def test_task_output_path_s3(self):
        conf = JobConf({OUTPUT_DIR_KEY: 's3://bucket/job/'})
        self.assertEqual(conf.get_task_output_path('part-00001'), 's3://bucket/job/part-00001')

    def test_missing_output_dir(self):
        with self.assertRaises(ValueError):
            JobConf().get_task_output_path('part-00000')


class TestFieldsCodec(unittest.TestCase):
    def test_round_trip(self):
        blob = serialize_fields(['url', 'title', 'content'])
        self.assertIsInstance(blob, str)
        self.assertEqual(deserialize_fields(blob), ('url', 'title', 'content'))

    def test_rejects_garbage(self):
        for blob in (None, '', 'not base64!!', serialize_fields(['a', 'a'])):
            with self.subTest(blob=blob):
                with self.assertRaises(ValueError):
                    deserialize_fields(blob)

    def test_rejects_plain_string(self):
        with self.assertRaises(ValueError):
            serialize_fields('url')


if __name__ == '__main__':
    unittest.main()

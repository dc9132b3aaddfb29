"""Tests for conf -- config file loading and settings accessors."""

import json
import logging
import os
import tempfile
import unittest
from unittest.mock import patch

from relacon import conf


class ConfTestCase(unittest.TestCase):
    """Points CONFIG_PATH at a temp file for each test."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, 'config.json')
        self.patcher = patch('relacon.conf.CONFIG_PATH', self.path)
        self.patcher.start()
        self.env = patch.dict(os.environ, {}, clear=False)
        self.env.start()
        os.environ.pop(conf.BACKEND_ENV, None)

    def tearDown(self):
        self.env.stop()
        self.patcher.stop()
        self.tmp.cleanup()

    def write(self, data):
        with open(self.path, 'w') as f:
            if isinstance(data, str):
                f.write(data)
            else:
                json.dump(data, f)


class TestLoadConfig(ConfTestCase):

    def test_missing_file(self):
        self.assertEqual(conf.load_config(), {})

    def test_corrupt_file(self):
        self.write('{not json')
        self.assertEqual(conf.load_config(), {})

    def test_non_object(self):
        self.write([1, 2])
        self.assertEqual(conf.load_config(), {})

    def test_round_trip(self):
        self.write({'backend': 'hidapi'})
        self.assertEqual(conf.load_config(), {'backend': 'hidapi'})


class TestBackendName(ConfTestCase):

    def test_default_none(self):
        self.assertIsNone(conf.get_backend_name())

    def test_from_config(self):
        self.write({'backend': 'hidapi'})
        self.assertEqual(conf.get_backend_name(), 'hidapi')

    def test_env_overrides_config(self):
        self.write({'backend': 'hidapi'})
        os.environ[conf.BACKEND_ENV] = 'pyusb'
        self.assertEqual(conf.get_backend_name(), 'pyusb')


class TestLogLevel(ConfTestCase):

    def test_default_warning(self):
        self.assertEqual(conf.get_log_level(), logging.WARNING)

    def test_configured(self):
        self.write({'log_level': 'debug'})
        self.assertEqual(conf.get_log_level(), logging.DEBUG)

    def test_unknown_level(self):
        self.write({'log_level': 'chatty'})
        self.assertEqual(conf.get_log_level(), logging.WARNING)


class TestResponseTimeout(ConfTestCase):

    def test_default(self):
        self.assertEqual(conf.get_response_timeout_ms(), 500)

    def test_configured(self):
        self.write({'response_timeout_ms': 1000})
        self.assertEqual(conf.get_response_timeout_ms(), 1000)

    def test_infinite_allowed(self):
        self.write({'response_timeout_ms': -1})
        self.assertEqual(conf.get_response_timeout_ms(), -1)

    def test_invalid_values(self):
        for value in (-5, 'soon', True, 1.5):
            self.write({'response_timeout_ms': value})
            self.assertEqual(conf.get_response_timeout_ms(), 500, value)


class TestFilterCollectionUsage(ConfTestCase):

    def test_default_platform(self):
        self.assertIsNone(conf.get_filter_collection_usage())

    def test_forced(self):
        self.write({'filter_collection_usage': False})
        self.assertIs(conf.get_filter_collection_usage(), False)

    def test_invalid(self):
        self.write({'filter_collection_usage': 'yes'})
        self.assertIsNone(conf.get_filter_collection_usage())


if __name__ == '__main__':
    unittest.main()

import importlib
import os
import unittest
from configparser import NoOptionError
from unittest.mock import patch

from keydoor import config
from keydoor.common.exception import ConfigurationError

DATA_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "data"))
CONFIG_DIR = os.path.abspath(os.path.join(DATA_DIR, "config"))


def use_files(*names, snippets=""):
    config.CONFIG_FILES = {"door": [os.path.join(CONFIG_DIR, n) for n in names]}
    config.CONFIG_ENV = {"door": ""}
    config.CONFIG_SNIPPETS_DIRS = {"door": [os.path.join(CONFIG_DIR, snippets)] if snippets else ""}


class TestConfig(unittest.TestCase):
    def tearDown(self):
        """The config module should be reloaded."""
        # Because we can alter global state, we should reload the
        # config module after every test
        importlib.reload(config)

    def test_default_config_files(self):
        """Test default config file list."""
        self.assertEqual(
            config.CONFIG_FILES,
            {
                "door": ["/etc/keydoor/door.conf", "/usr/etc/keydoor/door.conf"],
                "logging": ["/etc/keydoor/logging.conf", "/usr/etc/keydoor/logging.conf"],
            },
        )

    def test_no_component(self):
        """Test that no component causes exception"""
        self.assertRaises(Exception, config.get, "", "option")

    def test_invalid_component(self):
        """Test that invalid component causes exception"""
        self.assertRaises(Exception, config.get_config, "test")

    def test_first_base_file_used(self):
        """Test giving multiple possibilities for base file."""
        use_files("door-1.conf", "door-2.conf")
        c = config.get_config("door")
        self.assertEqual(c.get("door", "door_id"), "3")

    def test_missing_base_file_ignored(self):
        """Test that if a file is missing, it tries the next."""
        use_files("non-existent.conf", "door-2.conf")
        c = config.get_config("door")
        self.assertEqual(c.get("door", "door_id"), "9")
        self.assertRaises(NoOptionError, c.get, "door", "bridge_url")

    def test_merge_snippets(self):
        """Test that snippets are applied in lexical order."""
        use_files("door-1.conf", snippets="door.conf.d")
        c = config.get_config("door")
        self.assertEqual(c.get("door", "unlock_duration"), "6")
        self.assertEqual(c.get("door", "door_id"), "4")
        self.assertEqual(c.get("door", "session_label"), "front door")

    def test_config_from_environment_file(self):
        """Test that a file set through environment variable takes precedence."""
        use_files("door-1.conf", snippets="door.conf.d")
        config.CONFIG_ENV = {"door": os.path.join(CONFIG_DIR, "door-2.conf")}
        c = config.get_config("door")
        self.assertEqual(c.get("door", "door_id"), "9")
        self.assertFalse(c.has_option("door", "unlock_duration"))

    def test_cache_config(self):
        """Test the config is properly cached between calls."""
        use_files("door-2.conf")
        c = config.get_config("door")
        c.set("door", "attribute", "value")
        self.assertEqual(config.get_config("door").get("door", "attribute"), "value")

        config.reset()
        self.assertFalse(config.get_config("door").has_option("door", "attribute"))

    def test_env_override(self):
        """Test that single options can be overridden by environment variables."""
        use_files("door-2.conf")
        with patch.dict(os.environ, {"KEYDOOR_DOOR_DOOR_ID": "12"}):
            self.assertEqual(config.get("door", "door_id"), "12")
            self.assertTrue(config.has_option("door", "door_id"))
        self.assertEqual(config.get("door", "door_id"), "9")

    def test_getlist(self):
        use_files("door-1.conf")
        self.assertEqual(config.getlist("door", "auth_scopes"), ["door:unlock", "door:front"])
        with patch.dict(os.environ, {"KEYDOOR_DOOR_AUTH_SCOPES": "not a list"}):
            self.assertRaises(Exception, config.getlist, "door", "auth_scopes")

    def test_environ_bool(self):
        with patch.dict(os.environ, {"KEYDOOR_FLAG": "on"}):
            self.assertTrue(config.environ_bool("KEYDOOR_FLAG", False))
        with patch.dict(os.environ, {"KEYDOOR_FLAG": "maybe"}):
            self.assertRaises(ValueError, config.environ_bool, "KEYDOOR_FLAG", False)
        self.assertTrue(config.environ_bool("KEYDOOR_UNSET_FLAG", True))


class TestLoadDoorConfig(unittest.TestCase):
    def tearDown(self):
        importlib.reload(config)

    def test_load(self):
        use_files("door-1.conf")
        door_config = config.load_door_config()

        self.assertEqual(door_config.database_url, "sqlite:////tmp/keydoor-test.sqlite")
        self.assertEqual(door_config.door_id, 3)
        self.assertEqual(door_config.bridge_url, "http://127.0.0.1:8890")
        self.assertEqual(door_config.actuator_url, "http://127.0.0.1:8891")
        self.assertEqual(door_config.session_label, "front door")
        self.assertEqual(door_config.session_visibility, "public")
        self.assertEqual(door_config.session_retry_interval, 2.5)
        self.assertEqual(door_config.auth_scopes, ("door:unlock", "door:front"))
        self.assertIsNone(door_config.unlock_duration)
        self.assertEqual(door_config.request_timeout, 10.0)
        self.assertTrue(door_config.auto_create_db)

    def test_snippet_duration(self):
        use_files("door-1.conf", snippets="door.conf.d")
        door_config = config.load_door_config()
        self.assertEqual(door_config.unlock_duration, 6)
        self.assertEqual(door_config.door_id, 4)

    def test_defaults(self):
        use_files("door-invalid.conf")
        with patch.dict(os.environ, {"KEYDOOR_DOOR_DOOR_ID": "2"}):
            door_config = config.load_door_config()
        self.assertEqual(door_config.session_label, "keydoor")
        self.assertEqual(door_config.session_visibility, "private")
        self.assertEqual(door_config.session_retry_interval, config.DEFAULT_SESSION_RETRY_INTERVAL)
        self.assertEqual(door_config.auth_scopes, ("door:unlock",))
        self.assertEqual(door_config.request_timeout, config.DEFAULT_TIMEOUT)
        self.assertFalse(door_config.auto_create_db)

    def test_missing_required_option(self):
        use_files("door-2.conf")
        with self.assertRaises(ConfigurationError) as cm:
            config.load_door_config()
        self.assertIn("database_url", str(cm.exception))

    def test_no_config_file(self):
        use_files("non-existent.conf")
        self.assertRaises(ConfigurationError, config.load_door_config)

    def test_invalid_door_id(self):
        use_files("door-invalid.conf")
        with self.assertRaises(ConfigurationError) as cm:
            config.load_door_config()
        self.assertIn("door_id", str(cm.exception))

    def test_invalid_visibility(self):
        use_files("door-1.conf")
        with patch.dict(os.environ, {"KEYDOOR_DOOR_SESSION_VISIBILITY": "hidden"}):
            self.assertRaises(ConfigurationError, config.load_door_config)

    def test_invalid_duration(self):
        use_files("door-1.conf")
        with patch.dict(os.environ, {"KEYDOOR_DOOR_UNLOCK_DURATION": "long"}):
            self.assertRaises(ConfigurationError, config.load_door_config)


if __name__ == "__main__":
    unittest.main()

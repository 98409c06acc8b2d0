import asyncio
import unittest

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from keydoor.allowlist_store import AllowListStore, validate_npub
from keydoor.common.exception import InvalidIdentityKey, StoreError
from keydoor.db.allowlist_db import AllowListEntry
from keydoor.db.keydoor_db import SessionManager

# BEGIN TEST DATA

npub_alice = "npub1sg6plzptd64u62a878hep2kev88swjh3tw00gjsfl8f237lmu63q0uf63m"
npub_bob = "npub180cvv07tjdrrgpa0j7j7tmnyl2yr6yr7l8j4s3evf6u64th6gkwsyjh6w6"
npub_carol = "npub1xtscya34g58tk0z605fvr788k263gsu6cy9x0mhnm87echrgufzsevkk5s"

# END TEST DATA


def memory_engine():
    # a single shared connection, since lookups run in executor threads
    return create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)


class TestAllowListStore(unittest.TestCase):
    def setUp(self):
        self.engine = memory_engine()
        self.store = AllowListStore(self.engine)
        self.store.create_schema()
        self.alice = self.store.add_key(npub_alice, nip05="alice@example.com", profile_name="Alice")
        self.bob = self.store.add_key(npub_bob, profile_name="Bob")
        self.store.toggle_key(self.bob.id)

    def tearDown(self):
        self.engine.dispose()

    def test_01_new_key_is_enabled(self):
        session = SessionManager().make_session(self.engine)
        entry = session.query(AllowListEntry).filter_by(npub=npub_alice).one()
        self.assertTrue(entry.status)
        self.assertEqual(entry.nip05, "alice@example.com")
        self.assertEqual(entry.profile_name, "Alice")
        self.assertIsNotNone(entry.created_at)
        self.assertEqual(len(entry.id), 36)
        session.close()

    def test_02_is_enabled(self):
        self.assertTrue(asyncio.run(self.store.is_enabled(npub_alice)))

    def test_03_disabled_key_is_not_enabled(self):
        self.assertFalse(asyncio.run(self.store.is_enabled(npub_bob)))

    def test_04_unknown_key_is_not_an_error(self):
        self.assertFalse(asyncio.run(self.store.is_enabled(npub_carol)))

    def test_05_toggle_back(self):
        self.store.toggle_key(self.bob.id)
        self.assertTrue(asyncio.run(self.store.is_enabled(npub_bob)))

    def test_06_duplicate_key(self):
        with self.assertRaises(StoreError):
            self.store.add_key(npub_alice)

    def test_07_list_keys_newest_first(self):
        carol = self.store.add_key(npub_carol)
        keys = self.store.list_keys()
        self.assertEqual([k.npub for k in keys][0], carol.npub)
        self.assertEqual(len(keys), 3)

    def test_08_delete_key(self):
        self.store.delete_key(self.alice.id)
        self.assertFalse(asyncio.run(self.store.is_enabled(npub_alice)))
        self.assertEqual([k.npub for k in self.store.list_keys()], [npub_bob])

    def test_09_storage_error_is_raised(self):
        broken = AllowListStore(memory_engine())
        with self.assertRaises(StoreError):
            asyncio.run(broken.is_enabled(npub_alice))


class TestValidateNpub(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(validate_npub(f"  {npub_alice}\n"), npub_alice)

    def test_wrong_prefix(self):
        self.assertRaises(InvalidIdentityKey, validate_npub, "nsec1" + npub_alice[5:])

    def test_wrong_length(self):
        self.assertRaises(InvalidIdentityKey, validate_npub, npub_alice[:-1])

    def test_invalid_key_is_not_added(self):
        store = AllowListStore(memory_engine())
        store.create_schema()
        self.assertRaises(InvalidIdentityKey, store.add_key, "npub1short")
        self.assertEqual(store.list_keys(), [])


if __name__ == "__main__":
    unittest.main()

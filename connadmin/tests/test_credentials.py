"""Tests for credential generation, hashing, and verification."""

import re
import unittest

from connadmin.credentials import CredentialManager


class CredentialManagerTests(unittest.TestCase):
    """Argon2id hashing and constant-time verification behavior."""

    @classmethod
    def setUpClass(cls) -> None:
        cls.manager = CredentialManager()

    def test_generated_credentials_are_url_safe_and_unique(self) -> None:
        first = self.manager.generate()
        second = self.manager.generate()

        self.assertNotEqual(first, second)
        # 32 random bytes -> 43 base64url characters without padding.
        self.assertGreaterEqual(len(first), 43)
        self.assertRegex(first, r"^[A-Za-z0-9_-]+$")

    def test_hash_is_salted_and_never_the_plaintext(self) -> None:
        credential = self.manager.generate()

        first = self.manager.hash(credential)
        second = self.manager.hash(credential)

        self.assertNotEqual(first, credential)
        self.assertNotIn(credential, first)
        self.assertNotEqual(first, second)
        self.assertTrue(self.manager.verify(credential, first))
        self.assertTrue(self.manager.verify(credential, second))

    def test_hash_is_self_describing(self) -> None:
        encoded = self.manager.hash("secret-value")

        self.assertTrue(encoded.startswith("$argon2id$v=19$m=65536,t=3,p=4$"))
        self.assertEqual(len(encoded.split("$")), 6)

    def test_verify_rejects_wrong_credential(self) -> None:
        encoded = self.manager.hash("right")

        self.assertFalse(self.manager.verify("wrong", encoded))
        self.assertFalse(self.manager.verify("", encoded))

    def test_verify_returns_false_for_malformed_or_foreign_hashes(self) -> None:
        foreign = "$2b$12$R9h/cIPz0gi.URNNX3kh2OPST9/PgBkqquzi.Ss7KIUgO2t0jWMUW"

        self.assertFalse(self.manager.verify("anything", "not-a-hash"))
        self.assertFalse(self.manager.verify("anything", ""))
        self.assertFalse(self.manager.verify("anything", foreign))
        self.assertFalse(self.manager.verify("anything", "$argon2id$v=19$m=65536,t=3,p=4$bad$ü"))
        self.assertFalse(self.manager.verify(None, "not-a-hash"))  # type: ignore[arg-type]

    def test_parameters_below_floor_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            CredentialManager(memory_kib=1024)
        with self.assertRaises(ValueError):
            CredentialManager(time_cost=1)
        with self.assertRaises(ValueError):
            CredentialManager(parallelism=1)

    def test_decoy_verification_is_always_false(self) -> None:
        self.assertFalse(self.manager.verify_decoy("whatever"))
        self.assertFalse(self.manager.verify_decoy(self.manager.generate()))

    def test_needs_rehash_tracks_parameter_changes(self) -> None:
        stronger = CredentialManager(time_cost=4)
        current_hash = self.manager.hash("value")
        stronger_hash = stronger.hash("value")

        self.assertFalse(self.manager.needs_rehash(current_hash))
        self.assertTrue(self.manager.needs_rehash(stronger_hash))
        # Older parameters still verify after the policy moves on.
        self.assertTrue(stronger.verify("value", current_hash))
        self.assertTrue(re.match(r"^\$argon2id\$v=19\$m=65536,t=4,p=4\$", stronger_hash))


if __name__ == "__main__":
    unittest.main()

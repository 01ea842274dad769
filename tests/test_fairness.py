import hashlib
import hmac
import unittest

from fairness import derive, derive_digest, generate_server_secret, hash_server_secret, verify_commitment

SECRET = "a" * 64


class TestDerive(unittest.TestCase):

    def test_same_inputs_same_fraction(self):
        self.assertEqual(derive(SECRET, "arguz", 7), derive(SECRET, "arguz", 7))

    def test_matches_hmac_prefix(self):
        digest = hmac.new(SECRET.encode(), b"arguz:0", hashlib.sha256).hexdigest()
        self.assertEqual(derive_digest(SECRET, "arguz", 0), digest)
        self.assertEqual(derive(SECRET, "arguz", 0), int(digest[:16], 16) / (2 ** 64 - 1))

    def test_counter_and_client_value_change_the_fraction(self):
        base = derive(SECRET, "arguz", 0)
        self.assertNotEqual(base, derive(SECRET, "arguz", 1))
        self.assertNotEqual(base, derive(SECRET, "other", 0))
        self.assertNotEqual(base, derive("b" * 64, "arguz", 0))

    def test_fraction_in_unit_interval(self):
        for counter in range(500):
            r = derive(SECRET, "arguz", counter)
            self.assertGreaterEqual(r, 0.0)
            self.assertLessEqual(r, 1.0)


class TestCommitment(unittest.TestCase):

    def test_generated_secrets_are_unique_hex(self):
        first, second = generate_server_secret(), generate_server_secret()
        self.assertNotEqual(first, second)
        self.assertEqual(len(first), 64)
        int(first, 16)

    def test_hash_is_sha256_hex(self):
        self.assertEqual(hash_server_secret(SECRET), hashlib.sha256(SECRET.encode()).hexdigest())

    def test_verify_commitment(self):
        published = hash_server_secret(SECRET)
        self.assertTrue(verify_commitment(SECRET, published))
        self.assertFalse(verify_commitment("b" * 64, published))

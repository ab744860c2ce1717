import unittest

from core.signature import build_sign_string, sign, signed_params, verify


class SignatureTestCase(unittest.TestCase):
    def setUp(self):
        self.params = {
            "trade_order_id": "ORD1",
            "total_fee": "0.10",
            "status": "OD",
            "appid": "201906120001",
            "nonce_str": "abc",
        }

    def test_sign_string_sorted_with_secret_appended(self):
        self.assertEqual(
            build_sign_string(self.params, "secret"),
            "appid=201906120001&nonce_str=abc&status=OD&total_fee=0.10&trade_order_id=ORD1secret",
        )

    def test_known_digest(self):
        self.assertEqual(sign(self.params, "secret"), "c1502e69332f685504c9fc13a49a060e")

    def test_empty_values_and_hash_are_ignored(self):
        noisy = dict(self.params, return_url="", type=None, hash="whatever")
        self.assertEqual(sign(noisy, "secret"), sign(self.params, "secret"))

    def test_key_order_does_not_matter(self):
        reordered = dict(reversed(list(self.params.items())))
        self.assertEqual(sign(reordered, "secret"), sign(self.params, "secret"))

    def test_changing_value_or_secret_changes_digest(self):
        base = sign(self.params, "secret")
        self.assertNotEqual(sign(dict(self.params, total_fee="0.11"), "secret"), base)
        self.assertNotEqual(sign(self.params, "secret2"), base)

    def test_verify(self):
        payload = dict(self.params, hash=sign(self.params, "secret"))
        self.assertTrue(verify(payload, "secret"))
        self.assertFalse(verify(payload, "other"))
        self.assertFalse(verify(self.params, "secret"))
        self.assertFalse(verify(dict(payload, hash=""), "secret"))

    def test_signed_params_drops_empty_and_adds_hash(self):
        data = signed_params(dict(self.params, return_url=""), "secret")
        self.assertNotIn("return_url", data)
        self.assertEqual(data["hash"], "c1502e69332f685504c9fc13a49a060e")
        self.assertTrue(verify(data, "secret"))


if __name__ == "__main__":
    unittest.main()

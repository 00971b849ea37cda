import unittest

from domain.errors import FormatError
from domain.relay import parse_relay


class ParseRelayTests(unittest.TestCase):
    def test_host_and_port(self):
        relay = parse_relay("10.0.0.1:8080")

        self.assertEqual(relay.host, "10.0.0.1")
        self.assertEqual(relay.port, 8080)
        self.assertFalse(relay.has_auth)
        self.assertEqual(relay.url, "http://10.0.0.1:8080")

    def test_with_credentials(self):
        relay = parse_relay(" proxy.local:3128:bob:pw ")

        self.assertEqual(relay.username, "bob")
        self.assertEqual(relay.password, "pw")
        self.assertTrue(relay.has_auth)
        self.assertEqual(str(relay), "proxy.local:3128")

    def test_rejects_bad_shapes(self):
        for value in ["", "host", "host:1:user", "host:1:user:pw:x", "host::u:p", ":80"]:
            with self.subTest(value=value):
                with self.assertRaises(FormatError):
                    parse_relay(value)

    def test_rejects_bad_port(self):
        for value in ["host:http", "host:0", "host:70000"]:
            with self.subTest(value=value):
                with self.assertRaises(FormatError):
                    parse_relay(value)


if __name__ == "__main__":
    unittest.main()

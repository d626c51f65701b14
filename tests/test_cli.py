"""End-to-end tests of the command line entry point.

The explorer and RPC clients are replaced with stubs, and the HTTP session
class is patched so that an accidental network call fails loudly.
"""

import io
import unittest
from unittest import mock

from appvkek import cli
from appvkek.config import CHAINS, Config
from appvkek.errors import ApiError, NetworkError
from appvkek.explorer import Transaction
from appvkek.extractor import APPROVE_SELECTOR, MAX_UINT256

OWNER = "0x" + "ab" * 20
TOKEN = "0x" + "a1" * 20
SPENDER_1 = "0x" + "11" * 20
SPENDER_2 = "0x" + "22" * 20
ENV = {"APPVKEK_BSCSCAN_APIKEY": "KEY"}


def approve_tx(token, spender, amount, block):
    return Transaction(
        tx_hash="0x%064x" % block,
        block_number=block,
        transaction_index=0,
        from_address=OWNER,
        to_address=token,
        input=APPROVE_SELECTOR + spender[2:].rjust(64, "0") + format(amount, "064x"),
        is_error=False,
    )


class StubRPC:
    def __init__(self, code="0x", symbol="CAKE"):
        self.code = code
        self.symbol = symbol

    def get_code(self, address):
        return self.code

    def eth_call(self, to, data):
        encoded = self.symbol.encode().hex()
        return "0x" + "20".rjust(64, "0") + format(len(self.symbol), "064x") + encoded.ljust(64, "0")


class TestRun(unittest.TestCase):
    config = Config(chain=CHAINS["bsc"], api_key="KEY", address=OWNER)

    def test_two_spenders_one_token(self):
        """Two approvals on the same token render as one header and two spender lines."""
        explorer = mock.Mock()
        explorer.get_transactions.return_value = [
            approve_tx(TOKEN, SPENDER_1, 10**18, block=1),
            approve_tx(TOKEN, SPENDER_2, MAX_UINT256, block=2),
        ]
        output = cli.run(self.config, explorer=explorer, rpc=StubRPC())
        self.assertEqual(
            output.splitlines(),
            [
                f"[CAKE] {TOKEN}",
                f"  * {SPENDER_1} - 1000000000000000000",
                f"  * {SPENDER_2} - {MAX_UINT256}",
            ],
        )
        explorer.get_transactions.assert_called_once_with(OWNER)

    def test_contract_address_is_rejected(self):
        explorer = mock.Mock()
        with self.assertRaises(cli.UsageError):
            cli.run(self.config, explorer=explorer, rpc=StubRPC(code="0x6080"))
        explorer.get_transactions.assert_not_called()

    def test_eoa_check_can_be_skipped(self):
        config = Config(chain=CHAINS["bsc"], api_key="KEY", address=OWNER, check_eoa=False)
        explorer = mock.Mock()
        explorer.get_transactions.return_value = []
        output = cli.run(config, explorer=explorer, rpc=StubRPC(code="0x6080"))
        self.assertEqual(output, "No approvals found.")


class TestMain(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch("requests.Session")
        self.session_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.stdout = io.StringIO()
        self.stderr = io.StringIO()

    def call(self, argv, environ=ENV):
        return cli.main(argv, environ=environ, stdout=self.stdout, stderr=self.stderr)

    def test_missing_chain_is_usage_error(self):
        code = self.call(["-a", OWNER])
        self.assertEqual(code, 2)
        self.assertIn("--chain", self.stderr.getvalue())
        self.assertEqual(self.stdout.getvalue(), "")
        self.session_cls.assert_not_called()

    def test_unknown_chain_is_usage_error(self):
        self.assertEqual(self.call(["-a", OWNER, "-c", "solana"]), 2)
        self.session_cls.assert_not_called()

    def test_bad_address_is_usage_error(self):
        self.assertEqual(self.call(["-a", "0x1234", "-c", "bsc"]), 2)
        self.session_cls.assert_not_called()

    def test_missing_api_key_before_any_request(self):
        code = self.call(["-a", OWNER, "-c", "bsc"], environ={})
        self.assertEqual(code, 3)
        self.assertIn("APPVKEK_BSCSCAN_APIKEY", self.stderr.getvalue())
        self.session_cls.assert_not_called()

    def test_error_is_single_line(self):
        with mock.patch.object(cli, "run", side_effect=NetworkError("connection refused")):
            code = self.call(["-a", OWNER, "-c", "bsc"])
        self.assertEqual(code, 4)
        self.assertEqual(self.stderr.getvalue(), "appvkek: error: connection refused\n")
        self.assertEqual(self.stdout.getvalue(), "")

    def test_html_error_page_prints_one_line(self):
        """An HTML 502 body from the explorer still yields a single stderr line."""
        page = mock.Mock()
        page.status_code = 502
        page.headers = {}
        page.text = "<html>\n<head><title>502 Bad Gateway</title></head>\n<body>\n</body>\n</html>"
        self.session_cls.return_value.get.return_value = page
        code = self.call(["-a", OWNER, "-c", "bsc", "--no-eoa-check"])
        self.assertEqual(code, 5)
        err = self.stderr.getvalue()
        self.assertEqual(len(err.splitlines()), 1)
        self.assertTrue(err.startswith("appvkek: error: explorer HTTP 502: <html> <head>"))
        self.assertEqual(self.stdout.getvalue(), "")

    def test_multiline_message_is_flattened(self):
        with mock.patch.object(cli, "run", side_effect=ApiError("first\nsecond")):
            self.call(["-a", OWNER, "-c", "bsc"])
        self.assertEqual(self.stderr.getvalue(), "appvkek: error: first second\n")

    def test_keyboard_interrupt_exits_130(self):
        with mock.patch.object(cli, "run", side_effect=KeyboardInterrupt):
            code = self.call(["-a", OWNER, "-c", "bsc"])
        self.assertEqual(code, 130)
        self.assertEqual(self.stderr.getvalue(), "appvkek: interrupted\n")
        self.assertEqual(self.stdout.getvalue(), "")

    def test_api_error_exit_code(self):
        with mock.patch.object(cli, "run", side_effect=ApiError("NOTOK")):
            self.assertEqual(self.call(["-a", OWNER, "-c", "bsc"]), 5)

    def test_success_with_execution_time(self):
        with mock.patch.object(cli, "run", return_value="[CAKE] " + TOKEN) as run:
            code = self.call(["-a", OWNER.upper().replace("0X", "0x"), "-c", "bsc", "--execution-time"])
        self.assertEqual(code, 0)
        lines = self.stdout.getvalue().splitlines()
        self.assertEqual(lines[0], "[CAKE] " + TOKEN)
        self.assertRegex(lines[1], r"^\(elapsed = \d+\.\d{2} secs\)$")
        config = run.call_args.args[0]
        self.assertEqual(config.address, OWNER)
        self.assertTrue(config.execution_time)

    def test_flags_reach_config(self):
        with mock.patch.object(cli, "run", return_value="") as run:
            self.call([
                "--wallet-address", OWNER, "--chain", "bsc",
                "--live", "--no-eoa-check", "--rpc", "http://node",
            ])
        config = run.call_args.args[0]
        self.assertTrue(config.live)
        self.assertFalse(config.check_eoa)
        self.assertEqual(config.node_url, "http://node")
        self.assertEqual(self.stdout.getvalue(), "\n")


if __name__ == "__main__":
    unittest.main()

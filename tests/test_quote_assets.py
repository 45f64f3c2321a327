import unittest

from tickerfeed.services.quote_assets import KNOWN_QUOTE_ASSETS, get_quote_asset, split_symbol


class TestQuoteAssets(unittest.TestCase):
    def test_split_symbol_common_pair(self):
        self.assertEqual(split_symbol("ETHUSDT"), ("ETH", "USDT"))
        self.assertEqual(split_symbol("ETHBTC"), ("ETH", "BTC"))

    def test_priority_order_resolves_stablecoin_pair(self):
        # USDT precedes USDC in the catalog, so the suffix wins over the embedded USDC
        self.assertEqual(split_symbol("USDCUSDT"), ("USDC", "USDT"))
        self.assertLess(KNOWN_QUOTE_ASSETS.index("USDT"), KNOWN_QUOTE_ASSETS.index("USDC"))

    def test_fdusd_is_detected_before_usd_suffix_guess(self):
        self.assertEqual(split_symbol("BTCFDUSD"), ("BTC", "FDUSD"))
        self.assertEqual(split_symbol("BTCTUSD"), ("BTC", "TUSD"))

    def test_fiat_quote(self):
        self.assertEqual(split_symbol("BTCTRY"), ("BTC", "TRY"))
        self.assertEqual(get_quote_asset("SOLEUR"), "EUR")

    def test_unknown_suffix_is_all_base(self):
        self.assertIsNone(get_quote_asset("FOOBAR"))
        self.assertEqual(split_symbol("FOOBAR"), ("FOOBAR", None))

    def test_custom_catalog(self):
        self.assertEqual(split_symbol("ABCXYZ", catalog=("XYZ",)), ("ABC", "XYZ"))


if __name__ == "__main__":
    unittest.main()

"""
Unit tests for client/gas.py -- gas oracle and convert cost estimate.
"""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from client.gas import ConvertCostEstimator, GasOracle


def _resp(payload):
    mock_resp = MagicMock()
    mock_resp.json.return_value = payload
    mock_resp.raise_for_status = MagicMock()
    return mock_resp


class TestGetGasPriceGwei:
    @patch("client.gas.httpx.post")
    def test_fetches_from_rpc(self, mock_post):
        # 30 gwei = 0x6FC23AC00 wei
        mock_post.return_value = _resp({"result": "0x6FC23AC00"})
        oracle = GasOracle(cache_sec=0, allow_network=True)
        assert oracle.get_gas_price_gwei() == pytest.approx(30.0, abs=0.1)
        mock_post.assert_called_once()

    @patch("client.gas.httpx.post")
    def test_uses_cache_when_fresh(self, mock_post):
        mock_post.return_value = _resp({"result": "0x6FC23AC00"})
        oracle = GasOracle(cache_sec=60.0, allow_network=True)
        oracle.get_gas_price_gwei()
        oracle.get_gas_price_gwei()
        assert mock_post.call_count == 1

    @patch("client.gas.httpx.post")
    def test_falls_back_to_default_on_error(self, mock_post):
        mock_post.side_effect = httpx.ConnectError("Connection refused")
        oracle = GasOracle(default_gas_gwei=50.0, allow_network=True)
        assert oracle.get_gas_price_gwei() == 50.0

    @patch("client.gas.httpx.post")
    def test_bad_payload_falls_back(self, mock_post):
        mock_post.return_value = _resp({"error": "nope"})
        oracle = GasOracle(default_gas_gwei=40.0, allow_network=True)
        assert oracle.get_gas_price_gwei() == 40.0

    @patch("client.gas.httpx.post")
    def test_network_disabled_uses_default(self, mock_post):
        oracle = GasOracle(default_gas_gwei=25.0)
        assert oracle.get_gas_price_gwei() == 25.0
        mock_post.assert_not_called()


class TestGetPolUsd:
    @patch("client.gas.httpx.get")
    def test_fetches_from_coingecko(self, mock_get):
        mock_get.return_value = _resp({"polygon-ecosystem-token": {"usd": 0.85}})
        oracle = GasOracle(cache_sec=0, allow_network=True)
        assert oracle.get_pol_usd() == pytest.approx(0.85)

    @patch("client.gas.httpx.get")
    def test_falls_back_on_error(self, mock_get):
        mock_get.side_effect = httpx.ReadTimeout("slow")
        oracle = GasOracle(default_pol_usd=0.40, allow_network=True)
        assert oracle.get_pol_usd() == 0.40


class TestEstimateCost:
    def test_cost_from_defaults(self):
        oracle = GasOracle(default_gas_gwei=30.0, default_pol_usd=0.50)
        # 250k gas * 30 gwei = 0.0075 POL = $0.00375
        assert oracle.estimate_cost_usd(1, 250_000) == pytest.approx(0.00375)
        assert oracle.estimate_cost_usd(2, 250_000) == pytest.approx(0.0075)


class TestConvertCostEstimator:
    def test_single_convert(self):
        oracle = GasOracle(default_gas_gwei=30.0, default_pol_usd=0.50)
        est = ConvertCostEstimator(oracle, gas_per_convert=250_000)
        assert est.estimate_usd(5) == pytest.approx(0.00375)

    def test_extra_legs_add_gas(self):
        oracle = GasOracle(default_gas_gwei=30.0, default_pol_usd=0.50)
        est = ConvertCostEstimator(oracle, gas_per_convert=200_000, gas_per_extra_leg=25_000)
        # 200k + 3 * 25k = 275k gas
        assert est.estimate_usd(5) == pytest.approx(275_000 * 30e9 / 1e18 * 0.50)
        assert est.estimate_usd(2) == pytest.approx(200_000 * 30e9 / 1e18 * 0.50)

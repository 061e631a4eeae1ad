from __future__ import annotations

import unittest

from hrflow.models import WhatsAppGateway
from hrflow.services.provider_config import ProviderConfigCache, get_active_whatsapp_gateway, provider_config_cache
from tests.support import make_session_factory


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class ProviderConfigCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.cache = ProviderConfigCache(ttl_seconds=60, clock=self.clock)
        self.calls = 0

    def _loader(self, value):  # type: ignore[no-untyped-def]
        def _load():  # type: ignore[no-untyped-def]
            self.calls += 1
            return value

        return _load

    def test_value_is_served_from_cache_within_ttl(self) -> None:
        self.assertEqual(self.cache.get("gateway", self._loader("first")), "first")
        self.clock.now += 59
        self.assertEqual(self.cache.get("gateway", self._loader("second")), "first")
        self.assertEqual(self.calls, 1)

    def test_value_is_reloaded_after_ttl(self) -> None:
        self.cache.get("gateway", self._loader("first"))
        self.clock.now += 61
        self.assertEqual(self.cache.get("gateway", self._loader("second")), "second")
        self.assertEqual(self.calls, 2)

    def test_load_failure_returns_last_known_value(self) -> None:
        self.cache.get("gateway", self._loader("first"))
        self.clock.now += 120

        def _broken():  # type: ignore[no-untyped-def]
            raise RuntimeError("database unavailable")

        self.assertEqual(self.cache.get("gateway", _broken), "first")

    def test_load_failure_without_history_is_absent(self) -> None:
        def _broken():  # type: ignore[no-untyped-def]
            raise RuntimeError("database unavailable")

        self.assertIsNone(self.cache.get("gateway", _broken))

    def test_clear_forces_reload(self) -> None:
        self.cache.get("gateway", self._loader("first"))
        self.cache.clear()
        self.assertEqual(self.cache.get("gateway", self._loader("second")), "second")


class ActiveGatewayTests(unittest.TestCase):
    def setUp(self) -> None:
        provider_config_cache.clear()
        self.db = make_session_factory()()

    def tearDown(self) -> None:
        provider_config_cache.clear()
        self.db.close()

    def test_first_active_gateway_is_used_with_default_endpoint(self) -> None:
        self.db.add_all(
            [
                WhatsAppGateway(name="off", api_secret="s0", account_unique_id="a0", is_active=False),
                WhatsAppGateway(name="main", api_secret="s1", account_unique_id="a1", endpoint_url=" ", is_active=True),
            ]
        )
        self.db.commit()

        gateway = get_active_whatsapp_gateway(self.db)

        assert gateway is not None
        self.assertEqual(gateway.name, "main")
        self.assertEqual(gateway.endpoint_url, "https://app.bipsms.com/api/send/whatsapp")

    def test_no_active_gateway_is_absent(self) -> None:
        self.assertIsNone(get_active_whatsapp_gateway(self.db))


if __name__ == "__main__":
    unittest.main()

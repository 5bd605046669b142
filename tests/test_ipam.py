"""Tests de l'attribution des adresses clients."""

from __future__ import annotations

import ipaddress
import random

import pytest

from wg_provisioner.errors import ClientAddressExhausted
from wg_provisioner.ipam import allocate_client_ip, allocate_ip4, allocate_ip6, existing_addresses


class FixedRandom(random.Random):
    """getrandbits retourne toujours la même valeur."""

    def __init__(self, value):
        super().__init__(0)
        self.value = value
        self.calls = 0

    def getrandbits(self, k):
        self.calls += 1
        return self.value


class TestIPv4:
    def test_first_client_after_gateway(self):
        assert allocate_ip4("10.0.0.0/29", []) == "10.0.0.2"

    def test_skips_taken_addresses(self):
        assert allocate_ip4("10.0.0.0/29", ["10.0.0.2/32", "10.0.0.3/32", "10.0.0.5/32"]) == "10.0.0.4"

    def test_exhausted(self):
        taken = [f"10.0.0.{i}/32" for i in range(2, 7)]
        with pytest.raises(ClientAddressExhausted) as excinfo:
            allocate_ip4("10.0.0.0/29", taken)
        assert excinfo.value.retryable is False

    def test_crosses_octet_boundary(self):
        taken = [f"10.8.0.{i}/32" for i in range(2, 256)]
        assert allocate_ip4("10.8.0.0/23", taken) == "10.8.1.0"

    def test_smallest_free_address(self):
        net = ipaddress.IPv4Network("10.1.0.0/28")
        hosts = list(net.hosts())
        rng = random.Random(7)
        for _ in range(20):
            taken = {h for h in hosts[1:] if rng.random() < 0.6}
            free = [h for h in hosts[1:] if h not in taken]
            existing = [f"{h}/32" for h in taken]
            if free:
                assert allocate_ip4(str(net), existing) == str(free[0])
            else:
                with pytest.raises(ClientAddressExhausted):
                    allocate_ip4(str(net), existing)


class TestIPv6:
    def test_address_inside_block(self):
        ip = allocate_ip6("fd00:1234::/64", [], rng=random.Random(1))
        addr = ipaddress.IPv6Address(ip)
        assert addr in ipaddress.IPv6Network("fd00:1234::/64")
        assert addr != ipaddress.IPv6Address("fd00:1234::")
        assert int(addr) - int(ipaddress.IPv6Address("fd00:1234::")) < 2 ** 32

    def test_collision_gives_retryable_error(self):
        rng = FixedRandom(0xABCD)
        with pytest.raises(ClientAddressExhausted) as excinfo:
            allocate_ip6("fd00:1234::/64", ["10.0.0.2/32", "fd00:1234::abcd/128"], attempts=10, rng=rng)
        assert excinfo.value.retryable is True
        assert rng.calls == 10

    def test_zero_suffix_rejected(self):
        with pytest.raises(ClientAddressExhausted):
            allocate_ip6("fd00:1234::/64", [], attempts=3, rng=FixedRandom(0))

    def test_single_address_block(self):
        with pytest.raises(ClientAddressExhausted):
            allocate_ip6("fd00:1234::1/128", [])

    def test_dispatch_on_family(self):
        assert allocate_client_ip("10.0.0.0/29", []) == "10.0.0.2"
        assert ":" in allocate_client_ip("fd00::/64", [], rng=random.Random(3))


def test_existing_addresses_ignores_garbage():
    found = existing_addresses(["10.0.0.2/32", "", "not-an-ip/32", "fd00::2/128"])
    assert found == {ipaddress.ip_address("10.0.0.2"), ipaddress.ip_address("fd00::2")}

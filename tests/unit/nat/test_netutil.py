"""Tests for local address detection (natupnp/netutil.py)."""

from __future__ import annotations

import socket
from collections import namedtuple
from unittest.mock import patch

import pytest

from natupnp.netutil import FALLBACK_LOCAL_IP, find_local_ip

pytestmark = [pytest.mark.unit]

snicaddr = namedtuple("snicaddr", ["family", "address", "netmask", "broadcast", "ptp"])


def _addr(family, address):
    return snicaddr(family, address, None, None, None)


class TestFindLocalIp:
    def test_skips_loopback_and_ipv6(self):
        interfaces = {
            "lo": [_addr(socket.AF_INET, "127.0.0.1")],
            "eth0": [
                _addr(socket.AF_INET6, "fe80::1"),
                _addr(socket.AF_INET, "192.168.1.100"),
            ],
            "wlan0": [_addr(socket.AF_INET, "10.0.0.5")],
        }
        with patch("natupnp.netutil.psutil.net_if_addrs", return_value=interfaces):
            assert find_local_ip() == "192.168.1.100"

    def test_fallback_when_only_loopback(self):
        interfaces = {"lo": [_addr(socket.AF_INET, "127.0.0.1")]}
        with patch("natupnp.netutil.psutil.net_if_addrs", return_value=interfaces):
            assert find_local_ip() == FALLBACK_LOCAL_IP

    def test_fallback_on_error(self):
        with patch("natupnp.netutil.psutil.net_if_addrs", side_effect=OSError("denied")):
            assert find_local_ip() == "127.0.0.1"

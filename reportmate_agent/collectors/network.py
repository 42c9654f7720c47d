"""
Module de collecte des informations réseau

Ce module collecte :
- Interfaces réseau et adresses IP
- Routes et passerelle par défaut
- Serveurs DNS
- Réseau Wi-Fi courant
- Qualité du réseau (extension osquery)
"""

from typing import Any, Dict, List

from .base import ModuleCollector
from ..core.fanout import CollectionTask


class NetworkCollector(ModuleCollector):
    """Collecteur des informations réseau"""

    module_id = "network"

    def declare_tasks(self) -> List[CollectionTask]:
        return [
            self.task("interfaces", self.collect_interfaces, default=[]),
            self.task("addresses", self.collect_addresses, default=[]),
            self.task("routes", self.collect_routes, default=[]),
            self.task("dns", self.collect_dns, default={}),
            self.task("wifi", self.collect_wifi, default={}),
            self.task("listeningPorts", self.collect_listening_ports, default=[]),
            self.task("networkQuality", self.collect_network_quality, default={}),
        ]

    async def collect_interfaces(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT interface, mac, type, mtu, link_speed
                FROM interface_details
                WHERE interface NOT LIKE 'lo%';
            """,
            bash="""ifconfig -l | tr ' ' '\\n' | grep -v '^lo' | awk '{printf "%s{\\"interface\\":\\"%s\\"}", (NR>1?",":"["), $1} END {print (NR?"]":"[]")}'"""
        )
        return [
            {
                'name': row.get_str("interface"),
                'macAddress': row.get_str("mac"),
                'type': row.get_str("type"),
                'mtu': row.get_int("mtu"),
                'linkSpeed': row.get_int("link_speed"),
            }
            for row in result.rows()
        ]

    async def collect_addresses(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT interface, address, mask, type
                FROM interface_addresses
                WHERE interface NOT LIKE 'lo%';
            """
        )
        return [
            {
                'interface': row.get_str("interface"),
                'address': row.get_str("address"),
                'mask': row.get_str("mask"),
                'family': "IPv6" if ":" in row.get_str("address") else "IPv4",
            }
            for row in result.rows()
        ]

    async def collect_routes(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="SELECT destination, gateway, interface, type FROM routes WHERE destination = '0.0.0.0';",
            bash="""route -n get default 2>/dev/null | awk '/gateway:/ {g=$2} /interface:/ {i=$2} END {printf "[{\\"destination\\":\\"0.0.0.0\\",\\"gateway\\":\\"%s\\",\\"interface\\":\\"%s\\"}]", g, i}'"""
        )
        return [
            {
                'destination': row.get_str("destination"),
                'gateway': row.get_str("gateway"),
                'interface': row.get_str("interface"),
            }
            for row in result.rows()
        ]

    async def collect_dns(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT type, address FROM dns_resolvers;",
            bash="""awk '/^nameserver/ {printf "%s{\\"type\\":\\"nameserver\\",\\"address\\":\\"%s\\"}", (n++?",":"["), $2} END {print (n?"]":"[]")}' /etc/resolv.conf"""
        )
        rows = result.rows()
        return {
            'servers': [row.get_str("address") for row in rows if row.get_str("type") == "nameserver"],
            'searchDomains': [row.get_str("address") for row in rows if row.get_str("type") == "search"],
        }

    async def collect_wifi(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT ssid, network_name, security_type, channel, rssi, noise FROM wifi_status;"
        )
        row = result.first()
        if not len(row):
            return {'connected': False}

        return {
            'connected': True,
            'ssid': row.get_str("ssid") or row.get_str("network_name"),
            'securityType': row.get_str("security_type"),
            'channel': row.get_str("channel"),
            'rssi': row.get_int("rssi"),
            'noise': row.get_int("noise"),
        }

    async def collect_listening_ports(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT DISTINCT p.name, lp.port, lp.protocol, lp.address
                FROM listening_ports lp
                LEFT JOIN processes p ON lp.pid = p.pid
                WHERE lp.port != 0;
            """
        )
        return [
            {
                'process': row.get_str("name"),
                'port': row.get_int("port"),
                'protocol': "TCP" if row.get_int("protocol") == 6 else "UDP",
                'address': row.get_str("address"),
            }
            for row in result.rows()
        ]

    async def collect_network_quality(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT dl_throughput_kbps, ul_throughput_kbps, dl_responsiveness FROM network_quality;"
        )
        row = result.first()
        return {
            'downloadKbps': row.get_int("dl_throughput_kbps"),
            'uploadKbps': row.get_int("ul_throughput_kbps"),
            'responsiveness': row.get_str("dl_responsiveness"),
        }

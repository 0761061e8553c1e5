# config.py
"""
This module defines the data structures for our configuration and turns the
raw YAML document into a validated StackConfig.

Every check lives here so that a bad document fails before a single resource
is declared.
"""

import pulumi
import yaml
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

REQUIRED_KEYS = ["resource_group_name", "location"]

HTTP_PROBE_PROTOCOLS = {"Http", "Https"}


@dataclass
class NetworkContext:
    virtual_network_name: str
    resource_group_name: str
    subnet_name: str
    existing: bool = True
    address_space: List[str] = field(default_factory=list)
    subnet_prefix: Optional[str] = None


@dataclass
class PortPair:
    frontend_port: int
    probe_port: int
    backend_port: Optional[int] = None

    def __post_init__(self):
        if self.backend_port is None:
            self.backend_port = self.frontend_port


@dataclass
class ProbeSettings:
    protocol: str = "Tcp"
    interval_in_seconds: int = 5
    number_of_probes: int = 2
    request_path: Optional[str] = None


@dataclass
class NicDescriptor:
    name: str
    ip_configuration_name: Optional[str] = None
    resource_group_name: Optional[str] = None
    subscription_id: Optional[str] = None
    nic_id: Optional[str] = None
    key: Optional[str] = None


@dataclass
class LoadBalancerSettings:
    name: Optional[str] = None
    sku: str = "Standard"
    frontend_name: str = "frontend"
    backend_pool_name: str = "backend-pool"
    protocol: str = "Tcp"
    idle_timeout_in_minutes: int = 4
    enable_floating_ip: bool = False
    load_distribution: str = "Default"


@dataclass
class StackConfig:
    location: str
    resource_group_name: str
    network: NetworkContext
    rules: List[PortPair]
    nics: List[NicDescriptor] = field(default_factory=list)
    load_balancer: LoadBalancerSettings = field(default_factory=LoadBalancerSettings)
    probe: ProbeSettings = field(default_factory=ProbeSettings)
    subscription_id: Optional[str] = None
    team: str = "team"
    service: str = "svc"
    environment: str = "dev"
    tags: Dict[str, str] = field(default_factory=dict)
    availability_zones: Dict[str, List[str]] = field(default_factory=dict)


def load_config(file_path: str) -> Dict[str, Any]:
    """Load YAML configuration from the given file path and check required keys."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file) or {}

    if not isinstance(config_data, dict):
        raise ValueError(f"Configuration in '{file_path}' must be a mapping")

    for key in REQUIRED_KEYS:
        if key not in config_data:
            raise ValueError(f"Missing required configuration key: {key}")

    return config_data


def config_file_path(default: str = "config.yaml") -> str:
    """Resolve the desired-state file, allowing a stack setting to override it."""
    return pulumi.Config().get("configFile") or default


def parse_int(value: Any, key: str, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    """Accept ints and integer strings only; floats and bools are rejected rather than truncated."""
    if isinstance(value, (bool, float)):
        raise ValueError(f"Invalid integer for '{key}': {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid integer for '{key}': {value!r}") from None
    if minimum is not None and number < minimum:
        raise ValueError(f"'{key}' must be at least {minimum}, got {number}")
    if maximum is not None and number > maximum:
        raise ValueError(f"'{key}' must be at most {maximum}, got {number}")
    return number


def parse_bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' must be true or false, got {value!r}")
    return value


def parse_port(value: Any, key: str) -> int:
    return parse_int(value, key, minimum=1, maximum=65535)


def pair_ports(lb_rule_ports: List[Any], health_probe_ports: List[Any]) -> List[PortPair]:
    """
    Zip the legacy pair of port lists into PortPairs.

    The Nth rule port is served by the Nth probe port, so both lists must have
    the same length.
    """
    if len(lb_rule_ports) != len(health_probe_ports):
        raise ValueError(
            f"lb_rule_ports has {len(lb_rule_ports)} entries but health_probe_ports "
            f"has {len(health_probe_ports)}; they are paired by position"
        )
    return [
        PortPair(
            frontend_port=parse_port(rule_port, "lb_rule_ports"),
            probe_port=parse_port(probe_port, "health_probe_ports"),
        )
        for rule_port, probe_port in zip(lb_rule_ports, health_probe_ports)
    ]


def parse_rules(config_data: Dict[str, Any]) -> List[PortPair]:
    has_pairs = "lb_rules" in config_data
    has_lists = "lb_rule_ports" in config_data or "health_probe_ports" in config_data

    if has_pairs and has_lists:
        raise ValueError("Use either 'lb_rules' or 'lb_rule_ports'/'health_probe_ports', not both")

    if has_pairs:
        rules = []
        for entry in config_data["lb_rules"] or []:
            if not isinstance(entry, dict):
                raise ValueError(f"Each lb_rules entry must be a mapping, got {entry!r}")
            for key in ("frontend_port", "probe_port"):
                if key not in entry:
                    raise ValueError(f"lb_rules entry {entry!r} is missing '{key}'")
            backend_port = entry.get("backend_port")
            rules.append(PortPair(
                frontend_port=parse_port(entry["frontend_port"], "frontend_port"),
                probe_port=parse_port(entry["probe_port"], "probe_port"),
                backend_port=None if backend_port is None else parse_port(backend_port, "backend_port"),
            ))
    else:
        rules = pair_ports(
            config_data.get("lb_rule_ports") or [],
            config_data.get("health_probe_ports") or [],
        )

    if not rules:
        raise ValueError("At least one load-balancing rule is required")

    seen = set()
    for rule in rules:
        if rule.frontend_port in seen:
            raise ValueError(f"Duplicate frontend port: {rule.frontend_port}")
        seen.add(rule.frontend_port)

    return rules


def parse_network(config_data: Dict[str, Any]) -> NetworkContext:
    net = config_data.get("network")
    if not isinstance(net, dict):
        raise ValueError("Missing required configuration key: network")

    for key in ("virtual_network_name", "subnet_name"):
        if not net.get(key):
            raise ValueError(f"Missing required network key: {key}")

    context = NetworkContext(
        virtual_network_name=net["virtual_network_name"],
        resource_group_name=net.get("resource_group_name") or config_data["resource_group_name"],
        subnet_name=net["subnet_name"],
        existing=parse_bool(net.get("existing", True), "existing"),
        address_space=list(net.get("address_space") or []),
        subnet_prefix=net.get("subnet_prefix"),
    )

    if not context.existing and (not context.address_space or not context.subnet_prefix):
        raise ValueError(
            "A new virtual network needs both 'address_space' and 'subnet_prefix'"
        )
    return context


def parse_nics(config_data: Dict[str, Any]) -> List[NicDescriptor]:
    """
    Normalise nic_names and vm_nics into NicDescriptors.

    A NIC is identified by (subscription, resource group, name); the same NIC
    listed twice is associated once. Each descriptor's key names its
    association and must be unique.
    """
    default_subscription = config_data.get("subscription_id")
    default_group = config_data["resource_group_name"]
    nics: Dict[tuple, NicDescriptor] = {}
    keys = set()

    def add(nic: NicDescriptor):
        identity = (
            nic.subscription_id or default_subscription,
            nic.resource_group_name or default_group,
            nic.name,
        )
        if identity in nics:
            pulumi.log.warn(
                f"NIC '{nic.name}' in '{identity[1]}' listed more than once "
                f"(as '{nics[identity].key}' and '{nic.key}'); associating it once"
            )
            return
        if nic.key in keys:
            raise ValueError(f"Two different NICs would share the association key '{nic.key}'")
        keys.add(nic.key)
        nics[identity] = nic

    for name in config_data.get("nic_names") or []:
        add(NicDescriptor(name=name, key=name))

    for vm, descriptor in (config_data.get("vm_nics") or {}).items():
        if not isinstance(descriptor, dict):
            raise ValueError(f"vm_nics entry '{vm}' must be a mapping")
        nic = NicDescriptor(
            name=descriptor.get("nic_name") or descriptor.get("name") or vm,
            ip_configuration_name=descriptor.get("ip_configuration_name"),
            resource_group_name=descriptor.get("resource_group_name"),
            subscription_id=descriptor.get("subscription_id"),
            nic_id=descriptor.get("nic_id"),
            key=vm,
        )
        # NIC lookups run against the provider's subscription only
        if nic.subscription_id and not nic.ip_configuration_name:
            raise ValueError(
                f"vm_nics entry '{vm}' sets subscription_id, so it also needs ip_configuration_name"
            )
        add(nic)

    return list(nics.values())


def parse_settings(cls, config_data: Dict[str, Any], key: str):
    section = config_data.get(key) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{key}' must be a mapping")
    try:
        return cls(**section)
    except TypeError as e:
        raise ValueError(f"Invalid '{key}' settings: {e}") from e


def parse_probe(config_data: Dict[str, Any]) -> ProbeSettings:
    probe = parse_settings(ProbeSettings, config_data, "health_probe")
    if probe.protocol in HTTP_PROBE_PROTOCOLS and not probe.request_path:
        raise ValueError(f"{probe.protocol} health probes need a 'request_path'")
    probe.interval_in_seconds = parse_int(probe.interval_in_seconds, "interval_in_seconds", minimum=5)
    probe.number_of_probes = parse_int(probe.number_of_probes, "number_of_probes", minimum=1)
    return probe


def parse_load_balancer(config_data: Dict[str, Any]) -> LoadBalancerSettings:
    lb = parse_settings(LoadBalancerSettings, config_data, "load_balancer")
    # Azure accepts idle timeouts of 4 to 30 minutes
    lb.idle_timeout_in_minutes = parse_int(
        lb.idle_timeout_in_minutes, "idle_timeout_in_minutes", minimum=4, maximum=30
    )
    lb.enable_floating_ip = parse_bool(lb.enable_floating_ip, "enable_floating_ip")
    return lb


def parse_config(config_data: Dict[str, Any]) -> StackConfig:
    """Build a StackConfig from a loaded YAML document, raising ValueError on bad input."""
    for key in REQUIRED_KEYS:
        if key not in config_data:
            raise ValueError(f"Missing required configuration key: {key}")

    zones = {
        region: [str(zone) for zone in region_zones]
        for region, region_zones in (config_data.get("availability_zones") or {}).items()
    }

    return StackConfig(
        location=config_data["location"],
        resource_group_name=config_data["resource_group_name"],
        network=parse_network(config_data),
        rules=parse_rules(config_data),
        nics=parse_nics(config_data),
        load_balancer=parse_load_balancer(config_data),
        probe=parse_probe(config_data),
        subscription_id=config_data.get("subscription_id"),
        team=config_data.get("team", "team"),
        service=config_data.get("service", "svc"),
        environment=config_data.get("environment", "dev"),
        tags=dict(config_data.get("tags") or {}),
        availability_zones=zones,
    )

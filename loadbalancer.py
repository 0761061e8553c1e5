import pulumi
import pulumi_azure as azure
from pulumi_azure_native import authorization, network
from typing import Dict, List, Optional

from config import NicDescriptor, PortPair, ProbeSettings, StackConfig

AZURE_LOCATION_ABBREVIATIONS = {
    "eastus": "eus",
    "eastus2": "eus2",
    "westus": "wus",
    "westus2": "wus2",
    "westus3": "wus3",
    "centralus": "cus",
    "northcentralus": "ncus",
    "southcentralus": "scus",
    "canadacentral": "ccc",
    "canadaeast": "cce",
    "brazilsouth": "brs",
    "brazilsoutheast": "brse",
    "northeurope": "ne",
    "westeurope": "we",
    "uksouth": "uks",
    "ukwest": "ukw",
    "francecentral": "frc",
    "francesouth": "frs",
    "germanywestcentral": "gwc",
    "germanynorth": "gn",
    "norwayeast": "nwe",
    "norwaywest": "nww",
    "swedencentral": "swc",
    "switzerlandnorth": "swn",
    "switzerlandwest": "sww",
    "uaenorth": "uaen",
    "uaecentral": "uaec",
    "australiaeast": "aue",
    "australiasoutheast": "ause",
    "australiacentral": "auc",
    "australiacentral2": "auc2",
    "japaneast": "jpe",
    "japanwest": "jpw",
    "koreacentral": "kc",
    "koreasouth": "ks",
    "southeastasia": "sea",
    "eastasia": "ea",
    "southindia": "si",
    "centralindia": "ci",
    "westindia": "wi",
    "southafricanorth": "san",
    "southafricawest": "saw",
    "qatarcentral": "qc",
    "polandcentral": "plc",
    "israelcentral": "ilc",
    "israelnorth": "iln",
}

# Regions whose internal load balancers get a zone-redundant frontend.
REGION_ZONES = {
    "eastus": ["1", "2", "3"],
    "southcentralus": ["1", "2", "3"],
}


def normalize_region(region: str) -> str:
    return region.replace(" ", "").lower()


def zones_for_region(region: str, overrides: Optional[Dict[str, List[str]]] = None) -> Optional[List[str]]:
    """Return the availability zones for a region, or None when it has none."""
    table = dict(REGION_ZONES)
    for name, zones in (overrides or {}).items():
        table[normalize_region(name)] = list(zones)
    zones = table.get(normalize_region(region))
    return list(zones) if zones else None


def load_balancer_resource_id(subscription_id: str, resource_group_name: str, load_balancer_name: str) -> str:
    return (
        f"/subscriptions/{subscription_id}/resourceGroups/{resource_group_name}"
        f"/providers/Microsoft.Network/loadBalancers/{load_balancer_name}"
    )


def sub_resource_id(load_balancer_id: str, collection: str, name: str) -> str:
    # collection is the ARM child segment, e.g. "probes" or "backendAddressPools"
    return f"{load_balancer_id}/{collection}/{name}"


def nic_resource_id(subscription_id: str, resource_group_name: str, nic_name: str) -> str:
    return (
        f"/subscriptions/{subscription_id}/resourceGroups/{resource_group_name}"
        f"/providers/Microsoft.Network/networkInterfaces/{nic_name}"
    )


def probe_name(port: int) -> str:
    return f"probe-{port}"


def rule_name(port: int) -> str:
    return f"rule-{port}"


def probe_ports(rules: List[PortPair]) -> List[int]:
    """Distinct probe ports in first-seen order; rules sharing a port share a probe."""
    ports = []
    for rule in rules:
        if rule.probe_port not in ports:
            ports.append(rule.probe_port)
    return ports


def rule_probe_map(rules: List[PortPair]) -> Dict[int, int]:
    """Map each frontend port to the probe port that guards it."""
    return {rule.frontend_port: rule.probe_port for rule in rules}


def probe_args(rules: List[PortPair], settings: ProbeSettings) -> List[network.ProbeArgs]:
    return [
        network.ProbeArgs(
            name=probe_name(port),
            protocol=settings.protocol,
            port=port,
            interval_in_seconds=settings.interval_in_seconds,
            number_of_probes=settings.number_of_probes,
            request_path=settings.request_path,
        )
        for port in probe_ports(rules)
    ]


def rule_args(load_balancer_id: str, rules: List[PortPair], config: StackConfig) -> List[network.LoadBalancingRuleArgs]:
    """
    Build one load-balancing rule per port pair.

    Rules reference the frontend, pool and probe of the same load balancer by
    ARM id, since those children are declared inline with it.
    """
    lb = config.load_balancer
    return [
        network.LoadBalancingRuleArgs(
            name=rule_name(rule.frontend_port),
            frontend_ip_configuration=network.SubResourceArgs(
                id=sub_resource_id(load_balancer_id, "frontendIPConfigurations", lb.frontend_name),
            ),
            backend_address_pool=network.SubResourceArgs(
                id=sub_resource_id(load_balancer_id, "backendAddressPools", lb.backend_pool_name),
            ),
            probe=network.SubResourceArgs(
                id=sub_resource_id(load_balancer_id, "probes", probe_name(rule.probe_port)),
            ),
            protocol=lb.protocol,
            frontend_port=rule.frontend_port,
            backend_port=rule.backend_port,
            idle_timeout_in_minutes=lb.idle_timeout_in_minutes,
            enable_floating_ip=lb.enable_floating_ip,
            load_distribution=lb.load_distribution,
        )
        for rule in rules
    ]


class InternalLoadBalancerBuilder:
    def __init__(self, config: StackConfig):
        self.config = config
        self.resources = {}
        self.subnet_id = None
        self.subscription_id = None
        self.load_balancer = None
        self.load_balancer_name = None
        self.nic_associations = {}

    def get_abbreviation(self, location: str) -> str:
        # If the location is recognized, use abbreviation; else fallback to first 3 letters
        key = normalize_region(location)
        return AZURE_LOCATION_ABBREVIATIONS.get(key, key[:3])

    def generate_resource_name(self, base_name: str) -> str:
        loc_abbr = self.get_abbreviation(self.config.location)
        return f"{self.config.team}-{self.config.service}-{self.config.environment}-{loc_abbr}-{base_name}".lower()

    def resolve_subscription(self) -> str:
        if self.config.subscription_id:
            return self.config.subscription_id
        client = authorization.get_client_config()
        pulumi.log.info(f"Using subscription '{client.subscription_id}' from the provider credentials")
        return client.subscription_id

    def build_network(self):
        ctx = self.config.network

        if ctx.existing:
            vnet = network.get_virtual_network(
                resource_group_name=ctx.resource_group_name,
                virtual_network_name=ctx.virtual_network_name,
            )
            subnet = network.get_subnet(
                resource_group_name=ctx.resource_group_name,
                virtual_network_name=ctx.virtual_network_name,
                subnet_name=ctx.subnet_name,
            )
            pulumi.log.info(
                f"Fetched existing subnet '{ctx.subnet_name}' in '{ctx.virtual_network_name}' "
                f"({ctx.resource_group_name})"
            )
        else:
            vnet = network.VirtualNetwork(
                ctx.virtual_network_name,
                resource_group_name=ctx.resource_group_name,
                virtual_network_name=ctx.virtual_network_name,
                location=self.config.location,
                address_space=network.AddressSpaceArgs(address_prefixes=ctx.address_space),
                tags=self.config.tags or None,
            )
            subnet = network.Subnet(
                f"{ctx.virtual_network_name}-{ctx.subnet_name}",
                resource_group_name=ctx.resource_group_name,
                virtual_network_name=vnet.name,
                subnet_name=ctx.subnet_name,
                address_prefix=ctx.subnet_prefix,
            )
            pulumi.log.info(f"Created virtual network '{ctx.virtual_network_name}' with subnet '{ctx.subnet_name}'")

        self.resources["virtual_network"] = vnet
        self.resources["subnet"] = subnet
        self.subnet_id = subnet.id

    def build_load_balancer(self):
        lb = self.config.load_balancer
        self.load_balancer_name = lb.name or self.generate_resource_name("ilb")
        lb_id = load_balancer_resource_id(
            self.subscription_id, self.config.resource_group_name, self.load_balancer_name
        )

        zones = zones_for_region(self.config.location, self.config.availability_zones)
        if zones is None:
            pulumi.log.info(f"No availability zones for '{self.config.location}'; frontend is not zonal")

        self.load_balancer = network.LoadBalancer(
            self.load_balancer_name,
            resource_group_name=self.config.resource_group_name,
            load_balancer_name=self.load_balancer_name,
            location=self.config.location,
            sku=network.LoadBalancerSkuArgs(name=lb.sku),
            frontend_ip_configurations=[
                network.FrontendIPConfigurationArgs(
                    name=lb.frontend_name,
                    subnet=network.SubnetArgs(id=self.subnet_id),
                    private_ip_allocation_method="Dynamic",
                    zones=zones,
                )
            ],
            backend_address_pools=[network.BackendAddressPoolArgs(name=lb.backend_pool_name)],
            probes=probe_args(self.config.rules, self.config.probe),
            load_balancing_rules=rule_args(lb_id, self.config.rules, self.config),
            tags=self.config.tags or None,
        )
        self.resources["load_balancer"] = self.load_balancer
        pulumi.log.info(
            f"Created load balancer: {self.load_balancer_name} with rules {rule_probe_map(self.config.rules)}"
        )

    def resolve_nic(self, nic: NicDescriptor):
        """Return (nic_id, ip_configuration_name) for a descriptor, looking the NIC up if needed."""
        resource_group = nic.resource_group_name or self.config.resource_group_name
        ip_configuration_name = nic.ip_configuration_name

        if nic.nic_id and ip_configuration_name:
            return nic.nic_id, ip_configuration_name

        if ip_configuration_name and nic.subscription_id:
            return nic_resource_id(nic.subscription_id, resource_group, nic.name), ip_configuration_name

        existing = network.get_network_interface(
            resource_group_name=resource_group,
            network_interface_name=nic.name,
        )
        pulumi.log.info(f"Fetched existing network interface '{nic.name}' ({resource_group})")
        if not ip_configuration_name:
            if not existing.ip_configurations:
                raise ValueError(f"Network interface '{nic.name}' has no IP configurations")
            ip_configuration_name = existing.ip_configurations[0].name
        return nic.nic_id or existing.id, ip_configuration_name

    def build_nic_associations(self):
        pool_id = self.load_balancer.id.apply(
            lambda lb_id: sub_resource_id(lb_id, "backendAddressPools", self.config.load_balancer.backend_pool_name)
        )

        for nic in self.config.nics:
            nic_id, ip_configuration_name = self.resolve_nic(nic)
            key = nic.key or nic.name
            association = azure.network.NetworkInterfaceBackendAddressPoolAssociation(
                f"{self.load_balancer_name}-{key}",
                network_interface_id=nic_id,
                ip_configuration_name=ip_configuration_name,
                backend_address_pool_id=pool_id,
            )
            self.nic_associations[key] = association
            self.resources[f"nic_association_{key}"] = association
            pulumi.log.info(f"Associated NIC '{nic.name}' with pool '{self.config.load_balancer.backend_pool_name}'")

    def build(self):
        self.subscription_id = self.resolve_subscription()
        self.build_network()
        self.build_load_balancer()
        self.build_nic_associations()

    def outputs(self) -> Dict[str, pulumi.Output]:
        """Identifiers of the created load balancer and its children."""
        lb = self.config.load_balancer
        probe_names = [probe_name(port) for port in probe_ports(self.config.rules)]
        rule_names = [rule_name(rule.frontend_port) for rule in self.config.rules]
        lb_id = self.load_balancer.id

        return {
            "load_balancer_id": lb_id,
            "frontend_ip_configuration_id": lb_id.apply(
                lambda i: sub_resource_id(i, "frontendIPConfigurations", lb.frontend_name)
            ),
            "backend_address_pool_id": lb_id.apply(
                lambda i: sub_resource_id(i, "backendAddressPools", lb.backend_pool_name)
            ),
            "probe_ids": lb_id.apply(lambda i: [sub_resource_id(i, "probes", n) for n in probe_names]),
            "rule_ids": lb_id.apply(lambda i: [sub_resource_id(i, "loadBalancingRules", n) for n in rule_names]),
            "private_ip_address": self.load_balancer.frontend_ip_configurations.apply(
                lambda configs: configs[0].private_ip_address if configs else None
            ),
            "nic_association_ids": pulumi.Output.all(*[a.id for a in self.nic_associations.values()]),
        }

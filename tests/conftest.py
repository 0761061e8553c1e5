import copy

import pulumi
import pytest

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000000"
FRONTEND_PRIVATE_IP = "10.0.1.4"


class AzureMocks(pulumi.runtime.Mocks):
    """Echo resource inputs back as state and answer the lookups the stack performs."""

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        state = dict(args.inputs)
        if args.typ == "azure-native:network:LoadBalancer":
            # Azure assigns the private frontend address on create
            frontends = [dict(c) for c in state.get("frontendIPConfigurations", [])]
            if frontends:
                frontends[0]["privateIPAddress"] = FRONTEND_PRIVATE_IP
            state["frontendIPConfigurations"] = frontends
        return [f"{args.name}_id", state]

    def call(self, args: pulumi.runtime.MockCallArgs):
        if args.token == "azure-native:authorization:getClientConfig":
            return {"subscriptionId": SUBSCRIPTION_ID}
        if args.token == "azure-native:network:getVirtualNetwork":
            return {"id": f"/vnets/{args.args['virtualNetworkName']}", "name": args.args["virtualNetworkName"]}
        if args.token == "azure-native:network:getSubnet":
            return {"id": f"/subnets/{args.args['subnetName']}", "name": args.args["subnetName"]}
        if args.token == "azure-native:network:getNetworkInterface":
            name = args.args["networkInterfaceName"]
            return {
                "id": f"/networkInterfaces/{name}",
                "name": name,
                "ipConfigurations": [{"name": "ipconfig1"}],
            }
        return {}


pulumi.runtime.set_mocks(AzureMocks(), preview=False)


BASE_CONFIG = {
    "team": "platform",
    "service": "ilb",
    "environment": "dev",
    "location": "East US",
    "resource_group_name": "rg-network-dev",
    "subscription_id": SUBSCRIPTION_ID,
    "network": {
        "virtual_network_name": "vnet-dev",
        "subnet_name": "snet-backend",
    },
    "health_probe_ports": ["8080", "8443"],
    "lb_rule_ports": ["80", "443"],
    "nic_names": ["test1226", "test2498"],
}


@pytest.fixture
def config_data():
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def subscription_id():
    return SUBSCRIPTION_ID


@pytest.fixture
def frontend_private_ip():
    return FRONTEND_PRIVATE_IP

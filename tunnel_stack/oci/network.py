"""OCI network infrastructure: VCN, internet gateway, routing, security list, subnet."""

from dataclasses import dataclass

import pulumi
import pulumi_oci as oci

from tunnel_stack.config import StackSettings

ANYWHERE = "0.0.0.0/0"

# OCI protocol numbers
PROTOCOL_ALL = "all"
PROTOCOL_ICMP = "1"
PROTOCOL_TCP = "6"


@dataclass
class NetworkResources:
    """Container for network-related resources."""

    vcn: oci.core.Vcn
    internet_gateway: oci.core.InternetGateway
    route_table: oci.core.RouteTable
    security_list: oci.core.SecurityList
    subnet: oci.core.Subnet


def build_egress_rules() -> list[oci.core.SecurityListEgressSecurityRuleArgs]:
    """Allow all outbound traffic (package installs, registry, tunnel)."""
    return [
        oci.core.SecurityListEgressSecurityRuleArgs(
            destination=ANYWHERE,
            protocol=PROTOCOL_ALL,
            stateless=False,
            description="All outbound traffic",
        )
    ]


def build_ingress_rules(settings: StackSettings) -> list[oci.core.SecurityListIngressSecurityRuleArgs]:
    """Build inbound rules.

    - SSH: only from admin CIDRs (none means no SSH rule at all)
    - ICMP 3/4: path MTU discovery
    - No HTTP/HTTPS: web traffic reaches the instance through the tunnel
    """
    rules = [
        oci.core.SecurityListIngressSecurityRuleArgs(
            source=cidr,
            protocol=PROTOCOL_TCP,
            stateless=False,
            description="SSH from admin CIDR",
            tcp_options=oci.core.SecurityListIngressSecurityRuleTcpOptionsArgs(min=22, max=22),
        )
        for cidr in settings.admin_ssh_cidrs
    ]

    rules.append(
        oci.core.SecurityListIngressSecurityRuleArgs(
            source=ANYWHERE,
            protocol=PROTOCOL_ICMP,
            stateless=False,
            description="Path MTU discovery",
            icmp_options=oci.core.SecurityListIngressSecurityRuleIcmpOptionsArgs(type=3, code=4),
        )
    )

    return rules


def create_network(settings: StackSettings) -> NetworkResources:
    """Create VCN with a public subnet routed through an internet gateway.

    Args:
        settings: Validated stack settings

    Returns:
        NetworkResources containing the VCN, gateway, route table, security list and subnet
    """
    prefix = settings.name_prefix
    compartment_id = settings.compartment_id

    if not settings.admin_ssh_cidrs:
        pulumi.log.warn(
            f"No admin SSH CIDRs configured for {prefix}: SSH ingress is closed and the "
            "GitHub Actions deploy job cannot reach the instance"
        )

    vcn = oci.core.Vcn(
        f"{prefix}-vcn",
        compartment_id=compartment_id,
        cidr_blocks=[settings.vcn_cidr],
        display_name=f"{prefix}-vcn",
        dns_label=_dns_label(settings.app_name, "vcn"),
        freeform_tags=settings.tags,
    )

    internet_gateway = oci.core.InternetGateway(
        f"{prefix}-igw",
        compartment_id=compartment_id,
        vcn_id=vcn.id,
        display_name=f"{prefix}-igw",
        enabled=True,
        freeform_tags=settings.tags,
    )

    route_table = oci.core.RouteTable(
        f"{prefix}-rt",
        compartment_id=compartment_id,
        vcn_id=vcn.id,
        display_name=f"{prefix}-rt",
        route_rules=[
            oci.core.RouteTableRouteRuleArgs(
                destination=ANYWHERE,
                destination_type="CIDR_BLOCK",
                network_entity_id=internet_gateway.id,
                description="Default route to the internet gateway",
            )
        ],
        freeform_tags=settings.tags,
    )

    security_list = oci.core.SecurityList(
        f"{prefix}-sl",
        compartment_id=compartment_id,
        vcn_id=vcn.id,
        display_name=f"{prefix}-sl",
        egress_security_rules=build_egress_rules(),
        ingress_security_rules=build_ingress_rules(settings),
        freeform_tags=settings.tags,
    )

    subnet = oci.core.Subnet(
        f"{prefix}-subnet",
        compartment_id=compartment_id,
        vcn_id=vcn.id,
        cidr_block=settings.subnet_cidr,
        display_name=f"{prefix}-subnet",
        dns_label=_dns_label(settings.app_name, "sub"),
        route_table_id=route_table.id,
        security_list_ids=[security_list.id],
        prohibit_public_ip_on_vnic=False,
        freeform_tags=settings.tags,
    )

    return NetworkResources(
        vcn=vcn,
        internet_gateway=internet_gateway,
        route_table=route_table,
        security_list=security_list,
        subnet=subnet,
    )


def _dns_label(app_name: str, suffix: str) -> str:
    # OCI DNS labels: alphanumeric, starting with a letter, at most 15 chars
    base = "".join(c for c in app_name if c.isalnum()) or "app"
    if not base[0].isalpha():
        base = f"a{base}"
    return f"{base[: 15 - len(suffix)]}{suffix}"

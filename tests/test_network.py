"""Tests for OCI network resources."""

from unittest.mock import patch

import pulumi

from tests.conftest import make_settings
from tunnel_stack.oci.network import (
    ANYWHERE,
    PROTOCOL_ICMP,
    PROTOCOL_TCP,
    build_egress_rules,
    build_ingress_rules,
    create_network,
)


class TestSecurityRules:
    """Tests for security list rule builders."""

    def test_ssh_only_from_admin_cidrs(self):
        """Test one SSH rule per admin CIDR."""
        settings = make_settings(admin_ssh_cidrs=["198.51.100.0/24", "192.0.2.7/32"])

        ssh_rules = [r for r in build_ingress_rules(settings) if r.protocol == PROTOCOL_TCP]

        assert [r.source for r in ssh_rules] == ["198.51.100.0/24", "192.0.2.7/32"]
        assert all(r.tcp_options.min == 22 and r.tcp_options.max == 22 for r in ssh_rules)

    def test_no_admin_cidrs_no_ssh(self):
        """Test SSH is closed when no admin CIDRs are configured."""
        settings = make_settings(admin_ssh_cidrs=[])

        rules = build_ingress_rules(settings)

        assert [r.protocol for r in rules] == [PROTOCOL_ICMP]

    def test_no_web_ingress(self):
        """Test no HTTP/HTTPS port is opened; traffic arrives through the tunnel."""
        rules = build_ingress_rules(make_settings(admin_ssh_cidrs=["0.0.0.0/0"]))

        ports = {r.tcp_options.min for r in rules if r.tcp_options is not None}
        assert ports == {22}

    def test_path_mtu_icmp(self):
        """Test ICMP type 3 code 4 is allowed."""
        icmp = [r for r in build_ingress_rules(make_settings()) if r.protocol == PROTOCOL_ICMP]

        assert len(icmp) == 1
        assert icmp[0].icmp_options.type == 3
        assert icmp[0].icmp_options.code == 4

    def test_egress_all(self):
        """Test all outbound traffic is allowed."""
        rules = build_egress_rules()

        assert len(rules) == 1
        assert rules[0].destination == ANYWHERE
        assert rules[0].protocol == "all"


class TestCreateNetwork:
    """Tests for create_network."""

    @pulumi.runtime.test
    def test_vcn_and_subnet(self, settings):
        """Test VCN and subnet CIDRs and names."""
        network = create_network(settings)

        def check(args):
            vcn_name, cidr_blocks, subnet_name, subnet_cidr, public_ip_prohibited = args
            assert vcn_name == "shop-dev-vcn"
            assert cidr_blocks == ["10.0.0.0/16"]
            assert subnet_name == "shop-dev-subnet"
            assert subnet_cidr == "10.0.1.0/24"
            assert public_ip_prohibited is False

        return pulumi.Output.all(
            network.vcn.display_name,
            network.vcn.cidr_blocks,
            network.subnet.display_name,
            network.subnet.cidr_block,
            network.subnet.prohibit_public_ip_on_vnic,
        ).apply(check)

    @pulumi.runtime.test
    def test_subnet_wiring(self, settings):
        """Test the subnet uses the route table and security list, all in the VCN."""
        network = create_network(settings)

        def check(args):
            vcn_id, igw_vcn, rt_vcn, sl_vcn, subnet_vcn, rt_id, subnet_rt, sl_id, subnet_sls = args
            assert igw_vcn == rt_vcn == sl_vcn == subnet_vcn == vcn_id
            assert subnet_rt == rt_id
            assert subnet_sls == [sl_id]

        return pulumi.Output.all(
            network.vcn.id,
            network.internet_gateway.vcn_id,
            network.route_table.vcn_id,
            network.security_list.vcn_id,
            network.subnet.vcn_id,
            network.route_table.id,
            network.subnet.route_table_id,
            network.security_list.id,
            network.subnet.security_list_ids,
        ).apply(check)

    @pulumi.runtime.test
    def test_resources_tagged(self, settings):
        """Test freeform tags mark resources as Pulumi-managed."""
        network = create_network(settings)

        def check(tags):
            assert tags["managed_by"] == "pulumi"
            assert tags["environment"] == "dev"

        return network.vcn.freeform_tags.apply(check)

    @pulumi.runtime.test
    def test_warns_when_deploy_ssh_closed(self):
        """Test a stack without admin CIDRs warns that the deploy job cannot connect."""
        with patch("tunnel_stack.oci.network.pulumi.log.warn") as mock_warn:
            create_network(make_settings(environment="prod", admin_ssh_cidrs=[]))

        mock_warn.assert_called_once()
        assert "deploy job" in mock_warn.call_args[0][0]

    @pulumi.runtime.test
    def test_no_warning_with_admin_cidrs(self, settings):
        """Test no SSH warning when admin CIDRs are configured."""
        with patch("tunnel_stack.oci.network.pulumi.log.warn") as mock_warn:
            create_network(settings)

        mock_warn.assert_not_called()

    def test_dns_label_limits(self):
        """Test DNS labels stay within OCI limits."""
        from tunnel_stack.oci.network import _dns_label

        label = _dns_label("9-very-long-application-name", "vcn")

        assert len(label) <= 15
        assert label[0].isalpha()
        assert label.endswith("vcn")

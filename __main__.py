"""Tunnel Stack - Pulumi Entry Point.

This module provisions a single application VM and everything around it:
- OCI: VCN, internet gateway, route table, security list, subnet, instance
- Cloudflare: tunnel, tunnel ingress configuration, DNS record
- GitHub: deploy workflow file and Actions secrets
"""

import pulumi
from tunnel_stack import outputs
from tunnel_stack.cloudflare import dns, tunnel
from tunnel_stack.config import load_secrets, load_settings
from tunnel_stack.github import secrets as ci_secrets
from tunnel_stack.github import workflow
from tunnel_stack.oci import compute, network

# Settings and credentials from stack config
settings = load_settings()
secrets = load_secrets(settings)

# =============================================================================
# Cloudflare Tunnel
# =============================================================================

# Tunnel and its ingress rules (hostname -> local app port, 404 fallback)
app_tunnel = tunnel.create_tunnel(settings, secrets)
tunnel_config = tunnel.create_tunnel_config(settings, app_tunnel)

# DNS record pointing the hostname at the tunnel
dns_record = dns.create_dns_record(settings, app_tunnel)

# =============================================================================
# OCI Infrastructure
# =============================================================================

# VCN, gateway, routing, security list and subnet
vpc = network.create_network(settings)

# Application instance, bootstrapped with the tunnel token
instance = compute.create_instance(
    settings=settings,
    secrets=secrets,
    subnet=vpc.subnet,
    tunnel_token=app_tunnel.tunnel_token,
    depends_on=[tunnel_config],
)

# =============================================================================
# GitHub Continuous Deployment
# =============================================================================

workflow_file = workflow.create_workflow_file(settings)
actions_secrets = ci_secrets.create_actions_secrets(
    settings=settings,
    secrets=secrets,
    deploy_host=instance.public_ip,
)

# =============================================================================
# Outputs
# =============================================================================

outputs.export_outputs(
    settings=settings,
    instance=instance,
    tunnel=app_tunnel,
    dns_record=dns_record,
    workflow_file=workflow_file,
    ci_secrets=actions_secrets,
)

pulumi.log.info(f"Stack {settings.name_prefix} serves https://{settings.hostname}")

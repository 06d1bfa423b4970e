"""Stack outputs for consumption by other tools."""

import pulumi
import pulumi_cloudflare as cloudflare
import pulumi_github as github
import pulumi_oci as oci

from tunnel_stack.config import StackSettings


def export_outputs(
    settings: StackSettings,
    instance: oci.core.Instance,
    tunnel: cloudflare.ZeroTrustTunnelCloudflared,
    dns_record: cloudflare.Record,
    workflow_file: github.RepositoryFile,
    ci_secrets: dict[str, github.ActionsSecret],
) -> None:
    """Export stack outputs for use by deployment scripts and other tools."""
    # Environment
    pulumi.export("environment", settings.environment)

    # Instance
    pulumi.export("instance_id", instance.id)
    pulumi.export("instance_public_ip", instance.public_ip)

    # Tunnel and DNS
    pulumi.export("tunnel_id", tunnel.id)
    pulumi.export("hostname", settings.hostname)
    pulumi.export("url", f"https://{settings.hostname}")
    pulumi.export("dns_record", dns_record.name)

    # CI
    pulumi.export("workflow_path", workflow_file.file)
    pulumi.export("ci_secrets", sorted(ci_secrets))

"""Cloudflare DNS configuration."""

import pulumi
import pulumi_cloudflare as cloudflare

from tunnel_stack.config import StackSettings

TUNNEL_DOMAIN = "cfargotunnel.com"


def tunnel_target(tunnel_id: pulumi.Input[str]) -> pulumi.Output[str]:
    """CNAME target that routes a hostname into the tunnel."""
    return pulumi.Output.from_input(tunnel_id).apply(lambda tid: f"{tid}.{TUNNEL_DOMAIN}")


def create_dns_record(
    settings: StackSettings, tunnel: cloudflare.ZeroTrustTunnelCloudflared
) -> cloudflare.Record:
    """Create the DNS record pointing the app hostname at the tunnel.

    Args:
        settings: Validated stack settings
        tunnel: The tunnel serving the hostname

    Returns:
        The created DNS record
    """
    return cloudflare.Record(
        f"{settings.name_prefix}-dns",
        zone_id=settings.cloudflare_zone_id,
        name=settings.record_name,
        content=tunnel_target(tunnel.id),
        type="CNAME",
        proxied=True,  # Required for tunnel routing
        ttl=1,  # Auto TTL when proxied
        comment=f"{settings.app_name} {settings.environment} tunnel",
    )

"""Cloudflare Tunnel: outbound-only ingress for the application instance.

The tunnel is remotely managed, so its ingress rules live in Cloudflare and
cloudflared on the instance only needs the tunnel token.
"""

import pulumi
import pulumi_cloudflare as cloudflare

from tunnel_stack.config import StackSecrets, StackSettings

# Catch-all service for requests that match no hostname
FALLBACK_SERVICE = "http_status:404"


def local_service(port: int) -> str:
    """Origin URL cloudflared forwards to on the instance."""
    return f"http://localhost:{port}"


def build_ingress_rules(
    hostname: str, port: int
) -> list[cloudflare.ZeroTrustTunnelCloudflaredConfigConfigIngressRuleArgs]:
    """Map the public hostname to the local app port, with a 404 fallback last."""
    return [
        cloudflare.ZeroTrustTunnelCloudflaredConfigConfigIngressRuleArgs(
            hostname=hostname,
            service=local_service(port),
        ),
        cloudflare.ZeroTrustTunnelCloudflaredConfigConfigIngressRuleArgs(
            service=FALLBACK_SERVICE,
        ),
    ]


def create_tunnel(settings: StackSettings, secrets: StackSecrets) -> cloudflare.ZeroTrustTunnelCloudflared:
    """Create the tunnel.

    Args:
        settings: Validated stack settings
        secrets: Credentials (tunnel secret)

    Returns:
        The created tunnel; ``tunnel_token`` is fed to cloudflared at boot
    """
    return cloudflare.ZeroTrustTunnelCloudflared(
        f"{settings.name_prefix}-tunnel",
        account_id=settings.cloudflare_account_id,
        name=f"{settings.name_prefix}-tunnel",
        secret=secrets.tunnel_secret,
        config_src="cloudflare",
    )


def create_tunnel_config(
    settings: StackSettings, tunnel: cloudflare.ZeroTrustTunnelCloudflared
) -> cloudflare.ZeroTrustTunnelCloudflaredConfig:
    """Declare the tunnel's ingress configuration."""
    pulumi.log.info(f"Routing {settings.hostname} to {local_service(settings.app_port)}")

    return cloudflare.ZeroTrustTunnelCloudflaredConfig(
        f"{settings.name_prefix}-tunnel-config",
        account_id=settings.cloudflare_account_id,
        tunnel_id=tunnel.id,
        config=cloudflare.ZeroTrustTunnelCloudflaredConfigConfigArgs(
            ingress_rules=build_ingress_rules(settings.hostname, settings.app_port),
        ),
    )

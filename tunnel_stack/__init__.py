"""Single-VM deployment stack: OCI compute, Cloudflare tunnel ingress, GitHub CD."""

"""Cloudflare infrastructure modules."""

from tunnel_stack.cloudflare import dns, tunnel

__all__ = ["dns", "tunnel"]

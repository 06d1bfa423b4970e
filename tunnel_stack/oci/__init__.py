"""Oracle Cloud Infrastructure modules."""

from tunnel_stack.oci import boot_script, compute, network

__all__ = ["boot_script", "compute", "network"]

"""OCI compute instance running the application container."""

import base64
from typing import Optional, Sequence

import pulumi
import pulumi_oci as oci

from tunnel_stack.config import StackSecrets, StackSettings
from tunnel_stack.exceptions import ImageLookupError
from tunnel_stack.oci.boot_script import BootScriptParams, render_boot_script


def lookup_image_id(settings: StackSettings) -> pulumi.Input[str]:
    """Resolve the boot image for the instance.

    An explicit ``image_id`` wins; otherwise the newest platform image matching
    the configured OS, OS version and shape is used.

    Raises:
        ImageLookupError: No image matches (when the lookup resolves)
    """
    if settings.image_id:
        return settings.image_id

    images = oci.core.get_images_output(
        compartment_id=settings.compartment_id,
        operating_system=settings.image_os,
        operating_system_version=settings.image_os_version,
        shape=settings.instance_shape,
        sort_by="TIMECREATED",
        sort_order="DESC",
    )

    def first_image(result) -> str:
        if not result.images:
            raise ImageLookupError(
                f"No {settings.image_os} {settings.image_os_version} image for shape {settings.instance_shape}",
                operating_system=settings.image_os,
                operating_system_version=settings.image_os_version,
            )
        return result.images[0].id

    return images.apply(first_image)


def encode_user_data(script: str) -> str:
    """Base64-encode a boot script for instance metadata."""
    return base64.b64encode(script.encode("utf-8")).decode("ascii")


def build_user_data(
    settings: StackSettings,
    secrets: StackSecrets,
    tunnel_token: pulumi.Input[str],
) -> pulumi.Output[str]:
    """Render the boot script once all secrets resolve, as a secret output."""
    database_password = secrets.database_password if secrets.database_password is not None else ""

    def render(args: list) -> str:
        registry_token, token, password = args
        params = BootScriptParams(
            app_name=settings.app_name,
            deploy_user=settings.deploy_user,
            deploy_ssh_public_key=settings.deploy_ssh_public_key,
            registry=settings.registry,
            registry_username=settings.registry_username,
            registry_token=registry_token,
            image=f"{settings.image}:latest",
            app_port=settings.app_port,
            env_file=settings.env_file,
            tunnel_token=token,
            install_database=settings.install_database,
            database_name=settings.database_name,
            database_user=settings.database_user,
            database_password=password or None,
        )
        return encode_user_data(render_boot_script(params))

    user_data = pulumi.Output.all(secrets.registry_token, tunnel_token, database_password).apply(render)
    return pulumi.Output.secret(user_data)


def create_instance(
    settings: StackSettings,
    secrets: StackSecrets,
    subnet: oci.core.Subnet,
    tunnel_token: pulumi.Input[str],
    depends_on: Optional[Sequence[pulumi.Resource]] = None,
) -> oci.core.Instance:
    """Create the application instance.

    Args:
        settings: Validated stack settings
        secrets: Credentials rendered into the boot script
        subnet: Public subnet for the primary VNIC
        tunnel_token: Tunnel provisioning token for cloudflared
        depends_on: Resources that must exist before first boot (tunnel config)

    Returns:
        The created OCI instance
    """
    prefix = settings.name_prefix

    if settings.install_database:
        pulumi.log.info(f"PostgreSQL will be installed on {prefix}-app")

    return oci.core.Instance(
        f"{prefix}-app",
        compartment_id=settings.compartment_id,
        availability_domain=settings.availability_domain,
        display_name=f"{prefix}-app",
        shape=settings.instance_shape,
        shape_config=oci.core.InstanceShapeConfigArgs(
            ocpus=settings.ocpus,
            memory_in_gbs=settings.memory_gbs,
        ),
        source_details=oci.core.InstanceSourceDetailsArgs(
            source_type="image",
            source_id=lookup_image_id(settings),
        ),
        create_vnic_details=oci.core.InstanceCreateVnicDetailsArgs(
            subnet_id=subnet.id,
            assign_public_ip="true",
            display_name=f"{prefix}-vnic",
        ),
        metadata={
            "ssh_authorized_keys": settings.ssh_public_key,
            "user_data": build_user_data(settings, secrets, tunnel_token),
        },
        freeform_tags=settings.tags,
        opts=pulumi.ResourceOptions(
            depends_on=list(depends_on or []),
            # New user_data only applies on first boot; do not replace the instance for it
            ignore_changes=["metadata"],
        ),
    )

"""GitHub Actions secrets consumed by the deploy workflow."""

import pulumi
import pulumi_github as github

from tunnel_stack.config import StackSecrets, StackSettings

CI_SECRET_NAMES = ("REGISTRY_TOKEN", "DEPLOY_HOST", "DEPLOY_USER", "DEPLOY_KEY", "IMAGE")


def secret_values(
    settings: StackSettings,
    secrets: StackSecrets,
    deploy_host: pulumi.Input[str],
) -> dict[str, pulumi.Output[str]]:
    """Values for each CI secret, all wrapped as Pulumi secrets."""
    values: dict[str, pulumi.Input[str]] = {
        "REGISTRY_TOKEN": secrets.registry_token,
        "DEPLOY_HOST": deploy_host,
        "DEPLOY_USER": settings.deploy_user,
        "DEPLOY_KEY": secrets.deploy_ssh_private_key,
        "IMAGE": settings.image,
    }
    return {name: pulumi.Output.secret(values[name]) for name in CI_SECRET_NAMES}


def create_actions_secrets(
    settings: StackSettings,
    secrets: StackSecrets,
    deploy_host: pulumi.Input[str],
) -> dict[str, github.ActionsSecret]:
    """Create the repository secrets the workflow reads.

    Args:
        settings: Validated stack settings
        secrets: Credentials (registry token, deploy key)
        deploy_host: Public IP of the instance

    Returns:
        Dictionary of ActionsSecret resources keyed by secret name
    """
    return {
        name: github.ActionsSecret(
            f"{settings.name_prefix}-secret-{name.lower().replace('_', '-')}",
            repository=settings.github_repository,
            secret_name=name,
            value=value,
        )
        for name, value in secret_values(settings, secrets, deploy_host).items()
    }

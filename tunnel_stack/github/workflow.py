"""CI workflow: build and push the container image, then redeploy the instance."""

import shlex
from typing import Any

import pulumi
import pulumi_github as github
import yaml

from tunnel_stack.config import StackSettings
from tunnel_stack.oci.boot_script import container_deploy_commands

# Pinned action versions
CHECKOUT_ACTION = "actions/checkout@v4"
LOGIN_ACTION = "docker/login-action@v3"
QEMU_ACTION = "docker/setup-qemu-action@v3"
BUILDX_ACTION = "docker/setup-buildx-action@v3"
BUILD_PUSH_ACTION = "docker/build-push-action@v6"
SSH_ACTION = "appleboy/ssh-action@v1.2.0"


class WorkflowDumper(yaml.SafeDumper):
    """Safe dumper that writes multi-line strings as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


WorkflowDumper.add_representer(str, _represent_str)


def _deploy_script(settings: StackSettings) -> str:
    login = (
        f'printf "%s" "$REGISTRY_TOKEN" | docker login {shlex.quote(settings.registry)} '
        f'--username {shlex.quote(settings.registry_username)} --password-stdin'
    )
    commands = container_deploy_commands(
        settings.container_name,
        '"$IMAGE:latest"',
        settings.app_port,
        settings.env_file,
        settings.install_database,
    )
    return "\n".join(["set -euo pipefail", login, *commands]) + "\n"


def image_platform(settings: StackSettings) -> str:
    """Container platform matching the instance shape (A1 shapes are Ampere arm64)."""
    return "linux/arm64" if "A1" in settings.instance_shape else "linux/amd64"


def _build_steps(settings: StackSettings) -> list[dict[str, Any]]:
    platform = image_platform(settings)
    steps: list[dict[str, Any]] = [{"uses": CHECKOUT_ACTION}]
    # Runners are x86; arm64 images need emulation for RUN steps
    if platform != "linux/amd64":
        steps.append({"name": "Set up QEMU", "uses": QEMU_ACTION, "with": {"platforms": platform}})
    steps += [
        {"uses": BUILDX_ACTION},
        {
            "name": "Log in to registry",
            "uses": LOGIN_ACTION,
            "with": {
                "registry": settings.registry,
                "username": settings.registry_username,
                "password": "${{ secrets.REGISTRY_TOKEN }}",
            },
        },
        {
            "name": "Build and push",
            "uses": BUILD_PUSH_ACTION,
            "with": {
                "context": ".",
                "push": True,
                "platforms": platform,
                "tags": "${{ secrets.IMAGE }}:latest\n${{ secrets.IMAGE }}:${{ github.sha }}\n",
            },
        },
    ]
    return steps


def build_workflow(settings: StackSettings) -> dict[str, Any]:
    """Build the workflow definition as plain data."""
    return {
        "name": "Deploy",
        "on": {
            "push": {"branches": [settings.github_branch]},
            "workflow_dispatch": {},
        },
        "concurrency": {"group": "deploy", "cancel-in-progress": False},
        "permissions": {"contents": "read", "packages": "write"},
        "jobs": {
            "build": {
                "runs-on": "ubuntu-latest",
                "steps": _build_steps(settings),
            },
            "deploy": {
                "needs": "build",
                "runs-on": "ubuntu-latest",
                "steps": [
                    {
                        "name": "Redeploy container",
                        "uses": SSH_ACTION,
                        "env": {
                            "REGISTRY_TOKEN": "${{ secrets.REGISTRY_TOKEN }}",
                            "IMAGE": "${{ secrets.IMAGE }}",
                        },
                        "with": {
                            "host": "${{ secrets.DEPLOY_HOST }}",
                            "username": "${{ secrets.DEPLOY_USER }}",
                            "key": "${{ secrets.DEPLOY_KEY }}",
                            "envs": "REGISTRY_TOKEN,IMAGE",
                            "script": _deploy_script(settings),
                        },
                    }
                ],
            },
        },
    }


def render_workflow(settings: StackSettings) -> str:
    """Render the workflow file as YAML."""
    return yaml.dump(
        build_workflow(settings),
        Dumper=WorkflowDumper,
        sort_keys=False,
        default_flow_style=False,
        width=1000,
    )


def create_workflow_file(settings: StackSettings) -> github.RepositoryFile:
    """Commit the workflow file to the application repository.

    Args:
        settings: Validated stack settings

    Returns:
        The committed repository file
    """
    pulumi.log.info(f"Committing {settings.workflow_path} to {settings.github_repository}")

    return github.RepositoryFile(
        f"{settings.name_prefix}-workflow",
        repository=settings.github_repository,
        branch=settings.github_branch,
        file=settings.workflow_path,
        content=render_workflow(settings),
        commit_message=f"Update {settings.environment} deploy workflow",
        overwrite_on_create=True,
    )

"""Boot script for the application instance.

The script runs once through cloud-init on first boot and finishes
provisioning: user account, Docker, optional PostgreSQL, cloudflared and the
application container.
"""

import shlex
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

CLOUDFLARED_DEB_URL = (
    "https://github.com/cloudflare/cloudflared/releases/latest/download/cloudflared-linux-{arch}.deb"
)

# Docker bridge gateway, reachable from containers as host.docker.internal
DOCKER_BRIDGE_IP = "172.17.0.1"


@dataclass
class BootScriptParams:
    """Resolved values interpolated into the boot script."""

    app_name: str
    deploy_user: str
    deploy_ssh_public_key: str
    registry: str
    registry_username: str
    registry_token: str
    image: str
    app_port: int
    env_file: str
    tunnel_token: str
    install_database: bool = False
    database_name: Optional[str] = None
    database_user: Optional[str] = None
    database_password: Optional[str] = None

    @property
    def container_name(self) -> str:
        return self.app_name

    @property
    def log_file(self) -> str:
        return f"/var/log/{self.app_name}-bootstrap.log"


def container_run_args(
    container_name: str,
    image_ref: str,
    app_port: int,
    env_file: str,
    install_database: bool = False,
) -> list[str]:
    """Build the ``docker run`` invocation for the application container.

    ``image_ref`` is inserted as given so callers can pass a shell variable.
    """
    args = [
        "docker",
        "run",
        "-d",
        "--name",
        shlex.quote(container_name),
        "--restart",
        "unless-stopped",
        "-p",
        f"127.0.0.1:{app_port}:{app_port}",
        "--env-file",
        shlex.quote(env_file),
    ]
    if install_database:
        args += ["--add-host", "host.docker.internal:host-gateway"]
    args.append(image_ref)
    return args


def container_deploy_commands(
    container_name: str,
    image_ref: str,
    app_port: int,
    env_file: str,
    install_database: bool = False,
) -> list[str]:
    """Commands that pull the image and replace the running container.

    Used both at first boot and by the CI deploy job.
    """
    name = shlex.quote(container_name)
    run = " ".join(container_run_args(container_name, image_ref, app_port, env_file, install_database))
    return [
        f"docker pull {image_ref}",
        f"docker rm -f {name} >/dev/null 2>&1 || true",
        run,
        "docker image prune -f",
    ]


def _user_section(p: BootScriptParams) -> str:
    user = shlex.quote(p.deploy_user)
    key = shlex.quote(p.deploy_ssh_public_key)
    return f"""
log "Creating user {p.deploy_user}"
if ! id -u {user} >/dev/null 2>&1; then
  useradd --create-home --shell /bin/bash --groups sudo {user}
fi
install -d -m 0700 -o {user} -g {user} /home/{p.deploy_user}/.ssh
echo {key} > /home/{p.deploy_user}/.ssh/authorized_keys
chown {user}:{user} /home/{p.deploy_user}/.ssh/authorized_keys
chmod 0600 /home/{p.deploy_user}/.ssh/authorized_keys
"""


def _docker_section(p: BootScriptParams) -> str:
    user = shlex.quote(p.deploy_user)
    return f"""
log "Installing Docker"
export DEBIAN_FRONTEND=noninteractive
apt-get update -y
apt-get install -y ca-certificates curl gnupg
install -m 0755 -d /etc/apt/keyrings
curl -fsSL https://download.docker.com/linux/ubuntu/gpg -o /etc/apt/keyrings/docker.asc
chmod a+r /etc/apt/keyrings/docker.asc
echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/docker.asc] https://download.docker.com/linux/ubuntu $(. /etc/os-release && echo "$VERSION_CODENAME") stable" > /etc/apt/sources.list.d/docker.list
apt-get update -y
apt-get install -y docker-ce docker-ce-cli containerd.io
mkdir -p /etc/docker
cat > /etc/docker/daemon.json << 'DOCKER_EOF'
{{
  "log-driver": "json-file",
  "log-opts": {{
    "max-size": "10m",
    "max-file": "3"
  }}
}}
DOCKER_EOF
systemctl enable docker
systemctl restart docker
usermod -aG docker {user}
"""


def _database_section(p: BootScriptParams) -> str:
    if not p.install_database:
        return ""

    db_user = p.database_user or p.app_name
    db_name = p.database_name or p.app_name
    password_sql = (p.database_password or "").replace("'", "''")
    create_role = f"CREATE ROLE {db_user} LOGIN PASSWORD '{password_sql}'"
    return f"""
log "Installing PostgreSQL"
apt-get install -y postgresql
PG_CONF_DIR=$(ls -d /etc/postgresql/*/main | head -n 1)
echo "listen_addresses = 'localhost,{DOCKER_BRIDGE_IP}'" >> "$PG_CONF_DIR/postgresql.conf"
echo "host {db_name} {db_user} 172.16.0.0/12 scram-sha-256" >> "$PG_CONF_DIR/pg_hba.conf"
# OCI Ubuntu images REJECT unlisted INPUT traffic; containers reach the host via docker0
if ! iptables -C INPUT -i docker0 -p tcp --dport 5432 -j ACCEPT 2>/dev/null; then
  iptables -I INPUT -i docker0 -p tcp --dport 5432 -j ACCEPT
fi
if command -v netfilter-persistent >/dev/null 2>&1; then
  netfilter-persistent save
fi
systemctl enable postgresql
systemctl restart postgresql
if ! sudo -u postgres psql -tAc "SELECT 1 FROM pg_roles WHERE rolname='{db_user}'" | grep -q 1; then
  sudo -u postgres psql -c {shlex.quote(create_role)}
fi
if ! sudo -u postgres psql -tAc "SELECT 1 FROM pg_database WHERE datname='{db_name}'" | grep -q 1; then
  sudo -u postgres createdb --owner={db_user} {db_name}
fi
"""


def _tunnel_section(p: BootScriptParams) -> str:
    deb_url = CLOUDFLARED_DEB_URL.format(arch="$(dpkg --print-architecture)")
    return f"""
log "Installing cloudflared"
curl -fsSL -o /tmp/cloudflared.deb "{deb_url}"
dpkg -i /tmp/cloudflared.deb
rm -f /tmp/cloudflared.deb
cloudflared service install {shlex.quote(p.tunnel_token)}
systemctl enable cloudflared
"""


def _registry_section(p: BootScriptParams) -> str:
    return f"""
log "Logging in to {p.registry}"
printf "%s" {shlex.quote(p.registry_token)} | docker login {shlex.quote(p.registry)} --username {shlex.quote(p.registry_username)} --password-stdin
"""


def _container_section(p: BootScriptParams) -> str:
    env_lines = [f"PORT={p.app_port}"]
    if p.install_database:
        db_user = p.database_user or p.app_name
        db_name = p.database_name or p.app_name
        env_lines.append(
            f"DATABASE_URL=postgresql://{db_user}:{quote(p.database_password or '', safe='')}"
            f"@host.docker.internal:5432/{db_name}"
        )
    env_body = "\n".join(env_lines)
    image = shlex.quote(p.image)
    pull, *replace = container_deploy_commands(
        p.container_name,
        image,
        p.app_port,
        p.env_file,
        p.install_database,
    )
    deploy = "\n".join(f"  {command}" for command in replace)
    env_dir = p.env_file.rsplit("/", 1)[0]
    return f"""
log "Starting {p.container_name} on port {p.app_port}"
install -d -m 0750 -o root -g {shlex.quote(p.deploy_user)} {shlex.quote(env_dir)}
cat > {shlex.quote(p.env_file)} << 'ENV_EOF'
{env_body}
ENV_EOF
chown root:{shlex.quote(p.deploy_user)} {shlex.quote(p.env_file)}
chmod 0640 {shlex.quote(p.env_file)}
# The image may not be published until the first CI build
if {pull}; then
{deploy}
else
  log "Image {p.image} not available yet, the CI deploy job will start {p.container_name}"
fi
"""


def render_boot_script(params: BootScriptParams) -> str:
    """Render the first-boot provisioning script.

    Steps run in order: user account, container runtime, optional database,
    tunnel client, registry login, container launch.

    Args:
        params: Resolved values, secrets included

    Returns:
        Bash script suitable for instance user_data
    """
    log_file = shlex.quote(params.log_file)
    sections = [
        _user_section(params),
        _docker_section(params),
        _database_section(params),
        _tunnel_section(params),
        _registry_section(params),
        _container_section(params),
    ]
    return f"""#!/bin/bash
set -euo pipefail

log() {{
  echo "[$(date -u +%Y-%m-%dT%H:%M:%SZ)] $*" | tee -a {log_file}
}}

log "Bootstrap started"
{"".join(sections)}
log "Bootstrap finished"
"""

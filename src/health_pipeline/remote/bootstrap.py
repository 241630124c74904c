"""First-boot script for a dev fleet instance, as a command document.

Rendered with ``render_user_data`` it becomes EC2 user data: data volume on
``/data``, Docker with its data root on that volume, nginx serving only the
ACME challenge over HTTP, and certbot.
"""
from health_pipeline.config.settings import Settings
from health_pipeline.remote.commands import CommandDocument, shell_step

DOCUMENT_NAME = "bootstrap-dev-host"
DOCUMENT_VERSION = "1"

DATA_DEVICE = "/dev/sdh"
DATA_MOUNT = "/data"

HTTP_ONLY_PROXY_CONFIG = """server {{
    listen 80;
    server_name {domain};

    location /.well-known/acme-challenge/ {{
        root /var/www/certbot/;
    }}

    location / {{
        return 301 https://$host$request_uri;
    }}
}}"""


def bootstrap_document(settings: Settings) -> CommandDocument:
    proxy_config = HTTP_ONLY_PROXY_CONFIG.format(domain=settings.domain_name)
    steps = (
        shell_step(
            "mount-data-volume",
            f"sudo mkfs -t xfs {DATA_DEVICE} || true",
            f"sudo mkdir -p {DATA_MOUNT}",
            f"echo '{DATA_DEVICE} {DATA_MOUNT} xfs defaults,nofail 0 2' | sudo tee -a /etc/fstab",
            "sudo mount -a || true",
            fail_fast=False,
        ),
        shell_step("update-system", "sudo yum update -y", fail_fast=False),
        shell_step(
            "install-docker",
            "sudo amazon-linux-extras enable docker",
            "sudo yum install -y docker python3-pip jq",
            "sudo systemctl enable --now docker",
            "sudo pip3 install docker-compose",
            "sudo usermod -aG docker ec2-user",
            fail_fast=False,
        ),
        shell_step(
            "move-docker-data-root",
            "sudo systemctl stop docker",
            f"sudo mkdir -p {DATA_MOUNT}/docker",
            f"sudo rsync -aP /var/lib/docker/ {DATA_MOUNT}/docker/ || true",
            "sudo sed -i 's|^ExecStart=.*|ExecStart=/usr/bin/dockerd "
            f"--data-root={DATA_MOUNT}/docker|' /usr/lib/systemd/system/docker.service",
            "sudo systemctl daemon-reload",
            "sudo systemctl start docker",
            fail_fast=False,
        ),
        shell_step(
            "install-nginx",
            "sudo amazon-linux-extras enable nginx1",
            "sudo amazon-linux-extras install -y nginx1",
            "sudo yum install -y openssl",
            "sudo mkdir -p /etc/nginx/conf.d",
            fail_fast=False,
        ),
        shell_step(
            "prepare-acme-webroot",
            "sudo mkdir -p /var/www/certbot/.well-known/acme-challenge",
            "sudo chown -R ec2-user:ec2-user /var/www/certbot",
            "sudo chmod -R 755 /var/www/certbot",
            f"sudo tee /etc/nginx/conf.d/frontend.conf << 'EOF'\n{proxy_config}\nEOF",
            "sudo systemctl enable nginx",
            fail_fast=False,
        ),
        shell_step(
            "install-certbot",
            "sudo amazon-linux-extras enable epel",
            "sudo yum install -y epel-release",
            "sudo yum install -y certbot",
            fail_fast=False,
        ),
    )
    return CommandDocument(
        name=DOCUMENT_NAME,
        version=DOCUMENT_VERSION,
        comment="Bootstrap dev host",
        steps=steps,
    )


def render_user_data(document: CommandDocument) -> str:
    """Shell script for EC2 user data; ``set -xe`` stops at the first failing line."""
    return "\n".join(["#!/bin/bash", "set -xe"] + document.render()) + "\n"

"""Deploy Executor: replace the running stack on the dev fleet.

The deployment is stop-then-replace. Containers are torn down before the new
ones are built, and nothing is rolled back if verification fails afterwards.
"""
from health_pipeline.remote.commands import CommandDocument, process_check_step, shell_step
from health_pipeline.remote.executor import RemoteExecutor

DOCUMENT_NAME = "deploy-workspace"
DOCUMENT_VERSION = "1"

COMPOSE_BIN = "/usr/local/bin/docker-compose"
CERTBOT_WEBROOT = "/var/www/certbot"


class DeployExecutor(RemoteExecutor):
    stage_name = "DeployToDev"

    def document(self) -> CommandDocument:
        s = self.settings
        bucket = s.deploy_bucket
        home = s.remote_home
        challenge_dir = f"{CERTBOT_WEBROOT}/.well-known/acme-challenge"
        compose_url = (
            f"https://github.com/docker/compose/releases/download/"
            f"{s.compose_version}/docker-compose-linux-x86_64"
        )
        renew_cron = (
            "0 0,12 * * * /usr/bin/certbot renew --quiet --post-hook 'systemctl reload nginx'"
        )

        steps = (
            shell_step(
                "restart-proxy",
                "sudo systemctl stop nginx",
                "sudo systemctl start nginx",
                "sudo nginx -t",
                fail_fast=False,
                description="Restart nginx with the current config",
            ),
            shell_step(
                "probe-acme-webroot",
                f"echo test | sudo tee {challenge_dir}/testfile",
                f"curl http://{s.domain_name}/.well-known/acme-challenge/testfile",
                fail_fast=False,
                description="Check the webroot challenge path is served",
            ),
            shell_step(
                "issue-certificate",
                f"sudo certbot certonly --webroot -w {CERTBOT_WEBROOT} -d {s.domain_name} "
                f"--agree-tos --register-unsafely-without-email --non-interactive",
                fail_fast=False,
            ),
            shell_step(
                "install-proxy-config",
                f"aws s3 cp s3://{bucket}/{s.proxy_config_key} /etc/nginx/conf.d/frontend.conf",
                "sudo nginx -t",
                "sudo systemctl stop nginx",
                "sudo systemctl start nginx",
                fail_fast=False,
            ),
            shell_step(
                "register-renewal",
                f"(crontab -l 2>/dev/null | grep -v 'certbot renew'; echo \"{renew_cron}\") | crontab -",
                fail_fast=False,
                description="Twice-daily certbot renewal",
            ),
            shell_step(
                "install-compose",
                f"[ -x {COMPOSE_BIN} ] || sudo curl -SL {compose_url} -o {COMPOSE_BIN}",
                f"sudo chmod +x {COMPOSE_BIN}",
                "docker-compose --version",
                description=f"docker-compose {s.compose_version} if absent",
            ),
            shell_step(
                "fetch-archive",
                f"aws s3 cp s3://{bucket}/{s.archive_key} {home}/{s.archive_key}",
            ),
            shell_step(
                "extract-archive",
                f"cd {home} && tar -xzf {s.archive_key}",
            ),
            shell_step(
                "stop-containers",
                f"cd {self.workspace_path} && docker-compose down",
                "docker system prune -f",
                fail_fast=False,
            ),
            shell_step(
                "start-containers",
                f"cd {self.workspace_path}",
                "docker-compose up -d --build",
            ),
            shell_step(
                "warm-up",
                f"echo 'Waiting {s.warmup_seconds} seconds for containers to start...'",
                f"sleep {s.warmup_seconds}",
                fail_fast=False,
            ),
            process_check_step(
                "verify-processes",
                s.expected_processes,
                description="All expected containers are running",
            ),
        )
        return CommandDocument(
            name=DOCUMENT_NAME,
            version=DOCUMENT_VERSION,
            comment="Deploy full workspace",
            steps=steps,
        )

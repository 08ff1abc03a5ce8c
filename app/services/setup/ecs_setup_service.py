from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from string import Template
from typing import Optional

from app.services.command_runner import CommandRunner
from app.services.config import EcsSetupConfig
from app.services.setup.aws_identity_service import AwsIdentityService
from app.services.setup.provisioning import ProvisioningError, ProvisioningService, ProvisioningStep

logger = logging.getLogger(__name__)

ECS_TASKS_TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "ecs-tasks.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}
TASK_EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
GITHUB_USER_POLICY_ARNS = (
    "arn:aws:iam::aws:policy/AmazonECS_FullAccess",
    "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryFullAccess",
)
ACCESS_KEY_ID_PLACEHOLDER = "[Use existing or create new access key]"
SECRET_ACCESS_KEY_PLACEHOLDER = "[Use existing or create new secret key]"


class _WorkflowTemplate(Template):
    # GitHub expressions use "${{ }}", so substitutions use "%name" instead.
    delimiter = "%"


DEPLOY_WORKFLOW_TEMPLATE = _WorkflowTemplate(
    """name: Deploy to ECS

on:
  push:
    branches: [ main ]

env:
  AWS_REGION: %region
  ECR_REPOSITORY: %ecr_repository
  ECS_SERVICE: %service_name
  ECS_CLUSTER: %cluster_name
  ECS_TASK_DEFINITION: %task_family
  CONTAINER_NAME: %container_name

jobs:
  deploy:
    runs-on: ubuntu-latest
    environment: production

    steps:
    - name: Checkout
      uses: actions/checkout@v4

    - name: Configure AWS credentials
      uses: aws-actions/configure-aws-credentials@v4
      with:
        aws-access-key-id: ${{ secrets.AWS_ACCESS_KEY_ID }}
        aws-secret-access-key: ${{ secrets.AWS_SECRET_ACCESS_KEY }}
        aws-region: ${{ secrets.AWS_REGION }}

    - name: Login to Amazon ECR
      id: login-ecr
      uses: aws-actions/amazon-ecr-login@v2

    - name: Build, tag, and push image to Amazon ECR
      id: build-image
      env:
        ECR_REGISTRY: ${{ steps.login-ecr.outputs.registry }}
        IMAGE_TAG: ${{ github.sha }}
      run: |
        docker build -t $ECR_REGISTRY/$ECR_REPOSITORY:$IMAGE_TAG .
        docker push $ECR_REGISTRY/$ECR_REPOSITORY:$IMAGE_TAG
        echo "image=$ECR_REGISTRY/$ECR_REPOSITORY:$IMAGE_TAG" >> $GITHUB_OUTPUT

    - name: Download task definition
      run: |
        aws ecs describe-task-definition --task-definition $ECS_TASK_DEFINITION \\
          --query taskDefinition > task-definition.json

    - name: Fill in the new image ID in the Amazon ECS task definition
      id: task-def
      uses: aws-actions/amazon-ecs-render-task-definition@v1
      with:
        task-definition: task-definition.json
        container-name: ${{ env.CONTAINER_NAME }}
        image: ${{ steps.build-image.outputs.image }}

    - name: Deploy Amazon ECS task definition
      uses: aws-actions/amazon-ecs-deploy-task-definition@v1
      with:
        task-definition: ${{ steps.task-def.outputs.task-definition }}
        service: ${{ env.ECS_SERVICE }}
        cluster: ${{ env.ECS_CLUSTER }}
        wait-for-service-stability: true
"""
)


@dataclass
class EcsSetupResult:
    """Outputs of an ECS setup run, rendered by the CLI as GitHub secrets."""

    config: EcsSetupConfig
    account_id: str = ""
    ecr_uri: str = ""
    execution_role_arn: str = ""
    vpc_id: str = ""
    subnet_ids: list[str] = field(default_factory=list)
    security_group_id: str = ""
    access_key_id: str = ACCESS_KEY_ID_PLACEHOLDER
    secret_access_key: str = SECRET_ACCESS_KEY_PLACEHOLDER
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ecr_registry(self) -> str:
        # "<acct>.dkr.ecr.<region>.amazonaws.com/my-webapp" -> registry host
        return self.ecr_uri.rsplit("/", 1)[0] if "/" in self.ecr_uri else self.ecr_uri

    def github_secrets(self) -> dict[str, str]:
        cfg = self.config
        return {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
            "AWS_REGION": cfg.region,
            "ECR_REPOSITORY": cfg.ecr_repository,
            "ECR_REGISTRY": self.ecr_registry,
            "ECS_CLUSTER": cfg.cluster_name,
            "ECS_SERVICE": cfg.service_name,
            "ECS_TASK_DEFINITION": cfg.task_family,
            "CONTAINER_PORT": str(cfg.container_port),
        }

    def deploy_workflow(self) -> str:
        cfg = self.config
        return DEPLOY_WORKFLOW_TEMPLATE.substitute(
            region=cfg.region,
            ecr_repository=cfg.ecr_repository,
            service_name=cfg.service_name,
            cluster_name=cfg.cluster_name,
            task_family=cfg.task_family,
            container_name=cfg.container_name,
        )


class EcsSetupService(ProvisioningService):
    """Provision everything the GitHub Actions -> ECS Fargate pipeline needs.

    Order: ECR repository, task execution role, ECS cluster, default VPC lookup,
    security group, CloudWatch log group, task definition, ECS service, and the
    IAM user (plus access key) GitHub Actions deploys with.
    """

    def __init__(
        self,
        config: EcsSetupConfig,
        *,
        runner: CommandRunner,
        identity: AwsIdentityService,
        show_progress: bool = True,
    ) -> None:
        super().__init__(runner=runner, show_progress=show_progress)
        self._config = config
        self._identity = identity
        self._result = EcsSetupResult(config=config)

    def _aws(self, *args: str) -> list[str]:
        return ["aws", *args, "--region", self._config.region]

    async def setup(self) -> EcsSetupResult:
        cfg = self._config
        logger.info(
            "Setting up AWS infrastructure for CI/CD (cluster=%s, service=%s, ecr=%s, region=%s, port=%d)",
            cfg.cluster_name,
            cfg.service_name,
            cfg.ecr_repository,
            cfg.region,
            cfg.container_port,
        )

        steps = [
            ProvisioningStep("Checking AWS credentials...", self._check_credentials),
            ProvisioningStep("Checking required CLIs...", self._check_tools),
            ProvisioningStep("Creating ECR repository...", self._setup_ecr_repository),
            ProvisioningStep("Creating ECS execution role...", self._setup_execution_role),
            ProvisioningStep("Creating ECS cluster...", self._setup_cluster),
            ProvisioningStep("Getting VPC information...", self._discover_network),
            ProvisioningStep("Creating security group...", self._setup_security_group),
            ProvisioningStep("Creating CloudWatch log group...", self._setup_log_group),
            ProvisioningStep("Creating initial task definition...", self._setup_task_definition),
            ProvisioningStep("Creating ECS service...", self._setup_service),
            ProvisioningStep("Creating GitHub Actions IAM user...", self._setup_github_user),
            ProvisioningStep("Creating access keys for GitHub Actions...", self._setup_access_key),
        ]
        await self._run_steps("ECS CI/CD setup", steps)

        self._result.created = list(self.created)
        self._result.skipped = list(self.skipped)
        self._result.warnings = list(self.warnings)
        return self._result

    # -----------------
    # Steps
    # -----------------

    async def _check_credentials(self) -> None:
        identity = await self._identity.caller_identity(region=self._config.region)
        self._result.account_id = identity["Account"]
        logger.info("AWS credentials configured (account=%s, arn=%s)", identity["Account"], identity["Arn"])

    async def _check_tools(self) -> None:
        self._require_commands("aws")

    async def _setup_ecr_repository(self) -> None:
        name = self._config.ecr_repository

        async def exists() -> bool:
            found = await self._probe(
                self._aws("ecr", "describe-repositories", "--repository-names", name, "--output", "json"),
                not_found=("RepositoryNotFoundException",),
            )
            return found is not None

        async def create() -> None:
            await self._runner.run(
                self._aws(
                    "ecr",
                    "create-repository",
                    "--repository-name",
                    name,
                    "--image-scanning-configuration",
                    "scanOnPush=true",
                    "--output",
                    "json",
                )
            )

        await self._ensure(f"ECR repository {name}", exists=exists, create=create)

        uri = await self._runner.run(
            self._aws(
                "ecr",
                "describe-repositories",
                "--repository-names",
                name,
                "--query",
                "repositories[0].repositoryUri",
                "--output",
                "text",
            )
        )
        self._result.ecr_uri = uri.text()
        logger.info("ECR URI: %s", self._result.ecr_uri)

    async def _setup_execution_role(self) -> None:
        role = self._config.execution_role_name

        async def exists() -> bool:
            found = await self._probe(
                self._aws("iam", "get-role", "--role-name", role, "--output", "json"),
                not_found=("NoSuchEntity",),
            )
            return found is not None

        async def create() -> None:
            await self._runner.run(
                self._aws(
                    "iam",
                    "create-role",
                    "--role-name",
                    role,
                    "--assume-role-policy-document",
                    json.dumps(ECS_TASKS_TRUST_POLICY),
                    "--output",
                    "json",
                )
            )

        await self._ensure(f"ECS execution role {role}", exists=exists, create=create)
        # Attaching an already-attached managed policy is a no-op in IAM.
        await self._apply(
            self._aws("iam", "attach-role-policy", "--role-name", role, "--policy-arn", TASK_EXECUTION_POLICY_ARN)
        )

        arn = await self._runner.run(
            self._aws("iam", "get-role", "--role-name", role, "--query", "Role.Arn", "--output", "text")
        )
        self._result.execution_role_arn = arn.text()

    async def _setup_cluster(self) -> None:
        name = self._config.cluster_name

        async def exists() -> bool:
            # describe-clusters exits 0 for unknown names and reports them under "failures".
            resp = await self._runner.run(self._aws("ecs", "describe-clusters", "--clusters", name, "--output", "json"))
            clusters = resp.json().get("clusters") or []
            return any(c.get("status") == "ACTIVE" for c in clusters)

        async def create() -> None:
            await self._runner.run(self._aws("ecs", "create-cluster", "--cluster-name", name, "--output", "json"))

        await self._ensure(f"ECS cluster {name}", exists=exists, create=create)

    async def _discover_network(self) -> None:
        vpc = await self._runner.run(
            self._aws(
                "ec2",
                "describe-vpcs",
                "--filters",
                "Name=is-default,Values=true",
                "--query",
                "Vpcs[0].VpcId",
                "--output",
                "text",
            )
        )
        vpc_id = vpc.text()
        if vpc_id in ("", "None"):
            raise ProvisioningError("No default VPC found. Please create a VPC or modify the configuration.")

        subnets = await self._runner.run(
            self._aws(
                "ec2",
                "describe-subnets",
                "--filters",
                f"Name=vpc-id,Values={vpc_id}",
                "--query",
                "Subnets[*].SubnetId",
                "--output",
                "text",
            )
        )
        subnet_ids = [s for s in subnets.text().split() if s != "None"]
        if not subnet_ids:
            raise ProvisioningError(f"Default VPC {vpc_id} has no subnets")

        self._result.vpc_id = vpc_id
        self._result.subnet_ids = subnet_ids
        logger.info("VPC: %s", vpc_id)
        logger.info("Subnets: %s", ",".join(subnet_ids))

    async def _find_security_group(self) -> Optional[str]:
        resp = await self._runner.run(
            self._aws(
                "ec2",
                "describe-security-groups",
                "--filters",
                f"Name=group-name,Values={self._config.security_group_name}",
                f"Name=vpc-id,Values={self._result.vpc_id}",
                "--query",
                "SecurityGroups[0].GroupId",
                "--output",
                "text",
            )
        )
        group_id = resp.text()
        return None if group_id in ("", "None") else group_id

    async def _setup_security_group(self) -> None:
        cfg = self._config

        async def exists() -> bool:
            group_id = await self._find_security_group()
            if group_id is None:
                return False
            self._result.security_group_id = group_id
            return True

        async def create() -> None:
            created = await self._runner.run(
                self._aws(
                    "ec2",
                    "create-security-group",
                    "--group-name",
                    cfg.security_group_name,
                    "--description",
                    "Security group for webapp CI/CD",
                    "--vpc-id",
                    self._result.vpc_id,
                    "--query",
                    "GroupId",
                    "--output",
                    "text",
                )
            )
            self._result.security_group_id = created.text()

        await self._ensure(f"Security group {cfg.security_group_name}", exists=exists, create=create)
        await self._apply(
            self._aws(
                "ec2",
                "authorize-security-group-ingress",
                "--group-id",
                self._result.security_group_id,
                "--protocol",
                "tcp",
                "--port",
                str(cfg.container_port),
                "--cidr",
                "0.0.0.0/0",
            ),
            already_applied=("InvalidPermission.Duplicate",),
        )
        logger.info("Security group: %s", self._result.security_group_id)

    async def _setup_log_group(self) -> None:
        name = self._config.log_group_name

        async def exists() -> bool:
            resp = await self._runner.run(
                self._aws("logs", "describe-log-groups", "--log-group-name-prefix", name, "--output", "json")
            )
            groups = resp.json().get("logGroups") or []
            return any(g.get("logGroupName") == name for g in groups)

        async def create() -> None:
            await self._runner.run(self._aws("logs", "create-log-group", "--log-group-name", name))

        await self._ensure(f"CloudWatch log group {name}", exists=exists, create=create)

    def _container_definitions(self) -> list[dict[str, object]]:
        cfg = self._config
        return [
            {
                "name": cfg.container_name,
                "image": cfg.placeholder_image,
                "portMappings": [{"containerPort": cfg.container_port, "protocol": "tcp"}],
                "environment": [{"name": "ENVIRONMENT", "value": "production"}],
                "logConfiguration": {
                    "logDriver": "awslogs",
                    "options": {
                        "awslogs-group": cfg.log_group_name,
                        "awslogs-region": cfg.region,
                        "awslogs-stream-prefix": "ecs",
                    },
                },
            }
        ]

    async def _setup_task_definition(self) -> None:
        cfg = self._config

        async def exists() -> bool:
            found = await self._probe(
                self._aws("ecs", "describe-task-definition", "--task-definition", cfg.task_family, "--output", "json"),
                not_found=("Unable to describe task definition",),
            )
            return found is not None

        async def create() -> None:
            await self._runner.run(
                self._aws(
                    "ecs",
                    "register-task-definition",
                    "--family",
                    cfg.task_family,
                    "--network-mode",
                    "awsvpc",
                    "--requires-compatibilities",
                    "FARGATE",
                    "--cpu",
                    cfg.task_cpu,
                    "--memory",
                    cfg.task_memory,
                    "--execution-role-arn",
                    self._result.execution_role_arn,
                    "--container-definitions",
                    json.dumps(self._container_definitions()),
                    "--output",
                    "json",
                )
            )

        await self._ensure(f"Task definition {cfg.task_family}", exists=exists, create=create)

    async def _setup_service(self) -> None:
        cfg = self._config

        async def exists() -> bool:
            resp = await self._runner.run(
                self._aws(
                    "ecs",
                    "describe-services",
                    "--cluster",
                    cfg.cluster_name,
                    "--services",
                    cfg.service_name,
                    "--output",
                    "json",
                )
            )
            services = resp.json().get("services") or []
            return any(s.get("status") in ("ACTIVE", "DRAINING") for s in services)

        async def create() -> None:
            network = (
                "awsvpcConfiguration={"
                f"subnets=[{','.join(self._result.subnet_ids)}],"
                f"securityGroups=[{self._result.security_group_id}],"
                "assignPublicIp=ENABLED}"
            )
            await self._runner.run(
                self._aws(
                    "ecs",
                    "create-service",
                    "--cluster",
                    cfg.cluster_name,
                    "--service-name",
                    cfg.service_name,
                    "--task-definition",
                    cfg.task_family,
                    "--desired-count",
                    "1",
                    "--launch-type",
                    "FARGATE",
                    "--network-configuration",
                    network,
                    "--output",
                    "json",
                )
            )

        await self._ensure(f"ECS service {cfg.service_name}", exists=exists, create=create)

    async def _setup_github_user(self) -> None:
        user = self._config.github_user_name

        async def exists() -> bool:
            found = await self._probe(
                self._aws("iam", "get-user", "--user-name", user, "--output", "json"),
                not_found=("NoSuchEntity",),
            )
            return found is not None

        async def create() -> None:
            await self._runner.run(self._aws("iam", "create-user", "--user-name", user, "--output", "json"))

        await self._ensure(f"GitHub Actions IAM user {user}", exists=exists, create=create)
        for policy_arn in GITHUB_USER_POLICY_ARNS:
            await self._apply(self._aws("iam", "attach-user-policy", "--user-name", user, "--policy-arn", policy_arn))

    async def _setup_access_key(self) -> None:
        user = self._config.github_user_name

        listed = await self._runner.run(
            self._aws(
                "iam",
                "list-access-keys",
                "--user-name",
                user,
                "--query",
                "AccessKeyMetadata[*].AccessKeyId",
                "--output",
                "json",
            )
        )
        existing = listed.json() or []
        if existing:
            message = (
                f"{user} already has access keys ({', '.join(existing)}); "
                "use the existing ones or delete an old key and re-run"
            )
            logger.info("%s", message)
            self.skipped.append(f"Access key for {user}")
            return

        resp = await self._optional(
            self._aws("iam", "create-access-key", "--user-name", user, "--output", "json"),
            warning="Could not create new access keys (user may already have 2 keys)",
        )
        if resp is None:
            return

        access_key = resp.json().get("AccessKey") or {}
        self._result.access_key_id = access_key.get("AccessKeyId") or ACCESS_KEY_ID_PLACEHOLDER
        self._result.secret_access_key = access_key.get("SecretAccessKey") or SECRET_ACCESS_KEY_PLACEHOLDER
        self.created.append(f"Access key for {user}")

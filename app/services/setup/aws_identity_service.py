from __future__ import annotations

import logging
from typing import Any, Callable, Optional, cast

import aioboto3

from app.services.setup.provisioning import ProvisioningError

logger = logging.getLogger(__name__)

AWS_CONFIGURE_HELP = (
    "AWS credentials are not configured. Please run 'aws configure' first.\n"
    "Steps:\n"
    "1. Visit https://console.aws.amazon.com/iam/ to create an IAM user\n"
    "2. Attach the AdministratorAccess policy (for learning purposes)\n"
    "3. Create access keys for the user\n"
    "4. Run: aws configure\n"
    "5. Enter your Access Key, Secret Key, region ({region}) and output format (json)"
)


class AwsIdentityService:
    """Credential preflight: resolves the caller identity through STS.

    Uses the same credential chain as the aws CLI (env vars, ~/.aws, profile).
    """

    def __init__(self, *, profile: Optional[str] = None, session_factory: Callable[..., Any] = aioboto3.Session) -> None:
        self._profile = profile
        self._session_factory = session_factory

    async def caller_identity(self, *, region: str) -> dict[str, str]:
        session: Any = self._session_factory(profile_name=self._profile) if self._profile else self._session_factory()
        client_cm = session.client("sts", region_name=region)
        try:
            async with cast(Any, client_cm) as sts:
                resp = await sts.get_caller_identity()
        except Exception as exc:
            logger.debug("STS get_caller_identity failed: %s", exc)
            raise ProvisioningError(AWS_CONFIGURE_HELP.format(region=region)) from exc

        return {"Account": str(resp.get("Account", "")), "Arn": str(resp.get("Arn", ""))}

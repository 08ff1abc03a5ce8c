"""Setup (provisioning) services.

This package contains orchestration helpers that *provision* or *verify* the AWS
infrastructure the web app is deployed to (ECS Fargate CI/CD stack, EKS cluster
and add-ons). Every step probes for the resource first and only creates what is
missing, so a run can simply be repeated after a failure.
"""

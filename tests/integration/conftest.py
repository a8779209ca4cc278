"""Pytest configuration and fixtures for integration tests."""

import json
import os
import shutil
import subprocess
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Generator, List

import boto3
import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def check_aws_credentials():
    """Check if AWS credentials are configured and provide guidance if not."""
    try:
        identity = boto3.client("sts").get_caller_identity()
        return True, identity
    except Exception:
        print("\n" + "=" * 80)
        print("AWS CREDENTIALS NOT CONFIGURED")
        print("=" * 80)
        print("\nIntegration tests deploy the stack to a real AWS account.")
        print("\n1. Configure credentials:  aws configure")
        print("2. Verify:                 aws sts get-caller-identity")
        print("3. Run tests:              pytest -m integration\n")
        print("Unit and infrastructure tests need no AWS access:")
        print("  pytest\n")
        print("=" * 80)
        return False, None


def _cdk_command(*args: str) -> List[str]:
    """Build a CDK CLI command, preferring an installed cdk over npx."""
    if shutil.which("cdk"):
        return ["cdk", *args]
    return ["npx", "cdk", *args]


def _cdk_env(aws_region: str) -> Dict[str, str]:
    """Environment for CDK subprocesses using the current virtualenv's Python."""
    return {
        **os.environ,
        "CDK_DEFAULT_REGION": aws_region,
        "PATH": f"{os.path.dirname(sys.executable)}:{os.environ.get('PATH', '')}",
    }


@pytest.fixture(scope="session")
def aws_region() -> str:
    """Get AWS region from environment or AWS config."""
    region = os.environ.get("AWS_REGION")
    if region:
        return region

    try:
        result = subprocess.run(
            ["aws", "configure", "get", "region"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except (OSError, subprocess.TimeoutExpired):
        pass

    return "us-east-1"


@pytest.fixture(scope="session")
def test_stack_name() -> str:
    """Generate unique test stack name to avoid conflicts."""
    timestamp = int(time.time())
    unique_id = str(uuid.uuid4())[:8]
    return f"IntegrationTest-EventDrivenOrderStack-{timestamp}-{unique_id}"


@pytest.fixture(scope="session", autouse=True)
def verify_aws_credentials():
    """Verify AWS credentials before running any integration tests."""
    has_creds, identity = check_aws_credentials()
    if not has_creds:
        pytest.exit("AWS credentials not configured. See guidance above.", returncode=2)
    print(f"\nAWS Account: {identity['Account']}")
    print(f"AWS User/Role: {identity['Arn']}\n")


@pytest.fixture(scope="session")
def deployed_stack(
    test_stack_name: str, aws_region: str
) -> Generator[Dict[str, Any], None, None]:
    """
    Deploy the CDK stack for integration testing and clean up after.

    Physical resource names get the stack's unique ID as a suffix so that
    concurrent runs do not collide.

    Yields:
        Dictionary containing CloudFormation stack outputs
    """
    unique_suffix = test_stack_name.split("-")[-1]
    outputs_file = f"/tmp/{test_stack_name}-outputs.json"

    print(f"\nDeploying integration test stack: {test_stack_name}")
    deploy_result = subprocess.run(
        _cdk_command(
            "deploy",
            "--require-approval",
            "never",
            "--outputs-file",
            outputs_file,
            "--context",
            f"stack_name={test_stack_name}",
            "--context",
            f"resource_suffix={unique_suffix}",
        ),
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        env=_cdk_env(aws_region),
    )

    if deploy_result.returncode != 0:
        pytest.fail(
            f"CDK deployment failed:\nSTDOUT: {deploy_result.stdout}\nSTDERR: {deploy_result.stderr}"
        )

    with open(outputs_file, "r") as f:
        outputs_data = json.load(f)

    # CDK wraps outputs in the stack name
    stack_outputs = list(outputs_data.values())[0] if outputs_data else {}
    print(f"Stack deployed successfully. Outputs: {stack_outputs}")

    # Wait for the queue event source mapping to become active
    lambda_client = boto3.client("lambda", region_name=aws_region)
    function_name = stack_outputs.get("OrderProcessingFunctionName")

    if function_name:
        for _ in range(30):
            time.sleep(2)
            mappings = lambda_client.list_event_source_mappings(
                FunctionName=function_name
            )
            if mappings["EventSourceMappings"]:
                state = mappings["EventSourceMappings"][0]["State"]
                print(f"Event source mapping state: {state}")
                if state == "Enabled":
                    break

    yield stack_outputs

    print(f"\nDestroying integration test stack: {test_stack_name}")
    destroy_result = subprocess.run(
        _cdk_command(
            "destroy",
            "--force",
            "--context",
            f"stack_name={test_stack_name}",
            "--context",
            f"resource_suffix={unique_suffix}",
        ),
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        env=_cdk_env(aws_region),
    )

    if destroy_result.returncode != 0:
        print(
            f"WARNING: Stack destruction failed:\nSTDOUT: {destroy_result.stdout}\nSTDERR: {destroy_result.stderr}"
        )


@pytest.fixture(scope="session")
def dynamodb_client(aws_region: str):
    """Create DynamoDB client."""
    return boto3.client("dynamodb", region_name=aws_region)


@pytest.fixture(scope="session")
def lambda_client(aws_region: str):
    """Create Lambda client."""
    return boto3.client("lambda", region_name=aws_region)


@pytest.fixture(scope="session")
def sqs_client(aws_region: str):
    """Create SQS client."""
    return boto3.client("sqs", region_name=aws_region)


@pytest.fixture(scope="session")
def stepfunctions_client(aws_region: str):
    """Create Step Functions client."""
    return boto3.client("stepfunctions", region_name=aws_region)

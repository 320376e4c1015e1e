#!/usr/bin/env python3
"""
CDK Application entry point.

Deploy with: cdk deploy --all -c environment=dev
"""

import os

import aws_cdk as cdk

from stack import BedrockAgentStack, EncryptionStack


def main():
    """Create and configure the CDK app."""
    app = cdk.App()

    # Context wins over environment variables
    environment = (
        app.node.try_get_context("environment")
        or os.environ.get("ENVIRONMENT")
        or "dev"
    )

    env = cdk.Environment(
        account=os.environ.get("CDK_DEFAULT_ACCOUNT"),
        region=(
            app.node.try_get_context("region")
            or os.environ.get("CDK_DEFAULT_REGION", "us-east-1")
        ),
    )

    mindsdb_endpoint = (
        app.node.try_get_context("mindsdbInternalEndpoint")
        or os.environ.get("MINDSDB_INTERNAL_ENDPOINT")
        or f"http://mindsdb-internal.{environment}.local:47334"
    )

    encryption_stack = EncryptionStack(
        app,
        f"mindsdb-rag-encryption-{environment}",
        environment=environment,
        env=env,
        description=f"MindsDB RAG encryption keys ({environment})",
    )

    agent_stack = BedrockAgentStack(
        app,
        f"mindsdb-rag-agent-{environment}",
        kms_key=encryption_stack.kms_key,
        mindsdb_internal_endpoint=mindsdb_endpoint,
        environment=environment,
        env=env,
        description=f"MindsDB RAG Bedrock Agent and session storage ({environment})",
    )
    agent_stack.add_dependency(encryption_stack)

    cdk.Tags.of(app).add("Project", "MindsDB-RAG-Assistant")
    cdk.Tags.of(app).add("Environment", environment)
    cdk.Tags.of(app).add("ManagedBy", "CDK")

    app.synth()


if __name__ == "__main__":
    main()

"""
AWS CDK Stacks for the MindsDB RAG Bedrock Agent.

Creates the AWS resources behind the conversational assistant:
- KMS key for encryption at rest
- DynamoDB table for session state
- IAM execution role for the agent
- Bedrock Agent with MindsDB and checkout action groups
"""

import json

from constructs import Construct
from aws_cdk import (
    Stack,
    RemovalPolicy,
    CfnOutput,
    aws_bedrock as bedrock,
    aws_dynamodb as dynamodb,
    aws_iam as iam,
    aws_kms as kms,
)

from agent_definitions import (
    AGENT_INSTRUCTION,
    CHECKOUT_FUNCTION_NAME,
    FOUNDATION_MODEL_ID,
    IDLE_SESSION_TTL_SECONDS,
    MINDSDB_TOOLS_FUNCTION_NAME,
    SUPPORTED_MODEL_IDS,
    get_checkout_tools_schema,
    get_mindsdb_tools_schema,
    get_prompt_override_configurations,
    validate_schema,
)


def _removal_policy(environment: str) -> RemovalPolicy:
    return RemovalPolicy.RETAIN if environment == "prod" else RemovalPolicy.DESTROY


class EncryptionStack(Stack):
    """
    CDK Stack holding the customer-managed KMS key.

    The key is shared with the agent stack to encrypt the session table.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        environment: str = "dev",
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.kms_key = kms.Key(
            self,
            "RAGEncryptionKey",
            description="KMS key for MindsDB RAG Assistant encryption",
            alias=f"alias/mindsdb-rag-{environment}",
            enable_key_rotation=True,
            removal_policy=_removal_policy(environment),
        )

        CfnOutput(
            self,
            "KMSKeyId",
            value=self.kms_key.key_id,
            description="KMS Key ID for encryption",
            export_name=f"mindsdb-rag-{environment}-kms-key-id",
        )


class BedrockAgentStack(Stack):
    """
    CDK Stack for the Bedrock Agent and its session storage.

    Builds the session table, the agent execution role, the agent itself and
    the stack outputs, in that order. The three resources are exposed as
    read-only attributes once the stack is constructed.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        kms_key: kms.IKey,
        mindsdb_internal_endpoint: str,
        environment: str,
        **kwargs,
    ) -> None:
        if not environment or not environment.strip():
            raise ValueError("environment must be a non-empty label")
        if not mindsdb_internal_endpoint or not mindsdb_internal_endpoint.strip():
            raise ValueError("mindsdb_internal_endpoint is required")

        super().__init__(scope, construct_id, **kwargs)

        self.env_name = environment
        self.mindsdb_internal_endpoint = mindsdb_internal_endpoint
        self.prefix = f"mindsdb-rag-{environment}"

        # DynamoDB table for session management
        self._session_table = self._create_session_table(kms_key)

        # IAM role assumed by the agent
        self._agent_execution_role = self._create_bedrock_agent_role(
            mindsdb_internal_endpoint, kms_key
        )

        # Bedrock Agent with tool definitions
        self._bedrock_agent = self._create_bedrock_agent(mindsdb_internal_endpoint)

        self._create_outputs()

    @property
    def session_table(self) -> dynamodb.Table:
        return self._session_table

    @property
    def agent_execution_role(self) -> iam.Role:
        return self._agent_execution_role

    @property
    def bedrock_agent(self) -> bedrock.CfnAgent:
        return self._bedrock_agent

    def _create_session_table(self, kms_key: kms.IKey) -> dynamodb.Table:
        """Create the session table keyed by merchant and session."""
        table = dynamodb.Table(
            self,
            "SessionTable",
            table_name=f"mindsdb-rag-sessions-{self.env_name}",
            partition_key=dynamodb.Attribute(
                name="merchant_id",
                type=dynamodb.AttributeType.STRING,
            ),
            sort_key=dynamodb.Attribute(
                name="session_id",
                type=dynamodb.AttributeType.STRING,
            ),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            encryption=dynamodb.TableEncryption.CUSTOMER_MANAGED,
            encryption_key=kms_key,
            time_to_live_attribute="ttl",
            point_in_time_recovery=True,
            removal_policy=_removal_policy(self.env_name),
        )

        # Session lookup without the merchant
        table.add_global_secondary_index(
            index_name="SessionIdIndex",
            partition_key=dynamodb.Attribute(
                name="session_id",
                type=dynamodb.AttributeType.STRING,
            ),
            projection_type=dynamodb.ProjectionType.ALL,
        )

        # Sessions of a user, newest first
        table.add_global_secondary_index(
            index_name="UserIdIndex",
            partition_key=dynamodb.Attribute(
                name="user_id",
                type=dynamodb.AttributeType.STRING,
            ),
            sort_key=dynamodb.Attribute(
                name="created_at",
                type=dynamodb.AttributeType.STRING,
            ),
            projection_type=dynamodb.ProjectionType.ALL,
        )

        return table

    def _create_bedrock_agent_role(
        self,
        mindsdb_endpoint: str,
        kms_key: kms.IKey,
    ) -> iam.Role:
        """Create the execution role with access to models, sessions and MindsDB."""
        role = iam.Role(
            self,
            "BedrockAgentExecutionRole",
            assumed_by=iam.ServicePrincipal("bedrock.amazonaws.com"),
            description=f"Execution role for Bedrock Agent to access MindsDB ({mindsdb_endpoint}) and other services",
        )

        role.add_to_policy(
            iam.PolicyStatement(
                sid="BedrockModelAccess",
                effect=iam.Effect.ALLOW,
                actions=[
                    "bedrock:InvokeModel",
                    "bedrock:InvokeModelWithResponseStream",
                    "bedrock:GetFoundationModel",
                    "bedrock:ListFoundationModels",
                ],
                resources=[
                    f"arn:aws:bedrock:{self.region}::foundation-model/{model_id}"
                    for model_id in SUPPORTED_MODEL_IDS
                ],
            )
        )

        role.add_to_policy(
            iam.PolicyStatement(
                sid="SessionTableAccess",
                effect=iam.Effect.ALLOW,
                actions=[
                    "dynamodb:GetItem",
                    "dynamodb:PutItem",
                    "dynamodb:UpdateItem",
                    "dynamodb:DeleteItem",
                    "dynamodb:Query",
                    "dynamodb:Scan",
                ],
                resources=[
                    self._session_table.table_arn,
                    f"{self._session_table.table_arn}/index/*",
                ],
            )
        )

        # The session table is encrypted with the customer-managed key
        role.add_to_policy(
            iam.PolicyStatement(
                sid="SessionTableKeyAccess",
                effect=iam.Effect.ALLOW,
                actions=[
                    "kms:Decrypt",
                    "kms:GenerateDataKey",
                ],
                resources=[kms_key.key_arn],
            )
        )

        role.add_to_policy(
            iam.PolicyStatement(
                sid="AgentLogging",
                effect=iam.Effect.ALLOW,
                actions=[
                    "logs:CreateLogGroup",
                    "logs:CreateLogStream",
                    "logs:PutLogEvents",
                ],
                resources=[
                    f"arn:aws:logs:{self.region}:{self.account}:log-group:/aws/bedrock/agent/*",
                ],
            )
        )

        # MindsDB sits behind an internal ALB
        role.add_to_policy(
            iam.PolicyStatement(
                sid="MindsDBLoadBalancerAccess",
                effect=iam.Effect.ALLOW,
                actions=[
                    "elasticloadbalancing:DescribeTargetHealth",
                    "elasticloadbalancing:DescribeLoadBalancers",
                ],
                resources=["*"],
            )
        )

        # TODO: scope to the Q Business application ARN once it is provisioned by CDK
        role.add_to_policy(
            iam.PolicyStatement(
                sid="AmazonQAccess",
                effect=iam.Effect.ALLOW,
                actions=[
                    "qbusiness:ChatSync",
                    "qbusiness:GetApplication",
                    "qbusiness:ListApplications",
                ],
                resources=["*"],
            )
        )

        role.add_to_policy(
            iam.PolicyStatement(
                sid="CheckoutInvoke",
                effect=iam.Effect.ALLOW,
                actions=["lambda:InvokeFunction"],
                resources=[
                    f"arn:aws:lambda:{self.region}:{self.account}:function:{CHECKOUT_FUNCTION_NAME}-*",
                ],
            )
        )

        return role

    def _create_bedrock_agent(self, mindsdb_endpoint: str) -> bedrock.CfnAgent:
        """Create the Bedrock Agent with action groups and prompt overrides."""
        action_groups = [
            self._action_group(
                name="MindsDBTools",
                description="Tools for interacting with MindsDB predictors and semantic retrieval",
                function_name=MINDSDB_TOOLS_FUNCTION_NAME,
                schema=get_mindsdb_tools_schema(),
            ),
            self._action_group(
                name="CheckoutTools",
                description="Tools for secure checkout and payment processing",
                function_name=CHECKOUT_FUNCTION_NAME,
                schema=get_checkout_tools_schema(),
            ),
        ]

        prompt_configurations = [
            bedrock.CfnAgent.PromptConfigurationProperty(
                prompt_type=config["promptType"],
                prompt_creation_mode=config["promptCreationMode"],
                prompt_state=config["promptState"],
                base_prompt_template=config["basePromptTemplate"],
                inference_configuration=bedrock.CfnAgent.InferenceConfigurationProperty(
                    temperature=config["inferenceConfiguration"]["temperature"],
                    top_p=config["inferenceConfiguration"]["topP"],
                    maximum_length=config["inferenceConfiguration"]["maximumLength"],
                    stop_sequences=config["inferenceConfiguration"].get("stopSequences"),
                ),
            )
            for config in get_prompt_override_configurations()
        ]

        agent = bedrock.CfnAgent(
            self,
            "RAGAgent",
            agent_name=f"mindsdb-rag-agent-{self.env_name}",
            description="Intelligent e-commerce assistant with MindsDB RAG capabilities",
            foundation_model=FOUNDATION_MODEL_ID,
            agent_resource_role_arn=self._agent_execution_role.role_arn,
            instruction=AGENT_INSTRUCTION,
            action_groups=action_groups,
            idle_session_ttl_in_seconds=IDLE_SESSION_TTL_SECONDS,
            prompt_override_configuration=bedrock.CfnAgent.PromptOverrideConfigurationProperty(
                prompt_configurations=prompt_configurations,
            ),
            tags={
                "Environment": self.env_name,
                "MindsDBEndpoint": mindsdb_endpoint,
            },
        )

        return agent

    def _action_group(
        self,
        name: str,
        description: str,
        function_name: str,
        schema: dict,
    ) -> bedrock.CfnAgent.AgentActionGroupProperty:
        """Build an action group backed by a Lambda executor and an OpenAPI schema."""
        errors = validate_schema(schema)
        if errors:
            raise ValueError(f"Invalid OpenAPI schema for {name}: {'; '.join(errors)}")

        return bedrock.CfnAgent.AgentActionGroupProperty(
            action_group_name=name,
            description=description,
            action_group_executor=bedrock.CfnAgent.ActionGroupExecutorProperty(
                lambda_=f"arn:aws:lambda:{self.region}:{self.account}:function:{function_name}",
            ),
            api_schema=bedrock.CfnAgent.APISchemaProperty(
                payload=json.dumps(schema),
            ),
        )

    def _create_outputs(self) -> None:
        CfnOutput(
            self,
            "SessionTableName",
            value=self._session_table.table_name,
            description="DynamoDB table name for session management",
            export_name=f"{self.prefix}-session-table-name",
        )

        CfnOutput(
            self,
            "SessionTableArn",
            value=self._session_table.table_arn,
            description="DynamoDB table ARN for session management",
            export_name=f"{self.prefix}-session-table-arn",
        )

        CfnOutput(
            self,
            "BedrockAgentId",
            value=self._bedrock_agent.attr_agent_id,
            description="Bedrock Agent ID",
            export_name=f"{self.prefix}-bedrock-agent-id",
        )

        CfnOutput(
            self,
            "BedrockAgentArn",
            value=self._bedrock_agent.attr_agent_arn,
            description="Bedrock Agent ARN",
            export_name=f"{self.prefix}-bedrock-agent-arn",
        )

        CfnOutput(
            self,
            "AgentExecutionRoleArn",
            value=self._agent_execution_role.role_arn,
            description="Bedrock Agent execution role ARN",
            export_name=f"{self.prefix}-agent-execution-role-arn",
        )

    def get_outputs(self) -> dict[str, str]:
        """Get stack outputs for reference."""
        return {
            "session_table_name": self._session_table.table_name,
            "session_table_arn": self._session_table.table_arn,
            "bedrock_agent_id": self._bedrock_agent.attr_agent_id,
            "bedrock_agent_arn": self._bedrock_agent.attr_agent_arn,
            "agent_execution_role_arn": self._agent_execution_role.role_arn,
        }

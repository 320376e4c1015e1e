"""
Bedrock Agent definitions for the MindsDB RAG assistant.

Holds the agent instruction, the prompt override templates and the OpenAPI
schemas for the action groups. Kept free of CDK imports so the definitions
can be inspected and tested without synthesizing a stack.
"""

from typing import Any

FOUNDATION_MODEL_ID = "amazon.nova-micro-v1:0"

# Models the execution role may invoke
SUPPORTED_MODEL_IDS = [
    "amazon.nova-micro-v1:0",
    "amazon.nova-lite-v1:0",
    "amazon.nova-pro-v1:0",
]

IDLE_SESSION_TTL_SECONDS = 1800

MINDSDB_TOOLS_FUNCTION_NAME = "mindsdb-rag-tools"
CHECKOUT_FUNCTION_NAME = "mindsdb-rag-checkout"

AGENT_INSTRUCTION = """You are an intelligent e-commerce assistant that helps customers discover products and complete purchases.

Your capabilities include:
1. Semantic search through product catalogs using MindsDB
2. Personalized product recommendations with explainable predictions
3. Secure checkout processing
4. Integration with Amazon Q for additional grounding

Key behaviors:
- Always maintain tenant isolation by including merchant_id in all operations
- Provide explanations for recommendations including feature importance
- Ground all factual claims in retrieved documents
- Limit product recommendations to 3 items maximum
- Explicitly state information limitations when documents don't contain sufficient data
- Ensure secure handling of payment information during checkout

When processing queries:
1. Parse user intent to determine required actions
2. Use semantic retrieval to find relevant product information
3. Generate predictions for identified products with explanations
4. Coordinate multiple tool invocations as needed
5. Provide grounded, helpful responses with source citations"""

PRE_PROCESSING_TEMPLATE = """You are processing a user query for an e-commerce assistant.

Extract the following information:
- User intent (search, recommend, purchase, question)
- Product-related keywords or SKUs
- User context (preferences, constraints)
- Required actions (retrieval, prediction, checkout)

Merchant ID: $merchant_id
User Query: $query

Respond with a structured plan for tool invocations."""

ORCHESTRATION_TEMPLATE = """You are coordinating multiple tools to fulfill a user request.

Available tools:
- semanticRetrieval: Find relevant documents
- productPrediction: Generate predictions with explanations
- processCheckout: Handle secure payments

Current context: $context
Tool results: $tool_results

Determine the next action or provide a final response."""

POST_PROCESSING_TEMPLATE = """Generate a helpful response based on the tool results.

Requirements:
- Ground all claims in retrieved documents
- Include source citations
- Limit recommendations to 3 items
- Provide explanations for predictions
- Use clear, conversational language

Tool Results: $tool_results
User Query: $query

Generate response:"""


def _json_request_body(schema: dict[str, Any]) -> dict[str, Any]:
    return {
        "required": True,
        "content": {"application/json": {"schema": schema}},
    }


def _json_response(description: str, schema: dict[str, Any]) -> dict[str, Any]:
    return {
        "200": {
            "description": description,
            "content": {"application/json": {"schema": schema}},
        }
    }


def get_mindsdb_tools_schema() -> dict[str, Any]:
    """
    Generate OpenAPI 3.0 schema for the MindsDB tools action group.

    Exposes semantic retrieval over the merchant's documents and product
    predictions with feature importance.

    Returns:
        OpenAPI schema dictionary
    """
    return {
        "openapi": "3.0.0",
        "info": {
            "title": "MindsDB RAG Tools API",
            "version": "1.0.0",
            "description": "API for MindsDB semantic retrieval and product predictions",
        },
        "paths": {
            "/semantic-retrieval": {
                "post": {
                    "summary": "Retrieve semantically similar documents",
                    "operationId": "semanticRetrieval",
                    "requestBody": _json_request_body(
                        {
                            "type": "object",
                            "properties": {
                                "query": {
                                    "type": "string",
                                    "description": "User query for semantic search",
                                },
                                "merchant_id": {
                                    "type": "string",
                                    "description": "Merchant identifier for tenant isolation",
                                },
                                "limit": {
                                    "type": "integer",
                                    "description": "Maximum number of results to return",
                                    "default": 5,
                                },
                            },
                            "required": ["query", "merchant_id"],
                        }
                    ),
                    "responses": _json_response(
                        "Successful retrieval",
                        {
                            "type": "object",
                            "properties": {
                                "results": {
                                    "type": "array",
                                    "items": {
                                        "type": "object",
                                        "properties": {
                                            "id": {"type": "string"},
                                            "snippet": {"type": "string"},
                                            "score": {"type": "number"},
                                            "metadata": {"type": "object"},
                                            "grounding_pass": {"type": "boolean"},
                                        },
                                    },
                                },
                            },
                        },
                    ),
                }
            },
            "/product-prediction": {
                "post": {
                    "summary": "Generate product predictions with feature importance",
                    "operationId": "productPrediction",
                    "requestBody": _json_request_body(
                        {
                            "type": "object",
                            "properties": {
                                "sku": {
                                    "type": "string",
                                    "description": "Product SKU for prediction",
                                },
                                "user_context": {
                                    "type": "object",
                                    "description": "User context for personalized predictions",
                                },
                                "merchant_id": {
                                    "type": "string",
                                    "description": "Merchant identifier for tenant isolation",
                                },
                            },
                            "required": ["sku", "merchant_id"],
                        }
                    ),
                    "responses": _json_response(
                        "Successful prediction",
                        {
                            "type": "object",
                            "properties": {
                                "sku": {"type": "string"},
                                "demand_score": {"type": "number"},
                                "purchase_probability": {"type": "number"},
                                "explanation": {"type": "string"},
                                "feature_importance": {"type": "object"},
                                "confidence": {"type": "number"},
                            },
                        },
                    ),
                }
            },
        },
    }


def get_checkout_tools_schema() -> dict[str, Any]:
    """
    Generate OpenAPI 3.0 schema for the checkout action group.

    Returns:
        OpenAPI schema dictionary
    """
    return {
        "openapi": "3.0.0",
        "info": {
            "title": "Checkout API",
            "version": "1.0.0",
            "description": "API for secure checkout and payment processing",
        },
        "paths": {
            "/checkout": {
                "post": {
                    "summary": "Process secure checkout",
                    "operationId": "processCheckout",
                    "requestBody": _json_request_body(
                        {
                            "type": "object",
                            "properties": {
                                "merchant_id": {"type": "string"},
                                "user_id": {"type": "string"},
                                "items": {
                                    "type": "array",
                                    "items": {
                                        "type": "object",
                                        "properties": {
                                            "sku": {"type": "string"},
                                            "quantity": {"type": "integer"},
                                            "price": {"type": "number"},
                                        },
                                    },
                                },
                                "payment_method": {"type": "string"},
                            },
                            "required": ["merchant_id", "user_id", "items"],
                        }
                    ),
                    "responses": _json_response(
                        "Successful checkout",
                        {
                            "type": "object",
                            "properties": {
                                "transaction_id": {"type": "string"},
                                "status": {"type": "string"},
                                "total_amount": {"type": "number"},
                            },
                        },
                    ),
                }
            },
        },
    }


def get_prompt_override_configurations() -> list[dict[str, Any]]:
    """Prompt overrides for the pre-processing, orchestration and post-processing steps."""
    return [
        {
            "promptType": "PRE_PROCESSING",
            "promptCreationMode": "OVERRIDDEN",
            "promptState": "ENABLED",
            "basePromptTemplate": PRE_PROCESSING_TEMPLATE,
            "inferenceConfiguration": {
                "temperature": 0.1,
                "topP": 0.9,
                "maximumLength": 2048,
                "stopSequences": ["</plan>"],
            },
        },
        {
            "promptType": "ORCHESTRATION",
            "promptCreationMode": "OVERRIDDEN",
            "promptState": "ENABLED",
            "basePromptTemplate": ORCHESTRATION_TEMPLATE,
            "inferenceConfiguration": {
                "temperature": 0.3,
                "topP": 0.9,
                "maximumLength": 4096,
            },
        },
        {
            "promptType": "POST_PROCESSING",
            "promptCreationMode": "OVERRIDDEN",
            "promptState": "ENABLED",
            "basePromptTemplate": POST_PROCESSING_TEMPLATE,
            "inferenceConfiguration": {
                "temperature": 0.7,
                "topP": 0.9,
                "maximumLength": 4096,
            },
        },
    ]


def validate_schema(schema: dict[str, Any]) -> list[str]:
    """
    Validate an OpenAPI schema for common issues.

    Args:
        schema: OpenAPI schema dictionary to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    for field in ("openapi", "info", "paths"):
        if field not in schema:
            errors.append(f"Missing required field: {field}")

    if "openapi" in schema:
        version = schema["openapi"]
        if not isinstance(version, str):
            errors.append("OpenAPI version must be a string")
        elif not version.startswith("3.0"):
            errors.append("OpenAPI version must be 3.0.x")

    info = schema.get("info", {})
    for field in ("title", "version"):
        if "info" in schema and field not in info:
            errors.append(f"Missing required field: info.{field}")

    if "paths" in schema:
        paths = schema["paths"]
        if not paths:
            errors.append("Paths section cannot be empty")

        for path, path_obj in paths.items():
            if not isinstance(path_obj, dict):
                errors.append(f"Path {path} must be an object")
                continue

            operations = [path_obj[m] for m in ("get", "post", "put", "delete", "patch") if m in path_obj]
            if not operations:
                errors.append(f"Path {path} must have at least one HTTP method")
            for operation in operations:
                # Bedrock routes action group calls by operationId
                if "operationId" not in operation:
                    errors.append(f"Path {path} is missing an operationId")

    return errors

"""
AWS CDK Infrastructure for the MindsDB RAG Assistant.

Defines the Bedrock Agent, its execution role and the DynamoDB session
table, along with the KMS key used to encrypt session state.
"""

"""Data infrastructure stack for the reference documents bucket."""

from __future__ import annotations

from aws_cdk import CfnOutput, RemovalPolicy, Stack
from aws_cdk import aws_s3 as s3
from constructs import Construct


class DataStack(Stack):
    """Owns the S3 bucket holding the lecturer map and enrollment partitions."""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.reference_bucket = s3.Bucket(
            self,
            "ReferenceDataBucket",
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            versioned=True,
            removal_policy=RemovalPolicy.RETAIN,
        )

        CfnOutput(
            self,
            "ReferenceDataBucketName",
            value=self.reference_bucket.bucket_name,
            description="Bucket for data/lecturer-map.json and enrollment partitions",
        )

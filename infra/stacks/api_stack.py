"""API infrastructure stack for Lambda + API Gateway wiring."""

from __future__ import annotations

from pathlib import Path

from aws_cdk import CfnOutput, Duration, Stack
from aws_cdk import aws_apigateway as apigateway
from aws_cdk import aws_lambda as lambda_
from constructs import Construct

from stacks.data_stack import DataStack


class ApiStack(Stack):
    """Owns API Gateway and the Lambda serving session and survey routes."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        data_stack: DataStack,
        stage_name: str,
        admin_emails: str,
        qualtrics_base_url: str,
        qualtrics_api_token: str,
        course_design_survey_id: str,
        learning_exp_survey_id: str,
        course_code_field: str,
        teacher_id_field: str,
        log_level: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        project_root = Path(__file__).resolve().parents[2]
        lambda_code = lambda_.Code.from_asset(
            str(project_root),
            exclude=[
                ".git",
                ".github",
                "infra",
                "cdk.out",
                "__pycache__",
                "tests",
                "scripts",
                "docs",
            ],
        )

        env = {
            "ADMIN_EMAILS": admin_emails,
            "QUALTRICS_BASE_URL": qualtrics_base_url,
            "QUALTRICS_API_TOKEN": qualtrics_api_token,
            "QUALTRICS_COURSE_DESIGN_SURVEY_ID": course_design_survey_id,
            "QUALTRICS_LEARNING_EXP_SURVEY_ID": learning_exp_survey_id,
            "QUALTRICS_COURSE_CODE_FIELD": course_code_field,
            "QUALTRICS_TEACHER_ID_FIELD": teacher_id_field,
            "REFERENCE_DATA_BUCKET": data_stack.reference_bucket.bucket_name,
            "LOG_LEVEL": log_level,
        }

        # Export polling alone may take 30 seconds.
        app_api_handler = lambda_.Function(
            self,
            "PortalApiHandler",
            runtime=lambda_.Runtime.PYTHON_3_12,
            code=lambda_code,
            handler="backend.runtime.lambda_handler",
            timeout=Duration.seconds(60),
            memory_size=512,
            environment=env,
        )
        data_stack.reference_bucket.grant_read(app_api_handler)

        self.rest_api = apigateway.RestApi(
            self,
            "LecturerPortalApi",
            rest_api_name="lecturer-portal-api",
            deploy_options=apigateway.StageOptions(stage_name=stage_name),
        )

        app_integration = apigateway.LambdaIntegration(
            app_api_handler,
            timeout=Duration.seconds(59),
        )

        health = self.rest_api.root.add_resource("health")
        health.add_method("GET", app_integration)

        api = self.rest_api.root.add_resource("api")
        session = api.add_resource("session")
        session.add_method("GET", app_integration)
        qualtrics = api.add_resource("qualtrics")
        qualtrics.add_method("GET", app_integration)

        api_base_url = self.rest_api.url.rstrip("/")
        CfnOutput(
            self,
            "ApiBaseUrl",
            value=api_base_url,
            description="Base URL for smoke tests and frontend API wiring",
        )
        CfnOutput(
            self,
            "SessionEndpoint",
            value=f"{api_base_url}/api/session",
            description="Session endpoint resolving the caller identity",
        )

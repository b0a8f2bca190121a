#!/usr/bin/env python3
"""CDK app entrypoint for the lecturer survey portal infrastructure."""

from __future__ import annotations

import os

import aws_cdk as cdk

from stacks.api_stack import ApiStack
from stacks.data_stack import DataStack

app = cdk.App()

env = cdk.Environment(
    account=os.getenv("CDK_DEFAULT_ACCOUNT"),
    region=os.getenv("CDK_DEFAULT_REGION"),
)

stage_name = app.node.try_get_context("stageName") or "dev"
admin_emails = os.getenv("ADMIN_EMAILS", "") or app.node.try_get_context("adminEmails") or ""
qualtrics_base_url = os.getenv("QUALTRICS_BASE_URL", "") or app.node.try_get_context("qualtricsBaseUrl") or ""
qualtrics_api_token = os.getenv("QUALTRICS_API_TOKEN", "")
course_design_survey_id = (
    os.getenv("QUALTRICS_COURSE_DESIGN_SURVEY_ID", "")
    or app.node.try_get_context("courseDesignSurveyId")
    or ""
)
learning_exp_survey_id = (
    os.getenv("QUALTRICS_LEARNING_EXP_SURVEY_ID", "")
    or app.node.try_get_context("learningExpSurveyId")
    or ""
)
course_code_field = app.node.try_get_context("courseCodeField") or ""
teacher_id_field = app.node.try_get_context("teacherIdField") or ""
log_level = app.node.try_get_context("logLevel") or "INFO"

data_stack = DataStack(app, "LecturerPortalDataStack", env=env)

api_stack = ApiStack(
    app,
    "LecturerPortalApiStack",
    env=env,
    data_stack=data_stack,
    stage_name=stage_name,
    admin_emails=admin_emails,
    qualtrics_base_url=qualtrics_base_url,
    qualtrics_api_token=qualtrics_api_token,
    course_design_survey_id=course_design_survey_id,
    learning_exp_survey_id=learning_exp_survey_id,
    course_code_field=course_code_field,
    teacher_id_field=teacher_id_field,
    log_level=log_level,
)
api_stack.add_dependency(data_stack)

app.synth()

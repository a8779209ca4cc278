#!/usr/bin/env python3
"""CDK app entry point for the event-driven order processing architecture."""

import os
import aws_cdk as cdk
from stacks.event_driven_stack import EventDrivenOrderStack


app = cdk.App()

# Integration tests deploy under a unique stack name
stack_name = app.node.try_get_context("stack_name") or "EventDrivenOrderStack"

EventDrivenOrderStack(
    app,
    stack_name,
    env=cdk.Environment(
        account=os.getenv("CDK_DEFAULT_ACCOUNT"),
        region=os.getenv("CDK_DEFAULT_REGION", "us-east-1"),  # Default to us-east-1
    ),
    description="Event-Driven Architecture Template",
)

app.synth()

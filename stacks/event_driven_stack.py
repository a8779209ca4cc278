"""CDK stack for the event-driven order processing architecture."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_dynamodb as dynamodb,
    aws_events as events,
    aws_events_targets as events_targets,
    aws_eventschemas as eventschemas,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_lambda_event_sources as lambda_event_sources,
    aws_logs as logs,
    aws_s3 as s3,
    aws_sns as sns,
    aws_sqs as sqs,
    aws_stepfunctions as sfn,
    aws_stepfunctions_tasks as sfn_tasks,
    Duration,
    RemovalPolicy,
    CfnOutput,
)

# Lambda configuration constants
PROCESS_ORDER_TIMEOUT_SECONDS = 30
PROCESS_ORDER_MEMORY_MB = 256
SUBMIT_ORDER_TIMEOUT_SECONDS = 10
SUBMIT_ORDER_MEMORY_MB = 128
INVENTORY_TTL_DAYS = 30

# Queue configuration
QUEUE_BATCH_SIZE = 10
MAX_RECEIVE_COUNT = 5
DLQ_RETENTION_DAYS = 14

# Inventory table throughput
TABLE_READ_CAPACITY = 5
TABLE_WRITE_CAPACITY = 5

# Event routing, must match lambdas/process_order.py
EVENT_SOURCE = "order-processing"
STATUS_CHANGED_DETAIL_TYPE = "OrderStatusChanged"

STATE_MACHINE_TIMEOUT_MINUTES = 5

# Logging configuration
LOG_RETENTION_DAYS = logs.RetentionDays.TWO_WEEKS


class EventDrivenOrderStack(cdk.Stack):
    """Stack for queue-driven order processing with event-routed notifications."""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        """Initialise the event-driven order stack.

        Args:
            scope: The scope in which this stack is defined.
            construct_id: The scoped construct ID.
            **kwargs: Additional stack properties.
        """
        super().__init__(scope, construct_id, **kwargs)

        # Optional suffix for integration test deployments
        resource_suffix = self.node.try_get_context("resource_suffix") or ""
        self.name_suffix = f"-{resource_suffix}" if resource_suffix else ""

        self.uploads_bucket = self._create_uploads_bucket()
        # Step Functions log delivery to a group outside /aws/vendedlogs/ makes CDK
        # add an account-wide logs resource policy, which has a size limit in
        # accounts with many log destinations
        self.centralized_log_group = logs.LogGroup(
            self,
            "CentralizedLogsGroup",
            log_group_name=f"centralized-logs-group{self.name_suffix}",
            retention=LOG_RETENTION_DAYS,
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.order_queue_dlq, self.order_queue = self._create_order_queues()
        self.inventory_table = self._create_inventory_table()

        self.notifications_topic = sns.Topic(
            self,
            "NotificationsTopic",
            display_name=f"notifications-topic{self.name_suffix}",
        )

        self.event_bus = self._create_event_bus()
        self.schema_registry = eventschemas.CfnRegistry(
            self,
            "EventBridgeSchema",
            registry_name=f"event-driven-registry{self.name_suffix}",
            description="Registry for event-driven notifications",
        )
        self.schema_registry.node.add_dependency(self.centralized_log_group)

        self.process_order_function = self._create_process_order_function()
        self.submit_order_function = self._create_submit_order_function()

        self.state_machine = self._create_state_machine()
        self.state_transition_rule = events.Rule(
            self,
            "StateTransitionRule",
            rule_name=f"state-transition-rule{self.name_suffix}",
            description="Route order status transitions to the state machine",
            event_bus=self.event_bus,
            event_pattern=events.EventPattern(
                source=[EVENT_SOURCE],
                detail_type=[STATUS_CHANGED_DETAIL_TYPE],
            ),
        )
        self.state_transition_rule.add_target(
            events_targets.SfnStateMachine(
                self.state_machine,
                input=events.RuleTargetInput.from_event_path("$.detail"),
            )
        )

        self._create_outputs()

    def _create_uploads_bucket(self) -> s3.Bucket:
        """Create the encrypted bucket for order uploads."""
        return s3.Bucket(
            self,
            "SecureOrderUploadsBucket",
            bucket_name=f"secure-order-uploads-bucket{self.name_suffix}",
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            removal_policy=RemovalPolicy.DESTROY,
        )

    def _create_order_queues(self):
        """Create the FIFO order queue and its dead letter queue.

        Returns:
            Tuple of (dead letter queue, order queue).
        """
        dlq = sqs.Queue(
            self,
            "OrderProcessingQueueDLQ",
            queue_name=f"order-processing-queue-dlq{self.name_suffix}.fifo",
            fifo=True,
            retention_period=Duration.days(DLQ_RETENTION_DAYS),
            encryption=sqs.QueueEncryption.SQS_MANAGED,
        )

        queue = sqs.Queue(
            self,
            "OrderProcessingQueue",
            queue_name=f"order-processing-queue{self.name_suffix}.fifo",
            fifo=True,
            # AWS recommends six times the function timeout for SQS sources
            visibility_timeout=Duration.seconds(PROCESS_ORDER_TIMEOUT_SECONDS * 6),
            dead_letter_queue=sqs.DeadLetterQueue(
                max_receive_count=MAX_RECEIVE_COUNT,
                queue=dlq,
            ),
            encryption=sqs.QueueEncryption.SQS_MANAGED,
        )

        return dlq, queue

    def _create_inventory_table(self) -> dynamodb.Table:
        """Create the inventory table with a product index and TTL."""
        table = dynamodb.Table(
            self,
            "InventoryTable",
            table_name=f"inventory-table{self.name_suffix}",
            partition_key=dynamodb.Attribute(
                name="OrderID",
                type=dynamodb.AttributeType.STRING,
            ),
            sort_key=dynamodb.Attribute(
                name="ProductID",
                type=dynamodb.AttributeType.STRING,
            ),
            billing_mode=dynamodb.BillingMode.PROVISIONED,
            read_capacity=TABLE_READ_CAPACITY,
            write_capacity=TABLE_WRITE_CAPACITY,
            time_to_live_attribute="ExpirationTime",
            removal_policy=RemovalPolicy.DESTROY,
        )

        table.add_global_secondary_index(
            index_name="ProductIndex",
            partition_key=dynamodb.Attribute(
                name="ProductID",
                type=dynamodb.AttributeType.STRING,
            ),
            projection_type=dynamodb.ProjectionType.ALL,
            read_capacity=TABLE_READ_CAPACITY,
            write_capacity=TABLE_WRITE_CAPACITY,
        )

        return table

    def _create_event_bus(self) -> events.EventBus:
        """Create the custom event bus and its resource policy."""
        event_bus = events.EventBus(
            self,
            "EventBus",
            event_bus_name=f"event-driven-event-bus{self.name_suffix}",
        )
        event_bus.node.add_dependency(self.centralized_log_group)

        self.event_bus_policy = events.CfnEventBusPolicy(
            self,
            "EventBusPolicy",
            event_bus_name=event_bus.event_bus_name,
            statement_id="event-bus-policy-statement",
            statement={
                "Sid": "event-bus-policy-statement",
                "Effect": "Allow",
                "Action": "events:PutEvents",
                "Principal": {"Service": "eventbridge.amazonaws.com"},
                "Resource": event_bus.event_bus_arn,
            },
        )

        return event_bus

    def _create_process_order_function(self) -> lambda_.Function:
        """Create the queue consumer and its dedicated execution role."""
        function_name = f"order-processing-function{self.name_suffix}"

        self.process_order_role = iam.Role(
            self,
            "OrderProcessingFunctionRole",
            role_name=f"order-processing-function-role{self.name_suffix}",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSLambdaBasicExecutionRole"
                )
            ],
            inline_policies={
                "lambda-policy": iam.PolicyDocument(
                    statements=[
                        iam.PolicyStatement(
                            effect=iam.Effect.ALLOW,
                            actions=["sqs:SendMessage"],
                            resources=[self.order_queue.queue_arn],
                        )
                    ]
                )
            },
        )

        log_group = logs.LogGroup(
            self,
            "OrderProcessingFunctionLogGroup",
            log_group_name=f"/aws/lambda/{function_name}",
            retention=LOG_RETENTION_DAYS,
            removal_policy=RemovalPolicy.DESTROY,
        )

        function = lambda_.Function(
            self,
            "OrderProcessingFunction",
            function_name=function_name,
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler="process_order.handler",
            code=lambda_.Code.from_asset("lambdas"),
            role=self.process_order_role,
            environment={
                "TABLE_NAME": self.inventory_table.table_name,
                "EVENT_BUS_NAME": self.event_bus.event_bus_name,
                "TTL_DAYS": str(INVENTORY_TTL_DAYS),
            },
            timeout=Duration.seconds(PROCESS_ORDER_TIMEOUT_SECONDS),
            memory_size=PROCESS_ORDER_MEMORY_MB,
            log_group=log_group,
        )

        self.inventory_table.grant_write_data(function)
        self.event_bus.grant_put_events_to(function)

        # FIFO sources do not support a batching window
        function.add_event_source(
            lambda_event_sources.SqsEventSource(
                self.order_queue,
                batch_size=QUEUE_BATCH_SIZE,
                report_batch_item_failures=True,
            )
        )

        return function

    def _create_submit_order_function(self) -> lambda_.Function:
        """Create the intake function that places orders on the FIFO queue."""
        function_name = f"order-submission-function{self.name_suffix}"

        log_group = logs.LogGroup(
            self,
            "OrderSubmissionFunctionLogGroup",
            log_group_name=f"/aws/lambda/{function_name}",
            retention=LOG_RETENTION_DAYS,
            removal_policy=RemovalPolicy.DESTROY,
        )

        function = lambda_.Function(
            self,
            "OrderSubmissionFunction",
            function_name=function_name,
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler="submit_order.handler",
            code=lambda_.Code.from_asset("lambdas"),
            environment={
                "QUEUE_URL": self.order_queue.queue_url,
            },
            timeout=Duration.seconds(SUBMIT_ORDER_TIMEOUT_SECONDS),
            memory_size=SUBMIT_ORDER_MEMORY_MB,
            log_group=log_group,
        )

        self.order_queue.grant_send_messages(function)

        return function

    def _create_state_machine(self) -> sfn.StateMachine:
        """Create the state machine that turns status transitions into notifications."""
        notify_processed = sfn_tasks.SnsPublish(
            self,
            "NotifyOrderProcessed",
            topic=self.notifications_topic,
            subject="Order Processed",
            message=sfn.TaskInput.from_object(
                {
                    "orderId": sfn.JsonPath.string_at("$.orderId"),
                    "status": sfn.JsonPath.string_at("$.status"),
                }
            ),
            result_path=sfn.JsonPath.DISCARD,
        )

        notify_failed = sfn_tasks.SnsPublish(
            self,
            "NotifyOrderFailed",
            topic=self.notifications_topic,
            subject="Order Failed",
            message=sfn.TaskInput.from_object(
                {
                    "orderId": sfn.JsonPath.string_at("$.orderId"),
                    "status": sfn.JsonPath.string_at("$.status"),
                    "reason": sfn.JsonPath.string_at("$.reason"),
                }
            ),
            result_path=sfn.JsonPath.DISCARD,
        )

        order_complete = sfn.Succeed(
            self, "OrderComplete", comment="Order processed and notification sent"
        )
        order_failed = sfn.Fail(
            self,
            "OrderFailed",
            error="OrderRejected",
            cause="Order could not be processed",
        )
        ignore_transition = sfn.Succeed(
            self, "IgnoreTransition", comment="No notification for this status"
        )

        definition = (
            sfn.Choice(self, "CheckOrderStatus")
            .when(
                sfn.Condition.string_equals("$.status", "PROCESSED"),
                notify_processed.next(order_complete),
            )
            .when(
                sfn.Condition.string_equals("$.status", "FAILED"),
                notify_failed.next(order_failed),
            )
            .otherwise(ignore_transition)
        )

        return sfn.StateMachine(
            self,
            "OrderProcessingStateMachine",
            state_machine_name=f"order-processing-state-machine{self.name_suffix}",
            definition_body=sfn.DefinitionBody.from_chainable(definition),
            timeout=Duration.minutes(STATE_MACHINE_TIMEOUT_MINUTES),
            logs=sfn.LogOptions(
                destination=self.centralized_log_group,
                level=sfn.LogLevel.ALL,
            ),
        )

    def _create_outputs(self) -> None:
        """Declare the stack outputs."""
        CfnOutput(
            self,
            "SecureOrderUploadsBucketName",
            value=self.uploads_bucket.bucket_name,
            description="Name of the S3 bucket for secure order uploads",
        )

        CfnOutput(
            self,
            "OrderProcessingQueueURL",
            value=self.order_queue.queue_url,
            description="URL of the SQS queue for order processing",
        )

        CfnOutput(
            self,
            "OrderProcessingQueueDLQURL",
            value=self.order_queue_dlq.queue_url,
            description="URL of the dead letter queue for order processing",
        )

        CfnOutput(
            self,
            "OrderProcessingFunctionName",
            value=self.process_order_function.function_name,
            description="Name of the Lambda function for order processing",
        )

        CfnOutput(
            self,
            "OrderSubmissionFunctionName",
            value=self.submit_order_function.function_name,
            description="Name of the Lambda function for order submission",
        )

        CfnOutput(
            self,
            "InventoryTableName",
            value=self.inventory_table.table_name,
            description="Name of the DynamoDB table for inventory management",
        )

        CfnOutput(
            self,
            "NotificationsTopicARN",
            value=self.notifications_topic.topic_arn,
            description="ARN of the SNS topic for notifications",
        )

        CfnOutput(
            self,
            "OrderProcessingStateMachineARN",
            value=self.state_machine.state_machine_arn,
            description="ARN of the Step Functions state machine",
        )

        CfnOutput(
            self,
            "CentralizedLogsGroupName",
            value=self.centralized_log_group.log_group_name,
            description="Name of the centralized CloudWatch Logs group",
        )

        CfnOutput(
            self,
            "EventBusName",
            value=self.event_bus.event_bus_name,
            description="Name of the EventBridge event bus for event routing",
        )

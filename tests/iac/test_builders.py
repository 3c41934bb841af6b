"""Tests for the validated resource builders."""

import hashlib
from types import MappingProxyType

import pytest

from stacksmith.exceptions import (
    BuilderStateError,
    ResourceValidationError,
    ValidationError,
    ValidationErrorKind,
)
from stacksmith.iac.assets import Asset
from stacksmith.iac.references import get_att, ref
from stacksmith.iac.resource import DeletionPolicy, Resource
from stacksmith.iac.resources import (
    AttributeType,
    BillingMode,
    BucketBuilder,
    FunctionBuilder,
    LogGroupBuilder,
    QueueBuilder,
    RoleBuilder,
    Runtime,
    SubscriptionBuilder,
    SubscriptionProtocol,
    TableBuilder,
    TopicBuilder,
    get_descriptor,
    policy_document,
    policy_statement,
)
from stacksmith.iac.resources.sqs import QueueType
from stacksmith.iac.resources.sns import TopicType
from stacksmith.iac.stack import StackAssembler


def _kinds(error: ValidationError):
    return {v.kind for v in error.violations}


def _fields(error: ValidationError):
    return {v.field for v in error.violations}


def _table(resource_id: str = "Table") -> TableBuilder:
    return (
        TableBuilder(resource_id)
        .table_name("orders")
        .partition_key("pk", AttributeType.STRING)
    )


class TestBuilderLifecycle:
    """Test single-use semantics shared by every builder."""

    def test_finalize_returns_immutable_resource(self):
        resource = _table().billing_mode(BillingMode.PAY_PER_REQUEST).finalize()

        assert isinstance(resource, Resource)
        assert resource.kind == "AWS::DynamoDB::Table"
        assert resource.id == "Table"
        assert isinstance(resource.properties, MappingProxyType)
        assert resource.properties["KeySchema"][0]["AttributeName"] == "pk"
        with pytest.raises(TypeError):
            resource.properties["TableName"] = "other"

    def test_resource_does_not_follow_later_input_changes(self):
        document = policy_document([policy_statement(["sqs:SendMessage"], ["*"])])
        role = (
            RoleBuilder("Role")
            .assumed_by_service("lambda.amazonaws.com")
            .inline_policy("send", document)
            .finalize()
        )

        document["Statement"].append({"Effect": "Deny"})

        assert len(role.properties["Policies"][0]["PolicyDocument"]["Statement"]) == 1

    def test_finalize_twice_raises(self):
        builder = _table().billing_mode(BillingMode.PAY_PER_REQUEST)
        builder.finalize()

        with pytest.raises(BuilderStateError):
            builder.finalize()

    def test_setter_after_finalize_raises(self):
        builder = _table().billing_mode(BillingMode.PAY_PER_REQUEST)
        builder.finalize()

        with pytest.raises(BuilderStateError):
            builder.table_name("again")
        assert builder.finalized

    def test_failed_finalize_can_be_fixed_and_retried(self):
        builder = _table()
        with pytest.raises(ResourceValidationError):
            builder.finalize()

        resource = builder.billing_mode(BillingMode.PAY_PER_REQUEST).finalize()
        assert resource.get("BillingMode") == "PAY_PER_REQUEST"

    def test_invalid_logical_id(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            QueueBuilder("orders-queue").finalize()

        assert exc_info.value.violations[0].field == "id"

    def test_unknown_property(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            QueueBuilder("Queue").set_property("Colour", "blue").finalize()

        assert exc_info.value.kind is ValidationErrorKind.PATTERN_MISMATCH
        assert exc_info.value.field == "Colour"

    def test_every_violation_is_reported(self):
        builder = TableBuilder("Table").table_name("ab")

        with pytest.raises(ResourceValidationError) as exc_info:
            builder.finalize()

        error = exc_info.value
        assert {"TableName", "KeySchema", "AttributeDefinitions", "BillingMode"} <= _fields(error)
        assert all(v.resource_id == "Table" for v in error.violations)
        assert error.resource_id == "Table"
        assert error.context["resource_kind"] == "AWS::DynamoDB::Table"

    def test_snapshot_policy_requires_support(self):
        table = (
            _table()
            .billing_mode(BillingMode.PAY_PER_REQUEST)
            .deletion_policy(DeletionPolicy.SNAPSHOT)
            .finalize()
        )
        assert table.deletion_policy is DeletionPolicy.SNAPSHOT

        with pytest.raises(ResourceValidationError) as exc_info:
            QueueBuilder("Queue").deletion_policy(DeletionPolicy.SNAPSHOT).finalize()
        assert exc_info.value.field == "DeletionPolicy"


class TestTableBuilder:
    def test_provisioned_requires_throughput(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            _table().billing_mode(BillingMode.PROVISIONED).finalize()

        assert exc_info.value.kind is ValidationErrorKind.REQUIRED_FIELD_MISSING
        assert exc_info.value.field == "ProvisionedThroughput"

    def test_provisioned_with_throughput(self):
        table = (
            _table()
            .billing_mode(BillingMode.PROVISIONED)
            .provisioned_throughput(5, 5)
            .finalize()
        )

        assert dict(table.properties["ProvisionedThroughput"]) == {
            "ReadCapacityUnits": 5,
            "WriteCapacityUnits": 5,
        }

    def test_throughput_settings_are_mutually_exclusive(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            (
                _table()
                .billing_mode(BillingMode.PROVISIONED)
                .provisioned_throughput(5, 5)
                .on_demand_throughput(max_read=10)
                .finalize()
            )

        error = exc_info.value
        assert error.kind is ValidationErrorKind.MUTUAL_EXCLUSION
        assert set(error.fields) == {"ProvisionedThroughput", "OnDemandThroughput"}

    def test_pay_per_request_rejects_provisioned_throughput(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            (
                _table()
                .billing_mode(BillingMode.PAY_PER_REQUEST)
                .provisioned_throughput(5, 5)
                .finalize()
            )

        assert exc_info.value.kind is ValidationErrorKind.MUTUAL_EXCLUSION
        assert set(exc_info.value.fields) == {"BillingMode", "ProvisionedThroughput"}

    def test_capacity_lower_bound(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            (
                _table()
                .billing_mode(BillingMode.PROVISIONED)
                .provisioned_throughput(0, 1)
                .finalize()
            )

        assert exc_info.value.kind is ValidationErrorKind.OUT_OF_RANGE
        assert exc_info.value.field == "ProvisionedThroughput.ReadCapacityUnits"

    def test_sort_key_and_ttl(self):
        table = (
            _table()
            .sort_key("sk", AttributeType.NUMBER)
            .billing_mode(BillingMode.PAY_PER_REQUEST)
            .time_to_live("expires_at")
            .finalize()
        )

        assert [k["KeyType"] for k in table.properties["KeySchema"]] == ["HASH", "RANGE"]
        assert table.properties["TimeToLiveSpecification"]["Enabled"] is True

    def test_two_partition_keys(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            (
                _table()
                .partition_key("other", AttributeType.STRING)
                .billing_mode(BillingMode.PAY_PER_REQUEST)
                .finalize()
            )

        assert exc_info.value.field == "KeySchema"

    def test_malformed_attribute_definitions_are_reported(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            (
                _table()
                .billing_mode(BillingMode.PAY_PER_REQUEST)
                .set_property(
                    "AttributeDefinitions",
                    [
                        {"AttributeName": "pk", "AttributeType": "S"},
                        {"AttributeName": ["x"], "AttributeType": "S"},
                    ],
                )
                .finalize()
            )

        assert _fields(exc_info.value) == {"AttributeDefinitions[1].AttributeName"}


class TestQueueBuilder:
    @pytest.mark.parametrize("seconds", [0, 43200])
    def test_visibility_timeout_boundaries(self, seconds):
        queue = QueueBuilder("Queue").visibility_timeout(seconds).finalize()
        assert queue.get("VisibilityTimeout") == seconds

    @pytest.mark.parametrize("seconds", [-1, 43201])
    def test_visibility_timeout_out_of_range(self, seconds):
        with pytest.raises(ResourceValidationError) as exc_info:
            QueueBuilder("Queue").visibility_timeout(seconds).finalize()

        assert exc_info.value.kind is ValidationErrorKind.OUT_OF_RANGE
        assert exc_info.value.field == "VisibilityTimeout"

    def test_fifo_name_is_normalized(self):
        queue = (
            QueueBuilder("Queue")
            .queue_name("orders")
            .queue_type(QueueType.FIFO)
            .content_based_deduplication()
            .finalize()
        )

        assert queue.get("QueueName") == "orders.fifo"
        assert queue.get("FifoQueue") is True

    def test_fifo_only_setting_on_standard_queue(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            QueueBuilder("Queue").content_based_deduplication().finalize()

        assert exc_info.value.kind is ValidationErrorKind.MUTUAL_EXCLUSION
        assert set(exc_info.value.fields) == {"FifoQueue", "ContentBasedDeduplication"}

    def test_standard_queue_name_cannot_end_in_fifo(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            QueueBuilder("Queue").queue_name("orders.fifo").finalize()

        assert exc_info.value.field == "QueueName"

    def test_dead_letter_queue_uses_arn(self):
        queue = QueueBuilder("Queue").dead_letter_queue(ref("Dlq"), 3).finalize()

        assert queue.get("RedrivePolicy")["deadLetterTargetArn"] == get_att("Dlq", "Arn")
        assert queue.dependencies == frozenset({"Dlq"})

    def test_max_receive_count_must_be_positive(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            QueueBuilder("Queue").dead_letter_queue(ref("Dlq"), 0).finalize()

        assert exc_info.value.field == "RedrivePolicy.maxReceiveCount"


class TestTopicAndSubscriptionBuilders:
    def test_fifo_topic_name(self):
        topic = TopicBuilder("Topic").topic_name("events").topic_type(TopicType.FIFO).finalize()

        assert topic.get("TopicName") == "events.fifo"

    def test_raw_delivery_for_sqs(self):
        subscription = (
            SubscriptionBuilder("Sub")
            .topic(ref("Topic"))
            .protocol(SubscriptionProtocol.SQS)
            .endpoint(get_att("Queue", "Arn"))
            .raw_message_delivery()
            .finalize()
        )

        assert subscription.dependencies == frozenset({"Topic", "Queue"})

    def test_raw_delivery_not_allowed_for_email(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            (
                SubscriptionBuilder("Sub")
                .topic(ref("Topic"))
                .protocol(SubscriptionProtocol.EMAIL)
                .endpoint("ops@example.com")
                .raw_message_delivery()
                .finalize()
            )

        assert exc_info.value.kind is ValidationErrorKind.MUTUAL_EXCLUSION
        assert set(exc_info.value.fields) == {"Protocol", "RawMessageDelivery"}

    def test_subscription_requires_endpoint(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            SubscriptionBuilder("Sub").topic(ref("Topic")).protocol(SubscriptionProtocol.SQS).finalize()

        assert ValidationErrorKind.REQUIRED_FIELD_MISSING in exc_info.value.kinds


class TestBucketBuilder:
    @pytest.mark.parametrize("name", ["My_Bucket", "ab", "192.168.1.1", "a..b", "-bucket"])
    def test_invalid_bucket_names(self, name):
        with pytest.raises(ResourceValidationError) as exc_info:
            BucketBuilder("Bucket").bucket_name(name).finalize()

        assert exc_info.value.field == "BucketName"

    def test_website_and_redirect_are_exclusive(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            (
                BucketBuilder("Site")
                .website("index.html")
                .redirect_all_requests_to("example.com")
                .finalize()
            )

        assert exc_info.value.kind is ValidationErrorKind.MUTUAL_EXCLUSION
        assert set(exc_info.value.fields) == {
            "WebsiteConfiguration.IndexDocument",
            "WebsiteConfiguration.RedirectAllRequestsTo",
        }

    def test_versioned_bucket(self):
        bucket = BucketBuilder("Bucket").bucket_name("my-bucket.logs").versioning().finalize()

        assert bucket.get("VersioningConfiguration")["Status"] == "Enabled"


class TestLogGroupBuilder:
    def test_allowed_retention(self):
        group = LogGroupBuilder("Logs").log_group_name("/app/orders").retention_in_days(14).finalize()
        assert group.get("RetentionInDays") == 14

    def test_retention_must_be_a_supported_value(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            LogGroupBuilder("Logs").retention_in_days(8).finalize()

        assert exc_info.value.field == "RetentionInDays"


class TestFunctionBuilder:
    def _zip_function(self) -> FunctionBuilder:
        return (
            FunctionBuilder("Fn")
            .role(ref("Role"))
            .runtime(Runtime.PYTHON_3_12)
            .handler("app.handler")
            .inline_code("def handler(event, context):\n    return event\n")
        )

    def test_zip_function(self):
        function = self._zip_function().memory_size(128).timeout(900).finalize()

        assert function.get("Role") == get_att("Role", "Arn")
        assert function.dependencies == frozenset({"Role"})

    def test_zip_requires_handler_and_runtime(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            FunctionBuilder("Fn").role("arn:aws:iam::123456789012:role/x").inline_code("x").finalize()

        assert {"Handler", "Runtime"} <= _fields(exc_info.value)

    def test_image_forbids_handler(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            (
                FunctionBuilder("Fn")
                .role(ref("Role"))
                .code_from_image("123456789012.dkr.ecr.us-east-1.amazonaws.com/app:1")
                .handler("app.handler")
                .finalize()
            )

        assert exc_info.value.kind is ValidationErrorKind.MUTUAL_EXCLUSION
        assert set(exc_info.value.fields) == {"PackageType", "Handler"}

    def test_code_sources_are_exclusive(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            self._zip_function().code_from_s3("artifacts", "fn.zip").finalize()

        error = exc_info.value
        assert error.kind is ValidationErrorKind.MUTUAL_EXCLUSION
        assert set(error.fields) == {"Code.S3Bucket", "Code.ZipFile"}

    @pytest.mark.parametrize("memory", [127, 10241])
    def test_memory_range(self, memory):
        with pytest.raises(ResourceValidationError) as exc_info:
            self._zip_function().memory_size(memory).finalize()

        assert exc_info.value.kind is ValidationErrorKind.OUT_OF_RANGE

    def test_reserved_environment_variable(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            self._zip_function().environment_variable("AWS_REGION", "us-east-1").finalize()

        assert exc_info.value.field == "Environment.Variables.AWS_REGION"

    def test_non_string_environment_variable_name(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            self._zip_function().environment_variable(5, "v").finalize()

        assert exc_info.value.kind is ValidationErrorKind.PATTERN_MISMATCH
        assert exc_info.value.field == "Environment.Variables"

    def test_missing_role(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            FunctionBuilder("Fn").runtime(Runtime.PYTHON_3_12).handler("a.b").inline_code("x").finalize()

        assert exc_info.value.field == "Role"


class TestFunctionCompanions:
    """Test the execution role, log group and package generated for functions."""

    def _function(self, assembler: StackAssembler) -> FunctionBuilder:
        return (
            assembler.new(FunctionBuilder, "Fn")
            .runtime(Runtime.PYTHON_3_12)
            .handler("app.handler")
            .inline_code("def handler(event, context):\n    return event\n")
        )

    def test_generates_role_and_log_group(self):
        assembler = StackAssembler()

        function = (
            self._function(assembler)
            .function_name("orders-handler")
            .add_permission(["sqs:SendMessage"], [get_att("Queue", "Arn")])
            .finalize()
        )

        assert list(assembler.resources) == ["FnRole", "FnLogGroup", "Fn"]
        assert function.get("Role") == get_att("FnRole", "Arn")
        assert function.get("LoggingConfig")["LogGroup"] == ref("FnLogGroup")

        role = assembler.resources["FnRole"]
        assert list(role.get("ManagedPolicyArns")) == [
            "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
        ]
        statement = role.get("Policies")[0]["PolicyDocument"]["Statement"][0]
        assert list(statement["Action"]) == ["sqs:SendMessage"]
        assert role.dependencies == frozenset({"Queue"})

        group = assembler.resources["FnLogGroup"]
        assert group.get("LogGroupName") == "/aws/lambda/orders-handler"
        assert group.get("RetentionInDays") == 731

    def test_unnamed_function_gets_unnamed_log_group(self):
        assembler = StackAssembler()

        self._function(assembler).finalize()

        assert "LogGroupName" not in assembler.resources["FnLogGroup"].properties
        assert "Policies" not in assembler.resources["FnRole"].properties

    def test_supplied_role_and_log_group_are_kept(self):
        assembler = StackAssembler()

        function = (
            self._function(assembler)
            .role(ref("SharedRole"))
            .log_group("/shared/functions")
            .finalize()
        )

        assert list(assembler.resources) == ["Fn"]
        assert function.get("Role") == get_att("SharedRole", "Arn")
        assert function.get("LoggingConfig")["LogGroup"] == "/shared/functions"

    def test_failed_finalize_registers_nothing(self):
        assembler = StackAssembler()
        builder = assembler.new(FunctionBuilder, "Fn").runtime(Runtime.PYTHON_3_12).inline_code("x")

        with pytest.raises(ResourceValidationError) as exc_info:
            builder.finalize()

        assert _fields(exc_info.value) == {"Handler"}
        assert len(assembler.resources) == 0
        assert "Role" not in builder._properties

        builder.handler("app.handler").finalize()
        assert list(assembler.resources) == ["FnRole", "FnLogGroup", "Fn"]

    def test_generated_id_already_taken(self):
        assembler = StackAssembler()
        assembler.new(QueueBuilder, "FnRole").finalize()

        with pytest.raises(ValidationError) as exc_info:
            self._function(assembler).finalize()

        assert exc_info.value.kind is ValidationErrorKind.DUPLICATE_IDENTITY
        assert exc_info.value.resource_id == "FnRole"
        assert list(assembler.resources) == ["FnRole"]

    def test_permissions_need_the_generated_role(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            (
                FunctionBuilder("Fn")
                .role(ref("Role"))
                .runtime(Runtime.PYTHON_3_12)
                .handler("app.handler")
                .inline_code("x")
                .add_permission(["s3:GetObject"], ["*"])
                .finalize()
            )

        assert exc_info.value.kind is ValidationErrorKind.MUTUAL_EXCLUSION
        assert exc_info.value.field == "Role"

    def test_code_from_local_zip(self, function_package):
        digest = hashlib.sha256(function_package.read_bytes()).hexdigest()

        function = (
            FunctionBuilder("Fn")
            .role(ref("Role"))
            .runtime(Runtime.PYTHON_3_12)
            .handler("app.handler")
            .code_from_zip("artifacts-bucket", function_package)
            .finalize()
        )

        assert dict(function.get("Code")) == {
            "S3Bucket": "artifacts-bucket",
            "S3Key": f"{digest}.zip",
        }
        assert function.assets == (
            Asset("artifacts-bucket", f"{digest}.zip", str(function_package)),
        )

    def test_missing_zip(self, tmp_path):
        builder = (
            FunctionBuilder("Fn")
            .role(ref("Role"))
            .runtime(Runtime.PYTHON_3_12)
            .handler("app.handler")
            .code_from_zip("artifacts-bucket", tmp_path / "missing.zip")
        )

        with pytest.raises(ResourceValidationError) as exc_info:
            builder.finalize()

        assert _fields(exc_info.value) == {"Code"}
        assert exc_info.value.kind is ValidationErrorKind.REQUIRED_FIELD_MISSING
        assert "S3Key" not in builder._properties["Code"]

    def test_stack_collects_assets(self, function_package):
        assembler = StackAssembler()
        for resource_id in ("Reader", "Writer"):
            (
                assembler.new(FunctionBuilder, resource_id)
                .runtime(Runtime.PYTHON_3_12)
                .handler("app.handler")
                .code_from_zip("artifacts-bucket", function_package)
                .finalize()
            )

        stack = assembler.build()

        assert len(stack.assets) == 1
        assert stack.assets[0].path == str(function_package)


class TestRoleBuilder:
    def test_role_with_policies(self):
        role = (
            RoleBuilder("Role")
            .assumed_by_service("lambda.amazonaws.com")
            .managed_policy("arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole")
            .inline_policy(
                "consume",
                policy_document([policy_statement(["sqs:ReceiveMessage"], [get_att("Queue", "Arn")])]),
            )
            .finalize()
        )

        assert role.dependencies == frozenset({"Queue"})

    def test_duplicate_policy_names(self):
        document = policy_document([policy_statement(["s3:GetObject"], ["*"])])

        with pytest.raises(ResourceValidationError) as exc_info:
            (
                RoleBuilder("Role")
                .assumed_by_service("lambda.amazonaws.com")
                .inline_policy("read", document)
                .inline_policy("read", document)
                .finalize()
            )

        assert exc_info.value.kind is ValidationErrorKind.DUPLICATE_IDENTITY

    def test_trust_policy_required(self):
        with pytest.raises(ResourceValidationError) as exc_info:
            RoleBuilder("Role").finalize()

        assert exc_info.value.field == "AssumeRolePolicyDocument"


class TestDescriptors:
    def test_identity_affecting_properties(self):
        assert get_descriptor("AWS::DynamoDB::Table").replaces_on_change("TableName")
        assert not get_descriptor("AWS::DynamoDB::Table").replaces_on_change("BillingMode")

    def test_unknown_kind(self):
        with pytest.raises(KeyError) as exc_info:
            get_descriptor("AWS::Nope::Thing")

        assert "AWS::SQS::Queue" in str(exc_info.value)

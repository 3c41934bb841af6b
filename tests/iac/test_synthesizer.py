"""Tests for template synthesis."""

import json

import pytest

from stacksmith.exceptions import TemplateFormatError
from stacksmith.iac.resource import DeletionPolicy
from stacksmith.iac.resources import QueueBuilder
from stacksmith.iac.stack import StackAssembler
from stacksmith.iac.synthesizer import Template, synthesize


class TestSynthesize:
    """Test the canonical template document."""

    def test_document_shape(self, queue_stack):
        template = synthesize(queue_stack.build())

        assert template.document == {
            "resources": {
                "Orders": {
                    "kind": "AWS::SQS::Queue",
                    "properties": {
                        "RedrivePolicy": {
                            "deadLetterTargetArn": {"Fn::GetAtt": ["OrdersDlq", "Arn"]},
                            "maxReceiveCount": 5,
                        },
                        "VisibilityTimeout": 30,
                    },
                },
                "OrdersDlq": {
                    "kind": "AWS::SQS::Queue",
                    "properties": {"MessageRetentionPeriod": 1209600},
                },
            }
        }

    def test_same_stack_gives_identical_bytes(self, queue_stack_factory):
        first = synthesize(queue_stack_factory().build())
        second = synthesize(queue_stack_factory().build())

        assert first.to_json() == second.to_json()
        assert first == second
        assert hash(first) == hash(second)

    def test_insertion_order_does_not_matter(self):
        forward = StackAssembler()
        forward.new(QueueBuilder, "A").visibility_timeout(1).delay_seconds(2).finalize()
        forward.new(QueueBuilder, "B").finalize()
        backward = StackAssembler()
        backward.new(QueueBuilder, "B").finalize()
        backward.new(QueueBuilder, "A").delay_seconds(2).visibility_timeout(1).finalize()

        assert synthesize(forward.build()).to_json() == synthesize(backward.build()).to_json()

    def test_compact_json_has_sorted_keys(self, queue_stack):
        text = synthesize(queue_stack.build()).to_json()

        assert " " not in text
        assert text.index('"Orders"') < text.index('"OrdersDlq"')
        assert json.loads(text)["resources"]["OrdersDlq"]["kind"] == "AWS::SQS::Queue"

    def test_policies_are_emitted(self):
        assembler = StackAssembler()
        (
            assembler.new(QueueBuilder, "Queue")
            .deletion_policy(DeletionPolicy.RETAIN)
            .update_replace_policy(DeletionPolicy.RETAIN)
            .finalize()
        )

        entry = synthesize(assembler.build()).resource("Queue")

        assert entry["deletionPolicy"] == "Retain"
        assert entry["updateReplacePolicy"] == "Retain"

    def test_tags_are_not_part_of_the_template(self, queue_stack):
        template = synthesize(queue_stack.add_tag("team", "orders").build())

        assert "team" not in template.to_json()

    def test_returned_documents_are_copies(self, queue_stack):
        template = synthesize(queue_stack.build())

        template.resources["Orders"]["kind"] = "changed"

        assert template.resource("Orders")["kind"] == "AWS::SQS::Queue"


class TestTemplateParsing:
    def test_round_trip_through_json(self, table_stack):
        template = synthesize(table_stack.build())

        assert Template.from_json(template.to_json()) == template
        assert Template.from_json(template.to_json(indent=2)) == template

    @pytest.mark.parametrize(
        "document",
        [
            [],
            {"Resources": {}},
            {"resources": []},
            {"resources": {"A": {"properties": {}}}},
            {"resources": {"A": {"kind": "K", "extra": 1}}},
            {"resources": {"A": {"kind": "K", "properties": []}}},
        ],
    )
    def test_malformed_documents(self, document):
        with pytest.raises(TemplateFormatError):
            Template.from_document(document)

    def test_invalid_json(self):
        with pytest.raises(TemplateFormatError):
            Template.from_json("{not json")

    def test_floats_are_rejected(self):
        with pytest.raises(TemplateFormatError):
            Template({"resources": {"A": {"kind": "K", "properties": {"X": 1.5}}}})

from __future__ import annotations

import logging

import pytest

from cross_account_deploy.stack_orchestrator.control_plane import RemoteRejected
from cross_account_deploy.stack_orchestrator.models import StackDescriptor, TemplateDescriptor
from cross_account_deploy.stack_orchestrator.outputs import OutputExtractor


class FakeOutputs:
    def __init__(self, outputs: dict[str, str] | None) -> None:
        self.outputs = outputs
        self.reads = 0

    def get_stack_outputs(self, name: str) -> dict[str, str]:
        self.reads += 1
        if self.outputs is None:
            raise RemoteRejected("ValidationError", f"Stack with id {name} does not exist", "DescribeStacks")
        return dict(self.outputs)


def _descriptor() -> StackDescriptor:
    return StackDescriptor(
        name="CrossAccount-Deployment-Role",
        template=TemplateDescriptor(location="role.yaml", body="Resources: {}"),
        parameters={},
        tags={},
        region="eu-north-1",
    )


def test_absent_key_is_omitted_with_notice(caplog: pytest.LogCaptureFixture) -> None:
    extractor = OutputExtractor(FakeOutputs({"OtherOutput": "x"}))

    with caplog.at_level(logging.WARNING):
        outputs = extractor.extract(_descriptor(), {"CrossAccountRoleArn"})

    assert outputs == {}
    assert "CrossAccountRoleArn" in caplog.text


def test_outputs_are_filtered_to_requested_keys() -> None:
    fake = FakeOutputs({"PipelineName": "p", "PipelineUrl": "https://console", "Extra": "y"})

    outputs = OutputExtractor(fake).extract(_descriptor(), ["PipelineName", "PipelineUrl"])

    assert outputs == {"PipelineName": "p", "PipelineUrl": "https://console"}
    assert fake.reads == 1


def test_missing_stack_propagates() -> None:
    with pytest.raises(RemoteRejected):
        OutputExtractor(FakeOutputs(None)).extract(_descriptor(), ["PipelineName"])

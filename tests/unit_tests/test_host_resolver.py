import pytest

from webapp_deploy.aws.aws_clients import AWSClientManager
from webapp_deploy.aws.host_resolver import Ec2HostResolver, StaticHostResolver
from webapp_deploy.errors import HostResolutionError
from tests.consts import TEST_AMI, TEST_TAG


def _launch(session, tag, count=1):
    ec2 = session.client("ec2")
    response = ec2.run_instances(
        ImageId=TEST_AMI,
        MinCount=count,
        MaxCount=count,
        InstanceType="t2.micro",
        TagSpecifications=[{"ResourceType": "instance", "Tags": [{"Key": "Name", "Value": tag}]}],
    )
    return [i["InstanceId"] for i in response["Instances"]]


@pytest.fixture
def resolver(mocked_aws, settings):
    return Ec2HostResolver(settings, AWSClientManager(settings, session=mocked_aws))


def test_resolve_running_instance(mocked_aws, resolver):
    instance_id = _launch(mocked_aws, TEST_TAG)[0]

    host = resolver.resolve()

    assert host.instance_id == instance_id
    assert host.tag == TEST_TAG
    assert host.address
    assert host.state == "running"
    assert host.user == "ec2-user"
    assert host.ssh_command.startswith("ssh -i ")


def test_resolve_ignores_other_tags(mocked_aws, resolver):
    _launch(mocked_aws, "someone-elses-server")

    with pytest.raises(HostResolutionError, match=f"Name={TEST_TAG}"):
        resolver.resolve()


def test_stopped_instance_is_not_resolved_but_is_described(mocked_aws, resolver):
    instance_id = _launch(mocked_aws, TEST_TAG)[0]
    mocked_aws.client("ec2").stop_instances(InstanceIds=[instance_id])

    with pytest.raises(HostResolutionError):
        resolver.resolve()
    described = resolver.describe()
    assert described.instance_id == instance_id
    assert described.state == "stopped"


def test_resolve_by_explicit_tag(mocked_aws, resolver):
    _launch(mocked_aws, TEST_TAG)
    staging_id = _launch(mocked_aws, "staging-webapp")[0]

    assert resolver.resolve("staging-webapp").instance_id == staging_id


def test_several_matches_use_the_first(mocked_aws, resolver):
    ids = _launch(mocked_aws, TEST_TAG, count=2)
    assert resolver.resolve().instance_id in ids


def test_verify_credentials(mocked_aws, resolver):
    assert resolver.verify_credentials()


def test_static_resolver(settings):
    host = StaticHostResolver(settings, "198.51.100.7").resolve()
    assert host.address == "198.51.100.7"
    assert host.tag == TEST_TAG
    assert host.instance_id is None


def test_describe_prefers_running_instance(mocked_aws, resolver):
    old_id = _launch(mocked_aws, TEST_TAG)[0]
    mocked_aws.client("ec2").terminate_instances(InstanceIds=[old_id])
    new_id = _launch(mocked_aws, TEST_TAG)[0]

    described = resolver.describe()

    assert described.instance_id == new_id
    assert described.state == "running"

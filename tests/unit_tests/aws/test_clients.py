from health_pipeline.aws.clients import AWSClientManager, get_s3_client, get_ssm_client


def test_clients_are_cached_per_service(mocked_aws):
    s3 = get_s3_client()

    assert get_s3_client() is s3
    assert get_ssm_client() is not s3
    assert s3.meta.region_name == "us-east-1"


def test_reset_builds_new_clients(mocked_aws):
    s3 = get_s3_client()

    AWSClientManager().reset()

    assert get_s3_client() is not s3


def test_local_mode_targets_the_moto_server(monkeypatch):
    monkeypatch.setenv("DEPLOYMENT_MODE", "local-dev")

    assert get_s3_client().meta.endpoint_url == "http://localhost:5000"


def test_prod_mode_uses_the_regional_endpoint(monkeypatch):
    monkeypatch.setenv("DEPLOYMENT_MODE", "aws-prod")
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)

    assert get_ssm_client().meta.endpoint_url == "https://ssm.us-east-1.amazonaws.com"

"""Certificate selection, CloudFront distribution and invalidation tests."""
from __future__ import annotations

import pytest

from deployer.reconciler.certificate_lib import candidate_names, find_certificate
from deployer.reconciler.client import distribution_attributes
from deployer.reconciler.engine import DeployContext, reconcile
from deployer.reconciler.errors import ConfigurationError, DeploymentError, OwnershipConflictError
from deployer.reconciler.settings import DeploySettings
from deployer.reconciler.types import (
    CERTIFICATE_STAGE,
    CONTENT_STAGE,
    CREATED,
    DISTRIBUTION_STAGE,
    MANAGED_BY_TAG,
    UNCHANGED,
    UPDATED,
    CertificateConfig,
    ReconciliationResult,
    RemoteResourceState,
    WebsiteConfig,
)
from deployer.reconciler.website_lib import (
    CLOUDFRONT_HOSTED_ZONE_ID,
    DistributionReconciler,
    distribution_config,
    invalidate,
    website_domain_name,
)

CERT_ARN = "arn:aws:acm:us-east-1:123456789012:certificate/site"
DIST_ARN = "arn:aws:cloudfront::123456789012:distribution/E123"


class FakeAws:
    def __init__(self):
        self.certificates = []
        self.distribution = None
        self.distribution_config = None
        self.calls = []
        self.invalidation_polls = 0

    # ACM
    def list_certificates(self, *, region=None):
        return [{"CertificateArn": cert["CertificateArn"], "DomainName": cert["DomainName"]} for cert in self.certificates]

    def describe_certificate(self, arn, *, region=None):
        return next(cert for cert in self.certificates if cert["CertificateArn"] == arn)

    def get_certificate_tags(self, arn, *, region=None):
        return self.describe_certificate(arn).get("Tags", {})

    # CloudFront
    def find_distribution(self, alias):
        if self.distribution is None:
            return None
        return RemoteResourceState(
            identifier=DIST_ARN,
            name=alias,
            tags=self.distribution["tags"],
            attributes=distribution_attributes(
                {
                    "Id": "E123",
                    "ARN": DIST_ARN,
                    "DomainName": "d111111abcdef8.cloudfront.net",
                    "Status": self.distribution["status"],
                    "DistributionConfig": self.distribution_config,
                }
            ),
        )

    def create_distribution(self, config, *, tags, alias):
        self.calls.append("create_distribution")
        self.distribution_config = dict(config)
        self.distribution = {"tags": dict(tags), "status": "InProgress"}
        return self.find_distribution(alias)

    def get_distribution_config(self, distribution_id):
        return dict(self.distribution_config), "ETAG1"

    def update_distribution(self, distribution_id, *, etag, config):
        self.calls.append(("update_distribution", etag))
        self.distribution_config = dict(config)
        self.distribution["status"] = "InProgress"

    def get_distribution_status(self, distribution_id):
        self.distribution["status"] = "Deployed"
        return "Deployed"

    def create_invalidation(self, distribution_id, paths, *, reference):
        self.calls.append(("create_invalidation", tuple(paths)))
        return "I1"

    def get_invalidation_status(self, distribution_id, invalidation_id):
        self.invalidation_polls += 1
        return "Completed" if self.invalidation_polls > 1 else "InProgress"


def _certificate(arn, domain, sans, status, tags=None):
    return {
        "CertificateArn": arn,
        "DomainName": domain,
        "SubjectAlternativeNames": sans,
        "Status": status,
        "Tags": tags or {},
    }


def _context(aws):
    context = DeployContext(client=aws, settings=DeploySettings(), sleep=lambda _s: None)
    context.outputs[CERTIFICATE_STAGE] = ReconciliationResult(
        resource="www.example.com", kind="ACM certificate", action=UNCHANGED, identifier=CERT_ARN
    )
    return context


def _website(**overrides):
    return WebsiteConfig(domain_name="www.example.com", directory="./public", **overrides)


def test_candidate_names():
    assert candidate_names("www.example.com") == {"www.example.com", "*.example.com"}
    assert candidate_names("example.com") == {"example.com"}


def test_exact_issued_certificate_beats_wildcard():
    aws = FakeAws()
    aws.certificates = [
        _certificate("arn:wildcard", "*.example.com", ["*.example.com"], "ISSUED"),
        _certificate("arn:exact", "www.example.com", ["www.example.com"], "ISSUED"),
    ]

    state = find_certificate(_context(aws), CertificateConfig(domain_name="www.example.com"))

    assert state.identifier == "arn:exact"


def test_pending_certificate_requires_ownership():
    aws = FakeAws()
    aws.certificates = [_certificate("arn:pending", "www.example.com", ["www.example.com"], "PENDING_VALIDATION")]
    config = CertificateConfig(domain_name="www.example.com")

    assert find_certificate(_context(aws), config) is None

    aws.certificates[0]["Tags"] = {MANAGED_BY_TAG: "boostr-v1"}
    assert find_certificate(_context(aws), config).identifier == "arn:pending"


def test_wildcard_certificate_is_used():
    aws = FakeAws()
    aws.certificates = [_certificate("arn:wildcard", "*.example.com", ["*.example.com", "example.com"], "ISSUED")]

    state = find_certificate(_context(aws), CertificateConfig(domain_name="www.example.com"))

    assert state.name == "*.example.com"


def test_website_domain_name():
    assert website_domain_name("www.example.com", "eu-west-3") == "www.example.com.s3-website.eu-west-3.amazonaws.com"
    with pytest.raises(ConfigurationError):
        website_domain_name("www.example.com", "mars-north-1")


def test_distribution_config_shape():
    payload = distribution_config(_website(), CERT_ARN, reference="42")

    assert payload["Aliases"] == {"Quantity": 1, "Items": ["www.example.com"]}
    assert payload["DefaultCacheBehavior"]["ViewerProtocolPolicy"] == "redirect-to-https"
    assert payload["CustomErrorResponses"]["Items"][0]["ResponsePagePath"] == "/index.html"
    assert payload["ViewerCertificate"]["ACMCertificateArn"] == CERT_ARN
    assert payload["PriceClass"] == "PriceClass_100"


def test_distribution_create_then_unchanged():
    aws = FakeAws()

    created = reconcile(DistributionReconciler(), _website(), _context(aws))
    unchanged = reconcile(DistributionReconciler(), _website(), _context(aws))

    assert created.action == CREATED
    assert created.attributes == {
        "id": "E123",
        "domain_name": "d111111abcdef8.cloudfront.net",
        "hosted_zone_id": CLOUDFRONT_HOSTED_ZONE_ID,
    }
    assert aws.distribution["tags"] == {MANAGED_BY_TAG: "boostr-v1"}
    assert unchanged.action == UNCHANGED
    assert aws.calls == ["create_distribution"]


def test_distribution_drift_keeps_unmanaged_fields():
    aws = FakeAws()
    reconcile(DistributionReconciler(), _website(), _context(aws))
    aws.distribution_config["Comment"] = "edited by hand"

    result = reconcile(DistributionReconciler(), _website(price_class="PriceClass_All"), _context(aws))

    assert result.action == UPDATED
    assert ("update_distribution", "ETAG1") in aws.calls
    assert aws.distribution_config["PriceClass"] == "PriceClass_All"
    assert aws.distribution_config["Comment"] == "edited by hand"


def test_cache_behavior_drift_is_repaired():
    aws = FakeAws()
    reconcile(DistributionReconciler(), _website(), _context(aws))
    behavior = dict(aws.distribution_config["DefaultCacheBehavior"], ViewerProtocolPolicy="allow-all", DefaultTTL=5)
    aws.distribution_config["DefaultCacheBehavior"] = behavior
    aws.distribution_config["CustomErrorResponses"] = {"Quantity": 0, "Items": []}

    result = reconcile(DistributionReconciler(), _website(), _context(aws))

    assert result.action == UPDATED
    assert aws.distribution_config["DefaultCacheBehavior"]["ViewerProtocolPolicy"] == "redirect-to-https"
    assert aws.distribution_config["DefaultCacheBehavior"]["DefaultTTL"] == 86400
    assert aws.distribution_config["CustomErrorResponses"]["Items"][0]["ResponsePagePath"] == "/index.html"
    assert reconcile(DistributionReconciler(), _website(), _context(aws)).action == UNCHANGED


def test_foreign_distribution_is_refused():
    aws = FakeAws()
    reconcile(DistributionReconciler(), _website(), _context(aws))
    aws.distribution["tags"] = {}

    with pytest.raises(OwnershipConflictError):
        reconcile(DistributionReconciler(), _website(price_class="PriceClass_All"), _context(aws))


def test_disabled_distribution_is_an_error():
    aws = FakeAws()
    reconcile(DistributionReconciler(), _website(), _context(aws))
    aws.distribution_config["Enabled"] = False

    with pytest.raises(DeploymentError, match="disabled"):
        reconcile(DistributionReconciler(), _website(), _context(aws))


def _invalidation_context(aws, *, distribution_action, changes):
    context = _context(aws)
    context.outputs[DISTRIBUTION_STAGE] = ReconciliationResult(
        resource="www.example.com",
        kind="CloudFront distribution",
        action=distribution_action,
        identifier=DIST_ARN,
        attributes={"id": "E123"},
    )
    context.outputs[CONTENT_STAGE] = ReconciliationResult(
        resource="www.example.com",
        kind="content",
        action=UPDATED,
        identifier="www.example.com",
        attributes={"changes": changes},
    )
    return context


def test_invalidation_waits_for_completion():
    aws = FakeAws()
    context = _invalidation_context(aws, distribution_action=UNCHANGED, changes=["index.html", "app.js"])

    result = invalidate(_website(), context)

    assert result.action == UPDATED
    assert aws.calls == [("create_invalidation", ("/index.html", "/", "/app.js"))]
    assert aws.invalidation_polls == 2


def test_invalidation_skipped_for_new_distribution_or_no_changes():
    aws = FakeAws()

    created = invalidate(_website(), _invalidation_context(aws, distribution_action=CREATED, changes=["index.html"]))
    unchanged = invalidate(_website(), _invalidation_context(aws, distribution_action=UNCHANGED, changes=[]))

    assert created.action == UNCHANGED
    assert unchanged.action == UNCHANGED
    assert aws.calls == []

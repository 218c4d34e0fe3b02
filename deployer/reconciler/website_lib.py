"""S3 website bucket, CloudFront distribution and cache invalidation."""
from __future__ import annotations

import logging
import time
from typing import Any, Mapping

from . import waiter
from .client import distribution_attributes
from .content_lib import invalidation_paths
from .engine import DeployContext, Reconciler, step_result
from .errors import ConfigurationError, DeploymentError
from .ownership import LEGACY_WEBSITE_IDENTIFIER
from .types import (
    CERTIFICATE_STAGE,
    CONTENT_STAGE,
    CREATED,
    DISTRIBUTION_STAGE,
    INVALIDATION_STAGE,
    PENDING,
    SUCCEEDED,
    UNCHANGED,
    UPDATED,
    OperationStatus,
    PendingOperation,
    ReconciliationResult,
    RemoteResourceState,
    WebsiteConfig,
)

LOGGER = logging.getLogger(__name__)

CLOUDFRONT_HOSTED_ZONE_ID = "Z2FDTNDATAQYW2"
CLOUDFRONT_CACHING_MIN_TTL = 0
CLOUDFRONT_CACHING_DEFAULT_TTL = 86400
CLOUDFRONT_CACHING_MAX_TTL = 3153600000
CLOUDFRONT_ERROR_CACHING_MIN_TTL = 86400

MANAGED_DISTRIBUTION_ATTRIBUTES = (
    "price_class",
    "default_root_object",
    "certificate_arn",
    "origin_domain_name",
    "viewer_protocol_policy",
    "cache_ttls",
    "error_responses",
)

S3_WEBSITE_ENDPOINTS = {
    "us-east-1": "s3-website-us-east-1.amazonaws.com",
    "us-east-2": "s3-website.us-east-2.amazonaws.com",
    "us-west-1": "s3-website-us-west-1.amazonaws.com",
    "us-west-2": "s3-website-us-west-2.amazonaws.com",
    "ca-central-1": "s3-website.ca-central-1.amazonaws.com",
    "sa-east-1": "s3-website-sa-east-1.amazonaws.com",
    "ap-east-1": "s3-website.ap-east-1.amazonaws.com",
    "ap-south-1": "s3-website.ap-south-1.amazonaws.com",
    "ap-northeast-1": "s3-website-ap-northeast-1.amazonaws.com",
    "ap-northeast-2": "s3-website.ap-northeast-2.amazonaws.com",
    "ap-northeast-3": "s3-website.ap-northeast-3.amazonaws.com",
    "ap-southeast-1": "s3-website-ap-southeast-1.amazonaws.com",
    "ap-southeast-2": "s3-website-ap-southeast-2.amazonaws.com",
    "cn-northwest-1": "s3-website.cn-northwest-1.amazonaws.com.cn",
    "eu-central-1": "s3-website.eu-central-1.amazonaws.com",
    "eu-west-1": "s3-website-eu-west-1.amazonaws.com",
    "eu-west-2": "s3-website.eu-west-2.amazonaws.com",
    "eu-west-3": "s3-website.eu-west-3.amazonaws.com",
    "eu-north-1": "s3-website.eu-north-1.amazonaws.com",
    "af-south-1": "s3-website.af-south-1.amazonaws.com",
}


def website_domain_name(bucket: str, region: str) -> str:
    endpoint = S3_WEBSITE_ENDPOINTS.get(region)
    if endpoint is None:
        raise ConfigurationError(f"Sorry, the AWS S3 region '{region}' is not supported yet", resource=bucket)
    return f"{bucket}.{endpoint}"


def public_read_policy(bucket: str) -> dict[str, Any]:
    """Bucket policy letting anyone read the website objects."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "PublicReadGetObject",
                "Effect": "Allow",
                "Principal": "*",
                "Action": "s3:GetObject",
                "Resource": f"arn:aws:s3:::{bucket}/*",
            }
        ],
    }


class BucketReconciler(Reconciler[WebsiteConfig]):
    kind = "S3 bucket"
    legacy_identifiers = (LEGACY_WEBSITE_IDENTIFIER,)

    def key(self, config: WebsiteConfig) -> str:
        return config.bucket_name

    def discover(self, context: DeployContext, config: WebsiteConfig) -> RemoteResourceState | None:
        bucket = config.bucket_name
        tags = context.client.get_bucket_tags(bucket)
        if tags is None:
            return None
        return RemoteResourceState(
            identifier=bucket,
            name=bucket,
            tags=tags,
            attributes={
                "region": context.client.get_bucket_region(bucket),
                "index_page": context.client.get_bucket_index_page(bucket),
            },
        )

    def diff(self, context: DeployContext, config: WebsiteConfig, state: RemoteResourceState) -> list[str]:
        region = state.attributes.get("region")
        if region != config.region:
            raise ConfigurationError(
                "Sorry, it is not currently possible to change the region of a S3 bucket. "
                f"Please remove the bucket '{state.name}' manually or set 'region' to '{region}'.",
                resource=config.bucket_name,
            )
        if state.attributes.get("index_page") != config.index_page:
            return ["index_page"]
        return []

    def create(self, context: DeployContext, config: WebsiteConfig) -> RemoteResourceState:
        bucket = config.bucket_name
        tags = context.ownership.creation_tags()
        context.client.create_bucket(bucket, region=config.region, tags=tags)
        context.retry(
            lambda: context.client.configure_bucket_website(
                bucket, index_page=config.index_page, policy=public_read_policy(bucket)
            ),
            description=f"Configuring the website of {bucket}",
            resource=bucket,
        )
        return RemoteResourceState(
            identifier=bucket,
            name=bucket,
            tags=tags,
            attributes={"region": config.region, "index_page": config.index_page},
        )

    def update(
        self, context: DeployContext, config: WebsiteConfig, state: RemoteResourceState, changes: list[str]
    ) -> RemoteResourceState:
        context.client.configure_bucket_website(config.bucket_name, index_page=config.index_page)
        return RemoteResourceState(
            identifier=state.identifier,
            name=state.name,
            tags=state.tags,
            attributes={**state.attributes, "index_page": config.index_page},
        )

    def outputs(self, state: RemoteResourceState) -> Mapping[str, Any]:
        region = state.attributes.get("region")
        return {"bucket": state.name, "region": region, "website_domain_name": website_domain_name(state.name, region)}


def distribution_origins(config: WebsiteConfig) -> dict[str, Any]:
    return {
        "Quantity": 1,
        "Items": [
            {
                "Id": config.domain_name,
                "DomainName": website_domain_name(config.bucket_name, config.region),
                "OriginPath": "",
                "CustomHeaders": {"Quantity": 0, "Items": []},
                "CustomOriginConfig": {
                    "HTTPPort": 80,
                    "HTTPSPort": 443,
                    "OriginProtocolPolicy": "http-only",
                    "OriginSslProtocols": {"Quantity": 3, "Items": ["TLSv1", "TLSv1.1", "TLSv1.2"]},
                    "OriginReadTimeout": 30,
                    "OriginKeepaliveTimeout": 30,
                },
                "ConnectionAttempts": 3,
                "ConnectionTimeout": 10,
                "OriginShield": {"Enabled": False},
            }
        ],
    }


def default_cache_behavior(config: WebsiteConfig) -> dict[str, Any]:
    return {
        "TargetOriginId": config.domain_name,
        "ForwardedValues": {
            "QueryString": False,
            "Cookies": {"Forward": "none"},
            "Headers": {"Quantity": 0, "Items": []},
            "QueryStringCacheKeys": {"Quantity": 0, "Items": []},
        },
        "TrustedSigners": {"Enabled": False, "Quantity": 0, "Items": []},
        "TrustedKeyGroups": {"Enabled": False, "Quantity": 0, "Items": []},
        "ViewerProtocolPolicy": "redirect-to-https",
        "AllowedMethods": {
            "Quantity": 2,
            "Items": ["HEAD", "GET"],
            "CachedMethods": {"Quantity": 2, "Items": ["HEAD", "GET"]},
        },
        "SmoothStreaming": False,
        "MinTTL": CLOUDFRONT_CACHING_MIN_TTL,
        "DefaultTTL": CLOUDFRONT_CACHING_DEFAULT_TTL,
        "MaxTTL": CLOUDFRONT_CACHING_MAX_TTL,
        "Compress": True,
        "LambdaFunctionAssociations": {"Quantity": 0, "Items": []},
        "FieldLevelEncryptionId": "",
    }


def custom_error_responses(config: WebsiteConfig) -> dict[str, Any]:
    """Unknown paths are answered by the index page (single-page applications)."""
    return {
        "Quantity": 1,
        "Items": [
            {
                "ErrorCode": 404,
                "ResponseCode": "200",
                "ResponsePagePath": f"/{config.index_page}",
                "ErrorCachingMinTTL": CLOUDFRONT_ERROR_CACHING_MIN_TTL,
            }
        ],
    }


def viewer_certificate(certificate_arn: str) -> dict[str, Any]:
    return {
        "ACMCertificateArn": certificate_arn,
        "SSLSupportMethod": "sni-only",
        "MinimumProtocolVersion": "TLSv1.2_2021",
        "CertificateSource": "acm",
    }


def distribution_config(config: WebsiteConfig, certificate_arn: str, *, reference: str) -> dict[str, Any]:
    return {
        "CallerReference": reference,
        "Aliases": {"Quantity": 1, "Items": [config.domain_name]},
        "DefaultRootObject": config.index_page,
        "Origins": distribution_origins(config),
        "DefaultCacheBehavior": default_cache_behavior(config),
        "CacheBehaviors": {"Quantity": 0, "Items": []},
        "CustomErrorResponses": custom_error_responses(config),
        "Comment": "",
        "Logging": {"Enabled": False, "IncludeCookies": False, "Bucket": "", "Prefix": ""},
        "PriceClass": config.price_class,
        "Enabled": True,
        "ViewerCertificate": viewer_certificate(certificate_arn),
        "Restrictions": {"GeoRestriction": {"RestrictionType": "none", "Quantity": 0, "Items": []}},
        "WebACLId": "",
        "HttpVersion": "http2",
        "IsIPV6Enabled": True,
    }


class DistributionReconciler(Reconciler[WebsiteConfig]):
    kind = "CloudFront distribution"
    legacy_identifiers = (LEGACY_WEBSITE_IDENTIFIER,)

    def _certificate_arn(self, context: DeployContext, config: WebsiteConfig) -> str:
        return context.require(CERTIFICATE_STAGE, needed_by=DISTRIBUTION_STAGE, resource=config.domain_name).identifier

    def discover(self, context: DeployContext, config: WebsiteConfig) -> RemoteResourceState | None:
        return context.client.find_distribution(config.domain_name)

    def _managed_config(self, context: DeployContext, config: WebsiteConfig) -> dict[str, Any]:
        return {
            "DefaultRootObject": config.index_page,
            "Origins": distribution_origins(config),
            "DefaultCacheBehavior": default_cache_behavior(config),
            "CustomErrorResponses": custom_error_responses(config),
            "PriceClass": config.price_class,
            "ViewerCertificate": viewer_certificate(self._certificate_arn(context, config)),
        }

    def _desired(self, context: DeployContext, config: WebsiteConfig) -> dict[str, Any]:
        attributes = distribution_attributes({"DistributionConfig": self._managed_config(context, config)})
        return {name: attributes[name] for name in MANAGED_DISTRIBUTION_ATTRIBUTES}

    def diff(self, context: DeployContext, config: WebsiteConfig, state: RemoteResourceState) -> list[str]:
        attributes = state.attributes
        if not attributes.get("enabled"):
            raise DeploymentError(
                f"The CloudFront distribution is disabled (ARN: '{state.identifier}')", resource=config.domain_name
            )
        desired = self._desired(context, config)
        return [name for name, value in desired.items() if attributes.get(name) != value]

    def create(self, context: DeployContext, config: WebsiteConfig) -> RemoteResourceState:
        payload = distribution_config(
            config, self._certificate_arn(context, config), reference=str(int(time.time() * 1000))
        )
        return context.client.create_distribution(
            payload, tags=context.ownership.creation_tags(), alias=config.domain_name
        )

    def update(
        self, context: DeployContext, config: WebsiteConfig, state: RemoteResourceState, changes: list[str]
    ) -> RemoteResourceState:
        client = context.client
        distribution_id = state.attributes["id"]
        current, etag = client.get_distribution_config(distribution_id)
        current.update(self._managed_config(context, config))
        client.update_distribution(distribution_id, etag=etag, config=current)
        return RemoteResourceState(
            identifier=state.identifier,
            name=state.name,
            tags=state.tags,
            attributes={
                **state.attributes,
                **self._desired(context, config),
                "status": "InProgress",
            },
        )

    def settle(
        self, context: DeployContext, config: WebsiteConfig, state: RemoteResourceState, action: str
    ) -> PendingOperation | None:
        if action == UNCHANGED and state.attributes.get("status") == "Deployed":
            return None
        distribution_id = state.attributes["id"]

        def check() -> OperationStatus:
            status = context.client.get_distribution_status(distribution_id)
            return OperationStatus(SUCCEEDED if status == "Deployed" else PENDING, status)

        return waiter.pending(
            "the CloudFront deployment (it can take up to 30 minutes)",
            check,
            waiter.DISTRIBUTION_DEPLOYMENT,
            resource=config.domain_name,
        )

    def outputs(self, state: RemoteResourceState) -> Mapping[str, Any]:
        return {
            "id": state.attributes.get("id"),
            "domain_name": state.attributes.get("domain_name"),
            "hosted_zone_id": CLOUDFRONT_HOSTED_ZONE_ID,
        }


def invalidate(config: WebsiteConfig, context: DeployContext) -> ReconciliationResult:
    """Invalidate the paths changed by the content synchronization."""
    started = time.perf_counter()
    distribution = context.require(DISTRIBUTION_STAGE, needed_by=INVALIDATION_STAGE, resource=config.domain_name)
    content = context.outputs.get(CONTENT_STAGE)
    changes = list(content.attributes.get("changes", [])) if content is not None else []

    def result(action: str, **attributes: Any) -> ReconciliationResult:
        return step_result(
            resource=config.domain_name,
            kind=INVALIDATION_STAGE,
            action=action,
            identifier=distribution.identifier,
            started=started,
            attributes=attributes,
        )

    if distribution.action == CREATED:
        LOGGER.info("Skipping the invalidation of the new CloudFront distribution")
        return result(UNCHANGED, paths=[])
    if not changes:
        return result(UNCHANGED, paths=[])

    distribution_id = distribution.attributes["id"]
    paths = invalidation_paths(changes, config.index_page)
    LOGGER.info("Running the CloudFront invalidation (%d paths)...", len(paths))
    invalidation_id = context.client.create_invalidation(
        distribution_id, paths, reference=str(int(time.time() * 1000))
    )

    def check() -> OperationStatus:
        status = context.client.get_invalidation_status(distribution_id, invalidation_id)
        return OperationStatus(SUCCEEDED if status == "Completed" else PENDING, status)

    context.wait(
        waiter.pending(
            "the CloudFront invalidation", check, waiter.DISTRIBUTION_INVALIDATION, resource=config.domain_name
        )
    )
    return result(UPDATED, paths=paths, invalidation_id=invalidation_id)


__all__ = [
    "BucketReconciler",
    "CLOUDFRONT_HOSTED_ZONE_ID",
    "DistributionReconciler",
    "distribution_config",
    "invalidate",
    "public_read_policy",
    "website_domain_name",
]
